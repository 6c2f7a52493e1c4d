"""Parameters of the global tile-alignment optimizer."""
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from ._fallback_policy import (
    DEFAULT_DEGENERACY_TOLERANCE,
    DEFAULT_REGULARIZER_LAMBDA,
    PerturbationMode,
)
from ._models import ModelType
from ._relaxation import DEFAULT_DAMPING, DEFAULT_ITERATIONS, DEFAULT_LOG_EVERY


class OptimizerParameters(
    BaseModel,
    use_attribute_docstrings=True,
):
    """Parameters for one global optimization run."""
    model_config = ConfigDict(validate_assignment=True)

    iterations: Annotated[int, Field(ge=0)] = DEFAULT_ITERATIONS
    """Number of relaxation sweeps. The full budget is always spent."""

    damping: Annotated[float, Field(gt=0.0, le=1.0)] = DEFAULT_DAMPING
    """Fraction of each refit applied per sweep.

    Ignored for translation-only configurations, which always use 1.0.
    """

    prealign: bool = True
    """Run a translation-only relaxation first when any tile has a higher-order model."""

    prealign_iterations: Annotated[int, Field(ge=0)] = DEFAULT_ITERATIONS
    """Number of sweeps of the pre-alignment pass."""

    default_model: ModelType = ModelType.AFFINE
    """Model family for tiles whose correspondences do not name one."""

    match_multiplicity: Annotated[int, Field(ge=1, le=2)] = 2
    """Factor applied to a model's minimum number of matches.

    Every correspondence adds exactly one entry to each of its two tiles'
    match lists. With the default of 2 a tile needs twice the model's minimum
    number of correspondences to keep its model; 1 requires just the minimum.
    """

    regularizer_lambda: Annotated[float, Field(ge=0.0, le=1.0)] = DEFAULT_REGULARIZER_LAMBDA
    """Weight of the translation regularizer given to tiles with flat match geometry."""

    degeneracy_tolerance: Annotated[float, Field(gt=0.0)] = DEFAULT_DEGENERACY_TOLERANCE
    """Minimum extent along every axis for match coordinates to count as non-degenerate."""

    perturbation: PerturbationMode = PerturbationMode.PER_MATCH
    """Jitter applied to correspondences synthesized from sub-region midpoints."""

    perturbation_magnitude: Annotated[float, Field(ge=0.0)] = 0.5
    """Bound of the jitter along each axis, in pixels/voxels."""

    perturbation_seed: int = 0
    """Seed of the jitter generator; identical inputs give identical results."""

    silent: bool = False
    """Suppress per-run summary and progress logging."""

    show_progress: bool = False
    """Show a tqdm progress bar during relaxation."""

    log_every: Annotated[int, Field(ge=0)] = DEFAULT_LOG_EVERY
    """Log the error every this many sweeps (0 disables)."""

    @classmethod
    def from_json_file(cls, json_path: str) -> "OptimizerParameters":
        """Create parameters from a JSON file.

        Args:
            json_path: Path to JSON file containing parameters

        Returns:
            OptimizerParameters: New instance with values from JSON
        """
        with open(json_path) as f:
            return cls.model_validate_json(f.read())

    def to_json_file(self, json_path: str) -> None:
        """Save parameters to a JSON file.

        Args:
            json_path: Path where JSON file should be saved
        """
        with open(json_path, "w") as f:
            f.write(self.model_dump_json(indent=2))
