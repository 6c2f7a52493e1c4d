import os
import pathlib
from typing import Annotated, Optional

from pydantic import AfterValidator

from .alignment import OptimizerParameters


def input_path_exists(path: str) -> str:
    """Pydantic validator to check the path exists."""
    if not os.path.exists(path):
        raise ValueError(f"Input file does not exist: {path}")

    return path


class OptimizerCliParameters(
    OptimizerParameters,
    use_attribute_docstrings=True,
):
    """Parameters for running the tile optimizer on a correspondence table."""

    input_csv: Annotated[str, AfterValidator(input_path_exists)]
    """CSV file of correspondences.

    Columns: tile1, tile2, p1_x, p1_y, p2_x, p2_y (plus p1_z, p2_z for 3D data)
    and optionally valid, weight, timepoint1, timepoint2, model1, model2.
    """

    output_csv: Optional[pathlib.Path] = None
    """Where to write the solved tile transforms.

    Defaults to the input file name with a ``_solved`` suffix.
    """

    by_timepoint: bool = False
    """Optimize every timepoint separately instead of all tiles at once."""

    verbose: bool = False
    """Show debug-level logging."""

    @property
    def solved_csv(self) -> pathlib.Path:
        """Path of the solved tiles table."""
        if self.output_csv is not None:
            return self.output_csv
        path = pathlib.Path(self.input_csv)
        return path.with_name(path.stem + "_solved.csv")
