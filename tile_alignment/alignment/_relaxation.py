"""Iterative relaxation of a tile configuration.

Tiles are refit one after another against the current positions of their
neighbours (Gauss-Seidel style), in ascending tile id order, for a fixed
number of sweeps. One tile is held fixed and defines the global frame.
Each refit is damped towards the previous transform:

    new = old + damping * (fit - old)

Residuals of all matches are recomputed after every sweep; there is no early
stopping.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

import numpy as np
from tqdm import tqdm

from ..benchmarking_util import debug_timing
from ._models import Model
from ._point_match import stack_local, stack_weights
from ._tile import TileGraph
from ._typing_utils import AffineMatrix, FloatArray, IntArray, PointArray

# Configure logger
logger = logging.getLogger(__name__)

# Constants for the relaxation schedule
DEFAULT_ITERATIONS = 5000
DEFAULT_DAMPING = 0.9
TRANSLATION_ONLY_DAMPING = 1.0
PREALIGN_DAMPING = 1.0
DEFAULT_LOG_EVERY = 500


@dataclass
class ErrorStatistic:
    """Per-sweep history of the mean match residual."""
    values: List[float] = field(default_factory=list)

    def add(self, value: float) -> None:
        self.values.append(float(value))

    def __len__(self) -> int:
        return len(self.values)

    def as_array(self) -> FloatArray:
        return np.array(self.values, dtype=np.float64)


@dataclass
class _CompiledMatches:
    """Match data of one tile as arrays, positions refer to the affine stack."""
    p_local: PointArray
    q_local: PointArray
    partners: IntArray
    weights: FloatArray


def _apply_stack(affines: np.ndarray, points: PointArray) -> PointArray:
    """Apply a stack of (n, D+1, D+1) transforms to (n, D) points row by row."""
    return np.einsum("nij,nj->ni", affines[:, :-1, :-1], points) + affines[:, :-1, -1]


class TileConfiguration:
    """An optimization session over one connected set of tiles."""

    def __init__(self) -> None:
        self.graph = TileGraph()
        self.fixed: Set[int] = set()
        self.error = ErrorStatistic()
        self.avg_error = float("nan")
        self.max_error = float("nan")
        self._ids: List[int] = []
        self._position: Dict[int, int] = {}
        self._affines: Optional[np.ndarray] = None
        self._compiled: List[_CompiledMatches] = []

    def add_tiles(self, graph: TileGraph) -> None:
        """Register all tiles of ``graph``; their current models seed the solver."""
        if len(graph) == 0:
            raise ValueError("Cannot optimize an empty tile configuration")
        dims = {tile.ndim for tile in graph}
        if len(dims) != 1:
            raise ValueError(f"All tiles must share one dimensionality, got {sorted(dims)}")
        self.graph = graph
        self._ids = graph.ids()
        self._position = {tile_id: pos for pos, tile_id in enumerate(self._ids)}
        self._affines = np.stack([graph[tile_id].model.affine for tile_id in self._ids])
        self._compiled = [self._compile(tile_id) for tile_id in self._ids]

    def _compile(self, tile_id: int) -> _CompiledMatches:
        tile = self.graph[tile_id]
        ndim = tile.ndim
        if not tile.matches:
            empty = np.empty((0, ndim), dtype=np.float64)
            return _CompiledMatches(empty, empty.copy(), np.empty(0, dtype=np.int_), np.empty(0))
        missing = [p for p in tile.partners if p not in self._position]
        if missing:
            raise ValueError(f"{tile.ref} has matches with tiles outside the configuration: {sorted(set(missing))}")
        return _CompiledMatches(
            p_local=stack_local(tile.matches, "p1"),
            q_local=stack_local(tile.matches, "p2"),
            partners=np.array([self._position[p] for p in tile.partners], dtype=np.int_),
            weights=stack_weights(tile.matches),
        )

    @property
    def tile_ids(self) -> List[int]:
        return list(self._ids)

    def fix_tile(self, tile_id: int) -> None:
        if tile_id not in self._position:
            raise ValueError(f"Tile {tile_id} is not part of the configuration")
        self.fixed.add(tile_id)

    def choose_fixed_tile(self) -> int:
        """Fix the first tile, by id, that has at least one connection."""
        for tile_id in self._ids:
            if self.graph.degree(tile_id) > 0:
                self.fix_tile(tile_id)
                return tile_id
        raise ValueError("No tile in the configuration has any connection")

    def is_translation_only(self) -> bool:
        return all(tile.model.is_translation for tile in self.graph)

    def transform(self, tile_id: int) -> AffineMatrix:
        return self._affines[self._position[tile_id]].copy()

    def match_residuals(self) -> FloatArray:
        """Distance between matched world points for every match of every tile."""
        residuals = []
        for pos, compiled in enumerate(self._compiled):
            if len(compiled.partners) == 0:
                continue
            own = self._affines[pos]
            p_world = compiled.p_local @ own[:-1, :-1].T + own[:-1, -1]
            q_world = _apply_stack(self._affines[compiled.partners], compiled.q_local)
            residuals.append(np.linalg.norm(p_world - q_world, axis=1))
        if not residuals:
            return np.empty(0, dtype=np.float64)
        return np.concatenate(residuals)

    def update_errors(self) -> float:
        residuals = self.match_residuals()
        if residuals.size == 0:
            self.avg_error = 0.0
            self.max_error = 0.0
        else:
            self.avg_error = float(residuals.mean())
            self.max_error = float(residuals.max())
        return self.avg_error

    def _sweep(self, fit_models: Dict[int, Model], damping: float) -> None:
        for tile_id in self._ids:
            if tile_id in self.fixed:
                continue
            pos = self._position[tile_id]
            compiled = self._compiled[pos]
            targets = _apply_stack(self._affines[compiled.partners], compiled.q_local)
            fitted = fit_models[tile_id].fit(compiled.p_local, targets, compiled.weights)
            old = self._affines[pos]
            self._affines[pos] = old + damping * (fitted - old)

    def _relax(
        self,
        fit_models: Dict[int, Model],
        iterations: int,
        damping: float,
        silent: bool,
        show_progress: bool,
        log_every: int,
        desc: str,
    ) -> None:
        if self._affines is None:
            raise RuntimeError("add_tiles() must be called before optimizing")
        if iterations < 0:
            raise ValueError(f"iterations must be non-negative, got {iterations}")
        if not 0.0 < damping <= 1.0:
            raise ValueError(f"damping must be in (0, 1], got {damping}")
        if not self.fixed:
            self.choose_fixed_tile()

        for iteration in tqdm(range(iterations), desc=desc, disable=silent or not show_progress):
            self._sweep(fit_models, damping)
            self.error.add(self.update_errors())
            if not silent and log_every > 0 and (iteration + 1) % log_every == 0:
                logger.info(
                    f"{desc}: iteration {iteration + 1}/{iterations}, "
                    f"avg error {self.avg_error:.3f}px, max error {self.max_error:.3f}px"
                )
        if iterations == 0:
            self.update_errors()

    def prealign(
        self,
        iterations: int = DEFAULT_ITERATIONS,
        show_progress: bool = False,
    ) -> None:
        """Approximate positions by relaxing with every model forced to its translation part.

        Interpolated models run with ``lam = 1``; plain similarity and affine
        models are treated as a blend with translation at ``lam = 1``. The
        tiles keep their own models, only the transforms move.
        """
        fit_models = {tile_id: self.graph[tile_id].model.with_lambda(1.0) for tile_id in self._ids}
        with debug_timing(f"Pre-alignment ({iterations} iterations)", logger):
            self._relax(
                fit_models,
                iterations,
                PREALIGN_DAMPING,
                silent=True,
                show_progress=show_progress,
                log_every=0,
                desc="Pre-aligning tiles",
            )
        logger.debug(f"Pre-alignment avg error {self.avg_error:.3f}px")
        # History only covers the main relaxation
        self.error = ErrorStatistic()

    def optimize(
        self,
        iterations: int = DEFAULT_ITERATIONS,
        damping: float = DEFAULT_DAMPING,
        silent: bool = False,
        show_progress: bool = False,
        log_every: int = DEFAULT_LOG_EVERY,
    ) -> None:
        """Relax the configuration for exactly ``iterations`` sweeps.

        Raises:
            InsufficientDataError: If a tile has fewer matches than its model needs
            IllConditionedDataError: If a tile's match geometry is degenerate for its model
        """
        fit_models = {tile_id: self.graph[tile_id].model for tile_id in self._ids}
        self._relax(
            fit_models,
            iterations,
            damping,
            silent=silent,
            show_progress=show_progress,
            log_every=log_every,
            desc="Relaxing tile configuration",
        )

    def apply(self) -> None:
        """Write the solved transforms back into the tiles' models."""
        for tile_id in self._ids:
            tile = self.graph[tile_id]
            tile.model = tile.model.with_affine(self._affines[self._position[tile_id]])
