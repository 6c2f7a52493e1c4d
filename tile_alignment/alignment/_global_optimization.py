"""Global optimization of tile transforms from pairwise correspondences.

This module turns a pile of pairwise, possibly inconsistent correspondences
into one consistent set of per-tile transforms. The run:

- builds the tile graph from valid, positively weighted correspondences
- downgrades tiles that cannot support their model
- keeps only the largest connected component
- fixes one anchor tile and relaxes all others jointly
- reports residual statistics and the tiles that were lost on the way
"""
import contextlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Generator, List, Optional, Sequence, TextIO, Tuple

import numpy as np
import pandas as pd

from ..benchmarking_util import debug_timing
from ._correspondences import AXES, Correspondence, group_by_timepoint
from ._fallback_policy import (
    apply_degeneracy_fallback,
    apply_min_matches_fallback,
    perturbation_offsets,
)
from ._graph_analysis import (
    count_remaining_pairs,
    format_graph_sizes,
    graph_size_histogram,
    retain_largest_component,
)
from ._models import Model
from ._parameters import OptimizerParameters
from ._point_match import Point, PointMatch
from ._relaxation import TRANSLATION_ONLY_DAMPING, TileConfiguration
from ._tile import TileGraph, TileRef
from ._typing_utils import AffineMatrix, FloatArray

# Configure logger
logger = logging.getLogger(__name__)

PACKAGE_LOGGER_NAME = __name__.split(".")[0]

# Saved ``disabled`` flags of the package loggers while output is suppressed
_suppressed_state: Optional[Dict[str, bool]] = None


def _package_loggers() -> List[logging.Logger]:
    prefix = PACKAGE_LOGGER_NAME + "."
    names = [
        name for name in logging.root.manager.loggerDict
        if name == PACKAGE_LOGGER_NAME or name.startswith(prefix)
    ]
    return [logging.getLogger(name) for name in sorted(set(names) | {PACKAGE_LOGGER_NAME})]


def suppress_output() -> None:
    """Disable all logging of this package process-wide.

    Meant for batches of many optimizations. Must be paired with
    ``restore_output()``; not reentrant and not safe across concurrent runs.
    Prefer ``OptimizerParameters.silent`` for a single run.
    """
    global _suppressed_state
    if _suppressed_state is not None:
        raise RuntimeError("Output is already suppressed; call restore_output() first")
    loggers = _package_loggers()
    _suppressed_state = {lg.name: lg.disabled for lg in loggers}
    for lg in loggers:
        lg.disabled = True


def restore_output() -> None:
    """Undo ``suppress_output()``."""
    global _suppressed_state
    if _suppressed_state is None:
        raise RuntimeError("restore_output() called without suppress_output()")
    for name, disabled in _suppressed_state.items():
        logging.getLogger(name).disabled = disabled
    _suppressed_state = None


@contextlib.contextmanager
def suppressed_output() -> Generator[None, None, None]:
    """Context manager pairing ``suppress_output()`` and ``restore_output()``."""
    suppress_output()
    try:
        yield
    finally:
        restore_output()


class SolveStatus(Enum):
    SOLVED = "solved"
    NO_SOLUTION = "no_solution"


@dataclass
class SolvedTile:
    """A retained tile and its fitted transform."""
    ref: TileRef
    model: Model

    @property
    def tile_id(self) -> int:
        return self.ref.tile_id

    @property
    def transform(self) -> AffineMatrix:
        return self.model.affine.copy()

    @property
    def translation(self) -> FloatArray:
        return self.model.translation_vector

    @property
    def parameters(self) -> FloatArray:
        return self.model.parameters()


@dataclass
class OptimizationDiagnostics:
    """Summary statistics of one optimization run."""
    remaining_graph_size: int = 0
    remaining_pairs: int = 0
    avg_displacement: float = float("nan")
    max_displacement: float = float("nan")
    largest_displacement: float = float("nan")
    replaced_tiles_translation: int = 0
    replaced_tiles_similarity: int = 0
    lost_tiles: Dict[tuple, TileRef] = field(default_factory=dict)
    pairs_added: int = 0
    pairs_total: int = 0
    graph_sizes: Dict[int, int] = field(default_factory=dict)
    fixed_tile: Optional[TileRef] = None
    translation_only: bool = False
    iterations: int = 0
    elapsed_s: float = 0.0
    error_history: FloatArray = field(default_factory=lambda: np.empty(0, dtype=np.float64))

    def to_dict(self) -> dict:
        return {
            "remaining_graph_size": self.remaining_graph_size,
            "remaining_pairs": self.remaining_pairs,
            "avg_displacement": self.avg_displacement,
            "max_displacement": self.max_displacement,
            "largest_displacement": self.largest_displacement,
            "replaced_tiles_translation": self.replaced_tiles_translation,
            "replaced_tiles_similarity": self.replaced_tiles_similarity,
            "lost_tiles": [ref.tile_id for ref in self.lost_tiles.values()],
            "pairs_added": self.pairs_added,
            "pairs_total": self.pairs_total,
            "fixed_tile": None if self.fixed_tile is None else self.fixed_tile.tile_id,
            "iterations": self.iterations,
        }


@dataclass
class OptimizationResult:
    """Solved tiles in ascending identity order plus diagnostics."""
    status: SolveStatus
    tiles: List[SolvedTile]
    diagnostics: OptimizationDiagnostics

    @property
    def has_solution(self) -> bool:
        return self.status is SolveStatus.SOLVED

    def tile(self, tile_id: int, timepoint: int = 0) -> SolvedTile:
        for solved in self.tiles:
            if solved.ref.key == (tile_id, timepoint):
                return solved
        raise KeyError(f"Tile {tile_id} (t={timepoint}) is not part of the result")

    def to_dataframe(self) -> pd.DataFrame:
        """One row per solved tile with its model and homogeneous matrix entries."""
        rows = []
        for solved in self.tiles:
            ndim = solved.model.ndim
            row = {
                "tile_id": solved.ref.tile_id,
                "timepoint": solved.ref.timepoint,
                "model": solved.model.describe(),
            }
            for axis, value in zip(AXES, solved.translation):
                row[f"t_{axis}"] = value
            affine = solved.model.affine
            for r in range(ndim):
                for c in range(ndim + 1):
                    row[f"a{r}{c}"] = affine[r, c]
            rows.append(row)
        return pd.DataFrame(rows)


class GlobalOptimizer:
    """Runs the global alignment of tiles from their pairwise correspondences."""

    def __init__(self, params: Optional[OptimizerParameters] = None):
        self.params = params if params is not None else OptimizerParameters()

    def _write_log(self, log: Optional[TextIO], message: str) -> None:
        if log is not None:
            log.write(message + "\n")
        if not self.params.silent:
            logger.info(message)

    @staticmethod
    def _collect_refs(records: Sequence[Correspondence]) -> Dict[tuple, TileRef]:
        """Every tile identity named by any record, valid or not."""
        refs: Dict[tuple, TileRef] = {}
        for record in records:
            for ref in (record.tile1, record.tile2):
                known = refs.get(ref.key)
                if known is None:
                    refs[ref.key] = ref
                elif known.model is not ref.model:
                    raise ValueError(
                        f"{ref} is requested with both {known.model.value} and {ref.model.value} models"
                    )
        return dict(sorted(refs.items()))

    def _build_graph(
        self, records: Sequence[Correspondence]
    ) -> Tuple[TileGraph, Dict[tuple, int], List[Tuple[int, int]]]:
        usable = [r for r in records if r.is_usable]
        dims = {r.ndim for r in usable}
        if len(dims) > 1:
            raise ValueError(f"Correspondences mix dimensionalities: {sorted(dims)}")

        graph = TileGraph()
        ids: Dict[tuple, int] = {}
        for key, ref in self._collect_refs(usable).items():
            ids[key] = graph.add_tile(ref, Model.create(ref.model, usable[0].ndim))

        offsets = perturbation_offsets(
            records,
            self.params.perturbation,
            self.params.perturbation_magnitude,
            self.params.perturbation_seed,
        )

        pairs = []
        for record, offset in zip(records, offsets):
            if not record.is_usable:
                continue
            a, b = record.resolve_points()
            if offset is not None:
                a = a + offset
                b = b + offset
            match = PointMatch(Point(a), Point(b), record.weight)
            id1, id2 = ids[record.tile1.key], ids[record.tile2.key]
            graph.add_match(id1, id2, match)
            graph.add_match(id2, id1, match.reversed())
            pairs.append((id1, id2))
        return graph, ids, pairs

    def _no_solution(self, diagnostics: OptimizationDiagnostics, seen: Dict[tuple, TileRef]) -> OptimizationResult:
        diagnostics.lost_tiles = dict(seen)
        if not self.params.silent:
            logger.warning(f"No valid correspondences; {len(seen)} tiles lost")
        return OptimizationResult(SolveStatus.NO_SOLUTION, [], diagnostics)

    def optimize(
        self,
        correspondences: Sequence[Correspondence],
        log: Optional[TextIO] = None,
    ) -> OptimizationResult:
        """Fit all tile transforms jointly.

        Args:
            correspondences: Pairwise registration results; invalid and
                zero-weight records are ignored
            log: Optional text stream receiving the run summary

        Returns:
            The solved tiles and diagnostics, or a ``NO_SOLUTION`` result if
            no usable correspondence exists

        Raises:
            ValueError: If the correspondences are inconsistent
            InsufficientDataError: If a tile cannot support its model after fallback
            IllConditionedDataError: If a tile's geometry is degenerate for its model
        """
        params = self.params
        seen = self._collect_refs(correspondences)
        graph, _, pairs = self._build_graph(correspondences)

        diagnostics = OptimizationDiagnostics(pairs_added=len(pairs), pairs_total=len(correspondences))
        diagnostics.replaced_tiles_translation = apply_min_matches_fallback(graph, params.match_multiplicity)
        regularized, translated = apply_degeneracy_fallback(
            graph, params.regularizer_lambda, params.degeneracy_tolerance
        )
        diagnostics.replaced_tiles_similarity = regularized
        diagnostics.replaced_tiles_translation += translated

        self._write_log(log, f"Pairs above the threshold: {len(pairs)}, pairs total = {len(correspondences)}")
        if len(graph) == 0:
            return self._no_solution(diagnostics, seen)

        diagnostics.graph_sizes = graph_size_histogram(graph)
        for line in format_graph_sizes(diagnostics.graph_sizes):
            self._write_log(log, line)

        tiles_before = len(graph)
        kept, _ = retain_largest_component(graph)
        self._write_log(
            log,
            f"Using the largest graph of size {len(kept)} "
            f"(throwing away {tiles_before - len(kept)} tiles from smaller graphs)",
        )
        diagnostics.remaining_graph_size = len(kept)
        diagnostics.remaining_pairs = count_remaining_pairs(pairs, set(kept.ids()))

        configuration = TileConfiguration()
        configuration.add_tiles(kept)
        fixed_id = configuration.choose_fixed_tile()
        diagnostics.fixed_tile = kept[fixed_id].ref

        translation_only = configuration.is_translation_only()
        diagnostics.translation_only = translation_only
        damping = TRANSLATION_ONLY_DAMPING if translation_only else params.damping

        with debug_timing("Global optimization", logger) as span:
            if params.prealign and not translation_only:
                configuration.prealign(params.prealign_iterations, show_progress=params.show_progress)
            configuration.optimize(
                iterations=params.iterations,
                damping=damping,
                silent=params.silent,
                show_progress=params.show_progress,
                log_every=params.log_every,
            )
        diagnostics.elapsed_s = span.elapsed_s
        diagnostics.iterations = params.iterations
        diagnostics.error_history = configuration.error.as_array()
        self._write_log(log, f"Optimization round took {diagnostics.elapsed_s:.3f}s")

        configuration.apply()
        diagnostics.avg_displacement = configuration.avg_error
        diagnostics.max_displacement = configuration.max_error
        diagnostics.largest_displacement = self._largest_displacement(kept)

        self._write_log(log, "")
        self._write_log(log, f"Max pairwise match displacement: {diagnostics.largest_displacement}")
        self._write_log(log, f"avg error: {diagnostics.avg_displacement:.2f}px")
        self._write_log(log, f"max error: {diagnostics.max_displacement:.2f}px")

        kept_keys = {tile.ref.key for tile in kept}
        diagnostics.lost_tiles = {key: ref for key, ref in seen.items() if key not in kept_keys}
        self._write_log(log, f"Tiles lost: {len(diagnostics.lost_tiles)}")

        solved = sorted((SolvedTile(tile.ref, tile.model) for tile in kept), key=lambda s: s.ref)
        return OptimizationResult(SolveStatus.SOLVED, solved, diagnostics)

    @staticmethod
    def _largest_displacement(graph: TileGraph) -> float:
        """Largest world-space distance over every tile's own match list."""
        longest = 0.0
        for tile in graph:
            for match, partner in zip(tile.matches, tile.partners):
                applied = PointMatch(
                    match.p1.applied(tile.model),
                    match.p2.applied(graph[partner].model),
                    match.weight,
                )
                longest = max(longest, applied.distance)
        return longest


def optimize_tiles(
    correspondences: Sequence[Correspondence],
    params: Optional[OptimizerParameters] = None,
    log: Optional[TextIO] = None,
) -> OptimizationResult:
    """Convenience wrapper around ``GlobalOptimizer(params).optimize``."""
    return GlobalOptimizer(params).optimize(correspondences, log=log)


def optimize_by_timepoint(
    correspondences: Sequence[Correspondence],
    params: Optional[OptimizerParameters] = None,
) -> Dict[int, OptimizationResult]:
    """Optimize each timepoint's tiles independently."""
    optimizer = GlobalOptimizer(params)
    results = {}
    for timepoint, group in group_by_timepoint(correspondences).items():
        logger.info(f"Optimizing timepoint {timepoint}")
        results[timepoint] = optimizer.optimize(group)
    return results
