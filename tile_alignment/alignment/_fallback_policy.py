"""Per-tile model fallback policy.

Before relaxation every tile is checked once:

- Tiles with fewer matches than their model needs fall back to a translation
  model.
- Tiles whose match coordinates are flat along an axis (collinear or coplanar
  data) cannot support an exact affine fit; they are given a similarity model
  regularized towards translation instead.

Both substitutions go through ``TileGraph.replace_model`` so match lists and
adjacency are preserved.

Correspondences synthesized from overlap midpoints tend to be exactly
coplanar, so they can additionally be jittered by a small seeded offset.
"""
import logging
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ._correspondences import Correspondence
from ._models import Model, ModelType
from ._tile import TileGraph
from ._typing_utils import Float, FloatArray, PointArray

# Configure logger
logger = logging.getLogger(__name__)

# Constants for the fallback policy
DEFAULT_REGULARIZER_LAMBDA = 0.1
DEFAULT_DEGENERACY_TOLERANCE = 1e-8


class PerturbationMode(Enum):
    """How synthesized correspondences are jittered.

    Attributes:
        NONE: Use the midpoints as they are
        PER_PAIR: One offset shared by all correspondences of a tile pair
        PER_MATCH: An independent offset for every correspondence
    """
    NONE = "none"
    PER_PAIR = "per_pair"
    PER_MATCH = "per_match"


def apply_min_matches_fallback(graph: TileGraph, multiplicity: int = 2) -> int:
    """Replace under-constrained tile models by translation models.

    A tile is under-constrained when it holds fewer than
    ``model.min_num_matches * multiplicity`` matches. Tiles that already
    carry a plain translation model are left alone.

    Args:
        graph: Tile arena, modified in place
        multiplicity: Factor applied to the model minimum. Each tile holds one
            entry per correspondence it takes part in, so 2 asks for twice
            the minimum number of correspondences

    Returns:
        Number of replaced tiles
    """
    if multiplicity < 1:
        raise ValueError(f"multiplicity must be at least 1, got {multiplicity}")

    replaced = 0
    for tile_id in graph.ids():
        tile = graph[tile_id]
        if tile.model.is_translation:
            continue
        needed = tile.model.min_num_matches * multiplicity
        if len(tile.matches) < needed:
            logger.debug(
                f"{tile.ref} has {len(tile.matches)} matches, {tile.model.describe()} needs {needed}; "
                f"falling back to translation"
            )
            graph.replace_model(tile_id, Model.translation(tile.ndim))
            replaced += 1
    return replaced


def axis_extents(points: PointArray) -> FloatArray:
    """Extent of the point cloud along each axis."""
    points = np.asarray(points, dtype=np.float64)
    if points.size == 0:
        return np.zeros(points.shape[-1] if points.ndim == 2 else 0)
    return points.max(axis=0) - points.min(axis=0)


def is_degenerate(points: PointArray, tolerance: Float = DEFAULT_DEGENERACY_TOLERANCE) -> bool:
    """True if the points are flat along at least one axis."""
    return bool(np.any(axis_extents(points) < tolerance))


def is_point_like(points: PointArray, tolerance: Float = DEFAULT_DEGENERACY_TOLERANCE) -> bool:
    """True if the points are flat along every axis."""
    return bool(np.all(axis_extents(points) < tolerance))


def apply_degeneracy_fallback(
    graph: TileGraph,
    lam: Float = DEFAULT_REGULARIZER_LAMBDA,
    tolerance: Float = DEFAULT_DEGENERACY_TOLERANCE,
) -> Tuple[int, int]:
    """Regularize tiles whose match geometry is flat.

    Non-translation tiles with degenerate match coordinates get
    ``interpolated(SIMILARITY, TRANSLATION, lam)``. If all coordinates
    coincide the similarity is undefined as well and the tile gets a
    translation model.

    Returns:
        Tuple of (tiles given the regularized similarity, tiles given translation)
    """
    regularized = 0
    translated = 0
    for tile_id in graph.ids():
        tile = graph[tile_id]
        if tile.model.kind is ModelType.TRANSLATION:
            continue
        points = tile.local_points()
        if not is_degenerate(points, tolerance):
            continue

        if is_point_like(points, tolerance):
            graph.replace_model(tile_id, Model.translation(tile.ndim))
            translated += 1
            continue

        target = Model.interpolated(ModelType.SIMILARITY, ModelType.TRANSLATION, lam, tile.ndim)
        if (
            tile.model.kind is target.kind
            and tile.model.regularizer is target.regularizer
            and tile.model.lam == target.lam
        ):
            continue
        logger.debug(
            f"{tile.ref} has flat match geometry (extents {axis_extents(points)}); "
            f"using {target.describe()} instead of {tile.model.describe()}"
        )
        graph.replace_model(tile_id, target)
        regularized += 1
    return regularized, translated


def perturbation_offsets(
    records: Sequence[Correspondence],
    mode: PerturbationMode,
    magnitude: Float,
    seed: int,
) -> List[Optional[FloatArray]]:
    """Seeded offsets for synthesized correspondences.

    Offsets are drawn uniformly from ``[-magnitude, magnitude]`` per axis, in
    record order, for usable synthesized records only. Records that are not
    perturbed get ``None``.
    """
    offsets: List[Optional[FloatArray]] = [None] * len(records)
    if mode is PerturbationMode.NONE or magnitude <= 0:
        return offsets

    rng = np.random.default_rng(seed)
    per_pair: Dict[tuple, FloatArray] = {}
    for i, record in enumerate(records):
        if not (record.is_synthesized and record.is_usable):
            continue
        if mode is PerturbationMode.PER_PAIR:
            if record.pair_key not in per_pair:
                per_pair[record.pair_key] = rng.uniform(-magnitude, magnitude, size=record.ndim)
            offsets[i] = per_pair[record.pair_key]
        else:
            offsets[i] = rng.uniform(-magnitude, magnitude, size=record.ndim)
    return offsets
