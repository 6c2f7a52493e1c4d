import pathlib
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .alignment import Correspondence, ModelType, Subregion, TileRef

PARAMETERS_FIXTURE_FILE = (
    pathlib.Path(__file__).parent.parent
    / "test_fixtures"
    / "parameters_test"
    / "parameters.json"
)


def grid_positions(
    n_rows: int,
    n_cols: int,
    step: float,
    jitter: float = 0.0,
    seed: int = 0,
    ndim: int = 2,
) -> Dict[int, np.ndarray]:
    """True world position of the origin of every tile in a row-major grid."""
    rng = np.random.default_rng(seed)
    positions = {}
    for r in range(n_rows):
        for c in range(n_cols):
            base = np.zeros(ndim)
            base[0] = c * step
            base[1] = r * step
            positions[r * n_cols + c] = base + rng.uniform(-jitter, jitter, size=ndim)
    return positions


def grid_neighbors(n_rows: int, n_cols: int) -> List[Tuple[int, int]]:
    """Left and top neighbour pairs of a row-major grid."""
    pairs = []
    for r in range(n_rows):
        for c in range(n_cols):
            idx = r * n_cols + c
            if c > 0:
                pairs.append((idx - 1, idx))
            if r > 0:
                pairs.append((idx - n_cols, idx))
    return pairs


def pair_correspondences(
    positions: Dict[int, np.ndarray],
    pairs: Sequence[Tuple[int, int]],
    tile_size: float,
    points_per_pair: int = 1,
    model: ModelType = ModelType.TRANSLATION,
    weight: float = 1.0,
    timepoint: int = 0,
    seed: int = 0,
    models: Optional[Dict[int, ModelType]] = None,
) -> List[Correspondence]:
    """Exact point correspondences between translated tiles.

    World points are drawn inside the overlap of both tiles and expressed in
    each tile's local frame.
    """
    rng = np.random.default_rng(seed)
    models = models or {}
    records = []
    for a, b in pairs:
        pos_a, pos_b = positions[a], positions[b]
        low = np.maximum(pos_a, pos_b)
        high = np.minimum(pos_a, pos_b) + tile_size
        for _ in range(points_per_pair):
            world = rng.uniform(low, high)
            records.append(
                Correspondence(
                    tile1=TileRef(a, timepoint, models.get(a, model)),
                    tile2=TileRef(b, timepoint, models.get(b, model)),
                    weight=weight,
                    point_pair=(world - pos_a, world - pos_b),
                )
            )
    return records


def subregion_correspondences(
    positions: Dict[int, np.ndarray],
    pairs: Sequence[Tuple[int, int]],
    tile_size: float,
    model: ModelType = ModelType.TRANSLATION,
) -> List[Correspondence]:
    """Midpoint correspondences from the overlap box of every tile pair."""
    records = []
    for a, b in pairs:
        pos_a, pos_b = positions[a], positions[b]
        low = np.maximum(pos_a, pos_b)
        high = np.minimum(pos_a, pos_b) + tile_size
        size = high - low
        # Both boxes cover the same world region, so the remaining shift is zero
        records.append(
            Correspondence(
                tile1=TileRef(a, 0, model),
                tile2=TileRef(b, 0, model),
                shift=np.zeros(len(size)),
                subregions=(Subregion(low - pos_a, size), Subregion(low - pos_b, size)),
            )
        )
    return records
