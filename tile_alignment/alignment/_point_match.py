"""Points and weighted point matches.

A point carries two coordinate vectors of the same dimensionality: its local
coordinate in the owning tile's native frame and its world coordinate, the
current estimate in the global frame. World coordinates are never edited in
place; applying a transform yields a new point.
"""
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

import numpy as np

from ._typing_utils import FloatArray, PointArray, SUPPORTED_DIMENSIONS


def _frozen_vector(values: Iterable[float]) -> FloatArray:
    vector = np.array(values, dtype=np.float64).reshape(-1)
    vector.setflags(write=False)
    return vector


@dataclass(frozen=True, eq=False)
class Point:
    """A point with a local and a world coordinate."""
    local: FloatArray
    world: Optional[FloatArray] = field(default=None)

    def __post_init__(self) -> None:
        local = _frozen_vector(self.local)
        world = local if self.world is None else _frozen_vector(self.world)
        if local.shape[0] not in SUPPORTED_DIMENSIONS:
            raise ValueError(f"Points must be 2D or 3D, got {local.shape[0]} coordinates")
        if world.shape != local.shape:
            raise ValueError(
                f"Local and world coordinates differ in length: {local.shape[0]} vs {world.shape[0]}"
            )
        if not (np.all(np.isfinite(local)) and np.all(np.isfinite(world))):
            raise ValueError(f"Non-finite point coordinates: local={local}, world={world}")
        object.__setattr__(self, "local", local)
        object.__setattr__(self, "world", world)

    @property
    def ndim(self) -> int:
        return int(self.local.shape[0])

    def applied(self, model) -> "Point":
        """Return this point with its world coordinate recomputed by ``model``."""
        return Point(self.local, model.apply(self.local))

    def __repr__(self) -> str:
        return f"Point(local={self.local.tolist()}, world={self.world.tolist()})"


@dataclass(frozen=True, eq=False)
class PointMatch:
    """A weighted correspondence between ``p1`` and ``p2``.

    ``p1`` is local to the tile holding the match, ``p2`` to the other tile.
    """
    p1: Point
    p2: Point
    weight: float = 1.0

    def __post_init__(self) -> None:
        weight = float(self.weight)
        if not np.isfinite(weight) or weight < 0:
            raise ValueError(f"Match weight must be finite and non-negative, got {self.weight}")
        if self.p1.ndim != self.p2.ndim:
            raise ValueError(f"Matched points differ in dimensionality: {self.p1.ndim} vs {self.p2.ndim}")
        object.__setattr__(self, "weight", weight)

    @property
    def ndim(self) -> int:
        return self.p1.ndim

    @property
    def distance(self) -> float:
        """Euclidean distance between the world coordinates of both points."""
        return float(np.linalg.norm(self.p1.world - self.p2.world))

    def reversed(self) -> "PointMatch":
        return PointMatch(self.p2, self.p1, self.weight)


def stack_local(matches: Sequence[PointMatch], which: str = "p1") -> PointArray:
    """Stack local coordinates of ``p1`` or ``p2`` of all matches into an (n, D) array."""
    if which not in ("p1", "p2"):
        raise ValueError(f"which must be 'p1' or 'p2', got {which!r}")
    if not matches:
        return np.empty((0, 0), dtype=np.float64)
    return np.stack([getattr(m, which).local for m in matches])


def stack_weights(matches: Sequence[PointMatch]) -> FloatArray:
    return np.array([m.weight for m in matches], dtype=np.float64)
