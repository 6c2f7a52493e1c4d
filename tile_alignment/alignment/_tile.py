"""Tiles and the tile arena.

Tiles are stored in a ``TileGraph`` arena under stable integer ids. Matches
and adjacency refer to other tiles by id only, so replacing a tile's model
never leaves stale references behind.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Set

import networkx as nx
import numpy as np

from ._models import Model, ModelType
from ._point_match import PointMatch, stack_local
from ._typing_utils import PointArray

# Configure logger
logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class TileRef:
    """Identity of one image region at one timepoint.

    Ordered by ``(tile_id, timepoint)``; ``model`` is the transform family
    requested for the tile and takes no part in identity.
    """
    tile_id: int
    timepoint: int = 0
    model: ModelType = field(default=ModelType.AFFINE, compare=False)

    @property
    def key(self) -> tuple:
        return (self.tile_id, self.timepoint)

    def __str__(self) -> str:
        return f"tile {self.tile_id} (t={self.timepoint})"


@dataclass(eq=False)
class Tile:
    """A node of the alignment graph.

    ``matches[i]`` pairs a point of this tile (``p1``) with a point of tile
    ``partners[i]`` (``p2``).
    """
    ref: TileRef
    model: Model
    matches: List[PointMatch] = field(default_factory=list)
    partners: List[int] = field(default_factory=list)
    connected: Set[int] = field(default_factory=set)

    @property
    def ndim(self) -> int:
        return self.model.ndim

    @property
    def degree(self) -> int:
        return len(self.connected)

    def local_points(self) -> PointArray:
        """Local coordinates of this tile's side of every match, shape (n, D)."""
        if not self.matches:
            return np.empty((0, self.ndim), dtype=np.float64)
        return stack_local(self.matches, "p1")

    def __repr__(self) -> str:
        return (
            f"Tile({self.ref}, model={self.model.describe()}, "
            f"matches={len(self.matches)}, connected={sorted(self.connected)})"
        )


class TileGraph:
    """Arena of tiles addressed by stable integer ids."""

    def __init__(self) -> None:
        self._tiles: Dict[int, Tile] = {}
        self._next_id = 0

    def __len__(self) -> int:
        return len(self._tiles)

    def __contains__(self, tile_id: object) -> bool:
        return tile_id in self._tiles

    def __getitem__(self, tile_id: int) -> Tile:
        return self._tiles[tile_id]

    def __iter__(self) -> Iterator[Tile]:
        for tile_id in self.ids():
            yield self._tiles[tile_id]

    def ids(self) -> List[int]:
        return sorted(self._tiles)

    def add_tile(self, ref: TileRef, model: Model) -> int:
        tile_id = self._next_id
        self._next_id += 1
        self._tiles[tile_id] = Tile(ref=ref, model=model)
        return tile_id

    def connect(self, a: int, b: int) -> None:
        if a == b:
            raise ValueError(f"Cannot connect tile {a} to itself")
        self._tiles[a].connected.add(b)
        self._tiles[b].connected.add(a)

    def add_match(self, source: int, target: int, match: PointMatch) -> None:
        """Record ``match`` on ``source`` (``p2`` lives on ``target``) and connect both tiles."""
        tile = self._tiles[source]
        if match.ndim != tile.ndim:
            raise ValueError(
                f"{match.ndim}D match cannot be added to {tile.ref} with a {tile.ndim}D model"
            )
        tile.matches.append(match)
        tile.partners.append(target)
        self.connect(source, target)

    def degree(self, tile_id: int) -> int:
        return self._tiles[tile_id].degree

    def replace_model(self, tile_id: int, model: Model) -> Tile:
        """Swap in a new tile record carrying ``model``.

        The replacement keeps the identity and the full match list. Every
        neighbour drops the old record from its adjacency and gains the
        replacement, so no edge is counted twice.
        """
        old = self._tiles[tile_id]
        if model.ndim != old.ndim:
            raise ValueError(f"Replacement model is {model.ndim}D, {old.ref} is {old.ndim}D")
        replacement = Tile(
            ref=old.ref,
            model=model,
            matches=list(old.matches),
            partners=list(old.partners),
            connected=set(),
        )
        self._tiles[tile_id] = replacement
        for neighbor_id in sorted(old.connected):
            neighbor = self._tiles.get(neighbor_id)
            if neighbor is None:
                continue
            neighbor.connected.discard(tile_id)
            neighbor.connected.add(tile_id)
            replacement.connected.add(neighbor_id)
        logger.debug(f"Replaced model of {old.ref}: {old.model.describe()} -> {model.describe()}")
        return replacement

    def retain(self, tile_ids: Iterable[int]) -> "TileGraph":
        """New arena holding only ``tile_ids``; the tile records are shared, not copied."""
        kept = TileGraph()
        kept._next_id = self._next_id
        for tile_id in sorted(tile_ids):
            kept._tiles[tile_id] = self._tiles[tile_id]
        return kept

    def to_networkx(self) -> nx.Graph:
        """Undirected adjacency graph, nodes inserted in ascending id order."""
        graph = nx.Graph()
        graph.add_nodes_from(self.ids())
        for tile_id in self.ids():
            for neighbor_id in sorted(self._tiles[tile_id].connected):
                if neighbor_id in self._tiles:
                    graph.add_edge(tile_id, neighbor_id)
        return graph
