"""Connectivity analysis of the tile graph.

Tiles that cannot be reached from the rest of the mosaic through valid
correspondences cannot be placed in a common frame. This module finds the
connected components of the adjacency graph and keeps the largest one.
"""
import logging
from collections import Counter
from typing import Dict, Iterable, List, Set, Tuple

import networkx as nx

from ._tile import TileGraph

# Configure logger
logger = logging.getLogger(__name__)


def connected_components(graph: TileGraph) -> List[Set[int]]:
    """Connected components in enumeration order.

    Components come out in the order of their smallest tile id, since the
    networkx graph receives its nodes in ascending id order.
    """
    return [set(c) for c in nx.connected_components(graph.to_networkx())]


def components_by_size(graph: TileGraph) -> List[Set[int]]:
    """Components sorted by decreasing size; equal sizes keep enumeration order."""
    return sorted(connected_components(graph), key=len, reverse=True)


def graph_size_histogram(graph: TileGraph) -> Dict[int, int]:
    """Map component size to the number of components of that size, largest first."""
    counts = Counter(len(c) for c in connected_components(graph))
    return dict(sorted(counts.items(), reverse=True))


def format_graph_sizes(histogram: Dict[int, int]) -> List[str]:
    """Summary lines of a size histogram, largest graphs first."""
    lines = [f"Number of tile graphs = {sum(histogram.values())}"]
    for size, count in histogram.items():
        lines.append(f"   {size} tiles: {count} graphs")
    return lines


def retain_largest_component(graph: TileGraph) -> Tuple[TileGraph, Set[int]]:
    """Keep only the largest connected component.

    When several components share the maximum size, the first one
    encountered during enumeration wins.

    Returns:
        Tuple of (graph holding the largest component, ids of discarded tiles)
    """
    components = connected_components(graph)
    if not components:
        return TileGraph(), set()

    largest = components[0]
    for component in components[1:]:
        if len(component) > len(largest):
            largest = component

    tied = [c for c in components if len(c) == len(largest)]
    if len(tied) > 1:
        logger.warning(
            f"{len(tied)} components share the largest size {len(largest)}; "
            f"keeping the one containing tile {min(largest)}"
        )

    discarded = set(graph.ids()) - largest
    return graph.retain(largest), discarded


def reachable_from(graph: TileGraph, tile_id: int) -> Set[int]:
    return set(nx.node_connected_component(graph.to_networkx(), tile_id))


def count_remaining_pairs(pairs: Iterable[Tuple[int, int]], kept_ids: Set[int]) -> int:
    """Number of tile pairs whose both tiles survived connectivity filtering."""
    return sum(1 for a, b in pairs if a in kept_ids and b in kept_ids)
