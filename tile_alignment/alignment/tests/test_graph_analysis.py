"""Tests for connectivity analysis of the tile graph."""
import pytest

from tile_alignment.alignment import Model, Point, PointMatch, TileGraph, TileRef
from tile_alignment.alignment._graph_analysis import (
    components_by_size,
    connected_components,
    count_remaining_pairs,
    format_graph_sizes,
    graph_size_histogram,
    reachable_from,
    retain_largest_component,
)


def build_graph(n_tiles, edges):
    graph = TileGraph()
    for i in range(n_tiles):
        graph.add_tile(TileRef(i), Model.translation(2))
    for a, b in edges:
        match = PointMatch(Point([0.0, 0.0]), Point([1.0, 1.0]))
        graph.add_match(a, b, match)
        graph.add_match(b, a, match.reversed())
    return graph


@pytest.fixture
def split_graph():
    """A chain of three tiles and a separate pair."""
    return build_graph(5, [(0, 1), (1, 2), (3, 4)])


def test_connected_components(split_graph):
    assert connected_components(split_graph) == [{0, 1, 2}, {3, 4}]


def test_components_by_size_is_stable():
    graph = build_graph(6, [(4, 5), (0, 1), (2, 3)])
    assert components_by_size(graph) == [{0, 1}, {2, 3}, {4, 5}]


def test_graph_size_histogram(split_graph):
    assert graph_size_histogram(split_graph) == {3: 1, 2: 1}


def test_retain_largest_component(split_graph):
    kept, discarded = retain_largest_component(split_graph)
    assert kept.ids() == [0, 1, 2]
    assert discarded == {3, 4}
    # Discarded tiles keep their matches
    assert len(split_graph[3].matches) == 1


def test_retain_largest_component_tie_keeps_first():
    graph = build_graph(4, [(2, 3), (0, 1)])
    kept, discarded = retain_largest_component(graph)
    assert kept.ids() == [0, 1]
    assert discarded == {2, 3}


def test_retain_largest_component_of_empty_graph():
    kept, discarded = retain_largest_component(TileGraph())
    assert len(kept) == 0
    assert discarded == set()


def test_format_graph_sizes(split_graph):
    assert format_graph_sizes(graph_size_histogram(split_graph)) == [
        "Number of tile graphs = 2",
        "   3 tiles: 1 graphs",
        "   2 tiles: 1 graphs",
    ]


def test_reachability(split_graph):
    assert reachable_from(split_graph, 2) == {0, 1, 2}
    assert reachable_from(split_graph, 3) == {3, 4}
    kept, _ = retain_largest_component(split_graph)
    assert reachable_from(kept, 0) == set(kept.ids())


def test_count_remaining_pairs():
    pairs = [(0, 1), (1, 2), (3, 4), (0, 1)]
    assert count_remaining_pairs(pairs, {0, 1, 2}) == 3
