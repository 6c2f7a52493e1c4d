"""Tests for tiles and the tile arena."""
import networkx as nx
import pytest

from tile_alignment.alignment import Model, ModelType, Point, PointMatch, TileGraph, TileRef


def _match(a, b, weight=1.0):
    return PointMatch(Point(a), Point(b), weight)


@pytest.fixture
def triangle_graph():
    """Three tiles, each pair sharing one correspondence in both directions."""
    graph = TileGraph()
    ids = [graph.add_tile(TileRef(i, model=ModelType.AFFINE), Model.affine_model(2)) for i in range(3)]
    for a, b in [(0, 1), (1, 2), (0, 2)]:
        match = _match([10.0 * a, 1.0], [10.0 * b, 2.0])
        graph.add_match(ids[a], ids[b], match)
        graph.add_match(ids[b], ids[a], match.reversed())
    return graph


def test_tile_ref_ordering_ignores_model():
    refs = [TileRef(3), TileRef(1, 2), TileRef(1, 0, ModelType.TRANSLATION)]
    assert sorted(refs) == [TileRef(1, 0), TileRef(1, 2), TileRef(3)]
    assert TileRef(5, 0, ModelType.TRANSLATION) == TileRef(5, 0, ModelType.AFFINE)


def test_add_match_connects_both_tiles(triangle_graph):
    assert triangle_graph[0].connected == {1, 2}
    assert triangle_graph[1].connected == {0, 2}
    assert len(triangle_graph[0].matches) == 2
    assert triangle_graph[0].partners == [1, 2]
    assert triangle_graph.degree(2) == 2


def test_add_match_rejects_wrong_dimensionality(triangle_graph):
    with pytest.raises(ValueError):
        triangle_graph.add_match(0, 1, _match([0.0, 0.0, 0.0], [1.0, 1.0, 1.0]))


def test_connect_to_itself_rejected(triangle_graph):
    with pytest.raises(ValueError):
        triangle_graph.connect(1, 1)


def test_replace_model_preserves_matches_and_adjacency(triangle_graph):
    """Test that replacement keeps identity, matches and both sides of every edge."""
    old = triangle_graph[1]
    replacement = triangle_graph.replace_model(1, Model.translation(2))

    assert replacement is not old
    assert triangle_graph[1] is replacement
    assert replacement.ref == old.ref
    assert replacement.model.is_translation
    assert replacement.matches == old.matches
    assert replacement.partners == old.partners
    assert replacement.connected == {0, 2}
    assert 1 in triangle_graph[0].connected
    assert 1 in triangle_graph[2].connected
    assert triangle_graph.to_networkx().number_of_edges() == 3


def test_replace_model_twice_is_idempotent(triangle_graph):
    """Test that replacing twice with the same target changes nothing further."""
    first = triangle_graph.replace_model(2, Model.translation(2))
    matches, connected = list(first.matches), set(first.connected)
    neighbor_sets = {i: set(triangle_graph[i].connected) for i in (0, 1)}

    second = triangle_graph.replace_model(2, Model.translation(2))

    assert second.matches == matches
    assert second.connected == connected
    assert {i: set(triangle_graph[i].connected) for i in (0, 1)} == neighbor_sets


def test_replace_model_dimensionality_mismatch(triangle_graph):
    with pytest.raises(ValueError):
        triangle_graph.replace_model(0, Model.translation(3))


def test_retain_shares_tile_records(triangle_graph):
    kept = triangle_graph.retain([2, 0])
    assert kept.ids() == [0, 2]
    assert kept[0] is triangle_graph[0]
    assert 1 not in kept


def test_to_networkx(triangle_graph):
    graph = triangle_graph.to_networkx()
    assert list(graph.nodes) == [0, 1, 2]
    assert nx.is_connected(graph)


def test_local_points(triangle_graph):
    assert triangle_graph[0].local_points().shape == (2, 2)
    lonely = TileGraph()
    lonely.add_tile(TileRef(5), Model.translation(3))
    assert lonely[0].local_points().shape == (0, 3)
