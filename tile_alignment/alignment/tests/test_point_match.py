"""Tests for points and point matches."""
import numpy as np
import pytest

from tile_alignment.alignment import Model, Point, PointMatch
from tile_alignment.alignment._point_match import stack_local, stack_weights


def test_world_defaults_to_local():
    point = Point([1.0, 2.0])
    np.testing.assert_array_equal(point.world, [1.0, 2.0])
    assert point.ndim == 2


def test_point_is_read_only():
    point = Point([1.0, 2.0, 3.0])
    with pytest.raises(ValueError):
        point.local[0] = 5.0


def test_mismatched_world_length():
    with pytest.raises(ValueError):
        Point([1.0, 2.0], [1.0, 2.0, 3.0])


def test_unsupported_point_length():
    with pytest.raises(ValueError):
        Point([1.0])


def test_applied_recomputes_world():
    model = Model.translation(2).with_affine([[1.0, 0.0, 5.0], [0.0, 1.0, -2.0], [0.0, 0.0, 1.0]])
    point = Point([1.0, 1.0]).applied(model)
    np.testing.assert_allclose(point.local, [1.0, 1.0])
    np.testing.assert_allclose(point.world, [6.0, -1.0])


def test_negative_weight_rejected():
    with pytest.raises(ValueError):
        PointMatch(Point([0.0, 0.0]), Point([1.0, 1.0]), weight=-0.5)


def test_distance_and_reversed():
    match = PointMatch(Point([0.0, 0.0]), Point([3.0, 4.0]), weight=0.7)
    assert match.distance == pytest.approx(5.0)

    reversed_match = match.reversed()
    assert reversed_match.p1 is match.p2
    assert reversed_match.p2 is match.p1
    assert reversed_match.weight == pytest.approx(0.7)


def test_stack_helpers():
    matches = [
        PointMatch(Point([0.0, 1.0]), Point([2.0, 3.0]), 0.5),
        PointMatch(Point([4.0, 5.0]), Point([6.0, 7.0]), 1.0),
    ]
    np.testing.assert_array_equal(stack_local(matches, "p2"), [[2.0, 3.0], [6.0, 7.0]])
    np.testing.assert_array_equal(stack_weights(matches), [0.5, 1.0])
    with pytest.raises(ValueError):
        stack_local(matches, "p3")
