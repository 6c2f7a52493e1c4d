"""Tests for correspondence records and their table form."""
import numpy as np
import pandas as pd
import pytest

from tile_alignment.alignment import (
    Correspondence,
    ModelType,
    Subregion,
    TileRef,
    correspondences_from_dataframe,
    correspondences_to_dataframe,
    group_by_timepoint,
)


@pytest.fixture
def table():
    return pd.DataFrame(
        {
            "tile1": [0, 1, 0],
            "tile2": [1, 2, 2],
            "p1_x": [90.0, 95.0, 10.0],
            "p1_y": [5.0, 50.0, 95.0],
            "p2_x": [0.0, 1.0, 12.0],
            "p2_y": [5.0, 48.0, 3.0],
            "valid": [True, True, False],
            "weight": [1.0, 0.5, 1.0],
        }
    )


def test_point_pair_record():
    record = Correspondence(TileRef(0), TileRef(1), point_pair=([1, 2], [3, 4]))
    assert record.ndim == 2
    assert record.is_usable
    assert not record.is_synthesized
    a, b = record.resolve_points()
    np.testing.assert_array_equal(a, [1.0, 2.0])
    np.testing.assert_array_equal(b, [3.0, 4.0])


def test_subregion_midpoint():
    """Test the synthesized point pair uses the first box's half size and the shift."""
    record = Correspondence(
        TileRef(0),
        TileRef(1),
        shift=[2.0, -1.0],
        subregions=(Subregion([80.0, 0.0], [20.0, 100.0]), Subregion([0.0, 0.0], [20.0, 100.0])),
    )
    assert record.is_synthesized
    a, b = record.resolve_points()
    np.testing.assert_allclose(a, [90.0, 50.0])
    np.testing.assert_allclose(b, [8.0, 51.0])


@pytest.mark.parametrize(
    "kwargs",
    [
        {},
        {"point_pair": ([0, 0], [1, 1]), "shift": [0, 0]},
        {"shift": [0, 0]},
        {"point_pair": ([0, 0], [1, 1, 1])},
        {"point_pair": ([0], [1])},
        {"point_pair": ([0, 0], [1, 1]), "weight": -1.0},
        {"point_pair": ([0, 0], [1, 1]), "weight": float("nan")},
    ],
)
def test_invalid_records(kwargs):
    with pytest.raises(ValueError):
        Correspondence(TileRef(0), TileRef(1), **kwargs)


def test_self_link_rejected():
    with pytest.raises(ValueError):
        Correspondence(TileRef(3), TileRef(3), point_pair=([0, 0], [1, 1]))


def test_self_link_across_timepoints_allowed():
    record = Correspondence(TileRef(3, 0), TileRef(3, 1), point_pair=([0, 0], [1, 1]))
    assert record.pair_key == ((3, 0), (3, 1))


def test_zero_weight_not_usable():
    record = Correspondence(TileRef(0), TileRef(1), weight=0.0, point_pair=([0, 0], [1, 1]))
    assert not record.is_usable


def test_pair_key_is_order_independent():
    forward = Correspondence(TileRef(0), TileRef(1), point_pair=([0, 0], [1, 1]))
    backward = Correspondence(TileRef(1), TileRef(0), point_pair=([1, 1], [0, 0]))
    assert forward.pair_key == backward.pair_key


def test_subregion_negative_size():
    with pytest.raises(ValueError):
        Subregion([0.0, 0.0], [-1.0, 5.0])


def test_from_dataframe(table):
    records = correspondences_from_dataframe(table, default_model=ModelType.TRANSLATION)

    assert len(records) == 3
    assert records[0].tile1 == TileRef(0)
    assert records[0].tile1.model is ModelType.TRANSLATION
    assert records[1].weight == 0.5
    assert not records[2].is_valid
    np.testing.assert_array_equal(records[1].point_pair[0], [95.0, 50.0])


def test_from_dataframe_model_column(table):
    table["model1"] = ["similarity", "affine", None]
    table["model2"] = ["translation", "affine", "affine"]

    records = correspondences_from_dataframe(table)

    assert records[0].tile1.model is ModelType.SIMILARITY
    assert records[0].tile2.model is ModelType.TRANSLATION
    assert records[2].tile1.model is ModelType.AFFINE


def test_from_dataframe_3d():
    df = pd.DataFrame(
        {
            "tile1": [0], "tile2": [1],
            "p1_x": [1.0], "p1_y": [2.0], "p1_z": [3.0],
            "p2_x": [4.0], "p2_y": [5.0], "p2_z": [6.0],
        }
    )
    records = correspondences_from_dataframe(df)
    assert records[0].ndim == 3


def test_from_dataframe_rejects_non_dataframe():
    with pytest.raises(TypeError):
        correspondences_from_dataframe([{"tile1": 0}])


def test_from_dataframe_missing_columns(table):
    with pytest.raises(ValueError, match="p2_y"):
        correspondences_from_dataframe(table.drop(columns=["p2_y"]))


def test_from_dataframe_half_3d(table):
    table["p1_z"] = 0.0
    with pytest.raises(ValueError):
        correspondences_from_dataframe(table)


def test_from_dataframe_non_finite(table):
    table.loc[1, "p1_x"] = np.inf
    with pytest.raises(ValueError):
        correspondences_from_dataframe(table)


def test_from_dataframe_bad_row_names_index(table):
    table.loc[2, "tile2"] = 0
    with pytest.raises(ValueError, match="row 2"):
        correspondences_from_dataframe(table)


def test_from_dataframe_unknown_model(table):
    table["model1"] = "projective"
    with pytest.raises(ValueError, match="projective"):
        correspondences_from_dataframe(table)


def test_table_roundtrip(table):
    records = correspondences_from_dataframe(table, default_model=ModelType.SIMILARITY)

    back = correspondences_from_dataframe(correspondences_to_dataframe(records))

    assert [r.tile1 for r in back] == [r.tile1 for r in records]
    assert [r.tile2.model for r in back] == [ModelType.SIMILARITY] * 3
    assert [r.is_valid for r in back] == [True, True, False]
    for r, s in zip(records, back):
        np.testing.assert_array_equal(r.point_pair[1], s.point_pair[1])


def test_group_by_timepoint(caplog):
    records = [
        Correspondence(TileRef(0, 1), TileRef(1, 1), point_pair=([0, 0], [1, 1])),
        Correspondence(TileRef(0, 0), TileRef(1, 0), point_pair=([0, 0], [1, 1])),
        Correspondence(TileRef(0, 0), TileRef(0, 1), point_pair=([0, 0], [1, 1])),
        Correspondence(TileRef(1, 1), TileRef(2, 1), point_pair=([0, 0], [1, 1])),
    ]

    groups = group_by_timepoint(records)

    assert list(groups) == [0, 1]
    assert len(groups[0]) == 1
    assert groups[1] == [records[0], records[3]]
    assert "Dropped 1 correspondences" in caplog.text
