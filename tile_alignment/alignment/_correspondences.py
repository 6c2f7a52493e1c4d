"""Correspondence records handed over by pairwise registration.

Each record names a tile pair, whether the pairwise result is trusted, a
confidence weight, and either an explicit point pair or a relative shift
between two overlapping sub-regions from which a midpoint correspondence is
synthesized.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ._models import ModelType
from ._tile import TileRef
from ._typing_utils import FloatArray, SUPPORTED_DIMENSIONS

# Configure logger
logger = logging.getLogger(__name__)

AXES = ("x", "y", "z")


@dataclass(frozen=True, eq=False)
class Subregion:
    """An axis-aligned box in its tile's local frame."""
    offset: FloatArray
    size: FloatArray

    def __post_init__(self) -> None:
        offset = np.asarray(self.offset, dtype=np.float64).reshape(-1)
        size = np.asarray(self.size, dtype=np.float64).reshape(-1)
        if offset.shape != size.shape:
            raise ValueError(f"Subregion offset and size differ in length: {offset.shape} vs {size.shape}")
        if np.any(size < 0):
            raise ValueError(f"Subregion size must be non-negative, got {size}")
        object.__setattr__(self, "offset", offset)
        object.__setattr__(self, "size", size)

    @property
    def middle(self) -> FloatArray:
        return self.offset + self.size / 2.0


@dataclass(eq=False)
class Correspondence:
    """One pairwise registration result between ``tile1`` and ``tile2``.

    Exactly one of ``point_pair`` or (``shift``, ``subregions``) is given.
    In the subregion form, box-relative coordinate ``u`` of the first box
    corresponds to ``u - shift`` in the second box.
    """
    tile1: TileRef
    tile2: TileRef
    is_valid: bool = True
    weight: float = 1.0
    point_pair: Optional[Tuple[FloatArray, FloatArray]] = None
    shift: Optional[FloatArray] = None
    subregions: Optional[Tuple[Subregion, Subregion]] = None

    def __post_init__(self) -> None:
        if self.tile1.key == self.tile2.key:
            raise ValueError(f"Correspondence links {self.tile1} to itself")
        if not np.isfinite(self.weight) or self.weight < 0:
            raise ValueError(f"Correspondence weight must be finite and non-negative, got {self.weight}")

        has_points = self.point_pair is not None
        has_shift = self.shift is not None or self.subregions is not None
        if has_points == has_shift:
            raise ValueError("Correspondence needs either point_pair or shift with subregions, not both")
        if has_shift and (self.shift is None or self.subregions is None):
            raise ValueError("Subregion correspondences need both shift and subregions")

        if has_points:
            a, b = (np.asarray(p, dtype=np.float64).reshape(-1) for p in self.point_pair)
            self.point_pair = (a, b)
            ndim = a.shape[0]
            if b.shape[0] != ndim:
                raise ValueError(f"Point pair differs in dimensionality: {a.shape[0]} vs {b.shape[0]}")
        else:
            self.shift = np.asarray(self.shift, dtype=np.float64).reshape(-1)
            ndim = self.shift.shape[0]
            if any(s.offset.shape[0] != ndim for s in self.subregions):
                raise ValueError("Shift and subregions differ in dimensionality")

        if ndim not in SUPPORTED_DIMENSIONS:
            raise ValueError(f"Correspondences must be 2D or 3D, got {ndim}D")

    @property
    def ndim(self) -> int:
        if self.point_pair is not None:
            return int(self.point_pair[0].shape[0])
        return int(self.shift.shape[0])

    @property
    def is_synthesized(self) -> bool:
        return self.point_pair is None

    @property
    def is_usable(self) -> bool:
        """Valid and with positive weight; anything else is treated as absent."""
        return bool(self.is_valid) and self.weight > 0

    @property
    def pair_key(self) -> Tuple[tuple, tuple]:
        return tuple(sorted((self.tile1.key, self.tile2.key)))

    def resolve_points(self) -> Tuple[FloatArray, FloatArray]:
        """Point in tile1's local frame and its counterpart in tile2's local frame."""
        if self.point_pair is not None:
            return self.point_pair[0].copy(), self.point_pair[1].copy()
        first, second = self.subregions
        half = first.size / 2.0
        return first.offset + half, second.offset + half - self.shift


def group_by_timepoint(records: Sequence[Correspondence]) -> Dict[int, List[Correspondence]]:
    """Split records by timepoint.

    Records linking tiles of two different timepoints belong to no group and
    are dropped.
    """
    groups: Dict[int, List[Correspondence]] = defaultdict(list)
    dropped = 0
    for record in records:
        if record.tile1.timepoint != record.tile2.timepoint:
            dropped += 1
            continue
        groups[record.tile1.timepoint].append(record)
    if dropped:
        logger.warning(f"Dropped {dropped} correspondences linking different timepoints")
    for timepoint, group in sorted(groups.items()):
        logger.info(f"Timepoint {timepoint}: {len(group)} correspondences")
    return dict(sorted(groups.items()))


def _model_from_cell(value: object, default: ModelType) -> ModelType:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return default
    try:
        return ModelType(str(value).strip().lower())
    except ValueError:
        raise ValueError(f"Unknown model type {value!r}, expected one of {[m.value for m in ModelType]}")


def correspondences_from_dataframe(
    df: pd.DataFrame,
    default_model: ModelType = ModelType.AFFINE,
) -> List[Correspondence]:
    """Build correspondence records from a table of point pairs.

    Expected columns are ``tile1``, ``tile2``, ``p1_x``, ``p1_y``, ``p2_x``,
    ``p2_y`` and, for 3D data, ``p1_z`` and ``p2_z``. Optional columns:
    ``valid`` (default True), ``weight`` (default 1.0), ``timepoint1``,
    ``timepoint2`` (default 0) and ``model1``, ``model2`` (default
    ``default_model``).

    Raises:
        TypeError: If input is not a DataFrame
        ValueError: If required columns are missing or values are invalid
    """
    if not isinstance(df, pd.DataFrame):
        raise TypeError(f"Expected pandas DataFrame, got {type(df).__name__}")

    required = ["tile1", "tile2", "p1_x", "p1_y", "p2_x", "p2_y"]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required correspondence columns: {missing}")

    has_z = "p1_z" in df.columns or "p2_z" in df.columns
    if has_z and not ("p1_z" in df.columns and "p2_z" in df.columns):
        raise ValueError("3D correspondences need both p1_z and p2_z columns")
    axes = AXES if has_z else AXES[:2]
    p1_cols = [f"p1_{a}" for a in axes]
    p2_cols = [f"p2_{a}" for a in axes]

    coords = df[p1_cols + p2_cols]
    if not coords.dtypes.apply(lambda dt: np.issubdtype(dt, np.number)).all():
        raise ValueError("Non-numeric values in point coordinate columns")
    if not np.all(np.isfinite(coords.to_numpy(dtype=np.float64))):
        raise ValueError("Non-finite values in point coordinate columns")

    records = []
    for row_idx, row in df.iterrows():
        try:
            tile1 = TileRef(
                tile_id=int(row["tile1"]),
                timepoint=int(row.get("timepoint1", 0)),
                model=_model_from_cell(row.get("model1"), default_model),
            )
            tile2 = TileRef(
                tile_id=int(row["tile2"]),
                timepoint=int(row.get("timepoint2", 0)),
                model=_model_from_cell(row.get("model2"), default_model),
            )
            valid = row.get("valid", True)
            records.append(
                Correspondence(
                    tile1=tile1,
                    tile2=tile2,
                    is_valid=bool(True if pd.isna(valid) else valid),
                    weight=float(row.get("weight", 1.0)),
                    point_pair=(row[p1_cols].to_numpy(dtype=np.float64), row[p2_cols].to_numpy(dtype=np.float64)),
                )
            )
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid correspondence in row {row_idx}: {e}") from e

    logger.info(f"Read {len(records)} {len(axes)}D correspondences")
    return records


def correspondences_to_dataframe(records: Sequence[Correspondence]) -> pd.DataFrame:
    """Inverse of ``correspondences_from_dataframe``; subregion records are resolved to points."""
    rows = []
    for record in records:
        a, b = record.resolve_points()
        row = {
            "tile1": record.tile1.tile_id,
            "tile2": record.tile2.tile_id,
            "timepoint1": record.tile1.timepoint,
            "timepoint2": record.tile2.timepoint,
            "model1": record.tile1.model.value,
            "model2": record.tile2.model.value,
            "valid": bool(record.is_valid),
            "weight": float(record.weight),
        }
        for axis, va, vb in zip(AXES, a, b):
            row[f"p1_{axis}"] = va
            row[f"p2_{axis}"] = vb
        rows.append(row)
    return pd.DataFrame(rows)
