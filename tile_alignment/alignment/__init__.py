"""Alignment module for tile mosaics.

This module provides the global optimizer that turns pairwise point
correspondences between overlapping tiles into one consistent set of
per-tile transforms.
"""

from ._correspondences import (
    Correspondence,
    Subregion,
    correspondences_from_dataframe,
    correspondences_to_dataframe,
    group_by_timepoint,
)
from ._fallback_policy import PerturbationMode
from ._global_optimization import (
    GlobalOptimizer,
    OptimizationDiagnostics,
    OptimizationResult,
    SolvedTile,
    SolveStatus,
    optimize_by_timepoint,
    optimize_tiles,
    restore_output,
    suppress_output,
    suppressed_output,
)
from ._models import (
    IllConditionedDataError,
    InsufficientDataError,
    Model,
    ModelFitError,
    ModelType,
    min_num_matches,
)
from ._parameters import OptimizerParameters
from ._point_match import Point, PointMatch
from ._tile import Tile, TileGraph, TileRef

__all__ = [
    'Correspondence',
    'Subregion',
    'correspondences_from_dataframe',
    'correspondences_to_dataframe',
    'group_by_timepoint',
    'PerturbationMode',
    'GlobalOptimizer',
    'OptimizationDiagnostics',
    'OptimizationResult',
    'SolvedTile',
    'SolveStatus',
    'optimize_by_timepoint',
    'optimize_tiles',
    'restore_output',
    'suppress_output',
    'suppressed_output',
    'IllConditionedDataError',
    'InsufficientDataError',
    'Model',
    'ModelFitError',
    'ModelType',
    'min_num_matches',
    'OptimizerParameters',
    'Point',
    'PointMatch',
    'Tile',
    'TileGraph',
    'TileRef',
]
