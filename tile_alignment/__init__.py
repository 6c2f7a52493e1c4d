"""Tile Alignment Package.

This package aligns overlapping image tiles of a mosaic or volume acquisition
into one coordinate frame, starting from the point correspondences produced by
pairwise registration.

Main functionality:
- Tile graph construction from weighted correspondences
- Connectivity filtering down to the largest tile graph
- Model fallback for under-constrained or degenerate tiles
- Iterative relaxation of translation, similarity and affine tile models
- Diagnostics on residual errors and lost tiles

The package exposes the optimizer entry points at the top level for convenience.
"""

from .alignment import (
    Correspondence,
    GlobalOptimizer,
    ModelType,
    OptimizationResult,
    OptimizerParameters,
    PerturbationMode,
    Subregion,
    TileRef,
    correspondences_from_dataframe,
    optimize_by_timepoint,
    optimize_tiles,
    restore_output,
    suppress_output,
)

__all__ = [
    'Correspondence',
    'GlobalOptimizer',
    'ModelType',
    'OptimizationResult',
    'OptimizerParameters',
    'PerturbationMode',
    'Subregion',
    'TileRef',
    'correspondences_from_dataframe',
    'optimize_by_timepoint',
    'optimize_tiles',
    'restore_output',
    'suppress_output',
]
