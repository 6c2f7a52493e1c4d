"""Type aliases and utilities for tile alignment.

This module provides commonly used type aliases for numpy arrays and numeric types
used throughout the alignment package.
"""
from typing import Any, Union

import numpy as np
import numpy.typing as npt

# Array type aliases
NumArray = npt.NDArray[Any]
FloatArray = npt.NDArray[np.float64]
IntArray = npt.NDArray[np.int_]
BoolArray = npt.NDArray[np.bool_]

# (n, D) point coordinates and (D+1, D+1) homogeneous transforms
PointArray = FloatArray
AffineMatrix = FloatArray

# Numeric type aliases
Int = Union[int, np.int_]
Float = Union[float, np.float64]

SUPPORTED_DIMENSIONS = (2, 3)


def check_dimensionality(ndim: Int) -> int:
    """Return ndim as a plain int, raising ValueError for unsupported values."""
    ndim = int(ndim)
    if ndim not in SUPPORTED_DIMENSIONS:
        raise ValueError(f"Unsupported dimensionality {ndim}, expected one of {SUPPORTED_DIMENSIONS}")
    return ndim
