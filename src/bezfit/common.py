"""Central module containing enums, types and exceptions for Bezier curve fitting."""

from __future__ import annotations

from enum import Enum, auto
from typing import Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray

###############################################################################
# Types
###############################################################################


PointsLike = Union[Sequence[Tuple[float, float]], Sequence[Sequence[float]], NDArray[np.float64]]


###############################################################################
# Enums and Consts
###############################################################################


class FitMode(Enum):
    """Enum to define the coordinate frame a curve is fitted in."""

    EUCLIDEAN = auto()  # raw coordinates
    AFFINE = auto()  # zero-mean, anisotropy-corrected coordinates


class Parametrization(Enum):
    """Enum to define how initial curve parameters are assigned to samples."""

    CHORD_LENGTH = auto()
    CENTRIPETAL = auto()


class ReparametrizationStrategy(Enum):
    """Enum to define how curve parameters are re-estimated after each solve."""

    NEWTON = auto()
    GOLDEN_SECTION = auto()


class SolverStatus(Enum):
    """Enum to define the termination reason of the least-squares solver."""

    FAILED = -1
    MAX_ITERATIONS = 0
    SMALL_GRADIENT = 1
    SMALL_COST_CHANGE = 2
    SMALL_STEP = 3
    SMALL_COST_AND_STEP = 4

    @property
    def converged(self) -> bool:
        """True if the solver stopped by one of its convergence criteria."""
        return self.value > 0


###############################################################################
# Exceptions
###############################################################################


class CurveFitError(Exception):
    """Base exception for curve fitting errors."""


class InsufficientDataError(CurveFitError, ValueError):
    """Raised when the samples cannot define a curve (too few, malformed or coincident)."""


class SolverDivergenceError(CurveFitError):
    """Raised when the least-squares solver fails or produces non-finite values."""


###############################################################################
# Functions
###############################################################################


def as_points(points: PointsLike, min_count: int = 1) -> NDArray[np.float64]:
    """Convert the given points into a float64 array of shape (N, 2).

    Extra columns (e.g. a type column) are dropped.

    Args:
        points: Sequence of (x, y) pairs or an array of shape (N, >=2).
        min_count: Minimum number of points required.

    Returns:
        NDArray[np.float64]: Array of shape (N, 2).

    Raises:
        InsufficientDataError: If the shape is invalid, coordinates are not finite,
            or fewer than ``min_count`` points are given.
    """
    if isinstance(points, np.ndarray) and points.dtype == np.float64:
        points_array = points
    else:
        points_array = np.asarray(points, dtype=np.float64)

    if points_array.ndim != 2 or points_array.shape[1] < 2:
        raise InsufficientDataError("Points must be given as (x, y) formatted pairs.")
    if points_array.shape[0] < min_count:
        raise InsufficientDataError(f"At least {min_count} points are required, got {points_array.shape[0]}.")
    if not np.all(np.isfinite(points_array[:, :2])):
        raise InsufficientDataError("Points must have finite coordinates.")

    return np.array(points_array[:, :2], dtype=np.float64)
