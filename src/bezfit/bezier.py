"""Bezier curve evaluation, de Casteljau subdivision and sampling utilities."""

from __future__ import annotations

import math
from functools import lru_cache
from typing import Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from bezfit.common import PointsLike, as_points

CUBIC_DEGREE: int = 3


@lru_cache(maxsize=None)
def _binomial_row(degree: int) -> Tuple[float, ...]:
    """Binomial coefficients C(degree, i) for i = 0..degree."""
    return tuple(float(math.comb(degree, i)) for i in range(degree + 1))


# Cubic row is built at import so concurrent fitters only ever read it
_CUBIC_BINOMIALS: NDArray[np.float64] = np.array(_binomial_row(CUBIC_DEGREE), dtype=np.float64)


class BezierCurve:
    """Class to handle Bezier curve evaluation, subdivision and sampling.

    Curves are given as control points of shape (n+1, 2) for a curve of degree n.
    All methods are classmethods working on plain arrays; the fitter uses the
    cubic case (4 control points) but evaluation and subdivision accept any degree.
    """

    @classmethod
    def binomials(cls, degree: int) -> NDArray[np.float64]:
        """Return the binomial coefficients of the Bernstein basis for the given degree."""
        if degree == CUBIC_DEGREE:
            return _CUBIC_BINOMIALS
        if degree < 0:
            raise ValueError(f"Degree must be non-negative, got {degree}.")
        return np.array(_binomial_row(degree), dtype=np.float64)

    @classmethod
    def point(cls, curve: PointsLike, t: float) -> NDArray[np.float64]:
        """
        Evaluate the Bezier curve at parameter t using the Bernstein basis.

        B(t) = sum_i C(n, i) * t^i * (1-t)^(n-i) * P_i

        t is not clamped to [0, 1]; values outside the range extrapolate the curve.

        Args:
            curve: Control points of shape (n+1, 2).
            t: Curve parameter.

        Returns:
            NDArray[np.float64]: The curve point (x, y).
        """
        ctrl = as_points(curve)
        degree = ctrl.shape[0] - 1
        exponents = np.arange(degree + 1, dtype=np.float64)
        weights = cls.binomials(degree) * np.power(t, exponents) * np.power(1.0 - t, degree - exponents)
        return weights @ ctrl

    @classmethod
    def point_casteljau(cls, curve: PointsLike, t: float) -> NDArray[np.float64]:
        """
        Evaluate the Bezier curve at parameter t using the de Casteljau recurrence.

        Uses the same arithmetic as split_casteljau(), so the result equals
        the split point of split_casteljau(curve, t) bit for bit.
        """
        tmp = as_points(curve).copy()
        n = tmp.shape[0]
        for k in range(n - 1):
            tmp[: n - 1 - k] = (1.0 - t) * tmp[: n - 1 - k] + t * tmp[1 : n - k]
        return tmp[0]

    @classmethod
    def split_casteljau(
        cls, curve: PointsLike, t: float
    ) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
        """
        Split the Bezier curve at parameter t into two curves of the same degree.

        The left curve traces the original over [0, t] and the right curve over [t, 1],
        both reparametrized to [0, 1]. The following holds exactly:
            left[0] == curve[0], right[-1] == curve[-1], left[-1] == right[0]

        Args:
            curve: Control points of shape (n+1, 2).
            t: Split parameter.

        Returns:
            Tuple of (left, right) control point arrays, each of shape (n+1, 2).
        """
        return cls._split(as_points(curve), t)

    @staticmethod
    def _split(ctrl: NDArray[np.float64], t: float) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
        tmp = ctrl.copy()
        n = tmp.shape[0]
        left = np.empty_like(tmp)
        right = np.empty_like(tmp)

        for k in range(n):
            # Outer points of the current triangle row
            left[k] = tmp[0]
            right[n - 1 - k] = tmp[n - 1 - k]
            tmp[: n - 1 - k] = (1.0 - t) * tmp[: n - 1 - k] + t * tmp[1 : n - k]

        return left, right

    @classmethod
    def derivative_points(cls, curve: PointsLike) -> NDArray[np.float64]:
        """
        Return the control points of the derivative curve.

        For a curve of degree n the derivative is a curve of degree n-1 with
        control points n * (P[i+1] - P[i]).

        Raises:
            ValueError: If the curve has fewer than 2 control points.
        """
        ctrl = as_points(curve)
        degree = ctrl.shape[0] - 1
        if degree < 1:
            raise ValueError("A derivative requires at least two control points.")
        return degree * np.diff(ctrl, axis=0)

    @classmethod
    def sample_curve(
        cls, curve: PointsLike, count: int, ts: Optional[Sequence[float]] = None
    ) -> NDArray[np.float64]:
        """
        Sample count points along the Bezier curve using repeated right subdivision.

        The first and last points are the curve's end control points, copied exactly.
        Every intermediate point is the split point of the remaining right-hand curve:
        - without ts, step i splits the remaining curve at 1 / (count - i),
          which yields points uniformly spaced in parameter space;
        - with ts, step i splits at (ts[i] - ts[i-1]) / (1 - ts[i-1]), the fraction of
          the remaining parameter window that ts[i] consumes.

        Args:
            curve: Control points of shape (n+1, 2).
            count: Number of points to produce (>= 1).
            ts: Optional absolute curve parameters, one per output point.

        Returns:
            NDArray[np.float64] of shape (count, 2).

        Raises:
            ValueError: If count < 1 or ts does not provide one value per point.
        """
        ctrl = as_points(curve)
        if count < 1:
            raise ValueError(f"At least one sample point is required, got {count}.")
        if ts is not None and len(ts) != count:
            raise ValueError(f"Expected {count} curve parameters, got {len(ts)}.")

        result = np.empty((count, 2), dtype=np.float64)
        result[0] = ctrl[0]
        if count == 1:
            return result
        result[-1] = ctrl[-1]

        work = ctrl
        for i in range(1, count - 1):
            if ts is None:
                t = 1.0 / (count - i)
            else:
                window = 1.0 - ts[i - 1]
                # Remaining curve collapsed to the end point
                t = (ts[i] - ts[i - 1]) / window if window > 0.0 else 0.0
            _, work = cls._split(work, t)
            result[i] = work[0]

        return result
