"""Assignment and re-estimation of curve parameters for sample points.

The Parametrizer maps every sample point to a curve parameter in [0, 1]:
an initial guess from cumulative chord lengths and, once a curve is fitted,
a refined guess that moves each parameter to the closest curve point, either
by Newton's method on the squared distance or by golden-section search.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Optional

import numpy as np
from numpy.typing import NDArray

from bezfit.bezier import BezierCurve
from bezfit.common import (
    InsufficientDataError,
    Parametrization,
    PointsLike,
    ReparametrizationStrategy,
    as_points,
)

logger = logging.getLogger(__name__)

# 2 - golden ratio, the fraction of the bracket kept on each side
RES_PHI: float = 2.0 - (1.0 + math.sqrt(5.0)) / 2.0


class Parametrizer:
    """Class to provide static methods assigning curve parameters to sample points."""

    NEWTON_TOLERANCE: float = 0.01
    NEWTON_MAX_STEPS: int = 20
    GOLDEN_TOLERANCE: float = 0.01

    ###########################################################################
    # Initial parametrization
    ###########################################################################

    @classmethod
    def chord_length_parametrize(
        cls, points: PointsLike, parametrization: Parametrization = Parametrization.CHORD_LENGTH
    ) -> NDArray[np.float64]:
        """
        Assign normalized cumulative chord lengths to the sample points.

        ts[0] = 0 and ts[i] = ts[i-1] + |X[i] - X[i-1]|^p with p = 1 for chord length
        and p = 1/2 for centripetal parametrization. The result is divided by
        its last entry, so it runs from 0 to 1 and never decreases.

        Args:
            points: Sample points of shape (N, 2), N >= 2.
            parametrization: Chord length or centripetal weighting.

        Returns:
            NDArray[np.float64]: Curve parameters of shape (N,).

        Raises:
            InsufficientDataError: If fewer than two points are given or all points coincide.
        """
        xy = as_points(points, min_count=2)
        squared = np.sum(np.diff(xy, axis=0) ** 2, axis=1)
        exponent = 0.25 if parametrization == Parametrization.CENTRIPETAL else 0.5

        ts = np.empty(xy.shape[0], dtype=np.float64)
        ts[0] = 0.0
        ts[1:] = np.cumsum(np.power(squared, exponent))

        total = float(ts[-1])
        if total <= 0.0 or not math.isfinite(total):
            raise InsufficientDataError("Sample points coincide, chord lengths cannot be normalized.")

        ts /= total
        ts[-1] = 1.0
        return ts

    ###########################################################################
    # Newton reparametrization
    ###########################################################################

    @classmethod
    def newton_step(
        # pylint: disable=too-many-arguments,too-many-positional-arguments
        cls,
        curve: NDArray[np.float64],
        first: NDArray[np.float64],
        second: NDArray[np.float64],
        sample: NDArray[np.float64],
        t: float,
    ) -> Optional[float]:
        """
        One Newton step minimizing |B(t) - X|^2 over t.

        f(t)  = (B(t) - X) . B'(t)
        f'(t) = |B'(t)|^2 + (B(t) - X) . B''(t)
        t_new = t - f(t) / f'(t)

        Args:
            curve: Control points of the curve B.
            first: Control points of B'.
            second: Control points of B''.
            sample: The sample point X.
            t: Current parameter.

        Returns:
            The new parameter, or None if f'(t) is not positive (no minimum ahead)
            or the step is not finite.
        """
        diff = BezierCurve.point(curve, t) - sample
        d1 = BezierCurve.point(first, t)
        d2 = BezierCurve.point(second, t)

        numerator = float(diff @ d1)
        denominator = float(d1 @ d1 + diff @ d2)
        if not denominator > 0.0 or not math.isfinite(denominator):
            return None

        new_t = t - numerator / denominator
        if not math.isfinite(new_t):
            return None
        return new_t

    @classmethod
    def reparametrize_newton(
        # pylint: disable=too-many-arguments,too-many-positional-arguments
        cls,
        curve: PointsLike,
        sample: PointsLike,
        t: float,
        tolerance: float = NEWTON_TOLERANCE,
        max_steps: int = NEWTON_MAX_STEPS,
    ) -> float:
        """
        Re-estimate the parameter of a single sample by Newton iteration.

        Iterates until the relative change |dt| / |t| drops to the tolerance,
        Newton stops making progress, or max_steps is reached. The result is not clamped.

        Args:
            curve: Control points of the fitted curve.
            sample: The sample point (x, y).
            t: Current parameter of the sample.
            tolerance: Relative change at which the iteration stops.
            max_steps: Maximum number of Newton steps.

        Returns:
            float: The re-estimated parameter.
        """
        ctrl = as_points(curve, min_count=3)
        first = BezierCurve.derivative_points(ctrl)
        second = BezierCurve.derivative_points(first)
        return cls._newton_iterate(ctrl, first, second, np.asarray(sample, dtype=np.float64), t, tolerance, max_steps)

    @classmethod
    def _newton_iterate(
        # pylint: disable=too-many-arguments,too-many-positional-arguments
        cls,
        curve: NDArray[np.float64],
        first: NDArray[np.float64],
        second: NDArray[np.float64],
        sample: NDArray[np.float64],
        t: float,
        tolerance: float,
        max_steps: int,
    ) -> float:
        t = float(t)
        for _ in range(max_steps):
            new_t = cls.newton_step(curve, first, second, sample, t)
            if new_t is None:
                break
            prev_t, t = t, new_t
            if abs(t - prev_t) <= tolerance * abs(prev_t):
                break
        return t

    ###########################################################################
    # Golden-section reparametrization
    ###########################################################################

    @staticmethod
    def golden_section_search(func: Callable[[float], float], a: float, b: float, epsilon: float) -> float:
        """
        Minimize a unimodal 1-D function on [a, b] by golden-section search.

        Args:
            func: Function to minimize.
            a: Lower bracket bound.
            b: Upper bracket bound.
            epsilon: Absolute width of the bracket at which the search stops.

        Returns:
            float: Midpoint of the final bracket.

        Raises:
            ValueError: If epsilon is not positive.
        """
        if not epsilon > 0.0:
            raise ValueError(f"Golden-section tolerance must be positive, got {epsilon}.")
        if a > b:
            a, b = b, a
        if b - a <= epsilon:
            return (a + b) / 2.0

        x1 = a + RES_PHI * (b - a)
        x2 = b - RES_PHI * (b - a)
        f1 = func(x1)
        f2 = func(x2)

        while abs(b - a) > epsilon:
            if f1 < f2:
                b = x2
                x2 = x1
                f2 = f1
                x1 = a + RES_PHI * (b - a)
                f1 = func(x1)
            else:
                a = x1
                x1 = x2
                f1 = f2
                x2 = b - RES_PHI * (b - a)
                f2 = func(x2)

        return (a + b) / 2.0

    @classmethod
    def reparametrize_golden_section(
        # pylint: disable=too-many-arguments,too-many-positional-arguments
        cls,
        curve: PointsLike,
        sample: PointsLike,
        lower: float,
        upper: float,
        tolerance: float = GOLDEN_TOLERANCE,
    ) -> float:
        """
        Re-estimate the parameter of a single sample by golden-section search.

        The squared distance |B(t) - X|^2 is minimized over [lower, upper]
        (clamped to [0, 1]) with an absolute tolerance of tolerance * (upper - lower).

        Returns:
            float: The re-estimated parameter, always inside the search interval.
        """
        ctrl = as_points(curve)
        target = np.asarray(sample, dtype=np.float64)
        lower = min(max(lower, 0.0), 1.0)
        upper = min(max(upper, 0.0), 1.0)
        width = upper - lower
        if width <= 0.0:
            return lower

        def squared_distance(t: float) -> float:
            diff = BezierCurve.point(ctrl, t) - target
            return float(diff @ diff)

        return cls.golden_section_search(squared_distance, lower, upper, tolerance * width)

    ###########################################################################
    # Whole sequence
    ###########################################################################

    @classmethod
    def reparametrize_points(
        # pylint: disable=too-many-arguments,too-many-positional-arguments
        cls,
        curve: PointsLike,
        points: PointsLike,
        ts: NDArray[np.float64],
        strategy: ReparametrizationStrategy = ReparametrizationStrategy.NEWTON,
        tolerance: Optional[float] = None,
        max_steps: int = NEWTON_MAX_STEPS,
    ) -> NDArray[np.float64]:
        """
        Re-estimate the parameters of all interior samples in place.

        The end parameters stay pinned to 0 and 1. Samples are processed in order and
        every new parameter is kept at or above its predecessor, so ts stays non-decreasing.

        NEWTON: each sample starts from its current parameter shifted by the change
        Newton applied to the previous sample (from its start value to its clamped
        result), then iterates Newton steps; the result is clamped to [ts[j-1], 1].
        GOLDEN_SECTION: each sample is searched between the already updated parameter
        of its predecessor and the previous value of its successor.

        Args:
            curve: Control points of the fitted curve.
            points: Sample points of shape (N, 2).
            ts: Current parameters of shape (N,), updated in place.
            strategy: Newton or golden-section search.
            tolerance: Stopping tolerance of the strategy; None uses the class default.
            max_steps: Newton step cap per sample.

        Returns:
            NDArray[np.float64]: The updated ts.
        """
        ctrl = as_points(curve, min_count=3)
        xy = as_points(points)
        if ts.shape[0] != xy.shape[0]:
            raise ValueError(f"Expected {xy.shape[0]} curve parameters, got {ts.shape[0]}.")

        num = xy.shape[0]
        clamped = 0

        if strategy == ReparametrizationStrategy.NEWTON:
            tol = cls.NEWTON_TOLERANCE if tolerance is None else tolerance
            first = BezierCurve.derivative_points(ctrl)
            second = BezierCurve.derivative_points(first)
            shift = 0.0
            for j in range(1, num - 1):
                start = ts[j] + shift
                new_t = cls._newton_iterate(ctrl, first, second, xy[j], start, tol, max_steps)
                bounded = min(max(new_t, ts[j - 1]), 1.0)
                if bounded != new_t:
                    clamped += 1
                # Only this sample's own Newton change carries over to the next one
                shift = bounded - start
                ts[j] = bounded
        else:
            tol = cls.GOLDEN_TOLERANCE if tolerance is None else tolerance
            for j in range(1, num - 1):
                # ts[j + 1] still holds its value from the previous pass
                ts[j] = cls.reparametrize_golden_section(ctrl, xy[j], ts[j - 1], ts[j + 1], tol)

        if clamped:
            logger.debug("Clamped %d of %d curve parameters into order", clamped, num - 2)
        return ts
