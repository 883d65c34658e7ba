"""Least-squares fitting of cubic Bezier curves to sampled strokes.

The CurveFitter alternates two optimizations until the fit stops improving:
1. With the curve parameters of the samples fixed, the two inner control points
   are optimized by Levenberg-Marquardt (scipy.optimize.least_squares).
2. With the curve fixed, the curve parameters of the samples are re-estimated
   (Newton's method or golden-section search, see Parametrizer).

The end control points are pinned to the first and last sample.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy.optimize import OptimizeResult, least_squares

from bezfit.bezier import CUBIC_DEGREE, BezierCurve
from bezfit.common import (
    FitMode,
    Parametrization,
    PointsLike,
    ReparametrizationStrategy,
    SolverDivergenceError,
    SolverStatus,
    as_points,
)
from bezfit.geom import AxisNormalization
from bezfit.parametrization import Parametrizer

logger = logging.getLogger(__name__)

CONTROL_POINT_COUNT: int = CUBIC_DEGREE + 1


###############################################################################
# CurveFitterConfig
###############################################################################
@dataclass(frozen=True)
class CurveFitterConfig:
    """Settings of a CurveFitter.

    Attributes:
        mode: EUCLIDEAN fits raw coordinates, AFFINE fits normalized coordinates.
        parametrization: Initial chord length or centripetal parametrization.
        strategy: Newton or golden-section reparametrization.
        max_solver_iterations: Cap on residual evaluations per solve, not counting the
            evaluations spent on the finite-difference Jacobian.
        max_rounds: Cap on solve/reparametrize rounds.
        min_improvement: Relative error improvement below which the rounds stop.
        newton_tolerance: Relative parameter change at which Newton stops.
        max_newton_steps: Cap on Newton steps per sample and round.
        golden_tolerance: Golden-section tolerance as a fraction of the bracket width.
        solver_tolerance: ftol, xtol and gtol of the Levenberg-Marquardt solver.
        min_error: Error, relative to the mean squared spread of the samples, at or below
            which the rounds stop. 0 only stops on an exact fit.
    """

    mode: FitMode = FitMode.EUCLIDEAN
    parametrization: Parametrization = Parametrization.CHORD_LENGTH
    strategy: ReparametrizationStrategy = ReparametrizationStrategy.NEWTON
    max_solver_iterations: int = 500
    max_rounds: int = 50
    min_improvement: float = 0.01
    newton_tolerance: float = 0.01
    max_newton_steps: int = 20
    golden_tolerance: float = 0.01
    solver_tolerance: float = 1e-12
    min_error: float = 1e-12

    def __post_init__(self):
        for name in ("max_solver_iterations", "max_rounds", "max_newton_steps"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1, got {getattr(self, name)}.")
        for name in ("min_improvement", "newton_tolerance", "golden_tolerance", "solver_tolerance"):
            if not getattr(self, name) > 0.0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}.")
        if not self.min_error >= 0.0:
            raise ValueError(f"min_error must not be negative, got {self.min_error}.")

    def to_dict(self) -> dict:
        """Convert the config to a dictionary for serialization."""
        return {
            "mode": self.mode.name,
            "parametrization": self.parametrization.name,
            "strategy": self.strategy.name,
            "max_solver_iterations": self.max_solver_iterations,
            "max_rounds": self.max_rounds,
            "min_improvement": self.min_improvement,
            "newton_tolerance": self.newton_tolerance,
            "max_newton_steps": self.max_newton_steps,
            "golden_tolerance": self.golden_tolerance,
            "solver_tolerance": self.solver_tolerance,
            "min_error": self.min_error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> CurveFitterConfig:
        """Create a CurveFitterConfig from a dictionary."""
        return cls(
            mode=FitMode[data.get("mode", "EUCLIDEAN")],
            parametrization=Parametrization[data.get("parametrization", "CHORD_LENGTH")],
            strategy=ReparametrizationStrategy[data.get("strategy", "NEWTON")],
            max_solver_iterations=data.get("max_solver_iterations", 500),
            max_rounds=data.get("max_rounds", 50),
            min_improvement=data.get("min_improvement", 0.01),
            newton_tolerance=data.get("newton_tolerance", 0.01),
            max_newton_steps=data.get("max_newton_steps", 20),
            golden_tolerance=data.get("golden_tolerance", 0.01),
            solver_tolerance=data.get("solver_tolerance", 1e-12),
            min_error=data.get("min_error", 1e-12),
        )


###############################################################################
# FitResult
###############################################################################
@dataclass
class FitResult:
    """
    Outcome of a curve fit.

    Attributes:
        curve (NDArray[np.float64]): Control points of shape (4, 2).
        error (float): Mean squared residual per sample coordinate, 0 is exact.
        params (NDArray[np.float64]): Final curve parameter of every sample.
        rounds (int): Number of solve/reparametrize rounds.
        iterations (int): Total residual evaluations of all solves, not counting the
            evaluations spent on the finite-difference Jacobian.
        status (SolverStatus): Termination reason of the solve that produced the curve.
    """

    curve: NDArray[np.float64]
    error: float
    params: NDArray[np.float64]
    rounds: int
    iterations: int
    status: SolverStatus


@dataclass
class _FitSession:
    """Samples, curve and parameters owned by a single fit call."""

    points: NDArray[np.float64]
    curve: NDArray[np.float64]
    ts: NDArray[np.float64]

    def curve_with(self, inner: NDArray[np.float64]) -> NDArray[np.float64]:
        curve = self.curve.copy()
        curve[1 : CONTROL_POINT_COUNT - 1] = inner.reshape(CONTROL_POINT_COUNT - 2, 2)
        return curve

    def residuals(self, inner: NDArray[np.float64]) -> NDArray[np.float64]:
        if not np.all(np.isfinite(inner)):
            raise SolverDivergenceError("Solver produced non-finite control points.")
        curve = self.curve_with(inner)
        sampled = BezierCurve.sample_curve(curve, self.points.shape[0], self.ts)
        return (sampled - self.points).ravel()


###############################################################################
# CurveFitter
###############################################################################
class CurveFitter:
    """Fit a cubic Bezier curve to an ordered sequence of sample points."""

    def __init__(self, config: Optional[CurveFitterConfig] = None):
        self.config = config if config is not None else CurveFitterConfig()

    def fit(self, points: PointsLike, mode: Optional[FitMode] = None) -> Tuple[NDArray[np.float64], float]:
        """
        Fit a cubic Bezier curve to the points.

        Args:
            points: Ordered sample points of shape (N, 2), N >= 2.
            mode: Overrides the configured FitMode.

        Returns:
            Tuple of the control points (4, 2) and the fit error.

        Raises:
            InsufficientDataError: If fewer than two points are given or all points coincide.
            SolverDivergenceError: If the solver fails.
        """
        result = self.fit_result(points, mode)
        return result.curve, result.error

    def fit_result(self, points: PointsLike, mode: Optional[FitMode] = None) -> FitResult:
        """Fit a cubic Bezier curve to the points and return the full FitResult."""
        cfg = self.config
        mode = cfg.mode if mode is None else mode

        xy = as_points(points, min_count=2)
        normalization = AxisNormalization.from_points(xy) if mode == FitMode.AFFINE else AxisNormalization.identity()
        samples = normalization.apply(xy) if mode == FitMode.AFFINE else xy

        ts = Parametrizer.chord_length_parametrize(samples, cfg.parametrization)
        session = _FitSession(points=samples, curve=self.initial_guess(samples), ts=ts)

        num = samples.shape[0]
        spread = float(np.mean(np.sum((samples - samples.mean(axis=0)) ** 2, axis=1)))
        error_floor = cfg.min_error * spread
        fnorm = math.inf
        best_curve, best_ts, best_fnorm = session.curve.copy(), session.ts.copy(), math.inf
        best_status = SolverStatus.FAILED
        rounds = 0
        iterations = 0

        while True:
            rounds += 1
            solution = self._solve(session)
            iterations += solution.nfev
            status = SolverStatus(solution.status)

            session.curve = session.curve_with(solution.x)
            fnorm_prev, fnorm = fnorm, float(solution.fun @ solution.fun) / (2 * num)
            logger.debug(
                "Round %d: termination reason %s after %d evaluations, error %g",
                rounds,
                status.name,
                solution.nfev,
                fnorm,
            )
            if status == SolverStatus.MAX_ITERATIONS:
                logger.warning("Solver reached its iteration cap of %d", cfg.max_solver_iterations)

            if fnorm < best_fnorm:
                best_curve, best_ts, best_fnorm = session.curve.copy(), session.ts.copy(), fnorm
                best_status = status

            if fnorm <= error_floor:
                break
            # Quit, when improvement is less than min_improvement
            if math.isfinite(fnorm_prev) and (fnorm_prev - fnorm) / fnorm_prev < cfg.min_improvement:
                break
            if rounds >= cfg.max_rounds:
                logger.warning("Curve fit stopped after %d rounds without converging", rounds)
                break

            Parametrizer.reparametrize_points(
                session.curve,
                session.points,
                session.ts,
                cfg.strategy,
                cfg.newton_tolerance if cfg.strategy == ReparametrizationStrategy.NEWTON else cfg.golden_tolerance,
                cfg.max_newton_steps,
            )

        logger.debug("Total evaluations %d in %d rounds", iterations, rounds)

        curve = normalization.invert(best_curve) if mode == FitMode.AFFINE else best_curve
        curve[0] = xy[0]
        curve[-1] = xy[-1]
        return FitResult(
            curve=curve, error=best_fnorm, params=best_ts, rounds=rounds, iterations=iterations, status=best_status
        )

    @staticmethod
    def initial_guess(points: NDArray[np.float64]) -> NDArray[np.float64]:
        """
        Initial control points for the given samples.

        P0 and P3 are the first and last sample. P1 (P2) lies twice as far from P0 (P3)
        as the sample at about a third of the sequence from the start (end).
        """
        num = points.shape[0]
        idx = (num - 1) // 3

        curve = np.empty((CONTROL_POINT_COUNT, 2), dtype=np.float64)
        curve[0] = points[0]
        curve[1] = (points[idx] - points[0]) * 2.0 + points[0]
        curve[2] = (points[num - 1 - idx] - points[-1]) * 2.0 + points[-1]
        curve[3] = points[-1]
        return curve

    def _solve(self, session: _FitSession) -> OptimizeResult:
        """Optimize the inner control points of the session curve for fixed parameters."""
        cfg = self.config
        x0 = session.curve[1 : CONTROL_POINT_COUNT - 1].ravel()
        try:
            solution = least_squares(
                session.residuals,
                x0,
                method="lm",
                ftol=cfg.solver_tolerance,
                xtol=cfg.solver_tolerance,
                gtol=cfg.solver_tolerance,
                max_nfev=cfg.max_solver_iterations,
            )
        except ValueError as err:
            raise SolverDivergenceError(f"Solver rejected the problem: {err}") from err

        if solution.status == SolverStatus.FAILED.value:
            raise SolverDivergenceError(f"Solver failed: {solution.message}")
        if not (np.all(np.isfinite(solution.x)) and np.all(np.isfinite(solution.fun))):
            raise SolverDivergenceError("Solver produced non-finite residuals.")
        return solution


###############################################################################
# Functions
###############################################################################


def fit(points: PointsLike, mode: FitMode = FitMode.EUCLIDEAN) -> Tuple[NDArray[np.float64], float]:
    """Fit a cubic Bezier curve to the points, returning control points and fit error."""
    return CurveFitter(CurveFitterConfig(mode=mode)).fit(points)


def sample_curve(curve: PointsLike, count: int, ts: Optional[Sequence[float]] = None) -> NDArray[np.float64]:
    """Return count points along the Bezier curve, see BezierCurve.sample_curve()."""
    return BezierCurve.sample_curve(curve, count, ts)


def split_curve(curve: PointsLike, t: float) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Split the Bezier curve at t into left and right curves, see BezierCurve.split_casteljau()."""
    return BezierCurve.split_casteljau(curve, t)
