"""Test module for CurveFitter in bezfit.curve_fitter

The tests are run using pytest.
These tests ensure that sampled Bezier curves are fitted back to their
control points and that failures are reported as documented.
"""

import logging
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest
from scipy.optimize import OptimizeResult

import bezfit.curve_fitter as curve_fitter_module
from bezfit.bezier import BezierCurve
from bezfit.common import (
    FitMode,
    InsufficientDataError,
    Parametrization,
    ReparametrizationStrategy,
    SolverDivergenceError,
    SolverStatus,
)
from bezfit.curve_fitter import (
    CurveFitter,
    CurveFitterConfig,
    FitResult,
    fit,
    sample_curve,
    split_curve,
)

CURVE_LENGTH = 80
EPSILON = 1e-4
S_CURVE = np.array([[0.0, 0.0], [-0.25, 1.0], [1.25, -1.0], [1.0, 0.0]], dtype=np.float64)
ARCH_CURVE = np.array([[30.0, 10.0], [35.0, 25.0], [50.0, 25.0], [55.0, 10.0]], dtype=np.float64)


def rms_distance(points_a, points_b, count=CURVE_LENGTH):
    """Root of the summed squared point distances divided by count."""
    return float(np.sqrt(np.sum((np.asarray(points_a) - np.asarray(points_b)) ** 2) / count))


###############################################################################
# Round Trip Tests
###############################################################################


class TestCurveFitterRoundTrip:
    """Fit points sampled from a known curve and compare with the known curve."""

    def test_round_trip_s_curve(self):
        """Sampled S-curve is fitted back to its control points."""
        points = sample_curve(S_CURVE, CURVE_LENGTH)
        curve, err = fit(points, FitMode.EUCLIDEAN)

        assert curve.shape == (4, 2)
        assert err < EPSILON, f"Fit error {err} too large"
        assert rms_distance(curve, S_CURVE) < EPSILON, "Control points differ from the original"
        assert np.all(np.sum((curve - S_CURVE) ** 2, axis=1) < EPSILON)

    def test_resampling_consistency(self):
        """Resampling the fitted curve reproduces the original samples."""
        points = sample_curve(S_CURVE, CURVE_LENGTH)
        curve, _ = fit(points)
        points2 = sample_curve(curve, CURVE_LENGTH)
        assert rms_distance(points, points2) < EPSILON

    def test_end_points_pinned(self):
        """End control points are the first and last sample exactly."""
        points = sample_curve(ARCH_CURVE, 40)
        curve, _ = fit(points)
        assert np.array_equal(curve[0], points[0])
        assert np.array_equal(curve[-1], points[-1])

    def test_round_trip_arch_curve(self):
        """A curve away from the origin with larger coordinates is fitted back."""
        points = sample_curve(ARCH_CURVE, 50)
        curve, err = fit(points)
        assert err < EPSILON
        assert np.allclose(curve, ARCH_CURVE, atol=1e-2)

    def test_fit_result_details(self):
        """FitResult exposes parameters, rounds and solver status."""
        points = sample_curve(S_CURVE, 40)
        result = CurveFitter().fit_result(points)

        assert isinstance(result, FitResult)
        assert result.params.shape == (40,)
        assert result.params[0] == 0.0
        assert result.params[-1] == 1.0
        assert np.all(np.diff(result.params) >= 0.0)
        assert np.allclose(result.params, np.linspace(0.0, 1.0, 40), atol=1e-2)
        assert result.rounds >= 1
        assert result.iterations > 0
        assert result.status.converged

    def test_golden_section_strategy(self):
        """Golden-section reparametrization also recovers the curve."""
        points = sample_curve(S_CURVE, 40)
        config = CurveFitterConfig(strategy=ReparametrizationStrategy.GOLDEN_SECTION)
        curve, err = CurveFitter(config).fit(points)
        assert err < EPSILON
        assert np.allclose(curve, S_CURVE, atol=5e-2)

    def test_centripetal_parametrization(self):
        """Centripetal initial parametrization also recovers the curve."""
        points = sample_curve(S_CURVE, 40)
        config = CurveFitterConfig(parametrization=Parametrization.CENTRIPETAL)
        curve, err = CurveFitter(config).fit(points)
        assert err < EPSILON
        assert np.allclose(curve, S_CURVE, atol=5e-2)

    def test_two_points(self):
        """Two samples give a degenerate straight curve with zero error."""
        points = [(0.0, 0.0), (3.0, 4.0)]
        curve, err = fit(points)
        assert np.array_equal(curve[0], [0.0, 0.0])
        assert np.array_equal(curve[-1], [3.0, 4.0])
        assert err == 0.0

    def test_concurrent_sampling(self):
        """Sampling and evaluation on several threads give identical results."""
        ts = np.linspace(0.0, 1.0, 25) ** 2

        def evaluate(_):
            return sample_curve(S_CURVE, 25, ts), BezierCurve.point(ARCH_CURVE, 0.3)

        with ThreadPoolExecutor(max_workers=4) as executor:
            results = list(executor.map(evaluate, range(8)))
        for points, point in results[1:]:
            assert np.array_equal(points, results[0][0])
            assert np.array_equal(point, results[0][1])

    def test_concurrent_fits(self):
        """Fits running on several threads equal the serial fits bit for bit."""
        samples = [sample_curve(S_CURVE, 40), sample_curve(ARCH_CURVE, 40)]
        serial = [fit(points) for points in samples]

        with ThreadPoolExecutor(max_workers=4) as executor:
            results = list(executor.map(fit, [samples[i % 2] for i in range(8)]))

        for i, (curve, err) in enumerate(results):
            expected_curve, expected_err = serial[i % 2]
            assert np.array_equal(curve, expected_curve), f"Concurrent fit {i} differs from the serial fit"
            assert err == expected_err


###############################################################################
# Affine Mode Tests
###############################################################################


class TestCurveFitterAffine:
    """Test fitting in normalized coordinates."""

    def test_affine_round_trip(self):
        """AFFINE mode fits the S-curve back after denormalization."""
        points = sample_curve(S_CURVE, CURVE_LENGTH)
        curve, err = fit(points, FitMode.AFFINE)
        assert err < EPSILON
        assert np.allclose(curve, S_CURVE, atol=1e-3)

    def test_affine_invariance(self):
        """AFFINE fit of a scaled and shifted copy equals the transformed EUCLIDEAN fit."""
        scale = np.array([40.0, 0.5])
        offset = np.array([100.0, -3.0])
        points = sample_curve(S_CURVE, CURVE_LENGTH)

        curve_euclidean, _ = fit(points, FitMode.EUCLIDEAN)
        curve_affine, err = fit(points * scale + offset, FitMode.AFFINE)

        assert err < EPSILON
        expected = curve_euclidean * scale + offset
        assert np.allclose(curve_affine / scale, expected / scale, atol=1e-3)

    def test_mode_override(self):
        """The mode argument overrides the configured mode."""
        points = sample_curve(S_CURVE, 30)
        fitter = CurveFitter(CurveFitterConfig(mode=FitMode.EUCLIDEAN))
        curve, _ = fitter.fit(points, mode=FitMode.AFFINE)
        assert np.allclose(curve, S_CURVE, atol=1e-2)


###############################################################################
# Error Handling Tests
###############################################################################


class TestCurveFitterErrors:
    """Test rejection of unusable input and solver failures."""

    @pytest.mark.parametrize(
        "points",
        [
            [],
            [(1.0, 1.0)],
            [(1.0, 1.0), (1.0, 1.0), (1.0, 1.0)],
            [(0.0, 0.0), (float("nan"), 1.0), (2.0, 2.0)],
            [1.0, 2.0, 3.0],
        ],
    )
    def test_insufficient_data(self, points):
        """Unusable samples are rejected before solving."""
        with pytest.raises(InsufficientDataError):
            fit(points)

    def test_insufficient_data_is_value_error(self):
        """InsufficientDataError can be caught as ValueError."""
        with pytest.raises(ValueError):
            fit([(1.0, 1.0)], FitMode.AFFINE)

    def test_solver_failure(self, monkeypatch):
        """A failing solver surfaces as SolverDivergenceError."""

        def failing_solver(fun, x0, **kwargs):
            return OptimizeResult(x=x0, fun=fun(x0), status=-1, nfev=1, message="improper input")

        monkeypatch.setattr(curve_fitter_module, "least_squares", failing_solver)
        with pytest.raises(SolverDivergenceError):
            fit(sample_curve(S_CURVE, 20))

    def test_solver_rejection(self, monkeypatch):
        """A solver raising ValueError surfaces as SolverDivergenceError."""

        def rejecting_solver(fun, x0, **kwargs):
            raise ValueError("Residuals are not finite in the initial point.")

        monkeypatch.setattr(curve_fitter_module, "least_squares", rejecting_solver)
        with pytest.raises(SolverDivergenceError):
            fit(sample_curve(S_CURVE, 20))

    def test_non_finite_solution(self, monkeypatch):
        """Non-finite control points surface as SolverDivergenceError."""

        def diverging_solver(fun, x0, **kwargs):
            x = np.full_like(x0, np.inf)
            return OptimizeResult(x=x, fun=np.full(40, np.inf), status=1, nfev=3, message="diverged")

        monkeypatch.setattr(curve_fitter_module, "least_squares", diverging_solver)
        with pytest.raises(SolverDivergenceError):
            fit(sample_curve(S_CURVE, 20))

    def test_residuals_reject_non_finite_parameters(self):
        """The residual function refuses non-finite control points."""
        session = curve_fitter_module._FitSession(  # pylint: disable=protected-access
            points=sample_curve(S_CURVE, 5), curve=S_CURVE.copy(), ts=np.linspace(0.0, 1.0, 5)
        )
        with pytest.raises(SolverDivergenceError):
            session.residuals(np.array([0.0, np.nan, 1.0, 1.0]))

    def test_iteration_cap_is_soft(self, monkeypatch, caplog):
        """Reaching the solver iteration cap returns a curve and logs a warning."""

        def capped_solver(fun, x0, **kwargs):
            return OptimizeResult(x=x0, fun=fun(x0), status=0, nfev=kwargs["max_nfev"], message="max_nfev")

        monkeypatch.setattr(curve_fitter_module, "least_squares", capped_solver)
        with caplog.at_level(logging.WARNING, logger="bezfit.curve_fitter"):
            result = CurveFitter().fit_result(sample_curve(S_CURVE, 20))

        assert result.status == SolverStatus.MAX_ITERATIONS
        assert result.curve.shape == (4, 2)
        assert np.isfinite(result.error)
        assert any("iteration cap" in record.getMessage() for record in caplog.records)

    def test_solver_cap_and_evaluation_count(self, monkeypatch):
        """The iteration cap is passed as max_nfev and FitResult.iterations sums nfev of all solves."""
        real_least_squares = curve_fitter_module.least_squares
        caps = []
        evaluations = []

        def recording_solver(fun, x0, **kwargs):
            caps.append(kwargs["max_nfev"])
            solution = real_least_squares(fun, x0, **kwargs)
            evaluations.append(solution.nfev)
            return solution

        monkeypatch.setattr(curve_fitter_module, "least_squares", recording_solver)
        config = CurveFitterConfig(max_solver_iterations=123)
        result = CurveFitter(config).fit_result(sample_curve(S_CURVE, 30))

        assert caps == [123] * result.rounds
        assert result.iterations == sum(evaluations)

    def test_status_belongs_to_best_round(self, monkeypatch):
        """The reported status is the one of the solve that produced the returned curve."""
        real_least_squares = curve_fitter_module.least_squares
        calls = []

        def worsening_solver(fun, x0, **kwargs):
            calls.append(x0)
            if len(calls) == 1:
                return real_least_squares(fun, x0, **kwargs)
            x = x0 + 0.5
            return OptimizeResult(x=x, fun=fun(x), status=0, nfev=kwargs["max_nfev"], message="max_nfev")

        monkeypatch.setattr(curve_fitter_module, "least_squares", worsening_solver)
        result = CurveFitter().fit_result(sample_curve(S_CURVE, 20))

        assert result.rounds == 2
        assert result.status.converged, "Status of the worse second round was reported"
        inner = calls[1].reshape(2, 2)
        assert np.array_equal(result.curve[1:3], inner), "Curve of the worse second round was returned"


###############################################################################
# Loop Control and Logging Tests
###############################################################################


class TestCurveFitterLoop:
    """Test the alternating optimization loop."""

    def test_round_cap(self, caplog):
        """The outer loop stops at max_rounds with a warning."""
        points = sample_curve(S_CURVE, 30)
        fitter = CurveFitter(CurveFitterConfig(max_rounds=1))
        with caplog.at_level(logging.WARNING, logger="bezfit.curve_fitter"):
            result = fitter.fit_result(points)

        assert result.rounds == 1
        assert any("stopped after 1 rounds" in record.getMessage() for record in caplog.records)

    def test_exact_fit_stops_without_warning(self, caplog):
        """A fit reaching the error floor stops before the round cap and logs no warning."""
        points = sample_curve(S_CURVE, CURVE_LENGTH)
        with caplog.at_level(logging.WARNING, logger="bezfit.curve_fitter"):
            result = CurveFitter().fit_result(points)

        assert result.rounds < CurveFitterConfig().max_rounds
        assert result.error < EPSILON
        assert not any(record.levelno >= logging.WARNING for record in caplog.records)

    def test_zero_error_floor_runs_longer(self):
        """Without an error floor the rounds only stop on the improvement rule or the cap."""
        points = sample_curve(S_CURVE, CURVE_LENGTH)
        floored = CurveFitter().fit_result(points)
        unfloored = CurveFitter(CurveFitterConfig(min_error=0.0)).fit_result(points)
        assert unfloored.rounds >= floored.rounds
        assert unfloored.error <= floored.error

    def test_more_rounds_reduce_error(self):
        """Reparametrization rounds improve the fit over a single solve."""
        points = sample_curve(S_CURVE, 30)
        single = CurveFitter(CurveFitterConfig(max_rounds=1)).fit_result(points)
        full = CurveFitter().fit_result(points)
        assert full.error < single.error
        assert full.rounds > 1

    def test_debug_trace(self, caplog):
        """Every round logs the solver termination reason."""
        with caplog.at_level(logging.DEBUG, logger="bezfit.curve_fitter"):
            result = CurveFitter().fit_result(sample_curve(S_CURVE, 30))

        traces = [record for record in caplog.records if "termination reason" in record.getMessage()]
        assert len(traces) == result.rounds

    def test_initial_guess(self):
        """Inner control points are pushed out twice the distance to the third-way samples."""
        points = np.array([[0.0, 0.0], [1.0, 1.0], [2.0, 1.0], [3.0, 1.0], [4.0, 0.0], [5.0, 0.0], [6.0, 0.0]])
        guess = CurveFitter.initial_guess(points)
        assert np.array_equal(guess[0], points[0])
        assert np.array_equal(guess[1], [4.0, 2.0])
        assert np.array_equal(guess[2], [2.0, 0.0])
        assert np.array_equal(guess[3], points[-1])


###############################################################################
# Config and Public Function Tests
###############################################################################


class TestCurveFitterConfig:
    """Test configuration handling and module-level functions."""

    def test_defaults(self):
        """Defaults follow the documented settings."""
        config = CurveFitterConfig()
        assert config.mode == FitMode.EUCLIDEAN
        assert config.strategy == ReparametrizationStrategy.NEWTON
        assert config.max_solver_iterations == 500
        assert config.max_rounds == 50
        assert config.min_improvement == 0.01
        assert config.min_error == 1e-12

    def test_dict_round_trip(self):
        """to_dict() and from_dict() are inverse."""
        config = CurveFitterConfig(
            mode=FitMode.AFFINE,
            parametrization=Parametrization.CENTRIPETAL,
            strategy=ReparametrizationStrategy.GOLDEN_SECTION,
            max_rounds=7,
            min_error=0.0,
        )
        assert CurveFitterConfig.from_dict(config.to_dict()) == config
        assert CurveFitterConfig.from_dict({}) == CurveFitterConfig()

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_rounds": 0},
            {"max_solver_iterations": 0},
            {"min_improvement": 0.0},
            {"golden_tolerance": -1.0},
            {"min_error": -1.0},
        ],
    )
    def test_invalid_values(self, kwargs):
        """Non-positive caps and tolerances and a negative error floor are rejected."""
        with pytest.raises(ValueError):
            CurveFitterConfig(**kwargs)

    def test_split_curve(self):
        """split_curve() delegates to de Casteljau subdivision."""
        left, right = split_curve(S_CURVE, 0.3)
        assert np.array_equal(left[0], S_CURVE[0])
        assert np.array_equal(left[-1], right[0])
        assert np.array_equal(right[-1], S_CURVE[-1])

    def test_sample_curve_with_parameters(self):
        """sample_curve() honours the given parameters."""
        ts = np.array([0.0, 0.5, 1.0])
        points = sample_curve(S_CURVE, 3, ts)
        assert np.allclose(points[1], [0.5, 0.0])
