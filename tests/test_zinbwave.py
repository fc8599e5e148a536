"""End-to-end tests of zinbwave() and zinb_fit()."""

from __future__ import annotations

import warnings

import numpy as np
import polars as pl
import pytest

from zinbwave import (
    FitResult,
    InvalidDesignError,
    InvalidInputError,
    NonConvergenceWarning,
    NumericalInstabilityWarning,
    WorkerPool,
    ZinbConfig,
    zinb_aic,
    zinb_fit,
    zinbwave,
)


def _quiet(func, *args, **kwargs):
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        return func(*args, **kwargs)


# =============================================================================
# Scenarios
# =============================================================================


class TestScenarios:
    def test_poisson_counts_converge(self, poisson_counts):
        result = _quiet(zinbwave, poisson_counts, K=2, epsilon=100)
        assert isinstance(result, FitResult)
        assert result.converged
        assert result.W.shape == (5, 2)
        assert np.all(np.isfinite(result.W))

    def test_all_zero_gene(self, zinb_counts):
        counts = zinb_counts.copy()
        counts[3, :] = 0
        with pytest.warns(NumericalInstabilityWarning):
            result = zinbwave(counts, K=2, max_iterations=10)
        assert result.diagnostics.dispersion_flags[3]
        assert result.model.theta[3] == pytest.approx(result.model.theta_bounds[0])

    def test_extreme_offsets_are_clamped(self, zinb_counts):
        # entries the additive mean model cannot absorb
        offset = np.zeros(zinb_counts.shape)
        offset[0, 0] = offset[1, 1] = 80.0
        offset[2, 2] = -80.0
        with pytest.warns(NumericalInstabilityWarning, match="clamping interval"):
            result = zinb_fit(zinb_counts, K=0, offset_mu=offset)
        assert result.diagnostics.n_clamped > 0
        assert np.all(np.isfinite(result.model.mu))

    def test_duplicated_covariate_rejected_before_fitting(self, zinb_counts, monkeypatch):
        from zinbwave.fit.estimator import ZinbEstimator

        def fail(*args, **kwargs):
            raise AssertionError("optimization must not start")

        monkeypatch.setattr(ZinbEstimator, "fit", fail)
        x = np.random.default_rng(0).normal(size=(20, 1))
        with pytest.raises(InvalidDesignError):
            zinbwave(zinb_counts, sample_covariates=np.hstack([x, x]))

    def test_k_equal_to_n_cells(self, poisson_counts):
        with pytest.raises(InvalidDesignError):
            zinbwave(poisson_counts, K=5)

    def test_negative_counts(self):
        with pytest.raises(InvalidInputError):
            zinbwave(np.array([[1, -1, 2], [0, 3, 1], [2, 2, 2]]), K=1)


# =============================================================================
# Invariants
# =============================================================================


class TestInvariants:
    def test_trace_non_decreasing(self, fitted):
        _, result = fitted
        trace = np.asarray(result.diagnostics.loglik_trace)
        assert np.all(np.diff(trace) >= -1e-6 * np.abs(trace[:-1]))

    def test_theta_positive(self, fitted):
        _, result = fitted
        assert np.all(result.model.theta > 0)

    def test_weights(self, fitted):
        counts, result = fitted
        assert result.weights.shape == counts.shape
        assert np.all((result.weights >= 0) & (result.weights <= 1))
        assert np.all(result.weights[counts > 0] == 1.0)

    def test_pi_and_mu_ranges(self, fitted):
        _, result = fitted
        assert np.all((result.model.pi > 0) & (result.model.pi < 1))
        assert np.all(np.isfinite(result.model.mu)) and np.all(result.model.mu > 0)

    def test_deterministic(self, zinb_counts):
        a = _quiet(zinbwave, zinb_counts, K=2, max_iterations=5, random_state=4)
        b = _quiet(zinbwave, zinb_counts, K=2, max_iterations=5, random_state=4)
        np.testing.assert_array_equal(a.W, b.W)
        np.testing.assert_array_equal(a.normalized_values, b.normalized_values)
        np.testing.assert_array_equal(a.weights, b.weights)

    def test_outputs_read_only(self, fitted):
        _, result = fitted
        for values in (
            result.normalized_values,
            result.residuals,
            result.weights,
            result.imputed_values,
            result.model.W,
            result.model.alpha_mu,
            result.diagnostics.dispersion_flags,
        ):
            assert values.flags.writeable is False
        with pytest.raises(ValueError):
            result.weights[0, 0] = 0.5


# =============================================================================
# Options
# =============================================================================


class TestOptions:
    def test_outputs_selected_by_config(self, zinb_counts):
        result = _quiet(
            zinbwave,
            zinb_counts,
            config={"K": 1, "maxIterations": 3, "computeNormalizedValues": False, "residuals": False},
        )
        assert result.normalized_values is None
        assert result.residuals is None
        assert result.weights is not None
        assert result.imputed_values is None
        assert result.n_iterations <= 3

    def test_numpy_integer_options(self, zinb_counts):
        result = _quiet(zinb_fit, zinb_counts, K=np.int64(2), max_iterations=np.int64(2))
        assert result.W.shape == (20, 2)

    def test_config_object_and_override(self, zinb_counts):
        cfg = ZinbConfig(K=1, max_iterations=2, tolerance=1e-12)
        result = _quiet(zinbwave, zinb_counts, config=cfg, K=2)
        assert result.W.shape == (20, 2)
        assert result.n_iterations == 2

    def test_zinb_fit_has_no_outputs(self, zinb_counts):
        result = _quiet(zinb_fit, zinb_counts, K=1, max_iterations=3)
        assert result.normalized_values is None
        assert result.weights is None
        assert [h.action for h in result.diagnostics.history] == ["initialize", "fit"]

    def test_history_includes_outputs(self, fitted):
        _, result = fitted
        assert [h.action for h in result.diagnostics.history] == ["initialize", "fit", "outputs"]

    def test_covariate_table(self, zinb_counts, cell_table):
        result = _quiet(
            zinbwave, zinb_counts, cell_table, X="~ batch + depth", K=1, max_iterations=5
        )
        assert result.model.beta_mu.shape == (3, 30)

    def test_offsets(self, zinb_counts):
        offset = np.full(zinb_counts.shape, 0.5)
        result = _quiet(zinb_fit, zinb_counts, K=1, max_iterations=3, offset_mu=offset)
        np.testing.assert_array_equal(result.model.O_mu, 0.5)

    def test_without_zero_inflation(self, zinb_counts):
        result = _quiet(zinbwave, zinb_counts, K=1, max_iterations=5, zero_inflation=False)
        np.testing.assert_array_equal(result.weights, 1.0)

    def test_common_dispersion(self, zinb_counts):
        result = _quiet(zinbwave, zinb_counts, K=1, max_iterations=5, common_dispersion=True)
        assert np.all(result.model.zeta == result.model.zeta[0])

    def test_no_latent_factors(self, zinb_counts):
        result = _quiet(zinbwave, zinb_counts, K=0, max_iterations=5)
        assert result.W.shape == (20, 0)
        assert result.to_frame().columns == ["_index"]

    def test_parallel_matches_serial(self, zinb_counts):
        serial = _quiet(zinbwave, zinb_counts, K=2, max_iterations=4, n_jobs=1)
        parallel = _quiet(zinbwave, zinb_counts, K=2, max_iterations=4, n_jobs=2)
        np.testing.assert_allclose(
            serial.model.W @ serial.model.alpha_mu,
            parallel.model.W @ parallel.model.alpha_mu,
            rtol=1e-5,
            atol=1e-7,
        )

    def test_caller_owned_pool_stays_open(self, zinb_counts):
        with WorkerPool(2) as pool:
            _quiet(zinb_fit, zinb_counts, K=1, max_iterations=2, pool=pool)
            assert pool.active
            _quiet(zinb_fit, zinb_counts, K=1, max_iterations=2, pool=pool)
        assert not pool.active

    def test_caller_pool_without_context_manager(self, zinb_counts):
        pool = WorkerPool(2)
        try:
            _quiet(zinb_fit, zinb_counts, K=1, max_iterations=2, pool=pool)
            assert pool._executor is not None
        finally:
            pool.shutdown()

    def test_non_convergence_warning(self, zinb_counts):
        with pytest.warns(NonConvergenceWarning):
            result = zinbwave(zinb_counts, K=1, max_iterations=1, tolerance=1e-12)
        assert not result.converged
        assert result.diagnostics.stop_reason == "max_iterations"

    def test_timeout(self, zinb_counts):
        with pytest.warns(NonConvergenceWarning):
            result = zinbwave(zinb_counts, K=1, timeout=1e-9)
        assert result.diagnostics.stop_reason == "timeout"
        assert result.weights is not None

    def test_information_criteria(self, fitted):
        counts, result = fitted
        assert result.aic == pytest.approx(zinb_aic(result.model, counts))
        assert result.bic > result.aic

    def test_to_frame(self, fitted):
        _, result = fitted
        df = result.to_frame()
        assert isinstance(df, pl.DataFrame)
        assert df.columns == ["_index", "W1", "W2"]
        assert df.height == 20
