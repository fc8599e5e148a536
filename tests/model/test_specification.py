"""Tests for zinbwave.model.specification."""

from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sp

from zinbwave.core.exceptions import InvalidDesignError, InvalidInputError
from zinbwave.model.specification import (
    EPSILON_MIN_LOGIT,
    penalty_strengths,
    validate_counts,
    zinb_model,
)


class TestValidateCounts:
    def test_integer_counts(self, poisson_counts):
        Y = validate_counts(poisson_counts)
        assert Y.dtype == np.float64
        np.testing.assert_array_equal(Y, poisson_counts)

    def test_returns_copy(self, poisson_counts):
        counts = poisson_counts.astype(float)
        Y = validate_counts(counts)
        Y[0, 0] = -1.0
        assert counts[0, 0] >= 0

    def test_sparse(self, poisson_counts):
        Y = validate_counts(sp.csr_matrix(poisson_counts))
        np.testing.assert_array_equal(Y, poisson_counts)

    def test_integral_floats(self):
        Y = validate_counts(np.array([[1.0, 0.0], [3.0, 2.0]]))
        assert Y.shape == (2, 2)

    @pytest.mark.parametrize(
        "counts,match",
        [
            (np.array([[1, -2], [0, 3]]), "negative"),
            (np.array([[1.5, 2.0], [0.0, 3.0]]), "non-integer"),
            (np.array([[np.nan, 2.0], [0.0, 3.0]]), "NaN"),
            (np.array([[np.inf, 2.0], [0.0, 3.0]]), "NaN or infinite"),
            (np.array([1, 2, 3]), "2-D"),
            (np.zeros((0, 3)), "empty"),
            (np.array([["a", "b"], ["c", "d"]]), "numeric"),
        ],
    )
    def test_invalid(self, counts, match):
        with pytest.raises(InvalidInputError, match=match):
            validate_counts(counts)

    def test_error_names_parameter(self):
        with pytest.raises(InvalidInputError) as excinfo:
            validate_counts(np.array([[1, -2], [0, 3]]))
        assert excinfo.value.parameter == "counts"
        assert excinfo.value.value == -2.0


class TestZinbModel:
    def test_default_structure(self, zinb_counts):
        model = zinb_model(zinb_counts)
        assert model.X_mu.shape == (20, 1)
        assert model.V_mu.shape == (30, 1)
        assert model.beta_mu.shape == (1, 30)
        assert model.gamma_mu.shape == (1, 20)
        assert model.W.shape == (20, 2)
        assert model.O_mu.shape == (20, 30)
        np.testing.assert_array_equal(model.zeta, 0.0)

    def test_default_epsilon_split(self, zinb_counts):
        model = zinb_model(zinb_counts)
        assert model.epsilon == 30.0
        assert model.epsilon_W == pytest.approx(30.0 / 20)
        assert model.epsilon_alpha == pytest.approx(1.0)
        # intercept-only designs: every column penalized lightly
        np.testing.assert_array_equal(model.epsilon_beta_mu, [EPSILON_MIN_LOGIT])
        np.testing.assert_array_equal(model.epsilon_gamma_pi, [EPSILON_MIN_LOGIT])

    def test_covariate_penalty(self, zinb_counts):
        x = np.random.default_rng(0).normal(size=20)
        model = zinb_model(zinb_counts, sample_covariates=x, epsilon=60.0)
        np.testing.assert_allclose(model.epsilon_beta_mu, [EPSILON_MIN_LOGIT, 60.0 / 30])

    def test_explicit_strengths(self, zinb_counts):
        model = zinb_model(zinb_counts, epsilon_W=0.5, epsilon_alpha=0.25, epsilon_gamma=2.0)
        assert model.epsilon_W == 0.5
        assert model.epsilon_alpha == 0.25

    def test_formula_covariates(self, zinb_counts, cell_table):
        model = zinb_model(zinb_counts, cell_table, sample_formula="~ batch + depth")
        assert model.X_mu.shape == (20, 3)
        assert model.beta_pi.shape == (3, 30)

    def test_column_selection(self, zinb_counts, cell_table):
        model = zinb_model(zinb_counts, cell_table, sample_formula="~ batch + depth", which_x_pi=[0])
        assert model.X_mu.shape == (20, 3)
        assert model.X_pi.shape == (20, 1)
        assert model.beta_pi.shape == (1, 30)

    def test_gene_covariates(self, zinb_counts):
        v = np.random.default_rng(2).normal(size=(30, 2))
        model = zinb_model(zinb_counts, gene_covariates=v)
        assert model.V_mu.shape == (30, 3)
        assert model.gamma_mu.shape == (3, 20)

    def test_offsets_are_transposed(self, zinb_counts):
        offset = np.random.default_rng(3).normal(size=zinb_counts.shape)
        model = zinb_model(zinb_counts, offset_mu=offset)
        np.testing.assert_array_equal(model.O_mu, offset.T)
        np.testing.assert_array_equal(model.O_pi, 0.0)

    def test_offset_wrong_shape(self, zinb_counts):
        with pytest.raises(InvalidInputError, match="offset_mu"):
            zinb_model(zinb_counts, offset_mu=np.zeros((20, 30)))

    def test_k_zero(self, zinb_counts):
        model = zinb_model(zinb_counts, K=0)
        assert model.W.shape == (20, 0)
        assert model.alpha_mu.shape == (0, 30)

    @pytest.mark.parametrize("K", [20, 25, -1])
    def test_k_out_of_range(self, zinb_counts, K):
        with pytest.raises(InvalidDesignError):
            zinb_model(zinb_counts, K=K)

    def test_k_equal_to_n_cells(self, poisson_counts):
        with pytest.raises(InvalidDesignError, match="min"):
            zinb_model(poisson_counts, K=5)

    def test_numpy_integer_k(self, zinb_counts):
        model = zinb_model(zinb_counts, K=np.int64(2))
        assert model.W.shape == (20, 2)

    def test_k_not_integer(self, zinb_counts):
        with pytest.raises(InvalidDesignError, match="integer"):
            zinb_model(zinb_counts, K=2.5)

    def test_negative_epsilon(self, zinb_counts):
        with pytest.raises(InvalidDesignError, match="epsilon"):
            zinb_model(zinb_counts, epsilon=-1.0)
        with pytest.raises(InvalidDesignError, match="epsilon_W"):
            zinb_model(zinb_counts, epsilon_W=-1.0)

    def test_bad_theta_bounds(self, zinb_counts):
        with pytest.raises(InvalidDesignError, match="theta_bounds"):
            zinb_model(zinb_counts, theta_bounds=(1.0, 0.5))

    def test_duplicated_covariate(self, zinb_counts):
        x = np.random.default_rng(4).normal(size=(20, 1))
        with pytest.raises(InvalidDesignError, match="not full rank"):
            zinb_model(zinb_counts, sample_covariates=np.hstack([x, x]))

    def test_covariate_row_mismatch(self, zinb_counts):
        with pytest.raises(InvalidInputError):
            zinb_model(zinb_counts, sample_covariates=np.ones((30, 1)))


class TestPenaltyStrengths:
    def test_intercept_columns_light(self):
        design = np.column_stack([np.ones(4), [0.0, 1.0, 2.0, 3.0]])
        np.testing.assert_array_equal(penalty_strengths(design, 5.0), [EPSILON_MIN_LOGIT, 5.0])

    def test_custom_intercept_strength(self):
        design = np.ones((3, 1))
        np.testing.assert_array_equal(penalty_strengths(design, 5.0, 0.0), [0.0])
