"""Tests for zinbwave.model.design."""

from __future__ import annotations

import numpy as np
import pandas as pd
import polars as pl
import pytest
import scipy.sparse as sp

from zinbwave.core.exceptions import InvalidDesignError, InvalidInputError
from zinbwave.model.design import (
    DesignMatrix,
    build_design,
    check_full_rank,
    intercept_columns,
    select_columns,
)


class TestBuildDesignMatrices:
    def test_none_is_intercept(self):
        design = build_design(None, 6)
        assert design.shape == (6, 1)
        np.testing.assert_array_equal(design.values, 1.0)
        assert design.names == ["(Intercept)"]

    def test_intercept_prepended(self):
        x = np.arange(6, dtype=float)
        design = build_design(x, 6)
        assert design.shape == (6, 2)
        np.testing.assert_array_equal(design.values[:, 0], 1.0)
        np.testing.assert_array_equal(design.values[:, 1], x)

    def test_existing_constant_column_kept(self):
        x = np.column_stack([np.ones(6), np.arange(6)])
        design = build_design(x, 6)
        assert design.shape == (6, 2)

    def test_no_intercept(self):
        x = np.arange(6, dtype=float)
        design = build_design(x, 6, intercept=False)
        assert design.shape == (6, 1)
        assert not np.any(intercept_columns(design.values))

    def test_sparse_input(self):
        x = sp.csr_matrix(np.arange(6, dtype=float)[:, np.newaxis])
        assert build_design(x, 6).shape == (6, 2)

    def test_row_mismatch(self):
        with pytest.raises(InvalidInputError, match="expected 5"):
            build_design(np.arange(6, dtype=float), 5)

    def test_missing_values(self):
        x = np.array([0.0, 1.0, np.nan, 3.0])
        with pytest.raises(InvalidInputError, match="missing"):
            build_design(x, 4)

    def test_non_numeric(self):
        with pytest.raises(InvalidInputError, match="numeric"):
            build_design(np.array(["a", "b", "c"]), 3)

    def test_duplicated_column(self):
        x = np.random.default_rng(0).normal(size=(8, 1))
        with pytest.raises(InvalidDesignError, match="not full rank"):
            build_design(np.hstack([x, x]), 8)

    def test_formula_needs_table(self):
        with pytest.raises(InvalidInputError, match="covariate table"):
            build_design(np.arange(4, dtype=float), 4, formula="~ x")
        with pytest.raises(InvalidInputError, match="covariate table"):
            build_design(None, 4, formula="~ batch")

    def test_intercept_formula_without_table(self):
        assert build_design(None, 4, formula="~ 1").shape == (4, 1)


class TestBuildDesignTables:
    @pytest.fixture
    def table(self):
        return pl.DataFrame(
            {
                "batch": ["a", "b", "a", "b", "a", "b"],
                "depth": [0.1, -0.3, 0.5, 1.2, -0.8, 0.0],
            }
        )

    def test_default_formula_uses_all_columns(self, table):
        design = build_design(table, 6)
        assert design.shape == (6, 3)
        assert intercept_columns(design.values).sum() == 1

    def test_explicit_formula(self, table):
        design = build_design(table, 6, formula="~ batch")
        assert design.shape == (6, 2)
        np.testing.assert_array_equal(design.values[:, 1], [0, 1, 0, 1, 0, 1])

    def test_pandas_table(self, table):
        frame = pd.DataFrame(table.to_dict(as_series=False))
        design = build_design(frame, 6, formula="~ depth")
        np.testing.assert_allclose(design.values[:, 1], table["depth"].to_numpy())

    def test_no_intercept_table(self, table):
        design = build_design(table.select("depth"), 6, intercept=False)
        assert design.shape == (6, 1)

    def test_table_row_mismatch(self, table):
        with pytest.raises(InvalidInputError, match="6 rows, expected 4"):
            build_design(table, 4)

    def test_missing_value_in_table(self):
        table = pl.DataFrame({"depth": [0.1, None, 0.3]})
        with pytest.raises(InvalidInputError):
            build_design(table, 3)

    def test_bad_formula(self, table):
        with pytest.raises(InvalidInputError, match="Could not build"):
            build_design(table, 6, formula="~ not_a_column")

    def test_confounded_columns(self):
        table = pl.DataFrame({"a": [1.0, 2.0, 3.0, 4.0], "b": [2.0, 4.0, 6.0, 8.0]})
        with pytest.raises(InvalidDesignError):
            build_design(table, 4)


class TestHelpers:
    def test_check_full_rank_no_columns(self):
        with pytest.raises(InvalidDesignError, match="no column"):
            check_full_rank(np.zeros((4, 0)))

    def test_intercept_columns(self):
        values = np.column_stack([np.ones(3), np.zeros(3), [1.0, 2.0, 3.0], np.full(3, 2.0)])
        np.testing.assert_array_equal(intercept_columns(values), [True, False, False, True])

    def test_select_by_name_and_index(self):
        design = DesignMatrix(np.arange(12, dtype=float).reshape(4, 3), ["a", "b", "c"])
        assert select_columns(design, ["c", "a"], "x_mu").names == ["c", "a"]
        assert select_columns(design, [1], "x_mu").names == ["b"]
        assert select_columns(design, None, "x_mu") is design

    def test_select_unknown(self):
        design = DesignMatrix(np.ones((4, 1)), ["a"])
        with pytest.raises(InvalidDesignError, match="not found"):
            select_columns(design, ["z"], "x_pi")
        with pytest.raises(InvalidDesignError, match="out of range"):
            select_columns(design, [3], "x_pi")

    def test_repr(self):
        assert "shape=(4, 1)" in repr(DesignMatrix(np.ones((4, 1)), ["a"]))
