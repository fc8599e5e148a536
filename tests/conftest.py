"""Shared pytest fixtures for zinbwave tests.

Fixtures are organized by what they provide: raw count matrices, covariate
tables, specified (unfitted) models and fitted results. Fits are module
scoped because they dominate the test run time.
"""

import warnings
from collections.abc import Callable
from typing import Any

import numpy as np
import polars as pl
import pytest

from zinbwave import zinbwave
from zinbwave.core.structures import FitResult, ZinbModel
from zinbwave.model import zinb_model
from zinbwave.utils import ZinbDataGenerator


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(42)


@pytest.fixture
def poisson_counts() -> np.ndarray:
    """20 genes x 5 cells of Poisson(5) counts."""
    return np.random.default_rng(0).poisson(5.0, size=(20, 5))


@pytest.fixture
def zinb_counts() -> np.ndarray:
    """30 genes x 20 cells of zero-inflated counts with rank-2 structure."""
    return ZinbDataGenerator(n_genes=30, n_cells=20, K=2, random_seed=7).generate().counts


@pytest.fixture
def cell_table() -> pl.DataFrame:
    """Cell covariates for 20 cells: two batches and a numeric covariate."""
    rng = np.random.default_rng(1)
    return pl.DataFrame(
        {
            "batch": ["b1", "b2"] * 10,
            "depth": rng.normal(0.0, 1.0, size=20),
        }
    )


@pytest.fixture
def make_model(zinb_counts: np.ndarray) -> Callable[..., ZinbModel]:
    """Factory for specified models on ``zinb_counts``."""

    def _create(counts: Any = None, **kwargs: Any) -> ZinbModel:
        return zinb_model(zinb_counts if counts is None else counts, **kwargs)

    return _create


@pytest.fixture(scope="module")
def fitted() -> tuple[np.ndarray, FitResult]:
    """Counts and a full ``zinbwave`` result with every output computed."""
    counts = ZinbDataGenerator(n_genes=30, n_cells=20, K=2, random_seed=11).generate().counts
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        result = zinbwave(
            counts,
            K=2,
            max_iterations=30,
            compute_imputed=True,
        )
    return counts, result
