"""zinbwave: Zero-Inflated Negative Binomial-based Wanted Variation Extraction.

Fits the ZINB-WaVE factor model to a genes x cells count matrix and returns a
low-dimensional representation of the cells together with normalized values,
deviance residuals and observational weights for downstream analysis.

Key Features:
    - Cell-level (X) and gene-level (V) covariates, as matrices or as
      polars/pandas tables with formulaic formulas
    - Penalized block coordinate ascent with per-unit safeguarded Newton steps
    - Thread-based worker pool for per-gene and per-cell updates
    - Normalized values, deviance residuals, observational weights, imputation
    - YAML configuration accepting snake_case or camelCase option names

Quick Start:
    >>> import numpy as np
    >>> from zinbwave import zinbwave
    >>> counts = np.random.default_rng(0).poisson(5.0, size=(100, 40))
    >>> result = zinbwave(counts, K=2)  # doctest: +SKIP
    >>> result.W.shape  # doctest: +SKIP
    (40, 2)
"""

from __future__ import annotations

__version__ = "0.1.0"

from zinbwave.api import zinb_fit, zinbwave
from zinbwave.config import ZinbConfig, load_config, save_config
from zinbwave.core import (
    ConfigurationError,
    FitDiagnostics,
    FitResult,
    InvalidDesignError,
    InvalidInputError,
    NonConvergenceWarning,
    NumericalInstabilityWarning,
    ProvenanceLog,
    ZinbModel,
    ZinbWaveError,
    ZinbWaveWarning,
)
from zinbwave.fit import ZinbEstimator
from zinbwave.model import zinb_model
from zinbwave.outputs import (
    deviance_residuals,
    imputed_values,
    normalized_values,
    observational_weights,
    zinb_aic,
    zinb_bic,
    zinb_loglik_matrix,
)
from zinbwave.utils import WorkerPool, ZinbDataGenerator, zinb_simulate

__all__ = [
    "__version__",
    # API
    "zinbwave",
    "zinb_fit",
    "zinb_model",
    "ZinbEstimator",
    # Configuration
    "ZinbConfig",
    "load_config",
    "save_config",
    # Structures
    "ZinbModel",
    "FitResult",
    "FitDiagnostics",
    "ProvenanceLog",
    # Outputs
    "normalized_values",
    "deviance_residuals",
    "observational_weights",
    "imputed_values",
    "zinb_loglik_matrix",
    "zinb_aic",
    "zinb_bic",
    "zinb_simulate",
    # Utilities
    "WorkerPool",
    "ZinbDataGenerator",
    # Exceptions
    "ZinbWaveError",
    "InvalidInputError",
    "InvalidDesignError",
    "ConfigurationError",
    "ZinbWaveWarning",
    "NumericalInstabilityWarning",
    "NonConvergenceWarning",
]
