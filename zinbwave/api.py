"""Top-level entry points.

:func:`zinb_fit` builds and fits a model; :func:`zinbwave` additionally
computes the derived matrices selected in the configuration. Options are read
from a :class:`ZinbConfig` and can be overridden by keyword; model-structure
options that have no configuration entry (offsets, column selectors,
intercepts and explicit penalty strengths) are passed straight to
:func:`zinbwave.model.zinb_model`.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from zinbwave.config import ZinbConfig
from zinbwave.core.structures import FitResult
from zinbwave.fit.estimator import ZinbEstimator
from zinbwave.model.specification import validate_counts, zinb_model
from zinbwave.outputs import (
    deviance_residuals,
    imputed_values,
    normalized_values,
    observational_weights,
)
from zinbwave.utils.parallel import WorkerPool

__all__ = ["zinb_fit", "zinbwave"]

_MODEL_OPTIONS = frozenset(
    {
        "x_intercept",
        "v_intercept",
        "which_x_mu",
        "which_x_pi",
        "which_v_mu",
        "which_v_pi",
        "offset_mu",
        "offset_pi",
        "epsilon_W",
        "epsilon_alpha",
        "epsilon_beta",
        "epsilon_gamma",
        "epsilon_min_logit",
    }
)


def _resolve(config: ZinbConfig | dict[str, Any] | None, options: dict[str, Any]):
    model_options = {k: options.pop(k) for k in list(options) if k in _MODEL_OPTIONS}
    if config is None:
        config = ZinbConfig()
    elif isinstance(config, dict):
        config = ZinbConfig.from_dict(config)
    return config.replace(**options), model_options


def _readonly(values: np.ndarray) -> np.ndarray:
    values.setflags(write=False)
    return values


def zinb_fit(
    counts: Any,
    sample_covariates: Any = None,
    gene_covariates: Any = None,
    *,
    config: ZinbConfig | dict[str, Any] | None = None,
    pool: WorkerPool | None = None,
    **options: Any,
) -> FitResult:
    """Fit a ZINB-WaVE model without computing derived matrices.

    Parameters
    ----------
    counts : array-like or sparse matrix
        Non-negative integer counts, genes x cells.
    sample_covariates : array-like, DataFrame or None
        Cell-level covariates, one row per cell.
    gene_covariates : array-like, DataFrame or None
        Gene-level covariates, one row per gene.
    config : ZinbConfig or dict, optional
        Fit options. Defaults to ``ZinbConfig()``.
    pool : WorkerPool, optional
        Open worker pool to run on. By default a pool with ``config.n_jobs``
        workers is created for the fit and shut down afterwards.
    **options
        Overrides of configuration options, or model-structure options of
        :func:`zinbwave.model.zinb_model`.

    Returns
    -------
    FitResult
        Fitted (read-only) model and diagnostics.

    Raises
    ------
    InvalidInputError, InvalidDesignError, ConfigurationError
        Before any optimization work.
    """
    cfg, model_options = _resolve(config, options)
    Y = validate_counts(counts)
    model = zinb_model(
        Y,
        sample_covariates,
        gene_covariates,
        K=cfg.K,
        epsilon=cfg.epsilon,
        sample_formula=cfg.sample_formula,
        gene_formula=cfg.gene_formula,
        theta_bounds=cfg.theta_bounds,
        zero_inflation=cfg.zero_inflation,
        common_dispersion=cfg.common_dispersion,
        **model_options,
    )
    estimator = ZinbEstimator.from_config(cfg)

    if pool is None:
        with WorkerPool(cfg.n_jobs) as own_pool:
            diagnostics = estimator.fit(model, Y.T, own_pool)
    else:
        diagnostics = estimator.fit(model, Y.T, pool)

    model.freeze()
    diagnostics.dispersion_flags.setflags(write=False)
    return FitResult(model=model, diagnostics=diagnostics)


def zinbwave(
    counts: Any,
    sample_covariates: Any = None,
    gene_covariates: Any = None,
    *,
    config: ZinbConfig | dict[str, Any] | None = None,
    pool: WorkerPool | None = None,
    **options: Any,
) -> FitResult:
    """Fit ZINB-WaVE and compute the requested derived matrices.

    Takes the same arguments as :func:`zinb_fit`. Normalized values,
    deviance residuals, observational weights and imputed counts are computed
    according to ``compute_normalized_values``, ``compute_residuals``,
    ``compute_weights`` and ``compute_imputed``.

    Returns
    -------
    FitResult
        Latent factors (``result.W``, cells x K), the fitted model, the
        diagnostics and the derived matrices (genes x cells, read-only).

    Examples
    --------
    >>> import numpy as np
    >>> rng = np.random.default_rng(0)
    >>> counts = rng.poisson(5.0, size=(20, 10))
    >>> result = zinbwave(counts, K=2, epsilon=100)  # doctest: +SKIP
    >>> result.W.shape  # doctest: +SKIP
    (10, 2)
    """
    cfg, model_options = _resolve(config, options)
    result = zinb_fit(
        counts, sample_covariates, gene_covariates, config=cfg, pool=pool, **model_options
    )
    model = result.model

    if cfg.compute_normalized_values:
        result.normalized_values = _readonly(
            normalized_values(model, counts, clip=cfg.normalized_clip)
        )
    if cfg.compute_residuals:
        result.residuals = _readonly(deviance_residuals(model, counts))
    if cfg.compute_weights:
        result.weights = _readonly(observational_weights(model, counts))
    if cfg.compute_imputed:
        result.imputed_values = _readonly(imputed_values(model, counts))

    result.diagnostics.log_operation(
        "outputs",
        {
            "normalized_values": cfg.compute_normalized_values,
            "residuals": cfg.compute_residuals,
            "weights": cfg.compute_weights,
            "imputed_values": cfg.compute_imputed,
        },
    )
    return result
