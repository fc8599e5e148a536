"""Shared helpers of the output functions."""

from __future__ import annotations

from typing import Any

import numpy as np

from zinbwave.core.exceptions import InvalidInputError
from zinbwave.core.likelihood import clamp_eta
from zinbwave.core.structures import ZinbModel
from zinbwave.model.specification import validate_counts


def _cells_by_genes(model: ZinbModel, counts: Any) -> np.ndarray:
    """Validate genes x cells counts against ``model`` and transpose them.

    Parameters
    ----------
    model : ZinbModel
        Fitted model.
    counts : array-like or sparse matrix
        Counts the model was fitted to, genes x cells.

    Returns
    -------
    np.ndarray
        Counts as a float array, cells x genes.
    """
    Y = validate_counts(counts)
    expected = (model.n_genes, model.n_cells)
    if Y.shape != expected:
        raise InvalidInputError(
            f"Counts have shape {Y.shape}, the model expects {expected} (genes x cells).",
            parameter="counts",
            value=Y.shape,
        )
    return Y.T


def _clamped_predictors(model: ZinbModel) -> tuple[np.ndarray, np.ndarray]:
    """Clamped ``log mu`` and ``logit pi``, C-contiguous for the numba kernels."""
    log_mu = np.ascontiguousarray(clamp_eta(model.log_mu))
    if model.zero_inflation:
        logit_pi = np.ascontiguousarray(clamp_eta(model.logit_pi))
    else:
        logit_pi = np.zeros_like(log_mu)
    return log_mu, logit_pi


def _genes_by_cells(values: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(values.T)
