"""Observational weights and imputed counts."""

from __future__ import annotations

from typing import Any

import numpy as np

from zinbwave.core.jit_ops import zinb_zero_posterior
from zinbwave.core.structures import ZinbModel

from ._utils import _cells_by_genes, _clamped_predictors, _genes_by_cells


def _weights(model: ZinbModel, Y: np.ndarray) -> np.ndarray:
    log_mu, logit_pi = _clamped_predictors(model)
    return zinb_zero_posterior(
        np.ascontiguousarray(Y),
        log_mu,
        logit_pi,
        np.ascontiguousarray(model.theta),
        model.zero_inflation,
    )


def observational_weights(model: ZinbModel, counts: Any) -> np.ndarray:
    """Posterior probability that each count comes from the NB component.

    Exactly 1 for positive counts; ``(1 - pi) f0 / (pi + (1 - pi) f0)`` for
    zeros, with ``f0`` the NB probability of a zero. Weights lie in [0, 1] and
    down-weight likely dropouts in weighted downstream models.

    Parameters
    ----------
    model : ZinbModel
        Fitted model.
    counts : array-like
        Counts the model was fitted to, genes x cells.

    Returns
    -------
    np.ndarray
        Weights, genes x cells.
    """
    Y = _cells_by_genes(model, counts)
    return _genes_by_cells(_weights(model, Y))


def imputed_values(model: ZinbModel, counts: Any) -> np.ndarray:
    """Counts with zeros replaced by their posterior expected value.

    A zero is a dropout with probability ``1 - w`` (``w`` its weight), in which
    case its expected count is ``mu``. Positive counts are returned unchanged.
    """
    Y = _cells_by_genes(model, counts)
    w = _weights(model, Y)
    imputed = np.where(Y > 0, Y, (1.0 - w) * model.mu)
    return _genes_by_cells(imputed)
