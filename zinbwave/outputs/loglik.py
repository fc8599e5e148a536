"""Log-likelihood and information criteria of a fitted model."""

from __future__ import annotations

from typing import Any

import numpy as np

from zinbwave.core.likelihood import zinb_loglik
from zinbwave.core.structures import ZinbModel

from ._utils import _cells_by_genes, _genes_by_cells


def zinb_loglik_matrix(model: ZinbModel, counts: Any) -> np.ndarray:
    """Log-likelihood of every entry, genes x cells."""
    Y = _cells_by_genes(model, counts)
    ll = zinb_loglik(Y, model.log_mu, model.eta_pi_or_none(), model.theta[np.newaxis, :])
    return _genes_by_cells(ll)


def zinb_aic(model: ZinbModel, counts: Any) -> float:
    """Akaike information criterion ``2 k - 2 log L``."""
    ll = float(np.sum(zinb_loglik_matrix(model, counts)))
    return 2.0 * model.n_params - 2.0 * ll


def zinb_bic(model: ZinbModel, counts: Any) -> float:
    """Bayesian information criterion ``log(n J) k - 2 log L``."""
    ll = float(np.sum(zinb_loglik_matrix(model, counts)))
    n_obs = model.n_cells * model.n_genes
    return float(np.log(n_obs)) * model.n_params - 2.0 * ll
