"""Deviance residuals."""

from __future__ import annotations

from typing import Any

import numpy as np

from zinbwave.core.jit_ops import zinb_deviance_residuals
from zinbwave.core.structures import ZinbModel

from ._utils import _cells_by_genes, _clamped_predictors, _genes_by_cells


def deviance_residuals(model: ZinbModel, counts: Any) -> np.ndarray:
    """ZINB deviance residuals, genes x cells.

    ``sign(y - (1 - pi) mu) * sqrt(2 (l_sat - l))`` where the saturated
    log-likelihood is 0 for zeros and ``log NB(y; y, theta)`` for positive
    counts.
    """
    Y = np.ascontiguousarray(_cells_by_genes(model, counts))
    log_mu, logit_pi = _clamped_predictors(model)
    res = zinb_deviance_residuals(
        Y, log_mu, logit_pi, np.ascontiguousarray(model.theta), model.zero_inflation
    )
    return _genes_by_cells(res)
