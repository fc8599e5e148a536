"""Normalized expression values."""

from __future__ import annotations

from typing import Any

import numpy as np

from zinbwave.core.structures import ZinbModel

from ._utils import _cells_by_genes, _genes_by_cells


def normalized_values(model: ZinbModel, counts: Any, clip: float | None = None) -> np.ndarray:
    """Pearson residuals of the negative binomial component.

    ``(y - mu) / sqrt(mu + mu^2 / theta)``, i.e. the counts with the
    technical and biological effects captured by the model removed and scaled
    to unit variance.

    Parameters
    ----------
    model : ZinbModel
        Fitted model.
    counts : array-like
        Counts the model was fitted to, genes x cells.
    clip : float, optional
        Clip the values to ``[-clip, clip]``.

    Returns
    -------
    np.ndarray
        Normalized values, genes x cells.
    """
    Y = _cells_by_genes(model, counts)
    mu = model.mu
    theta = model.theta[np.newaxis, :]
    values = (Y - mu) / np.sqrt(mu + mu**2 / theta)
    if clip is not None:
        if clip <= 0:
            raise ValueError(f"clip must be positive, got {clip}")
        values = np.clip(values, -clip, clip)
    return _genes_by_cells(values)
