"""Starting values for the coordinate ascent.

``"svd"`` initialization works on ``L = log1p(Y)``:

1. ``beta_mu`` and ``gamma_mu`` by alternating ridge least squares of ``L``
   minus the offset on ``X_mu`` and ``V_mu``.
2. ``W`` and ``alpha_mu`` from a rank-K truncated SVD of the residual.
3. The zero-inflation intercept of every gene from the fraction of zeros
   left unexplained by a Poisson model at the initial means.

``"random"`` draws ``W`` and the loadings from ``N(0, 0.1^2)`` instead of
step 2. Dispersions start at ``theta = 1`` in both cases.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from scipy.special import logit
from sklearn.utils.extmath import randomized_svd

from zinbwave.core.exceptions import ConfigurationError
from zinbwave.core.likelihood import clamp_eta
from zinbwave.fit.blocks import rescale_factors
from zinbwave.model.design import intercept_columns

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from zinbwave.core.structures import ZinbModel

__all__ = ["initialize_model", "INIT_METHODS"]

INIT_METHODS = ("svd", "random")

_RANDOM_SCALE = 0.1
_ZERO_FRACTION_CLIP = (1e-3, 0.99)


def _ridge_solve(design: NDArray[np.float64], target: NDArray[np.float64], penalty: NDArray[np.float64]):
    """Solve ``(D^T D + diag(penalty)) B = D^T target`` for B."""
    gram = design.T @ design + np.diag(penalty + 1e-10)
    return np.linalg.solve(gram, design.T @ target)


def initialize_model(
    model: ZinbModel,
    Y: NDArray[np.float64],
    init: str = "svd",
    random_state: int | None = 42,
    n_alternations: int = 5,
) -> ZinbModel:
    """Set data-driven starting values on ``model`` in place.

    Parameters
    ----------
    model : ZinbModel
        Freshly specified model.
    Y : NDArray[np.float64]
        Counts, cells x genes.
    init : {"svd", "random"}, default="svd"
        How ``W`` and ``alpha_mu`` are started.
    random_state : int or None, default=42
        Seed of the randomized SVD or the random draws.
    n_alternations : int, default=5
        Rounds of alternating least squares for ``beta_mu`` and ``gamma_mu``.

    Returns
    -------
    ZinbModel
        The same model.
    """
    if init not in INIT_METHODS:
        raise ConfigurationError(
            f"Unknown init method '{init}'.",
            parameter="init",
            value=init,
            hint=f"Use one of {INIT_METHODS}.",
        )
    rng = np.random.default_rng(random_state)
    L = np.log1p(Y) - model.O_mu

    model.beta_mu = np.zeros_like(model.beta_mu)
    model.gamma_mu = np.zeros_like(model.gamma_mu)
    has_x = model.X_mu.shape[1] > 0
    has_v = model.V_mu.shape[1] > 0
    for _ in range(n_alternations if has_x and has_v else 1):
        if has_x:
            model.beta_mu = _ridge_solve(
                model.X_mu, L - (model.V_mu @ model.gamma_mu).T, model.epsilon_beta_mu
            )
        if has_v:
            model.gamma_mu = _ridge_solve(
                model.V_mu, (L - model.X_mu @ model.beta_mu).T, model.epsilon_gamma_mu
            )

    K = model.n_factors
    if K > 0:
        if init == "svd":
            resid = L - model.X_mu @ model.beta_mu - (model.V_mu @ model.gamma_mu).T
            U, S, Vt = randomized_svd(resid, n_components=K, random_state=random_state)
            root = np.sqrt(S)
            model.W = U * root
            model.alpha_mu = root[:, np.newaxis] * Vt
            model.alpha_pi = np.zeros_like(model.alpha_mu)
        else:
            model.W = rng.normal(0.0, _RANDOM_SCALE, size=model.W.shape)
            model.alpha_mu = rng.normal(0.0, _RANDOM_SCALE, size=model.alpha_mu.shape)
            model.alpha_pi = (
                rng.normal(0.0, _RANDOM_SCALE, size=model.alpha_pi.shape)
                if model.zero_inflation
                else np.zeros_like(model.alpha_pi)
            )

    model.zeta = np.zeros(model.n_genes)
    model.beta_pi = np.zeros_like(model.beta_pi)
    model.gamma_pi = np.zeros_like(model.gamma_pi)
    if model.zero_inflation:
        _initialize_zero_inflation(model, Y)

    rescale_factors(model)
    return model


def _initialize_zero_inflation(model: ZinbModel, Y: NDArray[np.float64]) -> None:
    intercepts = np.flatnonzero(intercept_columns(model.X_pi))
    if intercepts.size == 0:
        return
    # NB zero mass (theta / (theta + mu))^theta at the starting dispersion
    mu = np.exp(clamp_eta(model.log_mu))
    theta = model.theta
    expected = np.mean(np.exp(theta * (np.log(theta) - np.log(theta + mu))), axis=0)
    observed = np.mean(Y == 0, axis=0)
    excess = np.clip(observed - expected, *_ZERO_FRACTION_CLIP)
    col = intercepts[0]
    model.beta_pi[col] = logit(excess) / model.X_pi[0, col]
