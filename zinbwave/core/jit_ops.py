"""
Numba JIT-compiled kernels for zinbwave.

Entry-wise loops over fitted matrices whose per-entry branch (zero versus
positive count) makes them awkward to vectorize without computing both sides.
All kernels work in the cells x genes orientation of the fitted model and
expect linear predictors that have already been clamped.
"""

from __future__ import annotations

import math

import numpy as np
from numba import jit

__all__ = [
    "zinb_deviance_residuals",
    "zinb_zero_posterior",
]


@jit(nopython=True, cache=True)
def _log_expit(x: float) -> float:
    """Numerically stable ``log(1 / (1 + exp(-x)))``."""
    if x >= 0.0:
        return -math.log1p(math.exp(-x))
    return x - math.log1p(math.exp(x))


@jit(nopython=True, cache=True)
def _logaddexp(a: float, b: float) -> float:
    if a > b:
        return a + math.log1p(math.exp(b - a))
    return b + math.log1p(math.exp(a - b))


@jit(nopython=True, cache=True)
def _nb_logpmf(y: float, log_mu: float, theta: float) -> float:
    log_theta = math.log(theta)
    log_theta_mu = _logaddexp(log_theta, log_mu)
    return (
        math.lgamma(y + theta)
        - math.lgamma(theta)
        - math.lgamma(y + 1.0)
        + theta * (log_theta - log_theta_mu)
        + y * (log_mu - log_theta_mu)
    )


@jit(nopython=True, cache=True)
def zinb_deviance_residuals(
    Y: np.ndarray,
    log_mu: np.ndarray,
    logit_pi: np.ndarray,
    theta: np.ndarray,
    zero_inflation: bool,
) -> np.ndarray:
    """Signed square-root ZINB deviance of every entry.

    Parameters
    ----------
    Y : np.ndarray
        Counts, shape (n_cells, n_genes).
    log_mu : np.ndarray
        Clamped log means, same shape.
    logit_pi : np.ndarray
        Clamped zero-inflation logits, same shape. Ignored when
        ``zero_inflation`` is False.
    theta : np.ndarray
        Per-gene dispersion, shape (n_genes,).
    zero_inflation : bool
        Whether the model has a zero-inflation component.

    Returns
    -------
    np.ndarray
        ``sign(y - (1 - pi) mu) * sqrt(2 (l_sat - l))``.

    Notes
    -----
    The saturated model puts ``pi = 0, mu = y`` on positive counts and
    ``pi = 1`` on zeros, so its log-likelihood is ``log NB(y; y, theta)`` and
    ``0`` respectively.
    """
    n, J = Y.shape
    out = np.empty((n, J), dtype=np.float64)

    for i in range(n):
        for j in range(J):
            y = Y[i, j]
            th = theta[j]
            lm = log_mu[i, j]

            if zero_inflation:
                log_pi = _log_expit(logit_pi[i, j])
                log_one_minus_pi = _log_expit(-logit_pi[i, j])
            else:
                log_pi = -np.inf
                log_one_minus_pi = 0.0

            if y > 0.0:
                ll = log_one_minus_pi + _nb_logpmf(y, lm, th)
                ll_sat = _nb_logpmf(y, math.log(y), th)
            else:
                log_theta = math.log(th)
                log_f0 = th * (log_theta - _logaddexp(log_theta, lm))
                if zero_inflation:
                    ll = _logaddexp(log_pi, log_one_minus_pi + log_f0)
                else:
                    ll = log_f0
                ll_sat = 0.0

            dev = 2.0 * (ll_sat - ll)
            if dev < 0.0:
                dev = 0.0

            fitted = math.exp(log_one_minus_pi + lm)
            if y > fitted:
                out[i, j] = math.sqrt(dev)
            else:
                out[i, j] = -math.sqrt(dev)

    return out


@jit(nopython=True, cache=True)
def zinb_zero_posterior(
    Y: np.ndarray,
    log_mu: np.ndarray,
    logit_pi: np.ndarray,
    theta: np.ndarray,
    zero_inflation: bool,
) -> np.ndarray:
    """Posterior probability that each entry comes from the count component.

    Positive counts get exactly 1. A zero gets
    ``(1 - pi) f0 / (pi + (1 - pi) f0)`` with ``f0 = NB(0; mu, theta)``.
    Without zero inflation every entry gets 1.
    """
    n, J = Y.shape
    out = np.ones((n, J), dtype=np.float64)
    if not zero_inflation:
        return out

    for i in range(n):
        for j in range(J):
            if Y[i, j] > 0.0:
                continue
            th = theta[j]
            log_theta = math.log(th)
            log_f0 = th * (log_theta - _logaddexp(log_theta, log_mu[i, j]))
            log_nb_zero = _log_expit(-logit_pi[i, j]) + log_f0
            log_pi = _log_expit(logit_pi[i, j])
            w = math.exp(log_nb_zero - _logaddexp(log_pi, log_nb_zero))
            if w > 1.0:
                w = 1.0
            elif w < 0.0:
                w = 0.0
            out[i, j] = w

    return out
