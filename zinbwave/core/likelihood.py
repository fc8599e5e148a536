"""Entry-wise zero-inflated negative binomial likelihood.

All functions take linear predictors rather than means so that clamping
happens in exactly one place. Arrays broadcast against each other; the usual
call passes observation x unit matrices with ``theta`` broadcast along the
gene axis.

For a count ``y`` with mean ``mu = exp(eta_mu)``, structural zero probability
``pi = expit(eta_pi)`` and dispersion ``theta``::

    y > 0 : log(1 - pi) + log NB(y; mu, theta)
    y = 0 : log(pi + (1 - pi) * (theta / (theta + mu)) ** theta)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, NamedTuple

import numpy as np
from scipy.special import expit, gammaln

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = [
    "ETA_BOUND",
    "clamp_eta",
    "count_clamped",
    "nb_logpmf",
    "zinb_loglik",
    "zinb_derivatives",
    "ZinbDerivatives",
]

# Linear predictors are clamped to this magnitude before exponentiation.
ETA_BOUND = 30.0


def clamp_eta(eta: NDArray[np.float64]) -> NDArray[np.float64]:
    """Clamp a linear predictor to ``[-ETA_BOUND, ETA_BOUND]``."""
    return np.clip(eta, -ETA_BOUND, ETA_BOUND)


def count_clamped(eta: NDArray[np.float64]) -> int:
    """Number of entries of ``eta`` outside the clamping interval."""
    return int(np.count_nonzero(np.abs(eta) > ETA_BOUND))


def nb_logpmf(
    y: NDArray[np.float64],
    log_mu: NDArray[np.float64],
    theta: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Negative binomial log-pmf parameterized by log-mean and dispersion.

    Parameters
    ----------
    y : NDArray[np.float64]
        Non-negative counts.
    log_mu : NDArray[np.float64]
        Log of the mean, already clamped.
    theta : NDArray[np.float64]
        Dispersion (size), strictly positive.

    Returns
    -------
    NDArray[np.float64]
        ``log NB(y; exp(log_mu), theta)``.
    """
    log_theta = np.log(theta)
    log_theta_mu = np.logaddexp(log_theta, log_mu)
    return (
        gammaln(y + theta)
        - gammaln(theta)
        - gammaln(y + 1.0)
        + theta * (log_theta - log_theta_mu)
        + y * (log_mu - log_theta_mu)
    )


def zinb_loglik(
    y: NDArray[np.float64],
    eta_mu: NDArray[np.float64],
    eta_pi: NDArray[np.float64] | None,
    theta: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Entry-wise ZINB log-likelihood.

    Parameters
    ----------
    y : NDArray[np.float64]
        Counts.
    eta_mu : NDArray[np.float64]
        Linear predictor of ``log mu``.
    eta_pi : NDArray[np.float64] or None
        Linear predictor of ``logit pi``. None means no zero inflation
        (plain negative binomial).
    theta : NDArray[np.float64]
        Dispersion.

    Returns
    -------
    NDArray[np.float64]
        Log-likelihood of every entry, broadcast shape of the inputs.
    """
    log_mu = clamp_eta(eta_mu)
    nb = nb_logpmf(y, log_mu, theta)
    if eta_pi is None:
        return nb

    eta_pi = clamp_eta(eta_pi)
    log_pi = -np.logaddexp(0.0, -eta_pi)
    log_one_minus_pi = -np.logaddexp(0.0, eta_pi)

    log_theta = np.log(theta)
    log_f0 = theta * (log_theta - np.logaddexp(log_theta, log_mu))
    zero_ll = np.logaddexp(log_pi, log_one_minus_pi + log_f0)
    return np.where(y > 0, log_one_minus_pi + nb, zero_ll)


class ZinbDerivatives(NamedTuple):
    """First derivatives and curvature weights with respect to eta.

    ``grad_mu`` and ``grad_pi`` are exact. ``weight_mu`` and ``weight_pi`` are
    non-negative (expected information / EM) curvatures, so any Newton system
    assembled from them is positive semi-definite. ``nb_posterior`` is the
    posterior probability that the entry comes from the count component
    (exactly 1 for positive counts).
    """

    grad_mu: NDArray[np.float64]
    grad_pi: NDArray[np.float64] | None
    weight_mu: NDArray[np.float64]
    weight_pi: NDArray[np.float64] | None
    nb_posterior: NDArray[np.float64]


def zinb_derivatives(
    y: NDArray[np.float64],
    eta_mu: NDArray[np.float64],
    eta_pi: NDArray[np.float64] | None,
    theta: NDArray[np.float64],
) -> ZinbDerivatives:
    """Derivatives of :func:`zinb_loglik` with respect to both predictors.

    With ``r`` the count-component posterior::

        d/d eta_mu = r * theta * (y - mu) / (theta + mu)
        d/d eta_pi = (1 - r) - pi
    """
    log_mu = clamp_eta(eta_mu)
    mu = np.exp(log_mu)
    theta_ratio = theta / (theta + mu)

    if eta_pi is None:
        posterior = np.ones(np.broadcast_shapes(np.shape(y), np.shape(mu)))
        grad_pi = None
        weight_pi = None
    else:
        eta_pi = clamp_eta(eta_pi)
        pi = expit(eta_pi)
        log_pi = -np.logaddexp(0.0, -eta_pi)
        log_one_minus_pi = -np.logaddexp(0.0, eta_pi)
        log_theta = np.log(theta)
        log_f0 = theta * (log_theta - np.logaddexp(log_theta, log_mu))
        log_nb_zero = log_one_minus_pi + log_f0
        zero_posterior = np.exp(log_nb_zero - np.logaddexp(log_pi, log_nb_zero))
        posterior = np.where(y > 0, 1.0, zero_posterior)
        grad_pi = (1.0 - posterior) - pi
        weight_pi = pi * (1.0 - pi)

    grad_mu = posterior * theta_ratio * (y - mu)
    weight_mu = posterior * theta_ratio * mu
    return ZinbDerivatives(grad_mu, grad_pi, weight_mu, weight_pi, posterior)
