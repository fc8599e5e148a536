"""Penalized Newton updates over independent units with damped steps.

A *unit* is one gene or one cell. Within a block every unit owns a
coefficient vector that enters the linear predictors through a design matrix
shared by all units::

    eta_mu[:, u] = offset_mu[:, u] + design_mu @ coef[:, u]
    eta_pi[:, u] = offset_pi[:, u] + design_pi @ coef[:, u]

Rows of these arrays are the *observations* of a unit: cells when the units
are genes, genes when the units are cells. Either design may be None, in
which case that predictor is held at its offset.

Each step solves ``H delta = g`` with the exact gradient ``g`` and a positive
definite curvature ``H`` (expected information plus the ridge), so ``delta`` is
an ascent direction. A unit accepts ``coef + t * delta`` for the largest
``t = shrink ** h`` (``h <= max_halvings``) that does not lower its penalized
objective, and otherwise keeps its previous coefficients.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, NamedTuple

import numpy as np

from zinbwave.core.likelihood import zinb_derivatives, zinb_loglik

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = [
    "NewtonResult",
    "acceptance_slack",
    "newton_update",
    "unit_objective",
]

_JITTER = 1e-8


class NewtonResult(NamedTuple):
    coef: NDArray[np.float64]
    objective: NDArray[np.float64]
    n_rejected: int


def acceptance_slack(objective: NDArray[np.float64]) -> NDArray[np.float64]:
    """Numerical tolerance below which a decrease still counts as no change."""
    return 1e-8 * (1.0 + np.abs(objective))


def _predictor(offset, design, coef):
    if offset is None:
        return None
    if design is None:
        return offset
    return offset + design @ coef


def unit_objective(
    y: NDArray[np.float64],
    theta: NDArray[np.float64],
    offset_mu: NDArray[np.float64],
    offset_pi: NDArray[np.float64] | None,
    design_mu: NDArray[np.float64] | None,
    design_pi: NDArray[np.float64] | None,
    coef: NDArray[np.float64],
    penalty: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Penalized log-likelihood of every unit, shape (n_units,)."""
    eta_mu = _predictor(offset_mu, design_mu, coef)
    eta_pi = _predictor(offset_pi, design_pi, coef)
    ll = zinb_loglik(y, eta_mu, eta_pi, theta).sum(axis=0)
    return ll - 0.5 * np.sum(penalty[:, np.newaxis] * coef**2, axis=0)


def _newton_direction(y, theta, offset_mu, offset_pi, design_mu, design_pi, coef, penalty):
    eta_mu = _predictor(offset_mu, design_mu, coef)
    eta_pi = _predictor(offset_pi, design_pi, coef)
    der = zinb_derivatives(y, eta_mu, eta_pi, theta)

    d, n_units = coef.shape
    grad = -penalty[:, np.newaxis] * coef
    hess = np.zeros((n_units, d, d))
    hess[:, np.arange(d), np.arange(d)] = penalty + _JITTER

    if design_mu is not None:
        grad += design_mu.T @ der.grad_mu
        hess += np.einsum("oa,ou,ob->uab", design_mu, der.weight_mu, design_mu, optimize=True)
    if design_pi is not None and der.grad_pi is not None:
        grad += design_pi.T @ der.grad_pi
        hess += np.einsum("oa,ou,ob->uab", design_pi, der.weight_pi, design_pi, optimize=True)

    try:
        delta = np.linalg.solve(hess, grad.T[:, :, np.newaxis])[:, :, 0].T
    except np.linalg.LinAlgError:
        delta = np.stack(
            [np.linalg.lstsq(hess[u], grad[:, u], rcond=None)[0] for u in range(n_units)],
            axis=1,
        )
    delta[~np.isfinite(delta)] = 0.0
    return delta


def newton_update(
    y: NDArray[np.float64],
    theta: NDArray[np.float64],
    offset_mu: NDArray[np.float64],
    offset_pi: NDArray[np.float64] | None,
    coef: NDArray[np.float64],
    penalty: NDArray[np.float64],
    design_mu: NDArray[np.float64] | None = None,
    design_pi: NDArray[np.float64] | None = None,
    n_steps: int = 1,
    max_halvings: int = 10,
    shrink: float = 0.5,
) -> NewtonResult:
    """Run damped penalized Newton steps on every unit.

    Parameters
    ----------
    y : NDArray[np.float64]
        Counts, shape (n_obs, n_units).
    theta : NDArray[np.float64]
        Dispersion broadcast to (n_obs, n_units).
    offset_mu : NDArray[np.float64]
        Fixed part of the mean predictor, (n_obs, n_units).
    offset_pi : NDArray[np.float64] or None
        Fixed part of the zero-inflation predictor; None without zero
        inflation.
    coef : NDArray[np.float64]
        Starting coefficients, (d, n_units). Not modified.
    penalty : NDArray[np.float64]
        Ridge strength of each coefficient, (d,).
    design_mu, design_pi : NDArray[np.float64] or None
        Shared designs, (n_obs, d).
    n_steps : int, default=1
        Newton steps per unit.
    max_halvings : int, default=10
        Step shrinkages tried before a unit keeps its coefficients.
    shrink : float, default=0.5
        Step shrink factor.

    Returns
    -------
    NewtonResult
        New coefficients, their penalized objective per unit and the number
        of (unit, step) pairs where no step was accepted.
    """
    coef = np.array(coef, dtype=np.float64, copy=True)
    d, n_units = coef.shape
    args = (y, theta, offset_mu, offset_pi, design_mu, design_pi)
    current = unit_objective(*args, coef, penalty)
    if d == 0 or n_units == 0:
        return NewtonResult(coef, current, 0)

    n_rejected = 0
    for _ in range(n_steps):
        delta = _newton_direction(*args, coef, penalty)
        step = np.ones(n_units)
        accepted = np.zeros(n_units, dtype=bool)

        for _ in range(max_halvings + 1):
            pending = np.flatnonzero(~accepted)
            if pending.size == 0:
                break
            candidate = coef[:, pending] + step[pending] * delta[:, pending]
            sub = _subset(args, pending)
            value = unit_objective(*sub, candidate, penalty)
            ok = np.isfinite(value) & (
                value >= current[pending] - acceptance_slack(current[pending])
            )
            won = pending[ok]
            coef[:, won] = candidate[:, ok]
            current[won] = value[ok]
            accepted[won] = True
            step[pending] *= shrink

        n_rejected += int(np.count_nonzero(~accepted))
        if not np.any(accepted):
            break

    return NewtonResult(coef, current, n_rejected)


def _subset(args, units):
    y, theta, offset_mu, offset_pi, design_mu, design_pi = args
    return (
        y[:, units],
        theta[:, units],
        offset_mu[:, units],
        None if offset_pi is None else offset_pi[:, units],
        design_mu,
        design_pi,
    )
