"""Block updates of the coordinate ascent.

Every block reads the current model, computes new values for one group of
parameters with the others held fixed, and writes them back only after all
workers have finished (``WorkerPool.map_chunks`` is the barrier). Per unit a
new value is accepted only if it does not lower that unit's penalized
log-likelihood, so each block is monotone on its own.

Orientation reminder: the model is cells x genes. For gene-wise blocks the
observations of a unit are the n cells (columns of ``Y``); for cell-wise blocks
they are the J genes (columns of ``Y.T``).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, NamedTuple

import numpy as np
from scipy.optimize import minimize_scalar

from zinbwave.core.likelihood import zinb_loglik
from zinbwave.fit.newton import acceptance_slack, newton_update

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from zinbwave.core.structures import ZinbModel
    from zinbwave.utils.parallel import WorkerPool

__all__ = [
    "BlockSettings",
    "dispersion_at_bounds",
    "rescale_factors",
    "update_dispersion",
    "update_latent_factors",
    "update_mean_model",
    "update_zero_inflation",
]

# Distance (log scale) within which an optimum is snapped onto a bound.
BOUND_SNAP = 1e-2


class BlockSettings(NamedTuple):
    newton_steps: int = 2
    max_step_halvings: int = 10
    step_shrink: float = 0.5


# =============================================================================
# Dispersion
# =============================================================================


def _gene_dispersion(y, eta_mu, eta_pi, zeta0, log_lower, log_upper):
    """Maximize one gene's log-likelihood over ``zeta = log theta``."""

    def objective(z):
        return -float(np.sum(zinb_loglik(y, eta_mu, eta_pi, np.exp(z))))

    current = objective(zeta0)
    if not np.any(y > 0):
        # Without positive counts the likelihood only grows as theta shrinks.
        best, best_value = log_lower, objective(log_lower)
    else:
        res = minimize_scalar(
            objective, bounds=(log_lower, log_upper), method="bounded",
            options={"xatol": 1e-5},
        )
        best, best_value = float(res.x), float(res.fun)
        for bound in (log_lower, log_upper):
            if abs(best - bound) < BOUND_SNAP:
                value = objective(bound)
                if value <= best_value:
                    best, best_value = bound, value

    if np.isfinite(best_value) and -best_value >= -current - float(acceptance_slack(-current)):
        return best
    return zeta0


def update_dispersion(model: ZinbModel, Y: NDArray[np.float64], pool: WorkerPool) -> None:
    """Update ``zeta`` gene by gene (or jointly under a common dispersion)."""
    lower, upper = model.theta_bounds
    log_lower, log_upper = float(np.log(lower)), float(np.log(upper))
    eta_mu = model.log_mu
    eta_pi = model.eta_pi_or_none()

    if model.common_dispersion:
        zeta0 = float(model.zeta[0])
        new = _gene_dispersion(Y, eta_mu, eta_pi, zeta0, log_lower, log_upper)
        model.zeta = np.full(model.n_genes, new)
        return

    def task(s: slice) -> NDArray[np.float64]:
        out = np.empty(s.stop - s.start)
        for k, j in enumerate(range(s.start, s.stop)):
            out[k] = _gene_dispersion(
                Y[:, j],
                eta_mu[:, j],
                None if eta_pi is None else eta_pi[:, j],
                float(model.zeta[j]),
                log_lower,
                log_upper,
            )
        return out

    model.zeta = np.concatenate(pool.map_chunks(task, model.n_genes))


def dispersion_at_bounds(model: ZinbModel) -> NDArray[np.bool_]:
    """Genes whose dispersion sits on one of its bounds."""
    log_lower, log_upper = np.log(model.theta_bounds)
    tol = 1e-8
    return (model.zeta <= log_lower + tol) | (model.zeta >= log_upper - tol)


# =============================================================================
# Regression blocks
# =============================================================================


def _gather(parts):
    coef = np.concatenate([c for c, _ in parts], axis=1)
    return coef, sum(n for _, n in parts)


def _gene_step(model, Y, pool, settings, *, design, coef, penalty, offset, other, which):
    """Newton update of per-gene coefficients; ``which`` is "mu" or "pi".

    Returns the updated coefficients and the number of rejected unit steps.
    """
    theta = model.theta

    def task(s: slice) -> tuple[NDArray[np.float64], int]:
        y = Y[:, s]
        t = np.broadcast_to(theta[s], y.shape)
        fixed = None if other is None else other[:, s]
        if which == "mu":
            res = newton_update(
                y, t, offset[:, s], fixed, coef[:, s], penalty, design_mu=design,
                n_steps=settings.newton_steps, max_halvings=settings.max_step_halvings,
                shrink=settings.step_shrink,
            )
        else:
            res = newton_update(
                y, t, fixed, offset[:, s], coef[:, s], penalty, design_pi=design,
                n_steps=settings.newton_steps, max_halvings=settings.max_step_halvings,
                shrink=settings.step_shrink,
            )
        return res.coef, res.n_rejected

    return _gather(pool.map_chunks(task, model.n_genes))


def _cell_step(model, Y, pool, settings, *, design_mu, design_pi, coef, penalty,
               offset_mu, offset_pi):
    """Newton update of per-cell coefficients. Offsets are genes x cells.

    Returns the updated coefficients and the number of rejected unit steps.
    """
    Yt = Y.T
    theta = model.theta[:, np.newaxis]

    def task(s: slice) -> tuple[NDArray[np.float64], int]:
        y = Yt[:, s]
        res = newton_update(
            y,
            np.broadcast_to(theta, y.shape),
            offset_mu[:, s],
            None if offset_pi is None else offset_pi[:, s],
            coef[:, s],
            penalty,
            design_mu=design_mu,
            design_pi=design_pi,
            n_steps=settings.newton_steps,
            max_halvings=settings.max_step_halvings,
            shrink=settings.step_shrink,
        )
        return res.coef, res.n_rejected

    return _gather(pool.map_chunks(task, model.n_cells))


def update_mean_model(
    model: ZinbModel, Y: NDArray[np.float64], pool: WorkerPool, settings: BlockSettings
) -> int:
    """Update ``beta_mu`` and ``alpha_mu`` per gene, then ``gamma_mu`` per cell.

    Returns the number of unit Newton steps that kept their previous value.
    """
    p, K = model.X_mu.shape[1], model.n_factors
    eta_pi = model.eta_pi_or_none()

    coef, n_rejected = _gene_step(
        model, Y, pool, settings,
        design=np.hstack([model.X_mu, model.W]),
        coef=np.vstack([model.beta_mu, model.alpha_mu]),
        penalty=np.concatenate([model.epsilon_beta_mu, np.full(K, model.epsilon_alpha)]),
        offset=(model.V_mu @ model.gamma_mu).T + model.O_mu,
        other=eta_pi,
        which="mu",
    )
    model.beta_mu, model.alpha_mu = coef[:p], coef[p:]

    if model.V_mu.shape[1] == 0:
        return n_rejected
    model.gamma_mu, n_cell = _cell_step(
        model, Y, pool, settings,
        design_mu=model.V_mu,
        design_pi=None,
        coef=model.gamma_mu,
        penalty=model.epsilon_gamma_mu,
        offset_mu=(model.X_mu @ model.beta_mu + model.W @ model.alpha_mu + model.O_mu).T,
        offset_pi=None if eta_pi is None else eta_pi.T,
    )
    return n_rejected + n_cell


def update_zero_inflation(
    model: ZinbModel, Y: NDArray[np.float64], pool: WorkerPool, settings: BlockSettings
) -> int:
    """Update ``beta_pi`` and ``alpha_pi`` per gene, then ``gamma_pi`` per cell.

    Returns the number of unit Newton steps that kept their previous value.
    """
    if not model.zero_inflation:
        return 0
    p, K = model.X_pi.shape[1], model.n_factors
    eta_mu = model.log_mu

    coef, n_rejected = _gene_step(
        model, Y, pool, settings,
        design=np.hstack([model.X_pi, model.W]),
        coef=np.vstack([model.beta_pi, model.alpha_pi]),
        penalty=np.concatenate([model.epsilon_beta_pi, np.full(K, model.epsilon_alpha)]),
        offset=(model.V_pi @ model.gamma_pi).T + model.O_pi,
        other=eta_mu,
        which="pi",
    )
    model.beta_pi, model.alpha_pi = coef[:p], coef[p:]

    if model.V_pi.shape[1] == 0:
        return n_rejected
    model.gamma_pi, n_cell = _cell_step(
        model, Y, pool, settings,
        design_mu=None,
        design_pi=model.V_pi,
        coef=model.gamma_pi,
        penalty=model.epsilon_gamma_pi,
        offset_mu=eta_mu.T,
        offset_pi=(model.X_pi @ model.beta_pi + model.W @ model.alpha_pi + model.O_pi).T,
    )
    return n_rejected + n_cell


# =============================================================================
# Latent factors
# =============================================================================


def update_latent_factors(
    model: ZinbModel, Y: NDArray[np.float64], pool: WorkerPool, settings: BlockSettings
) -> int:
    """Update ``W`` cell by cell using both predictors, then rescale.

    Returns the number of unit Newton steps that kept their previous value.
    """
    K = model.n_factors
    if K == 0:
        return 0
    offset_mu = (model.X_mu @ model.beta_mu + (model.V_mu @ model.gamma_mu).T + model.O_mu).T
    offset_pi = None
    design_pi = None
    if model.zero_inflation:
        offset_pi = (model.X_pi @ model.beta_pi + (model.V_pi @ model.gamma_pi).T + model.O_pi).T
        design_pi = model.alpha_pi.T

    W_t, n_rejected = _cell_step(
        model, Y, pool, settings,
        design_mu=model.alpha_mu.T,
        design_pi=design_pi,
        coef=model.W.T,
        penalty=np.full(K, model.epsilon_W),
        offset_mu=offset_mu,
        offset_pi=offset_pi,
    )
    model.W = np.ascontiguousarray(W_t.T)
    rescale_factors(model)
    return n_rejected


def _flip_signs(W, A):
    # Largest-magnitude entry of every factor made positive.
    idx = np.argmax(np.abs(W), axis=0)
    signs = np.sign(W[idx, np.arange(W.shape[1])])
    signs[signs == 0] = 1.0
    return W * signs, A * signs[:, np.newaxis]


def rescale_factors(model: ZinbModel) -> None:
    """Move ``W`` and the loadings to the penalty-optimal factorization.

    The product ``W @ [alpha_mu, alpha_pi]`` (and hence the likelihood) is
    kept. Among all factorizations of that product,
    ``eps_W * |W|^2 + eps_alpha * |A|^2`` is smallest for ``W = c U S^1/2`` and
    ``A = S^1/2 V^T / c`` with ``Z = U S V^T`` and ``c = (eps_alpha / eps_W)^1/4``.
    Columns of ``W`` come out orthogonal and sorted by decreasing norm.
    """
    K = model.n_factors
    a, b = model.epsilon_W, model.epsilon_alpha
    if K == 0 or a <= 0 or b <= 0:
        return

    J = model.n_genes
    A = np.hstack([model.alpha_mu, model.alpha_pi]) if model.zero_inflation else model.alpha_mu
    # SVD of W @ A through the thin QR factors of both sides.
    Q_w, R_w = np.linalg.qr(model.W)
    Q_a, R_a = np.linalg.qr(A.T)
    U, S, Vt = np.linalg.svd(R_w @ R_a.T)

    c = (b / a) ** 0.25
    root = np.sqrt(S)
    W_new = c * (Q_w @ U) * root
    A_new = (root[:, np.newaxis] * (Q_a @ Vt.T).T) / c
    W_new, A_new = _flip_signs(W_new, A_new)

    old = a * np.sum(model.W**2) + b * np.sum(A**2)
    new = a * np.sum(W_new**2) + b * np.sum(A_new**2)
    if not (np.all(np.isfinite(W_new)) and np.all(np.isfinite(A_new))) or new > old:
        return

    model.W = W_new
    model.alpha_mu = A_new[:, :J]
    if model.zero_inflation:
        model.alpha_pi = A_new[:, J:]
