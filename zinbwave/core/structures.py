"""Parameter containers for the ZINB-WaVE model.

The fitted model lives in the cells x genes orientation (n x J) used by the
likelihood; every public count-shaped output is transposed back to
genes x cells by the output functions.

Linear predictors::

    log mu   = X_mu beta_mu + (V_mu gamma_mu)^T + W alpha_mu + O_mu
    logit pi = X_pi beta_pi + (V_pi gamma_pi)^T + W alpha_pi + O_pi
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any

import numpy as np
import polars as pl
from scipy.special import expit

from zinbwave.core.likelihood import clamp_eta, zinb_loglik

__all__ = [
    "ProvenanceLog",
    "ZinbModel",
    "FitDiagnostics",
    "FitResult",
]


@dataclass
class ProvenanceLog:
    """
    Record of one stage of a fit.
    """
    timestamp: str
    action: str
    params: dict[str, Any]
    description: str | None = None

    @classmethod
    def now(cls, action: str, params: dict[str, Any], description: str | None = None) -> ProvenanceLog:
        return cls(
            timestamp=datetime.now().isoformat(),
            action=action,
            params=params,
            description=description,
        )


@dataclass
class ZinbModel:
    """
    All parameters and hyperparameters of a ZINB-WaVE model.

    Created by :func:`zinbwave.model.zinb_model`, updated in place by the
    estimator, frozen (arrays made read-only) once fitting returns.

    Attributes:
        X_mu, X_pi (np.ndarray): Cell-level design matrices, shape (n_cells, p).
        V_mu, V_pi (np.ndarray): Gene-level design matrices, shape (n_genes, q).
        O_mu, O_pi (np.ndarray): Offsets, shape (n_cells, n_genes).
        beta_mu, beta_pi (np.ndarray): Shape (p, n_genes).
        gamma_mu, gamma_pi (np.ndarray): Shape (q, n_cells).
        W (np.ndarray): Latent factors, shape (n_cells, K).
        alpha_mu, alpha_pi (np.ndarray): Loadings, shape (K, n_genes).
        zeta (np.ndarray): Log dispersion, shape (n_genes,).
        epsilon_* (np.ndarray | float): Ridge strengths. Vectors hold one
            strength per design column so intercepts can be penalized lightly.
        theta_bounds (tuple[float, float]): Allowed dispersion range.
        zero_inflation (bool): If False, pi is fixed at zero.
        common_dispersion (bool): If True, one dispersion shared by all genes.
    """
    X_mu: np.ndarray
    X_pi: np.ndarray
    V_mu: np.ndarray
    V_pi: np.ndarray
    O_mu: np.ndarray
    O_pi: np.ndarray
    beta_mu: np.ndarray
    beta_pi: np.ndarray
    gamma_mu: np.ndarray
    gamma_pi: np.ndarray
    W: np.ndarray
    alpha_mu: np.ndarray
    alpha_pi: np.ndarray
    zeta: np.ndarray
    epsilon: float
    epsilon_beta_mu: np.ndarray
    epsilon_beta_pi: np.ndarray
    epsilon_gamma_mu: np.ndarray
    epsilon_gamma_pi: np.ndarray
    epsilon_W: float
    epsilon_alpha: float
    theta_bounds: tuple[float, float] = (1e-4, 1e4)
    zero_inflation: bool = True
    common_dispersion: bool = False

    @property
    def n_cells(self) -> int:
        return self.W.shape[0]

    @property
    def n_genes(self) -> int:
        return self.zeta.shape[0]

    @property
    def n_factors(self) -> int:
        return self.W.shape[1]

    @property
    def log_mu(self) -> np.ndarray:
        """Unclamped linear predictor of the mean, shape (n_cells, n_genes)."""
        return (
            self.X_mu @ self.beta_mu
            + (self.V_mu @ self.gamma_mu).T
            + self.W @ self.alpha_mu
            + self.O_mu
        )

    @property
    def logit_pi(self) -> np.ndarray:
        """Unclamped linear predictor of the zero-inflation probability."""
        return (
            self.X_pi @ self.beta_pi
            + (self.V_pi @ self.gamma_pi).T
            + self.W @ self.alpha_pi
            + self.O_pi
        )

    @property
    def mu(self) -> np.ndarray:
        return np.exp(clamp_eta(self.log_mu))

    @property
    def pi(self) -> np.ndarray:
        if not self.zero_inflation:
            return np.zeros((self.n_cells, self.n_genes))
        return expit(clamp_eta(self.logit_pi))

    @property
    def theta(self) -> np.ndarray:
        return np.exp(self.zeta)

    @property
    def phi(self) -> np.ndarray:
        """Inverse dispersion ``1 / theta``."""
        return np.exp(-self.zeta)

    @property
    def n_params(self) -> int:
        """Number of free parameters, used by AIC and BIC."""
        n, J, K = self.n_cells, self.n_genes, self.n_factors
        total = n * K + J * (self.X_mu.shape[1] + K) + n * self.V_mu.shape[1]
        if self.zero_inflation:
            total += J * (self.X_pi.shape[1] + K) + n * self.V_pi.shape[1]
        total += 1 if self.common_dispersion else J
        return total

    def eta_pi_or_none(self) -> np.ndarray | None:
        return self.logit_pi if self.zero_inflation else None

    def loglik(self, Y: np.ndarray) -> float:
        """Unpenalized log-likelihood of counts ``Y`` (n_cells x n_genes)."""
        ll = zinb_loglik(Y, self.log_mu, self.eta_pi_or_none(), self.theta[np.newaxis, :])
        return float(np.sum(ll))

    def penalty(self) -> float:
        """Ridge penalty ``0.5 * sum(eps * coef ** 2)`` over all blocks."""
        pen = np.sum(self.epsilon_beta_mu[:, np.newaxis] * self.beta_mu**2)
        pen += np.sum(self.epsilon_gamma_mu[:, np.newaxis] * self.gamma_mu**2)
        pen += self.epsilon_W * np.sum(self.W**2)
        pen += self.epsilon_alpha * np.sum(self.alpha_mu**2)
        if self.zero_inflation:
            pen += np.sum(self.epsilon_beta_pi[:, np.newaxis] * self.beta_pi**2)
            pen += np.sum(self.epsilon_gamma_pi[:, np.newaxis] * self.gamma_pi**2)
            pen += self.epsilon_alpha * np.sum(self.alpha_pi**2)
        return 0.5 * float(pen)

    def penalized_loglik(self, Y: np.ndarray) -> float:
        return self.loglik(Y) - self.penalty()

    def copy(self) -> ZinbModel:
        """Deep copy with writeable arrays."""
        new = copy.deepcopy(self)
        for f in fields(new):
            value = getattr(new, f.name)
            if isinstance(value, np.ndarray):
                setattr(new, f.name, np.array(value, copy=True))
        return new

    def freeze(self) -> ZinbModel:
        """Make every parameter array read-only and return self."""
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, np.ndarray):
                value.setflags(write=False)
        return self

    def __repr__(self) -> str:
        return (
            f"<ZinbModel n_cells={self.n_cells}, n_genes={self.n_genes}, "
            f"K={self.n_factors}, epsilon={self.epsilon:g}, "
            f"zero_inflation={self.zero_inflation}>"
        )


@dataclass
class FitDiagnostics:
    """
    Convergence record of one fit.

    Attributes:
        loglik_trace (list[float]): Penalized log-likelihood after
            initialization (first entry) and after every outer iteration.
        n_iterations (int): Completed outer iterations.
        converged (bool): Whether the relative tolerance was reached.
        stop_reason (str): "tolerance", "max_iterations" or "timeout".
        dispersion_flags (np.ndarray): Per-gene flag, True where the
            dispersion sits at one of its bounds.
        n_clamped (int): Entries of the final linear predictors beyond the
            clamping interval.
        n_rejected_steps (int): Per-gene and per-cell Newton steps that found no
            acceptable step length and kept the previous value.
        final_loglik (float): Unpenalized log-likelihood of the final model.
        elapsed (float): Wall-clock seconds spent fitting.
        history (list[ProvenanceLog]): One record per fit stage.
    """
    loglik_trace: list[float] = field(default_factory=list)
    n_iterations: int = 0
    converged: bool = False
    stop_reason: str = "max_iterations"
    dispersion_flags: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=bool))
    n_clamped: int = 0
    n_rejected_steps: int = 0
    final_loglik: float = float("nan")
    elapsed: float = 0.0
    history: list[ProvenanceLog] = field(default_factory=list)

    @property
    def final_penalized_loglik(self) -> float:
        return self.loglik_trace[-1] if self.loglik_trace else float("nan")

    @property
    def n_flagged_genes(self) -> int:
        return int(np.count_nonzero(self.dispersion_flags))

    def log_operation(self, action: str, params: dict[str, Any], description: str | None = None) -> None:
        self.history.append(ProvenanceLog.now(action, params, description))

    def to_frame(self) -> pl.DataFrame:
        """Penalized log-likelihood trace as a DataFrame."""
        trace = np.asarray(self.loglik_trace, dtype=np.float64)
        change = np.concatenate([[np.nan], np.diff(trace)]) if trace.size else trace
        return pl.DataFrame(
            {
                "iteration": np.arange(trace.size, dtype=np.int64),
                "penalized_loglik": trace,
                "change": change,
            }
        )


@dataclass
class FitResult:
    """
    Fitted model, diagnostics and optional derived matrices.

    Derived matrices are genes x cells, like the input counts, and read-only.
    """
    model: ZinbModel
    diagnostics: FitDiagnostics
    normalized_values: np.ndarray | None = None
    residuals: np.ndarray | None = None
    weights: np.ndarray | None = None
    imputed_values: np.ndarray | None = None

    @property
    def W(self) -> np.ndarray:
        """Latent factors, shape (n_cells, K)."""
        return self.model.W

    @property
    def converged(self) -> bool:
        return self.diagnostics.converged

    @property
    def n_iterations(self) -> int:
        return self.diagnostics.n_iterations

    @property
    def loglik(self) -> float:
        """Final penalized log-likelihood."""
        return self.diagnostics.final_penalized_loglik

    @property
    def aic(self) -> float:
        return 2.0 * self.model.n_params - 2.0 * self.diagnostics.final_loglik

    @property
    def bic(self) -> float:
        n_obs = self.model.n_cells * self.model.n_genes
        return np.log(n_obs) * self.model.n_params - 2.0 * self.diagnostics.final_loglik

    def to_frame(self, cell_ids: list[str] | None = None) -> pl.DataFrame:
        """Latent factors as a DataFrame with one row per cell.

        Args:
            cell_ids: Values for the ``_index`` column. Defaults to
                ``cell_0, cell_1, ...``.
        """
        n, K = self.W.shape
        if cell_ids is None:
            cell_ids = [f"cell_{i}" for i in range(n)]
        if len(cell_ids) != n:
            raise ValueError(f"Expected {n} cell ids, got {len(cell_ids)}")
        data: dict[str, Any] = {"_index": list(cell_ids)}
        for k in range(K):
            data[f"W{k + 1}"] = self.W[:, k]
        return pl.DataFrame(data)

    def __repr__(self) -> str:
        return (
            f"<FitResult n_cells={self.model.n_cells}, n_genes={self.model.n_genes}, "
            f"K={self.model.n_factors}, converged={self.converged}, "
            f"iterations={self.n_iterations}>"
        )
