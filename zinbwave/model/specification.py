"""Model specification: validate inputs and build a ZinbModel.

Counts are genes x cells. The model is stored cells x genes, so every
count-shaped input (counts, offsets) is transposed here and every count-shaped
output is transposed back by :mod:`zinbwave.outputs`.
"""

from __future__ import annotations

from numbers import Integral
from typing import TYPE_CHECKING, Any

import numpy as np
import scipy.sparse as sp

from zinbwave.core.exceptions import InvalidDesignError, InvalidInputError
from zinbwave.core.structures import ZinbModel
from zinbwave.model.design import build_design, intercept_columns, select_columns

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

__all__ = [
    "validate_counts",
    "zinb_model",
    "penalty_strengths",
]

# Ridge strength on intercept columns, which the penalty only needs to keep finite.
EPSILON_MIN_LOGIT = 1e-3


def validate_counts(counts: Any) -> NDArray[np.float64]:
    """Check a genes x cells count matrix and return it as a float array.

    Parameters
    ----------
    counts : array-like or sparse matrix
        Non-negative integer counts, genes in rows and cells in columns.

    Returns
    -------
    NDArray[np.float64]
        Dense copy of the counts.

    Raises
    ------
    InvalidInputError
        If the matrix is not 2-D, is empty, or holds negative, non-integer or
        non-finite values.
    """
    values = counts.toarray() if sp.issparse(counts) else np.asarray(counts)
    if values.ndim != 2:
        raise InvalidInputError(
            f"Count matrix must be 2-D (genes x cells), got {values.ndim} dimensions.",
            parameter="counts",
            value=values.shape,
        )
    if values.size == 0:
        raise InvalidInputError("Count matrix is empty.", parameter="counts", value=values.shape)
    if values.dtype.kind not in "biuf":
        raise InvalidInputError(
            f"Count matrix must be numeric, got dtype {values.dtype}.",
            parameter="counts",
            value=str(values.dtype),
        )

    Y = np.array(values, dtype=np.float64, copy=True)
    if not np.all(np.isfinite(Y)):
        raise InvalidInputError(
            "Count matrix contains NaN or infinite values.", parameter="counts"
        )
    n_negative = int(np.count_nonzero(Y < 0))
    if n_negative:
        raise InvalidInputError(
            f"Count matrix contains {n_negative} negative values.",
            parameter="counts",
            value=float(Y.min()),
        )
    fractional = Y != np.round(Y)
    if np.any(fractional):
        raise InvalidInputError(
            f"Count matrix contains {int(np.count_nonzero(fractional))} non-integer values.",
            parameter="counts",
            value=float(Y[fractional][0]),
        )
    return Y


def _offset(offset: Any, n_genes: int, n_cells: int, name: str) -> NDArray[np.float64]:
    if offset is None:
        return np.zeros((n_cells, n_genes))
    values = np.asarray(offset, dtype=np.float64)
    if values.shape != (n_genes, n_cells):
        raise InvalidInputError(
            f"{name} must have the shape of the counts {(n_genes, n_cells)}, got {values.shape}.",
            parameter=name,
            value=values.shape,
        )
    if not np.all(np.isfinite(values)):
        raise InvalidInputError(f"{name} contains NaN or infinite values.", parameter=name)
    return values.T.copy()


def penalty_strengths(
    design: NDArray[np.float64], strength: float, intercept_strength: float = EPSILON_MIN_LOGIT
) -> NDArray[np.float64]:
    """Per-column ridge strengths, lighter on intercept columns."""
    eps = np.full(design.shape[1], float(strength))
    eps[intercept_columns(design)] = intercept_strength
    return eps


def zinb_model(
    counts: Any,
    sample_covariates: Any = None,
    gene_covariates: Any = None,
    *,
    K: int = 2,
    epsilon: float | None = None,
    sample_formula: str | None = None,
    gene_formula: str | None = None,
    x_intercept: bool = True,
    v_intercept: bool = True,
    which_x_mu: Sequence[int] | Sequence[str] | None = None,
    which_x_pi: Sequence[int] | Sequence[str] | None = None,
    which_v_mu: Sequence[int] | Sequence[str] | None = None,
    which_v_pi: Sequence[int] | Sequence[str] | None = None,
    offset_mu: Any = None,
    offset_pi: Any = None,
    epsilon_W: float | None = None,
    epsilon_alpha: float | None = None,
    epsilon_beta: float | None = None,
    epsilon_gamma: float | None = None,
    epsilon_min_logit: float = EPSILON_MIN_LOGIT,
    theta_bounds: tuple[float, float] = (1e-4, 1e4),
    zero_inflation: bool = True,
    common_dispersion: bool = False,
) -> ZinbModel:
    """Build the structure of a ZINB-WaVE model.

    The returned model has every coefficient at zero and unit dispersion; the
    estimator replaces these with data-driven starting values.

    Parameters
    ----------
    counts : array-like or sparse matrix
        Counts, genes x cells.
    sample_covariates : array-like, DataFrame or None
        Cell-level covariates (one row per cell). None gives an intercept.
    gene_covariates : array-like, DataFrame or None
        Gene-level covariates (one row per gene). None gives an intercept.
    K : int, default=2
        Number of latent factors, ``0 <= K < min(n_cells, n_genes)``.
    epsilon : float, optional
        Ridge strength. Defaults to the number of genes. Split into
        ``epsilon_W = epsilon / n_cells``, ``epsilon_alpha = epsilon / n_genes``,
        ``epsilon_beta = epsilon / n_genes`` and
        ``epsilon_gamma = epsilon / n_cells`` unless given explicitly.
    sample_formula, gene_formula : str, optional
        formulaic formulas over covariate tables.
    x_intercept, v_intercept : bool, default=True
        Add intercept columns when absent.
    which_x_mu, which_x_pi, which_v_mu, which_v_pi : sequence, optional
        Columns (positions or names) of X / V used by the mean and the
        zero-inflation models. Default: all columns.
    offset_mu, offset_pi : array-like, optional
        Offsets of the two linear predictors, genes x cells.
    epsilon_min_logit : float, default=1e-3
        Ridge strength on intercept columns.
    theta_bounds : tuple of float, default=(1e-4, 1e4)
        Allowed dispersion range.
    zero_inflation : bool, default=True
        If False, fit a plain negative binomial factor model.
    common_dispersion : bool, default=False
        Share one dispersion across genes.

    Returns
    -------
    ZinbModel
        Model in the cells x genes orientation.

    Raises
    ------
    InvalidInputError
        Invalid counts, covariates or offsets.
    InvalidDesignError
        Rank-deficient designs, K out of range, negative penalties.
    """
    Y = validate_counts(counts)
    n_genes, n_cells = Y.shape

    if isinstance(K, bool) or not isinstance(K, Integral):
        raise InvalidDesignError(f"K must be an integer, got {K!r}.", parameter="K", value=K)
    K = int(K)
    if K < 0:
        raise InvalidDesignError(f"K must be non-negative, got {K}.", parameter="K", value=K)
    if K >= min(n_cells, n_genes):
        raise InvalidDesignError(
            f"K ({K}) must be less than min(n_cells, n_genes) = {min(n_cells, n_genes)}.",
            parameter="K",
            value=K,
        )

    if epsilon is None:
        epsilon = float(n_genes)
    for name, value in (
        ("epsilon", epsilon),
        ("epsilon_W", epsilon_W),
        ("epsilon_alpha", epsilon_alpha),
        ("epsilon_beta", epsilon_beta),
        ("epsilon_gamma", epsilon_gamma),
        ("epsilon_min_logit", epsilon_min_logit),
    ):
        if value is not None and not value >= 0:
            raise InvalidDesignError(
                f"{name} must be non-negative, got {value}.", parameter=name, value=value
            )

    lower, upper = theta_bounds
    if not 0 < lower < upper:
        raise InvalidDesignError(
            f"theta_bounds must satisfy 0 < lower < upper, got {theta_bounds}.",
            parameter="theta_bounds",
            value=theta_bounds,
        )

    X = build_design(sample_covariates, n_cells, sample_formula, x_intercept, what="sample")
    V = build_design(gene_covariates, n_genes, gene_formula, v_intercept, what="gene")
    X_mu = select_columns(X, which_x_mu, "x_mu").values
    X_pi = select_columns(X, which_x_pi, "x_pi").values
    V_mu = select_columns(V, which_v_mu, "v_mu").values
    V_pi = select_columns(V, which_v_pi, "v_pi").values

    eps_W = epsilon / n_cells if epsilon_W is None else epsilon_W
    eps_alpha = epsilon / n_genes if epsilon_alpha is None else epsilon_alpha
    eps_beta = epsilon / n_genes if epsilon_beta is None else epsilon_beta
    eps_gamma = epsilon / n_cells if epsilon_gamma is None else epsilon_gamma

    return ZinbModel(
        X_mu=X_mu,
        X_pi=X_pi,
        V_mu=V_mu,
        V_pi=V_pi,
        O_mu=_offset(offset_mu, n_genes, n_cells, "offset_mu"),
        O_pi=_offset(offset_pi, n_genes, n_cells, "offset_pi"),
        beta_mu=np.zeros((X_mu.shape[1], n_genes)),
        beta_pi=np.zeros((X_pi.shape[1], n_genes)),
        gamma_mu=np.zeros((V_mu.shape[1], n_cells)),
        gamma_pi=np.zeros((V_pi.shape[1], n_cells)),
        W=np.zeros((n_cells, K)),
        alpha_mu=np.zeros((K, n_genes)),
        alpha_pi=np.zeros((K, n_genes)),
        zeta=np.zeros(n_genes),
        epsilon=float(epsilon),
        epsilon_beta_mu=penalty_strengths(X_mu, eps_beta, epsilon_min_logit),
        epsilon_beta_pi=penalty_strengths(X_pi, eps_beta, epsilon_min_logit),
        epsilon_gamma_mu=penalty_strengths(V_mu, eps_gamma, epsilon_min_logit),
        epsilon_gamma_pi=penalty_strengths(V_pi, eps_gamma, epsilon_min_logit),
        epsilon_W=float(eps_W),
        epsilon_alpha=float(eps_alpha),
        theta_bounds=(float(lower), float(upper)),
        zero_inflation=bool(zero_inflation),
        common_dispersion=bool(common_dispersion),
    )
