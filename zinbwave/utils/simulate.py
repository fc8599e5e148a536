"""Synthetic ZINB count data.

Two entry points:

1. :func:`zinb_simulate` draws a count matrix from a (fitted) ZinbModel, for
   parametric bootstrap and model checking.
2. :class:`ZinbDataGenerator` builds data with known latent structure from
   scratch: cell groups driving a low-rank signal, batch effects on the mean,
   gene-specific dispersions and intensity-dependent dropout.

Both return counts in the genes x cells orientation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import polars as pl
from scipy.special import expit

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from zinbwave.core.structures import ZinbModel

__all__ = ["SimulatedCounts", "ZinbDataGenerator", "sample_zinb", "zinb_simulate"]

_DEFAULT_LOG_MEAN = 1.5
_DEFAULT_LOG_MEAN_STD = 1.0
_DEFAULT_BATCH_EFFECT_STD = 0.3
_DROPOUT_SLOPE = 1.0


def sample_zinb(
    mu: NDArray[np.float64],
    theta: NDArray[np.float64],
    pi: NDArray[np.float64],
    rng: np.random.Generator,
) -> NDArray[np.int64]:
    """Draw ZINB counts entry-wise (all arguments broadcast together)."""
    mu, theta, pi = np.broadcast_arrays(
        np.asarray(mu, dtype=np.float64),
        np.asarray(theta, dtype=np.float64),
        np.asarray(pi, dtype=np.float64),
    )
    # NB(mu, theta) as a gamma-Poisson mixture.
    rate = rng.gamma(shape=theta, scale=mu / theta)
    counts = rng.poisson(rate)
    dropout = rng.random(counts.shape) < pi
    counts[dropout] = 0
    return counts.astype(np.int64)


def zinb_simulate(model: ZinbModel, seed: int | None = None) -> NDArray[np.int64]:
    """Draw one count matrix from a ZINB-WaVE model.

    Parameters
    ----------
    model : ZinbModel
        Model whose ``mu``, ``theta`` and ``pi`` define the distribution.
    seed : int, optional
        Seed of the random generator.

    Returns
    -------
    NDArray[np.int64]
        Counts, genes x cells.
    """
    rng = np.random.default_rng(seed)
    counts = sample_zinb(model.mu, model.theta[np.newaxis, :], model.pi, rng)
    return np.ascontiguousarray(counts.T)


@dataclass
class SimulatedCounts:
    """Synthetic counts with the structure that generated them.

    Attributes:
        counts (np.ndarray): Counts, genes x cells.
        W (np.ndarray): True latent factors, cells x K.
        mu (np.ndarray): True means, genes x cells.
        pi (np.ndarray): True dropout probabilities, genes x cells.
        theta (np.ndarray): True dispersions, per gene.
        cells (pl.DataFrame): Cell table with ``_index``, ``group`` and
            ``batch`` columns.
    """
    counts: np.ndarray
    W: np.ndarray
    mu: np.ndarray
    pi: np.ndarray
    theta: np.ndarray
    cells: pl.DataFrame


class ZinbDataGenerator:
    """Generator of zero-inflated count matrices with latent structure.

    Parameters
    ----------
    n_genes : int, default=100
        Number of genes.
    n_cells : int, default=50
        Number of cells.
    K : int, default=2
        Rank of the latent signal.
    n_groups : int, default=3
        Number of cell groups; group centroids live in the K-dimensional
        latent space.
    n_batches : int, default=1
        Number of batches. Each batch shifts the log-mean of every gene.
    dispersion : float, default=5.0
        Median dispersion; gene dispersions vary log-normally around it.
    dropout_midpoint : float or None, default=0.0
        Log-mean at which the dropout probability is one half. None disables
        zero inflation.
    random_seed : int, default=42
        Seed for reproducibility.

    Examples
    --------
    >>> data = ZinbDataGenerator(n_genes=30, n_cells=20, random_seed=0).generate()
    >>> data.counts.shape
    (30, 20)
    """

    def __init__(
        self,
        n_genes: int = 100,
        n_cells: int = 50,
        K: int = 2,
        n_groups: int = 3,
        n_batches: int = 1,
        dispersion: float = 5.0,
        dropout_midpoint: float | None = 0.0,
        random_seed: int = 42,
    ) -> None:
        if n_genes < 1 or n_cells < 1:
            raise ValueError(f"n_genes and n_cells must be positive, got {n_genes}, {n_cells}")
        if K < 0 or n_groups < 1 or n_batches < 1:
            raise ValueError("K must be non-negative; n_groups and n_batches positive")
        if dispersion <= 0:
            raise ValueError(f"dispersion must be positive, got {dispersion}")
        self.n_genes = n_genes
        self.n_cells = n_cells
        self.K = K
        self.n_groups = n_groups
        self.n_batches = n_batches
        self.dispersion = dispersion
        self.dropout_midpoint = dropout_midpoint
        self.random_seed = random_seed

    def generate(self) -> SimulatedCounts:
        rng = np.random.default_rng(self.random_seed)
        n, J, K = self.n_cells, self.n_genes, self.K

        groups = rng.integers(0, self.n_groups, size=n)
        batches = rng.integers(0, self.n_batches, size=n)

        centroids = rng.normal(0.0, 1.0, size=(self.n_groups, K))
        W = centroids[groups] + rng.normal(0.0, 0.2, size=(n, K))
        alpha = rng.normal(0.0, 0.5, size=(K, J))

        gene_mean = rng.normal(_DEFAULT_LOG_MEAN, _DEFAULT_LOG_MEAN_STD, size=J)
        batch_shift = rng.normal(0.0, _DEFAULT_BATCH_EFFECT_STD, size=(self.n_batches, J))
        batch_shift[0] = 0.0

        log_mu = gene_mean[np.newaxis, :] + batch_shift[batches] + W @ alpha
        log_mu = np.clip(log_mu, -10.0, 10.0)
        mu = np.exp(log_mu)

        theta = self.dispersion * np.exp(rng.normal(0.0, 0.3, size=J))
        if self.dropout_midpoint is None:
            pi = np.zeros_like(mu)
        else:
            pi = expit(-_DROPOUT_SLOPE * (log_mu - self.dropout_midpoint))

        counts = sample_zinb(mu, theta[np.newaxis, :], pi, rng)
        cells = pl.DataFrame(
            {
                "_index": [f"cell_{i}" for i in range(n)],
                "group": [f"group_{g}" for g in groups],
                "batch": [f"batch_{b}" for b in batches],
            }
        )
        return SimulatedCounts(
            counts=np.ascontiguousarray(counts.T),
            W=W,
            mu=np.ascontiguousarray(mu.T),
            pi=np.ascontiguousarray(pi.T),
            theta=theta,
            cells=cells,
        )
