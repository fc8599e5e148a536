"""Penalized maximum likelihood estimation of a ZINB-WaVE model.

The estimator alternates over four blocks per outer iteration:

1. dispersion (per gene, or shared),
2. mean model (per gene, then per cell),
3. zero-inflation model (per gene, then per cell),
4. latent factors (per cell), followed by the penalty-optimal rescaling.

Every block is monotone, so the penalized log-likelihood never decreases
between iterations. Numerical problems are recorded on the returned
:class:`FitDiagnostics` and reported once, at the end, as warnings.
"""

from __future__ import annotations

import time
import warnings
from typing import TYPE_CHECKING

from zinbwave.core.exceptions import NonConvergenceWarning, NumericalInstabilityWarning
from zinbwave.core.likelihood import count_clamped
from zinbwave.core.structures import FitDiagnostics
from zinbwave.fit.blocks import (
    BlockSettings,
    dispersion_at_bounds,
    update_dispersion,
    update_latent_factors,
    update_mean_model,
    update_zero_inflation,
)
from zinbwave.fit.convergence import ConvergenceTracker
from zinbwave.fit.initialize import initialize_model

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from zinbwave.config import ZinbConfig
    from zinbwave.core.structures import ZinbModel
    from zinbwave.utils.parallel import WorkerPool

__all__ = ["ZinbEstimator"]


class ZinbEstimator:
    """Block coordinate ascent on the penalized ZINB log-likelihood.

    Parameters
    ----------
    max_iterations : int, default=100
        Maximum number of outer iterations.
    tolerance : float, default=1e-4
        Relative change of the penalized log-likelihood that stops the fit.
    timeout : float, optional
        Wall-clock budget in seconds, checked between blocks.
    init : {"svd", "random"}, default="svd"
        Initialization of the latent factors.
    random_state : int or None, default=42
        Seed of the initialization.
    newton_steps : int, default=2
        Newton steps per regression block.
    max_step_halvings : int, default=10
        Step shrinkages tried before a unit keeps its value.
    step_shrink : float, default=0.5
        Step shrink factor.
    verbose : bool, default=False
        Print one line per outer iteration.
    """

    def __init__(
        self,
        max_iterations: int = 100,
        tolerance: float = 1e-4,
        timeout: float | None = None,
        init: str = "svd",
        random_state: int | None = 42,
        newton_steps: int = 2,
        max_step_halvings: int = 10,
        step_shrink: float = 0.5,
        verbose: bool = False,
    ) -> None:
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.timeout = timeout
        self.init = init
        self.random_state = random_state
        self.settings = BlockSettings(newton_steps, max_step_halvings, step_shrink)
        self.verbose = verbose

    @classmethod
    def from_config(cls, config: ZinbConfig) -> ZinbEstimator:
        return cls(
            max_iterations=config.max_iterations,
            tolerance=config.tolerance,
            timeout=config.timeout,
            init=config.init,
            random_state=config.random_state,
            newton_steps=config.newton_steps,
            max_step_halvings=config.max_step_halvings,
            step_shrink=config.step_shrink,
            verbose=config.verbose,
        )

    def _blocks(self, model: ZinbModel, Y: NDArray[np.float64], pool: WorkerPool):
        blocks = [
            ("dispersion", lambda: update_dispersion(model, Y, pool)),
            ("mean", lambda: update_mean_model(model, Y, pool, self.settings)),
        ]
        if model.zero_inflation:
            blocks.append(
                ("zero_inflation", lambda: update_zero_inflation(model, Y, pool, self.settings))
            )
        if model.n_factors > 0:
            blocks.append(
                ("latent_factors", lambda: update_latent_factors(model, Y, pool, self.settings))
            )
        return blocks

    def fit(self, model: ZinbModel, Y: NDArray[np.float64], pool: WorkerPool) -> FitDiagnostics:
        """Fit ``model`` to ``Y`` in place.

        Parameters
        ----------
        model : ZinbModel
            Model built by :func:`zinbwave.model.zinb_model`.
        Y : NDArray[np.float64]
            Validated counts, cells x genes.
        pool : WorkerPool
            Open pool used by the per-gene and per-cell blocks.

        Returns
        -------
        FitDiagnostics
            Trace, stop reason and numerical flags of the fit.
        """
        diagnostics = FitDiagnostics()
        start = time.perf_counter()

        initialize_model(model, Y, init=self.init, random_state=self.random_state)
        diagnostics.log_operation(
            "initialize",
            {"init": self.init, "random_state": self.random_state, "K": model.n_factors},
        )

        tracker = ConvergenceTracker(self.tolerance, self.max_iterations, self.timeout)
        tracker.start(model.penalized_loglik(Y))
        if self.verbose:
            print(f"ZINB-WaVE: initial penalized log-likelihood {tracker.trace[0]:.4f}")

        blocks = self._blocks(model, Y, pool)
        stop = False
        while not stop:
            interrupted = False
            for _, update in blocks:
                if tracker.timed_out():
                    interrupted = True
                    break
                rejected = update()
                if rejected:
                    diagnostics.n_rejected_steps += rejected

            value = model.penalized_loglik(Y)
            if interrupted:
                tracker.record_partial(value)
                break
            stop = tracker.record(value)
            if self.verbose:
                print(
                    f"ZINB-WaVE iteration {tracker.n_iterations}/{self.max_iterations}: "
                    f"penalized log-likelihood {value:.4f} "
                    f"(relative change {tracker.relative_change:.2e})"
                )

        diagnostics.loglik_trace = list(tracker.trace)
        diagnostics.n_iterations = tracker.n_iterations
        diagnostics.converged = tracker.converged
        diagnostics.stop_reason = tracker.stop_reason or "max_iterations"
        diagnostics.dispersion_flags = dispersion_at_bounds(model)
        diagnostics.n_clamped = count_clamped(model.log_mu)
        if model.zero_inflation:
            diagnostics.n_clamped += count_clamped(model.logit_pi)
        diagnostics.final_loglik = model.loglik(Y)
        diagnostics.elapsed = time.perf_counter() - start
        diagnostics.log_operation(
            "fit",
            {
                "n_iterations": diagnostics.n_iterations,
                "converged": diagnostics.converged,
                "stop_reason": diagnostics.stop_reason,
                "tolerance": self.tolerance,
                "n_rejected_steps": diagnostics.n_rejected_steps,
                "n_jobs": pool.n_workers,
            },
            description=f"Penalized log-likelihood {diagnostics.final_penalized_loglik:.4f}",
        )

        if self.verbose:
            state = "converged" if diagnostics.converged else f"stopped ({diagnostics.stop_reason})"
            print(f"ZINB-WaVE {state} after {diagnostics.n_iterations} iterations "
                  f"in {diagnostics.elapsed:.2f}s")

        _report(diagnostics)
        return diagnostics


def _report(diagnostics: FitDiagnostics) -> None:
    n_flagged = diagnostics.n_flagged_genes
    if n_flagged:
        warnings.warn(
            f"{n_flagged} gene(s) have their dispersion at a bound of the allowed range; "
            "see FitDiagnostics.dispersion_flags.",
            NumericalInstabilityWarning,
            stacklevel=3,
        )
    if diagnostics.n_clamped:
        warnings.warn(
            f"{diagnostics.n_clamped} linear predictor entries exceeded the clamping "
            "interval and were clamped.",
            NumericalInstabilityWarning,
            stacklevel=3,
        )
    if not diagnostics.converged:
        warnings.warn(
            f"ZINB-WaVE did not converge ({diagnostics.stop_reason} after "
            f"{diagnostics.n_iterations} iterations); returning the last parameters.",
            NonConvergenceWarning,
            stacklevel=3,
        )
