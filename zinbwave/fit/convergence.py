"""Stopping rules of the outer coordinate-ascent loop."""

from __future__ import annotations

import time
from collections.abc import Callable

__all__ = ["ConvergenceTracker"]


class ConvergenceTracker:
    """Track the penalized log-likelihood and decide when to stop.

    The loop stops when the relative change between consecutive outer
    iterations, ``|f_new - f_old| / (|f_old| + 1e-12)``, drops below
    ``tolerance`` (converged), when ``max_iterations`` iterations have run, or
    when ``timeout`` seconds have elapsed.

    Parameters
    ----------
    tolerance : float
        Relative change threshold.
    max_iterations : int
        Maximum number of outer iterations.
    timeout : float, optional
        Wall-clock budget in seconds.
    clock : Callable[[], float], optional
        Time source, ``time.perf_counter`` by default.
    """

    def __init__(
        self,
        tolerance: float,
        max_iterations: int,
        timeout: float | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.tolerance = tolerance
        self.max_iterations = max_iterations
        self.timeout = timeout
        self._clock = clock
        self._start = clock()
        self.trace: list[float] = []
        self.n_iterations = 0
        self.converged = False
        self.stop_reason: str | None = None

    def start(self, value: float) -> None:
        """Record the objective at the starting point and reset the clock."""
        self._start = self._clock()
        self.trace = [float(value)]
        self.n_iterations = 0
        self.converged = False
        self.stop_reason = None

    @property
    def elapsed(self) -> float:
        return self._clock() - self._start

    @property
    def relative_change(self) -> float:
        if len(self.trace) < 2:
            return float("inf")
        old, new = self.trace[-2], self.trace[-1]
        return abs(new - old) / (abs(old) + 1e-12)

    def timed_out(self) -> bool:
        """True (and the stop reason set) once the time budget is spent."""
        if self.timeout is None or self.elapsed < self.timeout:
            return False
        self.stop_reason = "timeout"
        self.converged = False
        return True

    def record(self, value: float) -> bool:
        """Record the objective after an outer iteration; True means stop."""
        self.trace.append(float(value))
        self.n_iterations += 1
        if self.relative_change < self.tolerance:
            self.converged = True
            self.stop_reason = "tolerance"
            return True
        if self.n_iterations >= self.max_iterations:
            self.stop_reason = "max_iterations"
            return True
        return self.timed_out()

    def record_partial(self, value: float) -> None:
        """Record the objective of an iteration cut short by the timeout."""
        if value != self.trace[-1]:
            self.trace.append(float(value))
