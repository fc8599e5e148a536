"""Worker pool for per-gene and per-cell block updates.

The pool splits ``range(n_units)`` into disjoint chunks, runs one task per
chunk and returns only once every task has finished. Callers write the
returned values into the model after that barrier, so a block update is
applied completely or not at all.

Threads are used: the per-chunk work is numpy/LAPACK and scipy code that
releases the GIL, and threads share the read-only model arrays without
copying them.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

from zinbwave.utils.batch import partition_indices

__all__ = ["WorkerPool", "resolve_n_jobs"]

T = TypeVar("T")


def resolve_n_jobs(n_jobs: int) -> int:
    """Translate ``n_jobs`` (positive or -1) into a number of workers."""
    if n_jobs == -1:
        return os.cpu_count() or 1
    if n_jobs < 1:
        raise ValueError(f"n_jobs must be a positive integer or -1, got {n_jobs}")
    return n_jobs


class WorkerPool:
    """Fixed-size pool of worker threads operating on disjoint unit chunks.

    Use as a context manager; the executor is created on entry (or on the
    first parallel ``map_chunks`` call of a pool that was never entered) and
    shut down on exit or by :meth:`shutdown`. With ``n_jobs=1`` tasks run
    inline and no executor is created.

    Parameters
    ----------
    n_jobs : int, default=1
        Number of workers; -1 uses every core.

    Examples
    --------
    >>> import numpy as np
    >>> with WorkerPool(2) as pool:
    ...     parts = pool.map_chunks(lambda s: np.arange(10)[s] * 2, 10)
    >>> np.concatenate(parts).tolist()
    [0, 2, 4, 6, 8, 10, 12, 14, 16, 18]
    """

    def __init__(self, n_jobs: int = 1) -> None:
        self.n_workers = resolve_n_jobs(n_jobs)
        self._executor: ThreadPoolExecutor | None = None
        self._closed = False

    def __enter__(self) -> WorkerPool:
        if self._closed:
            raise RuntimeError("WorkerPool has been shut down")
        if self.n_workers > 1:
            self._start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()

    def _start(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.n_workers, thread_name_prefix="zinbwave"
            )
        return self._executor

    @property
    def active(self) -> bool:
        return not self._closed

    def shutdown(self) -> None:
        """Wait for running tasks and release the worker threads."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self._closed = True

    def map_chunks(self, func: Callable[[slice], T], n_units: int) -> list[T]:
        """Apply ``func`` to disjoint chunks of ``range(n_units)``.

        Parameters
        ----------
        func : Callable[[slice], T]
            Task run on one chunk. Must not write shared state; its return
            value carries the chunk's results.
        n_units : int
            Number of genes or cells.

        Returns
        -------
        list[T]
            Results in chunk order. Returned only after every chunk finished;
            the first exception raised by a task is re-raised.
        """
        if self._closed:
            raise RuntimeError("WorkerPool has been shut down")
        chunks = partition_indices(n_units, self.n_workers)
        if len(chunks) <= 1:
            return [func(chunk) for chunk in chunks]
        executor = self._start()
        futures = [executor.submit(func, chunk) for chunk in chunks]
        # Barrier: result() blocks until each task is done.
        return [future.result() for future in futures]

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<WorkerPool n_workers={self.n_workers}, {state}>"
