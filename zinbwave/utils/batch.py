"""Partitioning of genes or cells into disjoint chunks.

The estimator updates genes (or cells) independently within a block, so a
block can be split into contiguous chunks that workers process without
sharing any output entry.
"""

from __future__ import annotations

import numpy as np


def partition_indices(n_items: int, n_parts: int) -> list[slice]:
    """Split ``range(n_items)`` into at most ``n_parts`` balanced chunks.

    Chunk sizes differ by at most one. Empty chunks are never returned.

    Examples
    --------
    >>> partition_indices(7, 3)
    [slice(0, 3, None), slice(3, 5, None), slice(5, 7, None)]
    """
    if n_parts <= 0:
        raise ValueError(f"n_parts must be positive, got {n_parts}")
    if n_items <= 0:
        return []
    n_parts = min(n_parts, n_items)
    base, extra = divmod(n_items, n_parts)
    sizes = np.full(n_parts, base)
    sizes[:extra] += 1
    bounds = np.concatenate([[0], np.cumsum(sizes)])
    return [slice(int(a), int(b)) for a, b in zip(bounds[:-1], bounds[1:])]
