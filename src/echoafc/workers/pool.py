"""Segmentation worker pool sizing."""

from __future__ import annotations

import os


# Backend calls mostly wait on inference, so the pool may exceed the core count.
MAX_WORKERS_PER_CPU = 4


def normalize_worker_count(requested: int | None) -> int:
    """Return a bounded thread count for segmentation dispatch."""

    if requested is None:
        return 1
    workers = max(1, int(requested))
    cpu = os.cpu_count() or 1
    return min(workers, cpu * MAX_WORKERS_PER_CPU)
