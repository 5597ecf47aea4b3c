#!/usr/bin/env python3
"""
Range Partitioner
=================

Splits a ScanRequest into disjoint contiguous sub-ranges, one per worker.
Concatenating the sub-ranges in worker order reproduces the serial seed
sequence exactly.

Worker count policy (advisory):
    - explicit override wins, capped at MAX_WORKERS
    - single pass for small requests or stride > 1
    - otherwise cpu_count minus ~10% headroom, capped at MAX_WORKERS
"""

import logging
import os
from typing import Iterable, Iterator, List, Optional

from pydantic import ValidationError

from .config import (
    MAX_WORKERS,
    PARALLEL_THRESHOLD,
    UINT32_MASK,
    ConfigurationError,
    check_scan_bounds,
)
from .models import ScanRequest, SubRange

logger = logging.getLogger(__name__)


def make_request(start_seed: int, count: int, stride: int = 1) -> ScanRequest:
    """Build a ScanRequest, reporting bound violations as ConfigurationError."""
    check_scan_bounds(count, stride)
    try:
        return ScanRequest(start_seed=start_seed, count=count, stride=stride)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e


def choose_worker_count(
    request: ScanRequest,
    workers: int = 0,
    cpu_count: Optional[int] = None,
) -> int:
    """Pick how many workers to use for ``request``. ``workers=0`` means auto."""
    if workers < 0:
        raise ConfigurationError(f"worker budget must be >= 0, got {workers}")
    if request.count == 0:
        return 0

    if workers > 0:
        chosen = min(workers, MAX_WORKERS, request.count)
        if chosen != workers:
            logger.info(f"Worker budget {workers} capped to {chosen}")
        return chosen

    if request.count < PARALLEL_THRESHOLD or request.stride > 1:
        return 1

    cpus = cpu_count or os.cpu_count() or 1
    # Leave ~10% headroom (minimum 1 core for the coordinator)
    headroom = max(1, cpus // 10)
    return max(1, min(cpus - headroom, MAX_WORKERS, request.count))


def partition(request: ScanRequest, worker_budget: int) -> List[SubRange]:
    """
    Divide ``request`` into ``min(worker_budget, count)`` sub-ranges.

    The first ``count % W`` sub-ranges take one extra index. Each keeps
    the global stride; its start is the seed at its first global index.
    """
    if worker_budget < 1:
        raise ConfigurationError(f"worker budget must be >= 1, got {worker_budget}")
    if request.count == 0:
        return []

    workers = min(worker_budget, request.count)
    base, extra = divmod(request.count, workers)

    subranges = []
    offset = 0
    for worker_id in range(workers):
        size = base + (1 if worker_id < extra else 0)
        subranges.append(SubRange(
            worker_id=worker_id,
            start_seed=request.seed_at(offset),
            count=size,
            stride=request.stride,
            index_offset=offset,
        ))
        offset += size

    return subranges


def iter_partition_seeds(subranges: Iterable[SubRange]) -> Iterator[int]:
    """Seeds of all sub-ranges, concatenated in worker order."""
    for sub in sorted(subranges, key=lambda s: s.index_offset):
        yield from sub.iter_seeds()


def describe_partition(subranges: List[SubRange]) -> str:
    lines = []
    for sub in subranges:
        last = sub.seed_at(sub.count - 1) if sub.count else sub.start_seed
        lines.append(
            f"  worker {sub.worker_id}: {sub.count} seeds, "
            f"{sub.start_seed}..{last & UINT32_MASK} step {sub.stride}"
        )
    return "\n".join(lines)
