#!/usr/bin/env python3
"""
Worker Task
===========

Scans one SubRange and reports through an ``emit`` callable:

    WinnerEvent      one per surviving seed
    ProgressEvent    every ``progress_interval`` seeds, plus the remainder
    DiagnosticEvent  a seed that raised; it counts as tested, not as a winner
    WorkerDoneEvent  exactly once, at the end (also on cancellation)

``run_subrange`` is used in-process for serial runs. ``worker_main`` is
the process entry point for parallel runs; there ``emit`` is the shared
queue's ``put``.
"""

import logging
import signal
import sys
from typing import Callable, Optional

import numpy as np

from .config import PROGRESS_INTERVAL, UINT32_MASK
from .evaluator import evaluate_block, evaluate_model
from .models import (
    DiagnosticEvent,
    ProgressEvent,
    SimulationModel,
    SubRange,
    WinnerEvent,
    WorkerDoneEvent,
    WorkerFailedEvent,
)

logger = logging.getLogger(__name__)

# python engine polls the cancel flag this often
CANCEL_POLL_EVERY = 1024

Emit = Callable[[object], None]


def run_subrange(
    subrange: SubRange,
    model: SimulationModel,
    emit: Emit,
    cancel_event=None,
    progress_interval: int = PROGRESS_INTERVAL,
    engine: str = "numpy",
) -> WorkerDoneEvent:
    """Test every seed of ``subrange`` in increasing index order."""
    if progress_interval < 1:
        raise ValueError(f"progress_interval must be >= 1, got {progress_interval}")

    if engine == "numpy":
        tested, winners, cancelled = _scan_numpy(subrange, model, emit, cancel_event, progress_interval)
    elif engine == "python":
        tested, winners, cancelled = _scan_python(subrange, model, emit, cancel_event, progress_interval)
    else:
        raise ValueError(f"unknown engine {engine!r}")

    done = WorkerDoneEvent(
        worker_id=subrange.worker_id,
        tested=tested,
        winners=winners,
        cancelled=cancelled,
    )
    emit(done)
    return done


def _cancelled(cancel_event) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def _test_seed(seed: int, model: SimulationModel, worker_id: int, emit: Emit) -> bool:
    try:
        return evaluate_model(seed, model)
    except Exception as e:
        emit(DiagnosticEvent(worker_id=worker_id, seed=seed, message=f"{type(e).__name__}: {e}"))
        return False


def _scan_python(subrange, model, emit, cancel_event, progress_interval):
    worker_id = subrange.worker_id
    tested = 0
    winners = 0
    unreported = 0
    cancelled = False

    for i in range(subrange.count):
        if i % CANCEL_POLL_EVERY == 0 and _cancelled(cancel_event):
            cancelled = True
            break

        seed = subrange.seed_at(i)
        if _test_seed(seed, model, worker_id, emit):
            winners += 1
            emit(WinnerEvent(worker_id=worker_id, seed=seed))

        tested += 1
        unreported += 1
        if unreported == progress_interval:
            emit(ProgressEvent(worker_id=worker_id, delta=unreported))
            unreported = 0

    if unreported:
        emit(ProgressEvent(worker_id=worker_id, delta=unreported))

    return tested, winners, cancelled


def _scan_numpy(subrange, model, emit, cancel_event, progress_interval):
    worker_id = subrange.worker_id
    start = np.uint64(subrange.start_seed)
    stride = np.uint64(subrange.stride)
    mask = np.uint64(UINT32_MASK)
    tested = 0
    winners = 0
    cancelled = False

    for block_start in range(0, subrange.count, progress_interval):
        if _cancelled(cancel_event):
            cancelled = True
            break

        block_len = min(progress_interval, subrange.count - block_start)
        index = np.arange(block_start, block_start + block_len, dtype=np.uint64)
        seeds = (start + index * stride) & mask

        try:
            survived = seeds[evaluate_block(seeds, model)]
        except Exception as e:
            # Re-test the block one seed at a time so only the faulty seeds are lost
            logger.warning(
                f"Worker {worker_id}: block evaluation failed at index {block_start} "
                f"({type(e).__name__}: {e}); retrying seed by seed"
            )
            survived = [int(s) for s in seeds if _test_seed(int(s), model, worker_id, emit)]

        for seed in survived:
            emit(WinnerEvent(worker_id=worker_id, seed=int(seed)))
        winners += len(survived)
        tested += block_len
        emit(ProgressEvent(worker_id=worker_id, delta=block_len))

    return tested, winners, cancelled


# =============================================================================
# PROCESS ENTRY POINT
# =============================================================================

def worker_main(
    subrange: SubRange,
    model: SimulationModel,
    queue,
    cancel_event,
    progress_interval: int = PROGRESS_INTERVAL,
    engine: str = "numpy",
) -> None:
    """Run one sub-range in a child process, reporting through ``queue``."""
    # Ctrl-C is handled by the coordinator, which sets cancel_event
    signal.signal(signal.SIGINT, signal.SIG_IGN)

    tested = 0

    def emit(event) -> None:
        nonlocal tested
        if isinstance(event, ProgressEvent):
            tested += event.delta
        queue.put(event)

    try:
        run_subrange(
            subrange,
            model,
            emit,
            cancel_event=cancel_event,
            progress_interval=progress_interval,
            engine=engine,
        )
    except Exception as e:
        queue.put(WorkerFailedEvent(
            worker_id=subrange.worker_id,
            message=f"{type(e).__name__}: {e}",
            tested=tested,
        ))
        sys.exit(1)
