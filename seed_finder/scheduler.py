#!/usr/bin/env python3
"""
Scan Coordinator
================

Partitions a ScanRequest, runs the workers and feeds their events into
the ResultSink. The coordinator is the only writer of the output file.

    IDLE -> PARTITIONING -> RUNNING -> DRAINING -> CLOSED

Serial runs (one sub-range) execute in-process. Parallel runs start one
process per sub-range; all of them share one event queue. The sink is
closed only after every worker has reported done, reported failure, or
exited.

Fault handling:
    - per-seed faults arrive as DiagnosticEvents and are counted
    - a failed worker is recorded; the others run to completion (exit 3)
    - Ctrl-C sets the shared cancel event; emitted winners are kept (exit 130)
    - SinkError is fatal: workers are stopped and the error propagates
"""

import logging
import multiprocessing
import queue as queue_module
import threading
import time
from typing import Dict, List, Optional

from .config import ENGINES, PROGRESS_INTERVAL, ConfigurationError
from .models import (
    DiagnosticEvent,
    ProgressEvent,
    RunState,
    ScanRequest,
    ScanResult,
    SimulationModel,
    SubRange,
    WinnerEvent,
    WorkerDoneEvent,
    WorkerFailedEvent,
    WorkerFailure,
)
from .partition import choose_worker_count, describe_partition, make_request, partition
from .sink import ProgressReporter, ResultSink, SinkError
from .worker import run_subrange, worker_main

logger = logging.getLogger(__name__)

# How long to wait for workers to exit once they have reported
JOIN_TIMEOUT_SECONDS = 10.0


class ScanCoordinator:
    """Runs one scan from partitioning to a closed output file."""

    def __init__(
        self,
        request: ScanRequest,
        model: SimulationModel,
        output_path,
        workers: int = 0,
        engine: str = "numpy",
        progress_interval: int = PROGRESS_INTERVAL,
        level_id: Optional[str] = None,
        mp_context=None,
        reporter: Optional[ProgressReporter] = None,
        poll_interval: float = 0.2,
    ):
        if engine not in ENGINES:
            raise ConfigurationError(f"engine must be one of {ENGINES}, got {engine!r}")
        if progress_interval < 1:
            raise ConfigurationError(f"progress_interval must be >= 1, got {progress_interval}")

        self.request = request
        self.model = model
        self.output_path = output_path
        self.workers = workers
        self.engine = engine
        self.progress_interval = progress_interval
        self.level_id = level_id
        self.mp_context = mp_context or multiprocessing.get_context("spawn")
        self.reporter = reporter
        self.poll_interval = poll_interval

        self.state = RunState.IDLE
        self.cancel_event = None
        self._pending: set = set()

    # -------------------------------------------------------------------------
    # lifecycle
    # -------------------------------------------------------------------------

    def _transition(self, state: RunState) -> None:
        logger.debug(f"Coordinator state: {self.state.value} -> {state.value}")
        self.state = state

    def cancel(self) -> None:
        """Ask running workers to stop after their current seed or block."""
        if self.cancel_event is not None:
            self.cancel_event.set()

    def run(self) -> ScanResult:
        started = time.time()

        self._transition(RunState.PARTITIONING)
        worker_count = choose_worker_count(self.request, self.workers)
        subranges = partition(self.request, worker_count) if worker_count else []
        logger.info(
            f"Scanning {self.request.count:,} seeds from {self.request.start_seed} "
            f"(stride {self.request.stride}) with {len(subranges)} worker(s), engine={self.engine}"
        )
        if len(subranges) > 1:
            logger.debug("Partition:\n" + describe_partition(subranges))

        result = ScanResult(
            output_path=str(self.output_path),
            seeds_requested=self.request.count,
            worker_count=len(subranges),
        )

        reporter = self.reporter or ProgressReporter(total=self.request.count)
        sink = ResultSink(
            self.output_path,
            self.model,
            self.request,
            level_id=self.level_id,
            reporter=reporter,
        )
        sink.open()

        try:
            if len(subranges) > 1:
                self._run_parallel(subranges, sink, result)
            else:
                self._run_serial(subranges, sink, result)
        except BaseException:
            try:
                sink.close()
            except SinkError as close_error:
                logger.error(f"Could not finalise {sink.path}: {close_error}")
            self._transition(RunState.CLOSED)
            raise

        sink.close()
        self._transition(RunState.CLOSED)

        result.seeds_tested = sink.tested
        result.winners = sink.winners
        result.duration_seconds = time.time() - started
        result.state = self.state

        if result.failed_workers:
            ids = ", ".join(str(f.worker_id) for f in result.failed_workers)
            logger.warning(f"Partial result: worker(s) {ids} failed before finishing their range")
        if result.cancelled:
            logger.warning("Scan cancelled; output holds the winners found so far")
        logger.info(
            f"Done. Tested {result.seeds_tested:,} seeds, winners found: {result.winners:,} "
            f"({result.seeds_per_sec:,.0f} seeds/s). Output: {result.output_path}"
        )
        return result

    # -------------------------------------------------------------------------
    # event handling
    # -------------------------------------------------------------------------

    def _handle_event(self, event, sink: ResultSink, result: ScanResult) -> None:
        if isinstance(event, WinnerEvent):
            sink.add_winner(event.seed)
        elif isinstance(event, ProgressEvent):
            sink.add_progress(event.delta)
        elif isinstance(event, DiagnosticEvent):
            result.diagnostics += 1
            logger.warning(f"Worker {event.worker_id}: sim error seed {event.seed}: {event.message}")
        elif isinstance(event, WorkerDoneEvent):
            self._worker_finished(event.worker_id)
            logger.debug(
                f"Worker {event.worker_id} done: {event.tested} tested, {event.winners} winners"
                + (" (cancelled)" if event.cancelled else "")
            )
        elif isinstance(event, WorkerFailedEvent):
            self._worker_finished(event.worker_id)
            result.failed_workers.append(WorkerFailure(
                worker_id=event.worker_id,
                message=event.message,
                tested=event.tested,
            ))
            logger.error(f"Worker {event.worker_id} failed after {event.tested} seeds: {event.message}")
        else:
            logger.error(f"Unknown worker event: {event!r}")

    def _worker_finished(self, worker_id: int) -> None:
        self._pending.discard(worker_id)
        if len(self._pending) == 1 and self.state is RunState.RUNNING:
            self._transition(RunState.DRAINING)

    # -------------------------------------------------------------------------
    # serial
    # -------------------------------------------------------------------------

    def _run_serial(self, subranges: List[SubRange], sink: ResultSink, result: ScanResult) -> None:
        self.cancel_event = threading.Event()
        self._pending = {s.worker_id for s in subranges}
        self._transition(RunState.RUNNING)
        if not subranges:
            self._transition(RunState.DRAINING)
            return

        self._transition(RunState.DRAINING)
        emit = lambda event: self._handle_event(event, sink, result)  # noqa: E731
        try:
            run_subrange(
                subranges[0],
                self.model,
                emit,
                cancel_event=self.cancel_event,
                progress_interval=self.progress_interval,
                engine=self.engine,
            )
        except KeyboardInterrupt:
            logger.warning("Interrupted; stopping serial scan")
            result.cancelled = True
        if self.cancel_event.is_set():
            result.cancelled = True

    # -------------------------------------------------------------------------
    # parallel
    # -------------------------------------------------------------------------

    def _run_parallel(self, subranges: List[SubRange], sink: ResultSink, result: ScanResult) -> None:
        ctx = self.mp_context
        events = ctx.Queue()
        self.cancel_event = ctx.Event()

        processes: Dict[int, multiprocessing.Process] = {}
        for sub in subranges:
            processes[sub.worker_id] = ctx.Process(
                target=worker_main,
                args=(sub, self.model, events, self.cancel_event, self.progress_interval, self.engine),
                name=f"seed-worker-{sub.worker_id}",
                daemon=True,
            )
        self._pending = set(processes)
        for proc in processes.values():
            proc.start()
        self._transition(RunState.RUNNING)

        try:
            try:
                self._collect(events, processes, sink, result)
            except KeyboardInterrupt:
                logger.warning("Interrupted; asking workers to stop")
                self.cancel_event.set()
                result.cancelled = True
                self._collect(events, processes, sink, result)
        except BaseException:
            self.cancel_event.set()
            for proc in processes.values():
                if proc.is_alive():
                    proc.terminate()
            raise
        finally:
            for proc in processes.values():
                proc.join(timeout=JOIN_TIMEOUT_SECONDS)
                if proc.is_alive():
                    logger.warning(f"{proc.name} did not exit; terminating")
                    proc.terminate()
                    proc.join(timeout=JOIN_TIMEOUT_SECONDS)
            events.close()
            events.join_thread()

        if self.cancel_event.is_set():
            result.cancelled = True

    def _collect(self, events, processes, sink: ResultSink, result: ScanResult) -> None:
        """Consume events until no worker is pending."""
        while self._pending:
            try:
                event = events.get(timeout=self.poll_interval)
            except queue_module.Empty:
                self._reap_dead_workers(events, processes, sink, result)
                continue
            self._handle_event(event, sink, result)

    def _reap_dead_workers(self, events, processes, sink: ResultSink, result: ScanResult) -> None:
        """Mark workers that exited without reporting as failed."""
        dead = [wid for wid in self._pending if not processes[wid].is_alive()]
        if not dead:
            return
        # A worker may have reported just before exiting
        while True:
            try:
                event = events.get_nowait()
            except queue_module.Empty:
                break
            self._handle_event(event, sink, result)

        for wid in dead:
            if wid not in self._pending:
                continue
            exit_code = processes[wid].exitcode
            self._worker_finished(wid)
            result.failed_workers.append(WorkerFailure(
                worker_id=wid,
                message=f"worker process exited with code {exit_code} without reporting",
                exit_code=exit_code,
            ))
            logger.error(f"Worker {wid} exited with code {exit_code} before finishing its range")


def run_scan(
    model: SimulationModel,
    output_path,
    start_seed: int = 0,
    count: int = 200_000,
    stride: int = 1,
    workers: int = 0,
    engine: str = "numpy",
    progress_interval: int = PROGRESS_INTERVAL,
    level_id: Optional[str] = None,
    reporter: Optional[ProgressReporter] = None,
) -> ScanResult:
    """Validate the range, then run a ScanCoordinator to completion."""
    request = make_request(start_seed, count, stride)
    coordinator = ScanCoordinator(
        request,
        model,
        output_path,
        workers=workers,
        engine=engine,
        progress_interval=progress_interval,
        level_id=level_id,
        reporter=reporter,
    )
    return coordinator.run()
