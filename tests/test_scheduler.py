#!/usr/bin/env python3
"""
Coordinator tests.

End-to-end runs in serial and parallel mode, fan-in fault handling driven
with fake processes, and worker faults and cancellation in real forked
worker processes.
"""

import multiprocessing
import os
import queue
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from seed_finder.config import ConfigurationError
from seed_finder.models import (
    DiagnosticEvent,
    ProgressEvent,
    RunState,
    ScanRequest,
    ScanResult,
    SimulationModel,
    WinnerEvent,
    WorkerDoneEvent,
    WorkerFailedEvent,
    WorkerFailure,
)
from seed_finder.scheduler import ScanCoordinator, run_scan
from seed_finder.sink import NO_WINNERS_SENTINEL, ProgressReporter, ResultSink, SinkError, read_winners
from seed_finder.worker import run_subrange

DEFAULT = SimulationModel(num_checks=35, kill_probability=0.5)


def _quiet():
    return ProgressReporter(total=0, use_rich=False)


class TestEndToEnd:

    @pytest.mark.parametrize("workers", [1, 3])
    def test_p_zero_all_seeds_win(self, tmp_path, workers):
        out = tmp_path / "out.txt"
        model = SimulationModel(num_checks=1, kill_probability=0.0)
        result = run_scan(model, out, start_seed=0, count=10, stride=1,
                          workers=workers, reporter=_quiet())

        assert sorted(read_winners(out)) == list(range(10))
        assert result.winners == 10
        assert result.seeds_tested == 10
        assert result.exit_code == 0
        assert result.state is RunState.CLOSED

    @pytest.mark.parametrize("workers", [1, 2])
    def test_p_one_no_winners(self, tmp_path, workers):
        out = tmp_path / "out.txt"
        model = SimulationModel(num_checks=1, kill_probability=1.0)
        result = run_scan(model, out, start_seed=0, count=10, stride=1,
                          workers=workers, reporter=_quiet())

        assert read_winners(out) == []
        assert NO_WINNERS_SENTINEL in out.read_text()
        assert result.winners == 0
        assert result.seeds_tested == 10

    def test_default_model_is_reproducible(self, tmp_path):
        first = tmp_path / "first.txt"
        second = tmp_path / "second.txt"
        run_scan(DEFAULT, first, start_seed=0, count=200_000, workers=1, reporter=_quiet())
        run_scan(DEFAULT, second, start_seed=0, count=200_000, workers=1, reporter=_quiet())

        assert read_winners(first) == read_winners(second)

    def test_parallel_matches_serial(self, tmp_path):
        model = SimulationModel(num_checks=12, kill_probability=0.5)
        serial_out = tmp_path / "serial.txt"
        parallel_out = tmp_path / "parallel.txt"

        serial = run_scan(model, serial_out, start_seed=12345, count=60_000,
                          workers=1, reporter=_quiet())
        parallel = run_scan(model, parallel_out, start_seed=12345, count=60_000,
                            workers=3, progress_interval=5000, reporter=_quiet())

        assert serial.worker_count == 1
        assert parallel.worker_count == 3
        assert parallel.seeds_tested == 60_000
        assert set(read_winners(serial_out)) == set(read_winners(parallel_out))
        assert len(read_winners(parallel_out)) == parallel.winners
        assert serial.winners == parallel.winners > 0

    def test_python_engine_matches_numpy(self, tmp_path):
        model = SimulationModel(num_checks=6, kill_probability=0.5)
        run_scan(model, tmp_path / "np.txt", count=20_000, stride=3,
                 engine="numpy", reporter=_quiet())
        run_scan(model, tmp_path / "py.txt", count=20_000, stride=3,
                 engine="python", reporter=_quiet())
        assert read_winners(tmp_path / "np.txt") == read_winners(tmp_path / "py.txt")

    def test_empty_scan(self, tmp_path):
        out = tmp_path / "out.txt"
        result = run_scan(DEFAULT, out, count=0, reporter=_quiet())
        assert result.worker_count == 0
        assert result.seeds_tested == 0
        assert NO_WINNERS_SENTINEL in out.read_text()


class TestConfiguration:

    def test_unknown_engine_rejected(self, tmp_path):
        request = ScanRequest(start_seed=0, count=10, stride=1)
        with pytest.raises(ConfigurationError):
            ScanCoordinator(request, DEFAULT, tmp_path / "out.txt", engine="cuda")

    def test_count_cap_rejected_before_output(self, tmp_path):
        out = tmp_path / "out.txt"
        with pytest.raises(ConfigurationError):
            run_scan(DEFAULT, out, count=10**9)
        assert not out.exists()

    def test_unwritable_output_is_fatal(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(SinkError):
            run_scan(DEFAULT, blocker / "out.txt", count=10, reporter=_quiet())


class _FakeProcess:
    def __init__(self, alive=True, exitcode=None):
        self._alive = alive
        self.exitcode = exitcode

    def is_alive(self):
        return self._alive


class TestFanIn:

    def _coordinator(self, tmp_path):
        request = ScanRequest(start_seed=0, count=30, stride=1)
        coordinator = ScanCoordinator(request, DEFAULT, tmp_path / "out.txt", reporter=_quiet())
        sink = ResultSink(tmp_path / "out.txt", DEFAULT, request).open()
        result = ScanResult(output_path=str(sink.path), seeds_requested=30)
        return coordinator, sink, result

    def test_events_routed(self, tmp_path):
        coordinator, sink, result = self._coordinator(tmp_path)
        coordinator._pending = {0, 1}
        coordinator.state = RunState.RUNNING

        for event in [
            WinnerEvent(worker_id=0, seed=4),
            ProgressEvent(worker_id=0, delta=15),
            DiagnosticEvent(worker_id=1, seed=20, message="boom"),
            WorkerDoneEvent(worker_id=0, tested=15, winners=1),
        ]:
            coordinator._handle_event(event, sink, result)

        assert sink.winners == 1
        assert sink.tested == 15
        assert result.diagnostics == 1
        assert coordinator._pending == {1}
        assert coordinator.state is RunState.DRAINING
        sink.close()

    def test_failed_worker_recorded(self, tmp_path):
        coordinator, sink, result = self._coordinator(tmp_path)
        coordinator._pending = {0, 1}
        coordinator._handle_event(
            WorkerFailedEvent(worker_id=1, message="MemoryError: ", tested=7), sink, result)

        assert coordinator._pending == {0}
        assert [f.worker_id for f in result.failed_workers] == [1]
        assert result.failed_workers[0].tested == 7
        assert result.exit_code == 3
        sink.close()

    def test_silent_exit_detected(self, tmp_path):
        coordinator, sink, result = self._coordinator(tmp_path)
        coordinator._pending = {0, 1, 2}
        processes = {
            0: _FakeProcess(alive=True),
            1: _FakeProcess(alive=False, exitcode=-9),
            2: _FakeProcess(alive=False, exitcode=0),
        }
        events = queue.Queue()
        # worker 2 reported just before exiting
        events.put(WinnerEvent(worker_id=2, seed=21))
        events.put(WorkerDoneEvent(worker_id=2, tested=10, winners=1))

        coordinator._reap_dead_workers(events, processes, sink, result)

        assert coordinator._pending == {0}
        assert [f.worker_id for f in result.failed_workers] == [1]
        assert result.failed_workers[0].exit_code == -9
        assert sink.winners == 1
        sink.close()


class TestScanResult:

    def test_clean_run(self):
        result = ScanResult(output_path="o.txt", seeds_requested=100,
                            seeds_tested=100, duration_seconds=4.0)
        assert result.success
        assert result.exit_code == 0
        assert result.seeds_per_sec == 25.0

    def test_zero_duration_rate(self):
        assert ScanResult(output_path="o.txt", seeds_requested=0).seeds_per_sec == 0.0

    def test_cancel_outranks_failure(self):
        result = ScanResult(
            output_path="o.txt",
            seeds_requested=10,
            cancelled=True,
            failed_workers=[WorkerFailure(worker_id=0, message="x")],
        )
        assert not result.success
        assert result.exit_code == 130


# =============================================================================
# Real child processes. Fork inherits the patched worker.run_subrange.
# =============================================================================

fork_only = pytest.mark.skipif(
    "fork" not in multiprocessing.get_all_start_methods(),
    reason="needs the fork start method",
)

ALL_WIN = SimulationModel(num_checks=1, kill_probability=0.0)


def _raise_in_worker_one(subrange, model, emit, **kwargs):
    if subrange.worker_id == 1:
        raise MemoryError("boom")
    return run_subrange(subrange, model, emit, **kwargs)


def _die_in_worker_one(subrange, model, emit, **kwargs):
    if subrange.worker_id == 1:
        os._exit(7)
    return run_subrange(subrange, model, emit, **kwargs)


def _win_first_then_wait(subrange, model, emit, cancel_event=None, **kwargs):
    emit(WinnerEvent(worker_id=subrange.worker_id, seed=subrange.start_seed))
    emit(ProgressEvent(worker_id=subrange.worker_id, delta=1))
    cancel_event.wait(timeout=30)
    done = WorkerDoneEvent(worker_id=subrange.worker_id, tested=1, winners=1,
                           cancelled=cancel_event.is_set())
    emit(done)
    return done


class _CancelOnProgress(ProgressReporter):
    """Calls ``on_progress`` from the coordinator's thread on every progress update."""

    def __init__(self):
        super().__init__(total=0, use_rich=False)
        self.on_progress = None

    def update(self, tested, winners):
        super().update(tested, winners)
        if self.on_progress is not None:
            self.on_progress()


def _fork_coordinator(tmp_path, model=ALL_WIN, reporter=None):
    request = ScanRequest(start_seed=0, count=30, stride=1)
    return ScanCoordinator(
        request,
        model,
        tmp_path / "out.txt",
        workers=3,
        mp_context=multiprocessing.get_context("fork"),
        reporter=reporter or _quiet(),
        poll_interval=0.05,
    )


@fork_only
class TestWorkerProcessFaults:

    def test_exception_in_worker(self, tmp_path, monkeypatch):
        monkeypatch.setattr("seed_finder.worker.run_subrange", _raise_in_worker_one)

        result = _fork_coordinator(tmp_path).run()

        assert result.exit_code == 3
        assert [f.worker_id for f in result.failed_workers] == [1]
        assert result.failed_workers[0].message == "MemoryError: boom"
        assert result.seeds_tested == 20
        assert sorted(read_winners(tmp_path / "out.txt")) == list(range(10)) + list(range(20, 30))
        assert result.state is RunState.CLOSED

    def test_silent_process_death(self, tmp_path, monkeypatch):
        monkeypatch.setattr("seed_finder.worker.run_subrange", _die_in_worker_one)

        result = _fork_coordinator(tmp_path).run()

        assert result.exit_code == 3
        assert [f.worker_id for f in result.failed_workers] == [1]
        assert result.failed_workers[0].exit_code == 7
        assert "without reporting" in result.failed_workers[0].message
        assert sorted(read_winners(tmp_path / "out.txt")) == list(range(10)) + list(range(20, 30))

    def test_cancel_keeps_emitted_winners(self, tmp_path, monkeypatch):
        monkeypatch.setattr("seed_finder.worker.run_subrange", _win_first_then_wait)
        reporter = _CancelOnProgress()
        coordinator = _fork_coordinator(tmp_path, reporter=reporter)
        reporter.on_progress = coordinator.cancel

        result = coordinator.run()

        assert result.cancelled
        assert result.exit_code == 130
        assert not result.failed_workers
        assert sorted(read_winners(tmp_path / "out.txt")) == [0, 10, 20]
        assert result.seeds_tested == 3
