#!/usr/bin/env python3
"""
Result Sink
===========

Single writer for a run's output file.

File format:
    # Winning seeds
    # LevelId: none
    # Model: 35 checks @ p=0.5 (default model (35x50%))
    # Generated: 2026-01-01T00:00:00+00:00
    # Seeds requested: 200000 (start=0, stride=1)
    # Seeds tested: 200000

    12345
    67890
    # Seeds tested: 200000
    # Winners: 2

With no winners the seed lines are replaced by ``NO WINNING SEEDS FOUND``.
Winners are written as they arrive; only counters are kept in memory.

The header's "Seeds tested" field reads ``pending`` while the run is in
progress. It is a fixed-width field rewritten in place on close, so a file
from a killed run still says ``pending`` there and has no trailer.
Buffered winners are flushed every ``flush_every`` winners or
``flush_seconds`` seconds, whichever comes first.
"""

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from .models import ScanRequest, SimulationModel

logger = logging.getLogger(__name__)

NO_WINNERS_SENTINEL = "NO WINNING SEEDS FOUND"

# Wide enough for any count up to MAX_SEEDS
TESTED_FIELD_WIDTH = 12
TESTED_PENDING = "pending"


class SinkError(OSError):
    """The output file could not be opened or written. Fatal for the run."""


# =============================================================================
# PROGRESS
# =============================================================================

class ProgressReporter:
    """
    Liveness reporting for a running scan.

    Logs a line every ``report_every_seeds`` seeds or ``report_every_seconds``
    seconds, whichever comes first. On a terminal a rich progress bar is
    shown as well.
    """

    def __init__(
        self,
        total: int,
        report_every_seeds: int = 100_000,
        report_every_seconds: float = 5.0,
        use_rich: Optional[bool] = None,
        console: Optional[Console] = None,
    ):
        self.total = total
        self.report_every_seeds = report_every_seeds
        self.report_every_seconds = report_every_seconds
        self.start_time = time.time()
        self.tested = 0
        self.winners = 0
        self._last_report_time = self.start_time
        self._last_report_tested = 0

        self.console = console or Console(stderr=True)
        if use_rich is None:
            use_rich = self.console.is_terminal
        self._progress = None
        self._task_id = None
        if use_rich and total > 0:
            self._progress = Progress(
                TextColumn("[cyan]Scanning"),
                BarColumn(),
                TextColumn("{task.completed:,.0f}/{task.total:,.0f} seeds"),
                TextColumn("[green]{task.fields[winners]} winners"),
                TimeElapsedColumn(),
                TimeRemainingColumn(),
                console=self.console,
                transient=True,
            )

    @property
    def elapsed(self) -> float:
        return time.time() - self.start_time

    def start(self) -> None:
        if self._progress is not None:
            self._progress.start()
            self._task_id = self._progress.add_task("scan", total=self.total, winners=0)

    def update(self, tested: int, winners: int) -> None:
        self.tested = tested
        self.winners = winners
        if self._progress is not None:
            self._progress.update(self._task_id, completed=tested, winners=winners)

        now = time.time()
        if (tested - self._last_report_tested >= self.report_every_seeds
                or now - self._last_report_time >= self.report_every_seconds):
            self._last_report_tested = tested
            self._last_report_time = now
            logger.info(self.format_line())

    def format_line(self) -> str:
        elapsed = self.elapsed
        rate = self.tested / elapsed if elapsed > 0 else 0.0
        pct = (self.tested / self.total * 100) if self.total > 0 else 100.0
        return (
            f"tested {self.tested:,}/{self.total:,} seeds ({pct:.1f}%) | "
            f"winners: {self.winners:,} | elapsed {elapsed:.1f}s | {rate:,.0f} seeds/s"
        )

    def stop(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None


# =============================================================================
# SINK
# =============================================================================

class ResultSink:
    """Append-only winner file plus running progress totals."""

    def __init__(
        self,
        path,
        model: SimulationModel,
        request: ScanRequest,
        level_id: Optional[str] = None,
        flush_every: int = 1000,
        flush_seconds: float = 1.0,
        reporter: Optional[ProgressReporter] = None,
    ):
        self.path = Path(path)
        self.model = model
        self.request = request
        self.level_id = level_id
        self.flush_every = flush_every
        self.flush_seconds = flush_seconds
        self.reporter = reporter
        self.winners = 0
        self.tested = 0
        self.generated_at: Optional[datetime] = None
        self._file = None
        self._closed = False
        self._tested_offset: Optional[int] = None
        self._unflushed = 0
        self._last_flush = time.time()

    @property
    def is_open(self) -> bool:
        return self._file is not None

    def open(self) -> "ResultSink":
        if self._file is not None:
            return self
        if self._closed:
            raise SinkError(f"Sink already closed: {self.path}")
        self.generated_at = datetime.now(timezone.utc)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, "w", encoding="utf-8")
            self._file.write(self._header())
            self._file.write("# Seeds tested: ")
            self._tested_offset = self._file.tell()
            self._file.write(f"{TESTED_PENDING:<{TESTED_FIELD_WIDTH}}\n\n")
            self._file.flush()
            self._last_flush = time.time()
        except OSError as e:
            self._file = None
            raise SinkError(f"Cannot open output file {self.path}: {e}") from e
        logger.info(f"Writing winners to {self.path}")
        if self.reporter is not None:
            self.reporter.start()
        return self

    def _header(self) -> str:
        return (
            "# Winning seeds\n"
            f"# LevelId: {self.level_id or 'none'}\n"
            f"# Model: {self.model.describe()}\n"
            f"# Generated: {self.generated_at.isoformat()}\n"
            f"# Seeds requested: {self.request.count} "
            f"(start={self.request.start_seed}, stride={self.request.stride})\n"
        )

    def _write(self, text: str) -> None:
        if self._file is None:
            raise SinkError(f"Sink is not open: {self.path}")
        try:
            self._file.write(text)
        except OSError as e:
            raise SinkError(f"Cannot write to {self.path}: {e}") from e

    def add_winner(self, seed: int) -> None:
        self._write(f"{seed}\n")
        self.winners += 1
        self._unflushed += 1
        if self._unflushed >= self.flush_every:
            self.flush()
        else:
            self._flush_if_stale()

    def add_progress(self, delta: int) -> None:
        self.tested += delta
        # a lone winner must not sit in the buffer until the next one arrives
        self._flush_if_stale()
        if self.reporter is not None:
            self.reporter.update(self.tested, self.winners)

    def _flush_if_stale(self) -> None:
        if self._unflushed and time.time() - self._last_flush >= self.flush_seconds:
            self.flush()

    def flush(self) -> None:
        if self._file is None:
            return
        try:
            self._file.flush()
        except OSError as e:
            raise SinkError(f"Cannot flush {self.path}: {e}") from e
        self._unflushed = 0
        self._last_flush = time.time()

    def _finalise_header(self) -> None:
        if self._tested_offset is None:
            return
        field = str(self.tested)
        if len(field) > TESTED_FIELD_WIDTH:
            logger.warning(f"Seeds tested count {field} does not fit the header; see trailer")
            return
        self._file.seek(self._tested_offset)
        self._file.write(f"{field:<{TESTED_FIELD_WIDTH}}")
        self._file.seek(0, 2)

    def close(self, seeds_tested: Optional[int] = None) -> None:
        """Write the trailer and close. A second call does nothing."""
        if self._file is None:
            return
        if seeds_tested is not None:
            self.tested = seeds_tested
        try:
            if self.winners == 0:
                self._write(f"{NO_WINNERS_SENTINEL}\n")
            self._write(f"# Seeds tested: {self.tested}\n# Winners: {self.winners}\n")
            self._finalise_header()
            self._file.flush()
            self._file.close()
        except OSError as e:
            raise SinkError(f"Cannot close {self.path}: {e}") from e
        finally:
            self._file = None
            self._closed = True
            if self.reporter is not None:
                self.reporter.stop()
        logger.info(f"Closed {self.path}: {self.winners} winners, {self.tested} seeds tested")

    def __enter__(self) -> "ResultSink":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        elif self.is_open:
            # Keep what was written; the trailer marks the file as incomplete
            try:
                self._write(f"# Aborted: {exc_type.__name__}\n")
            finally:
                self.close()


def read_winners(path) -> List[int]:
    """Parse winner seeds back out of an output file."""
    seeds = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or line == NO_WINNERS_SENTINEL:
                continue
            seeds.append(int(line))
    return seeds
