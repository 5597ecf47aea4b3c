#!/usr/bin/env python3
"""
Seed Finder Models - typed data for the seed search
===================================================
Version: 1.0.0

Provides typed models for:
- SimulationModel: the (num_checks, kill_probability) survival predicate
- ScanRequest: the arithmetic seed sequence to test
- SubRange: one worker's contiguous slice of the index space
- ScanResult: outcome of a run
- Worker events: winner / progress / diagnostic / done / failed
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import MAX_CHECKS, MAX_SEEDS, UINT32_MASK

logger = logging.getLogger(__name__)


# =============================================================================
# ENUMS
# =============================================================================

class KillRule(str, Enum):
    """
    Which side of the draw counts as a death.

    Both rules kill with probability p. BELOW is the historical
    convention (draw < p); ABOVE takes the top of the interval
    (draw >= 1 - p). Neither is verified against the game itself.
    """
    BELOW = "below"
    ABOVE = "above"


class RunState(str, Enum):
    """Coordinator lifecycle."""
    IDLE = "IDLE"
    PARTITIONING = "PARTITIONING"
    RUNNING = "RUNNING"
    DRAINING = "DRAINING"
    CLOSED = "CLOSED"


# =============================================================================
# SIMULATION MODEL
# =============================================================================

class SimulationModel(BaseModel):
    """Survival predicate parameters. Shared read-only by every worker."""

    model_config = ConfigDict(frozen=True)

    num_checks: int = Field(35, ge=0, le=MAX_CHECKS)
    kill_probability: float = 0.5
    kill_rule: KillRule = KillRule.BELOW
    note: str = ""

    @field_validator("kill_probability")
    @classmethod
    def _clamp_probability(cls, value: float) -> float:
        if math.isnan(value):
            raise ValueError("kill_probability must be a number, got NaN")
        clamped = min(1.0, max(0.0, value))
        if clamped != value:
            logger.warning(f"kill_probability {value} clamped to {clamped}")
        return clamped

    def describe(self) -> str:
        text = f"{self.num_checks} checks @ p={self.kill_probability:g}"
        if self.kill_rule is not KillRule.BELOW:
            text += f" [kill rule: {self.kill_rule.value}]"
        if self.note:
            text += f" ({self.note})"
        return text


DEFAULT_MODEL = SimulationModel(num_checks=35, kill_probability=0.5, note="default model (35x50%)")


# =============================================================================
# SCAN REQUEST / SUB-RANGE
# =============================================================================

class ScanRequest(BaseModel):
    """Seeds ``(start_seed + i * stride) mod 2^32`` for ``i`` in ``[0, count)``."""

    model_config = ConfigDict(frozen=True)

    start_seed: int = 0
    count: int = Field(..., ge=0, le=MAX_SEEDS)
    stride: int = Field(1, ge=1, le=UINT32_MASK)

    @field_validator("start_seed")
    @classmethod
    def _wrap_start(cls, value: int) -> int:
        return value & UINT32_MASK

    def seed_at(self, index: int) -> int:
        return (self.start_seed + index * self.stride) & UINT32_MASK

    def iter_seeds(self) -> Iterator[int]:
        for i in range(self.count):
            yield self.seed_at(i)


class SubRange(BaseModel):
    """One worker's slice. ``index_offset`` is its position in the parent request."""

    model_config = ConfigDict(frozen=True)

    worker_id: int
    start_seed: int
    count: int = Field(..., ge=0)
    stride: int = Field(1, ge=1)
    index_offset: int = 0

    def seed_at(self, index: int) -> int:
        return (self.start_seed + index * self.stride) & UINT32_MASK

    def iter_seeds(self) -> Iterator[int]:
        for i in range(self.count):
            yield self.seed_at(i)


# =============================================================================
# RESULT
# =============================================================================

class WorkerFailure(BaseModel):
    worker_id: int
    message: str
    tested: int = 0
    exit_code: Optional[int] = None


class ScanResult(BaseModel):
    """Outcome of one run."""

    output_path: str
    seeds_requested: int
    seeds_tested: int = 0
    winners: int = 0
    duration_seconds: float = 0.0
    worker_count: int = 0
    failed_workers: List[WorkerFailure] = Field(default_factory=list)
    diagnostics: int = 0
    cancelled: bool = False
    state: RunState = RunState.IDLE

    @property
    def success(self) -> bool:
        return not self.cancelled and not self.failed_workers

    @property
    def exit_code(self) -> int:
        if self.cancelled:
            return 130
        if self.failed_workers:
            return 3
        return 0

    @property
    def seeds_per_sec(self) -> float:
        return self.seeds_tested / self.duration_seconds if self.duration_seconds > 0 else 0.0


# =============================================================================
# WORKER EVENTS
# =============================================================================

@dataclass(frozen=True)
class WinnerEvent:
    worker_id: int
    seed: int


@dataclass(frozen=True)
class ProgressEvent:
    worker_id: int
    delta: int


@dataclass(frozen=True)
class DiagnosticEvent:
    """A single seed could not be evaluated. The seed counts as tested, not as a winner."""
    worker_id: int
    seed: int
    message: str


@dataclass(frozen=True)
class WorkerDoneEvent:
    worker_id: int
    tested: int
    winners: int
    cancelled: bool = False


@dataclass(frozen=True)
class WorkerFailedEvent:
    worker_id: int
    message: str
    tested: int = 0
