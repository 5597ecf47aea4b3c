#!/usr/bin/env python3
"""
Seed Finder - 32-bit seed search
================================
Version: 1.0.0

Scans a seed range for seeds whose LCG sequence survives every check of a
SimulationModel, streaming winners to a flat text file.

Usage:
    from seed_finder import SimulationModel, run_scan

    model = SimulationModel(num_checks=35, kill_probability=0.5)
    result = run_scan(model, "winning_seeds.txt", start_seed=0, count=200_000)
    print(f"Winners: {result.winners}")

Components:
    - rng: LCG32 generator (scalar and numpy block)
    - evaluator: survival predicate
    - partition: range partitioner and worker count policy
    - worker: per sub-range scan task
    - sink: output file and progress reporting
    - scheduler: coordinator tying them together
    - level_fetcher / model_policy: derive a model from remote level data
"""

from .config import (
    MAX_CHECKS,
    MAX_SEEDS,
    MAX_WORKERS,
    ConfigurationError,
    SearchSettings,
)
from .evaluator import evaluate, evaluate_block, evaluate_model
from .models import (
    DEFAULT_MODEL,
    KillRule,
    RunState,
    ScanRequest,
    ScanResult,
    SimulationModel,
    SubRange,
)
from .partition import choose_worker_count, make_request, partition
from .rng import LcgRandom, lcg_sequence
from .scheduler import ScanCoordinator, run_scan
from .sink import ResultSink, SinkError, read_winners
from .worker import run_subrange

__all__ = [
    # Config
    "MAX_CHECKS",
    "MAX_SEEDS",
    "MAX_WORKERS",
    "ConfigurationError",
    "SearchSettings",

    # Models
    "DEFAULT_MODEL",
    "KillRule",
    "RunState",
    "ScanRequest",
    "ScanResult",
    "SimulationModel",
    "SubRange",

    # Core
    "LcgRandom",
    "lcg_sequence",
    "evaluate",
    "evaluate_block",
    "evaluate_model",
    "partition",
    "choose_worker_count",
    "make_request",
    "run_subrange",
    "ResultSink",
    "SinkError",
    "read_winners",
    "ScanCoordinator",
    "run_scan",
]

__version__ = "1.0.0"
