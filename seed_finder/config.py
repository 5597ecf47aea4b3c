#!/usr/bin/env python3
"""
Seed Finder Configuration
=========================
Version: 1.0.0

Explicit safety caps and runtime settings for the seed search.

All caps are checked once, at entry, before any worker is started.
Settings can come from a JSON file and from SEED_FINDER_* environment
variables; the environment wins over the file, explicit CLI flags win
over both.

Usage:
    from seed_finder.config import SearchSettings, MAX_SEEDS

    settings = SearchSettings.from_file("search_config.json")
    settings = settings.with_env_overrides()
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


# ============================================================================
# SAFETY CAPS
# ============================================================================

UINT32_MASK = 0xFFFFFFFF
UINT32_RANGE = 1 << 32

MAX_SEEDS = 10_000_000          # seeds tested in one invocation
MAX_CHECKS = 200                # survival checks per seed
MAX_WORKERS = 32                # worker processes per run
MAX_RAW_BYTES = 5_000_000       # remote level payload size

PROGRESS_INTERVAL = 10_000      # seeds per worker progress event
PARALLEL_THRESHOLD = 100_000    # below this a single pass is cheaper

DEFAULT_START_SEED = 0
DEFAULT_MAX_SEEDS = 200_000
DEFAULT_STRIDE = 1
DEFAULT_OUTPUT = "winning_seeds.txt"
DEFAULT_DATA_DIR = "data"

ENGINES = ("numpy", "python")

ENV_PREFIX = "SEED_FINDER_"


class ConfigurationError(ValueError):
    """Scan parameters are out of bounds. Raised before any work starts."""


# ============================================================================
# SETTINGS MODEL
# ============================================================================

class SearchSettings(BaseModel):
    """Runtime settings for one search invocation."""

    start_seed: int = DEFAULT_START_SEED
    max_seeds: int = Field(DEFAULT_MAX_SEEDS, ge=0, le=MAX_SEEDS)
    stride: int = Field(DEFAULT_STRIDE, ge=1, le=UINT32_MASK)
    workers: int = Field(0, ge=0, le=MAX_WORKERS)  # 0 = auto
    engine: str = "numpy"
    progress_interval: int = Field(PROGRESS_INTERVAL, ge=1)
    output: str = DEFAULT_OUTPUT
    data_dir: str = DEFAULT_DATA_DIR
    level_id: Optional[str] = None

    # Model overrides; None means "resolve from level / defaults"
    num_checks: Optional[int] = Field(None, ge=0, le=MAX_CHECKS)
    kill_probability: Optional[float] = None
    kill_rule: str = "below"

    @field_validator("engine")
    @classmethod
    def _known_engine(cls, value: str) -> str:
        if value not in ENGINES:
            raise ValueError(f"engine must be one of {ENGINES}, got {value!r}")
        return value

    @field_validator("kill_rule")
    @classmethod
    def _known_kill_rule(cls, value: str) -> str:
        value = value.lower()
        if value not in ("below", "above"):
            raise ValueError(f"kill_rule must be 'below' or 'above', got {value!r}")
        return value

    @field_validator("start_seed")
    @classmethod
    def _wrap_start(cls, value: int) -> int:
        return value & UINT32_MASK

    @classmethod
    def build(cls, **values: Any) -> "SearchSettings":
        """Construct settings, turning validation failures into ConfigurationError."""
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(_format_validation_error(e)) from e

    @classmethod
    def from_file(cls, path: str) -> "SearchSettings":
        """Load settings from a JSON file."""
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        try:
            with open(config_path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Config file is not valid JSON: {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file must hold a JSON object: {config_path}")
        logger.info(f"Loaded search settings from {config_path}")
        return cls.build(**data)

    def with_env_overrides(self, environ: Optional[Dict[str, str]] = None) -> "SearchSettings":
        """Return a copy with SEED_FINDER_* environment variables applied."""
        environ = os.environ if environ is None else environ
        updates: Dict[str, Any] = {}
        for name in ("max_seeds", "workers", "engine", "start_seed", "stride"):
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is None or raw == "":
                continue
            if name == "engine":
                updates[name] = raw
            else:
                try:
                    updates[name] = int(raw)
                except ValueError as e:
                    raise ConfigurationError(
                        f"{ENV_PREFIX}{name.upper()} must be an integer, got {raw!r}"
                    ) from e
        if not updates:
            return self
        logger.debug(f"Environment overrides: {updates}")
        return self.merged(updates)

    def merged(self, updates: Dict[str, Any]) -> "SearchSettings":
        """Return a copy with non-None values from ``updates`` applied and re-validated."""
        data = self.model_dump()
        data.update({k: v for k, v in updates.items() if v is not None})
        return SearchSettings.build(**data)


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ())) or "settings"
        parts.append(f"{loc}: {item.get('msg')}")
    return "; ".join(parts)


def check_scan_bounds(count: int, stride: int) -> None:
    """Entry check for the seed count and stride caps."""
    if count < 0 or count > MAX_SEEDS:
        raise ConfigurationError(f"seed count {count} outside [0, {MAX_SEEDS}]")
    if stride < 1 or stride > UINT32_MASK:
        raise ConfigurationError(f"stride {stride} outside [1, {UINT32_MASK}]")
