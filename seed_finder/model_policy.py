#!/usr/bin/env python3
"""
Model Policy
============

Picks the SimulationModel for a run. This is a rough, replaceable
heuristic; the search only consumes the resulting model.

    no level id          -> 35 checks @ 0.5
    Chompstep level      -> 35 checks @ 0.5
    decoded level text   -> one check per ~10 object-like tokens, 1..200
    nothing decoded      -> 10 checks @ 0.5
    fetch/decode failure -> 10 checks @ 0.5
"""

import logging
from typing import Callable, Optional

from .config import MAX_CHECKS
from .level_fetcher import LevelInfo, fetch_and_decode_level, save_level_artifacts
from .models import DEFAULT_MODEL, SimulationModel

logger = logging.getLogger(__name__)

CHOMPSTEP_LEVEL_ID = "122149930"
DEFAULT_KILL_PROBABILITY = 0.5
OBJECTS_PER_CHECK = 10
FALLBACK_CHECKS = 10


def estimate_objects(decoded: str) -> int:
    """Count object-like tokens by their separators."""
    by_semicolon = decoded.count(";")
    by_pipe = decoded.count("|")
    by_comma = decoded.count(",")
    return max(by_semicolon, by_pipe, by_comma // 8, 1)


def model_from_decoded(decoded: str) -> SimulationModel:
    approx_objects = estimate_objects(decoded)
    num_checks = max(1, min(MAX_CHECKS, approx_objects // OBJECTS_PER_CHECK))
    logger.info(f"Heuristic model derived: numChecks={num_checks} (approxObjects={approx_objects})")
    return SimulationModel(
        num_checks=num_checks,
        kill_probability=DEFAULT_KILL_PROBABILITY,
        note=f"heuristic based on decoded length (approxObjects={approx_objects})",
    )


def model_for_level(level_id: str, info: Optional[LevelInfo]) -> SimulationModel:
    """Choose a model from already-fetched level data."""
    if str(level_id) == CHOMPSTEP_LEVEL_ID:
        logger.info("Detected Chompstep ID: using 35x50% model.")
        return SimulationModel(
            num_checks=35,
            kill_probability=DEFAULT_KILL_PROBABILITY,
            note="Chompstep special-case (35 independent 50% checks)",
        )
    if info is not None and info.decoded:
        return model_from_decoded(info.decoded)

    logger.info(f"Falling back to default heuristic: {FALLBACK_CHECKS} checks x 50%")
    return SimulationModel(
        num_checks=FALLBACK_CHECKS,
        kill_probability=DEFAULT_KILL_PROBABILITY,
        note="fallback heuristic (no decoded data)",
    )


def resolve_model(
    level_id: Optional[str],
    data_dir="data",
    fetch: Callable[[str], LevelInfo] = fetch_and_decode_level,
    save_artifacts: bool = True,
) -> SimulationModel:
    """
    Fetch, save and interpret level data. Network and decode problems
    fall back to a default model; they never abort the run.
    """
    if not level_id:
        logger.info("No level id provided; using the default model")
        return DEFAULT_MODEL

    try:
        info = fetch(str(level_id))
        if save_artifacts:
            save_level_artifacts(info, data_dir)
    except Exception as e:
        logger.error(f"Error while fetching/decoding level {level_id}: {e}")
        logger.info(f"Falling back to default model: {FALLBACK_CHECKS} checks x 50%")
        return SimulationModel(
            num_checks=FALLBACK_CHECKS,
            kill_probability=DEFAULT_KILL_PROBABILITY,
            note="fallback due to fetch/decode error",
        )

    return model_for_level(str(level_id), info)
