#!/usr/bin/env python3
"""
Survival Predicate
==================

A seed survives when none of its ``num_checks`` draws is a death.
Evaluation stops at the first death, so survivors cost ``num_checks``
draws and most losers cost one or two.

Two engines:
    evaluate        - scalar reference, one seed at a time
    evaluate_block  - numpy, a block of seeds per call; same answers
"""

import logging
import math
from typing import Union

import numpy as np

from .config import MAX_CHECKS, UINT32_MASK, ConfigurationError
from .models import KillRule, SimulationModel
from .rng import LcgRandom, lcg_next_block, states_to_floats

logger = logging.getLogger(__name__)


def check_num_checks(num_checks: int) -> int:
    if isinstance(num_checks, bool) or not isinstance(num_checks, (int, np.integer)):
        raise ConfigurationError(f"num_checks must be an integer, got {num_checks!r}")
    if num_checks < 0 or num_checks > MAX_CHECKS:
        raise ConfigurationError(f"num_checks {num_checks} outside [0, {MAX_CHECKS}]")
    return int(num_checks)


def clamp_probability(p: float) -> float:
    """Clamp into [0, 1]. The model may come from an imprecise heuristic."""
    p = float(p)
    if math.isnan(p):
        raise ConfigurationError("kill probability is NaN")
    if p < 0.0 or p > 1.0:
        clamped = min(1.0, max(0.0, p))
        logger.warning(f"kill probability {p} clamped to {clamped}")
        return clamped
    return p


def evaluate(
    seed: int,
    num_checks: int,
    p: float,
    kill_rule: Union[KillRule, str] = KillRule.BELOW,
) -> bool:
    """Return True if ``seed`` survives all ``num_checks`` checks."""
    num_checks = check_num_checks(num_checks)
    p = clamp_probability(p)
    kill_rule = KillRule(kill_rule)

    rng = LcgRandom(seed)
    if kill_rule is KillRule.BELOW:
        for _ in range(num_checks):
            if rng.next_float() < p:
                return False
    else:
        threshold = 1.0 - p
        for _ in range(num_checks):
            if rng.next_float() >= threshold:
                return False
    return True


def evaluate_model(seed: int, model: SimulationModel) -> bool:
    return evaluate(seed, model.num_checks, model.kill_probability, model.kill_rule)


def evaluate_block(seeds: np.ndarray, model: SimulationModel) -> np.ndarray:
    """
    Evaluate a block of seeds. Returns a boolean survival mask.

    Only seeds still alive are advanced; the loop ends early once the
    whole block is dead.
    """
    states = np.asarray(seeds, dtype=np.uint64) & np.uint64(UINT32_MASK)
    alive = np.ones(states.shape[0], dtype=bool)
    p = model.kill_probability
    threshold = 1.0 - p

    for _ in range(model.num_checks):
        idx = np.flatnonzero(alive)
        if idx.size == 0:
            break
        advanced = lcg_next_block(states[idx])
        states[idx] = advanced
        draws = states_to_floats(advanced)
        if model.kill_rule is KillRule.BELOW:
            dead = draws < p
        else:
            dead = draws >= threshold
        alive[idx[dead]] = False

    return alive
