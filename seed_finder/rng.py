#!/usr/bin/env python3
"""
LCG32 Sequence Generator
========================

32-bit linear congruential generator (Numerical Recipes constants).

    state = (state * A + C) mod 2^32
    value = state / 2^32            -> [0, 1)

The scalar class is the reference. ``lcg_next_block`` advances many
independent states at once with numpy and must agree with it bit for bit.
"""

from typing import List

import numpy as np

from .config import UINT32_MASK, UINT32_RANGE

LCG_A = 1664525
LCG_C = 1013904223

_SCALE = float(UINT32_RANGE)


class LcgRandom:
    """One generator per seed. Never shared between seeds or threads."""

    __slots__ = ("_state",)

    def __init__(self, seed: int):
        self._state = seed & UINT32_MASK

    @property
    def state(self) -> int:
        return self._state

    def next_int(self) -> int:
        self._state = (self._state * LCG_A + LCG_C) & UINT32_MASK
        return self._state

    def next_float(self) -> float:
        return self.next_int() / _SCALE

    def __repr__(self) -> str:
        return f"LcgRandom(state={self._state})"


def lcg_sequence(seed: int, n: int, skip: int = 0) -> List[int]:
    """LCG32 CPU reference: ``n`` raw states after discarding ``skip`` draws."""
    state = seed & UINT32_MASK
    for _ in range(skip):
        state = (state * LCG_A + LCG_C) & UINT32_MASK

    outputs = []
    for _ in range(n):
        state = (state * LCG_A + LCG_C) & UINT32_MASK
        outputs.append(state)

    return outputs


def lcg_next_block(states: np.ndarray) -> np.ndarray:
    """
    Advance an array of 32-bit states by one step.

    States are held in uint64 so the product (< 2^53) never overflows
    before masking.
    """
    return (states * np.uint64(LCG_A) + np.uint64(LCG_C)) & np.uint64(UINT32_MASK)


def states_to_floats(states: np.ndarray) -> np.ndarray:
    """Map 32-bit states to [0, 1) exactly as ``LcgRandom.next_float`` does."""
    return states.astype(np.float64) / _SCALE
