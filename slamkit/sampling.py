"""Uniform and Gaussian sampling helpers."""

from __future__ import annotations

import math
import random

_DEFAULT_RNG = random.Random(1)


def rand_double(rng: random.Random | None = None) -> float:
    """Return a uniform sample in [0, 1)."""
    return (rng or _DEFAULT_RNG).random()


def rand_normal(rng: random.Random | None = None) -> float:
    """Return a standard normal sample drawn with the Marsaglia polar method."""
    generator = rng or _DEFAULT_RNG
    while True:
        x1 = 2.0 * rand_double(generator) - 1.0
        x2 = 2.0 * rand_double(generator) - 1.0
        w = x1 * x1 + x2 * x2
        if 0.0 < w < 1.0:
            break
    return x1 * math.sqrt((-2.0 * math.log(w)) / w)