"""Seedable source of uniform and normally distributed samples."""

from __future__ import annotations

import math
import random


class RandomSource:
    """Random numbers drawn from a seeded generator."""

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    def uniform(self) -> float:
        """Return a sample uniformly distributed in [0, 1)."""
        return self._rng.random()

    def normal(self) -> float:
        """Return a standard normal sample (Marsaglia polar method)."""
        while True:
            x1 = 2.0 * self.uniform() - 1.0
            x2 = 2.0 * self.uniform() - 1.0
            w = x1 * x1 + x2 * x2
            if 0.0 < w < 1.0:
                break
        return x1 * math.sqrt((-2.0 * math.log(w)) / w)