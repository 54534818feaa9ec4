"""Seeded uniform and standard normal random numbers."""

from __future__ import annotations

import math
import random


class NormalSampler:
    """Random source producing uniform doubles and standard normal samples."""

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    def rand_double(self) -> float:
        """Return a uniform sample in ``[0, 1)``."""
        return self._rng.random()

    def rand_normal(self) -> float:
        """Return a standard normal sample using the Marsaglia polar method."""
        while True:
            x1 = 2.0 * self.rand_double() - 1.0
            x2 = 2.0 * self.rand_double() - 1.0
            w = x1 * x1 + x2 * x2
            if 0.0 < w < 1.0:
                break
        return x1 * math.sqrt(-2.0 * math.log(w) / w)