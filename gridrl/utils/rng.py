"""Random number generation utilities for policies and environments."""

import random
from typing import Optional


class SeededRNG:
    """Seeded random number generator owned by a single component.

    Every policy and environment gets its own instance so that runs are
    reproducible and components never perturb each other's streams.
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._random = random.Random(seed)

    def random(self) -> float:
        """Generate random float in [0, 1)."""
        return self._random.random()

    def randrange(self, n: int) -> int:
        """Generate random integer in [0, n)."""
        return self._random.randrange(n)

    def choice(self, seq):
        """Choose random element from sequence."""
        return self._random.choice(seq)

    def sample(self, population, k: int):
        """Sample k elements from population without replacement."""
        return self._random.sample(population, k)
