from typing import Sequence, TypeVar

import numpy as np

T = TypeVar("T")


class DRNG:
    """Deterministic Random Number Generator wrapper."""

    def __init__(self, seed: int):
        self.g = np.random.Generator(np.random.PCG64(seed))

    def random(self) -> float:
        """Return a random float in [0, 1)."""
        return float(self.g.random())

    def bernoulli(self, p: float) -> bool:
        """Return True with probability p."""
        return bool(self.g.random() < p)

    def uniform(self, a: float, b: float) -> float:
        """Return a random float in [a, b)."""
        return float(self.g.uniform(a, b))

    def perturb(self, value: float, spread: float) -> float:
        """Return value shifted by a random amount in [-spread, spread)."""
        return value + self.uniform(-spread, spread)

    def choice(self, items: Sequence[T]) -> T:
        """Pick one element uniformly."""
        return items[int(self.g.integers(0, len(items)))]
