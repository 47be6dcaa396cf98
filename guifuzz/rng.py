"""
Xorshift pseudo-random number generator.

Not cryptographically secure: it only has to be fast and deterministic
given a seed. Every random decision of the generator and the mutator
goes through Rng.rand() and is bounded by the caller with a modulo.
"""

from threading import get_ident
from time import perf_counter_ns

MASK64 = (1 << 64) - 1

# xorshift never leaves the zero state
ZERO_SEED_REPLACEMENT = 0x2545F4914F6CDD1D


class Rng:
    def __init__(self, seed=None):
        if seed is None:
            seed = perf_counter_ns() ^ (get_ident() << 17)
        seed &= MASK64
        if not seed:
            seed = ZERO_SEED_REPLACEMENT
        self.seed = seed

    def rand(self):
        """
        Return the next 64-bit value.

        >>> Rng(1).rand()
        72066390130958337
        """
        seed = self.seed
        seed ^= (seed << 13) & MASK64
        seed ^= seed >> 17
        seed ^= (seed << 43) & MASK64
        self.seed = seed
        return seed

    def randrange(self, count):
        """
        Return rand() % count, or 0 when count is zero.
        """
        if count <= 0:
            return 0
        return self.rand() % count
