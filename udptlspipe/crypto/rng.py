"""
Random number generation for the pipe client.
One abstraction over the system CSPRNG and a seedable generator, used for
authentication nonces and randomized ClientHello templates.
"""
import os
import random
import secrets
import enum
import logging
from typing import List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RNGSource(enum.Enum):
    """Enumeration of available random number sources"""
    SYSTEM = 0   # os.urandom backed
    SEEDED = 1   # reproducible, for tests and diagnostics


class RandomGenerator:
    """
    Random generator that hides which source is in use.
    """

    def __init__(self, seed: Optional[int] = None):
        """
        Initialize the generator

        Args:
            seed: Seed for a reproducible stream (None for the system CSPRNG)
        """
        if seed is None:
            self.source = RNGSource.SYSTEM
            self._random = secrets.SystemRandom()
        else:
            self.source = RNGSource.SEEDED
            self._random = random.Random(seed)
            logger.debug(f"Using seeded random source ({seed})")

    def generate_bytes(self, length: int) -> bytes:
        """
        Generate random bytes

        Args:
            length: Number of bytes to generate

        Returns:
            Random bytes
        """
        if self.source == RNGSource.SYSTEM:
            return os.urandom(length)
        return bytes(self._random.getrandbits(8) for _ in range(length))

    def chance(self, probability: float) -> bool:
        """Return True with the given probability"""
        return self._random.random() < probability

    def choice(self, items: Sequence[T]) -> T:
        return self._random.choice(items)

    def shuffled(self, items: Sequence[T]) -> List[T]:
        """
        Return a shuffled copy

        Args:
            items: Items to shuffle

        Returns:
            New list in random order
        """
        result = list(items)
        self._random.shuffle(result)
        return result


# Global instance for easy access
RNG = RandomGenerator()
