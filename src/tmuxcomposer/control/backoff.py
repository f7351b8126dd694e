"""Reconnect backoff policy: capped exponential delay with symmetric jitter."""

import random
from dataclasses import dataclass
from typing import Callable

from tmuxcomposer import config


@dataclass(frozen=True)
class ReconnectPolicy:
    base_delay: float = config.RECONNECT_BASE_DELAY
    max_delay: float = config.RECONNECT_MAX_DELAY
    max_attempts: int = config.RECONNECT_MAX_ATTEMPTS
    jitter: float = config.RECONNECT_JITTER

    def nominal(self, attempt: int) -> float:
        """Un-jittered delay before attempt ``attempt`` (0-based)."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def bounds(self, attempt: int) -> tuple[float, float]:
        """Inclusive range the jittered delay falls in."""
        nominal = self.nominal(attempt)
        spread = nominal * self.jitter
        return max(nominal - spread, 0.0), min(nominal + spread, self.max_delay)

    def delay(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        """Jittered delay before attempt ``attempt``, never above ``max_delay``.

        Example (base 1s, jitter 25%):
            attempt 0 -> 0.75..1.25s
            attempt 3 -> 6..10s
            attempt 6 -> 22.5..30s (capped)
        """
        nominal = self.nominal(attempt)
        offset = nominal * self.jitter * (rand() * 2 - 1)
        return min(max(nominal + offset, 0.0), self.max_delay)

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts
