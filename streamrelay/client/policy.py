"""
Reconnect backoff policy.
"""
import random
from dataclasses import dataclass, field
from typing import Callable

from streamrelay.config import Settings


@dataclass
class ReconnectPolicy:
    """
    Exponential backoff with jitter and a retry ceiling.

    ``delay`` never returns less than the previous delay, so jitter cannot
    make a later retry fire sooner than an earlier one, and never more than
    ``max_delay``.
    """

    base_delay: float = 3.0
    factor: float = 1.5
    max_delay: float = 30.0
    jitter: float = 2.0
    max_retries: int = 5
    rng: Callable[[], float] = field(default=random.random, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReconnectPolicy":
        return cls(
            base_delay=settings.client_base_delay,
            factor=settings.client_backoff_factor,
            max_delay=settings.client_max_delay,
            jitter=settings.client_jitter,
            max_retries=settings.client_max_retries,
        )

    def delay(self, retry: int, previous: float = 0.0) -> float:
        """Seconds to wait before reconnect number ``retry`` (0-based)."""
        raw = self.base_delay * self.factor ** retry + self.jitter * self.rng()
        return max(previous, min(self.max_delay, raw))

    def exhausted(self, retries: int) -> bool:
        return retries >= self.max_retries
