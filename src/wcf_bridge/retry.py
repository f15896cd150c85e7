"""Bounded exponential backoff shared by reconnection and webhook retries."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass


def backoff_delays(initial: float, maximum: float, factor: float = 2.0) -> Iterator[float]:
    """Yield ``initial, initial*factor, ...`` capped at ``maximum``, forever."""
    delay = max(initial, 0.0)
    while True:
        yield min(delay, maximum)
        delay = delay * factor if delay > 0 else 0.0


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to attempt a delivery and how long to wait between."""

    max_attempts: int = 3
    initial_delay: float = 0.5
    max_delay: float = 4.0
    factor: float = 2.0

    def delays(self) -> Iterator[float]:
        return backoff_delays(self.initial_delay, self.max_delay, self.factor)
