"""Reconnect backoff policy shared by the long-lived connections."""

from __future__ import annotations

import random
from typing import Callable, Optional


class ExponentialBackoff:
    """Exponential backoff helper with optional full jitter.

    Delays grow from ``base_interval`` by ``multiplier`` per failure and are
    capped at ``max_interval``; ``reset`` is called once a connection is healthy.
    """

    def __init__(
        self,
        base_interval: float = 0.5,
        multiplier: float = 2.0,
        max_interval: float = 30.0,
        jitter: bool = True,
        random_fn: Optional[Callable[[], float]] = None,
    ) -> None:
        if base_interval <= 0:
            raise ValueError("base_interval must be positive")
        if multiplier < 1:
            raise ValueError("multiplier must be at least 1.0")
        if max_interval < base_interval:
            raise ValueError("max_interval must be >= base_interval")
        self.base_interval = base_interval
        self.multiplier = multiplier
        self.max_interval = max_interval
        self.jitter = jitter
        self.random_fn = random_fn or random.random
        self._failures = 0

    def reset(self) -> None:
        self._failures = 0

    def next_delay(self) -> float:
        raw = min(
            self.base_interval * (self.multiplier**self._failures), self.max_interval
        )
        self._failures += 1
        if not self.jitter:
            return raw
        return self.random_fn() * raw
