"""Single-value TTL cache shared by pull readers."""

import asyncio
import time
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class TTLCache(Generic[T]):
    """Holds one value until it expires.

    Readers that find it empty or expired take :attr:`lock` and re-check
    before rebuilding, so concurrent readers trigger a single rebuild.
    """

    def __init__(self, ttl: float = 3.0, clock: Callable[[], float] = time.monotonic):
        """Initialize the cache.

        Args:
            ttl: Time-to-live in seconds for cached values.
            clock: Monotonic clock in seconds.
        """
        self._ttl = ttl
        self._clock = clock
        self._value: T | None = None
        self._expires_at: float = 0
        self._lock = asyncio.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self) -> T | None:
        """Return the cached value, or None if expired or not set."""
        if self._value is not None and self._clock() < self._expires_at:
            return self._value
        return None

    def set(self, value: T) -> None:
        self._value = value
        self._expires_at = self._clock() + self._ttl

    def clear(self) -> None:
        self._value = None
        self._expires_at = 0

    @property
    def lock(self) -> asyncio.Lock:
        """Lock serializing rebuilds of the cached value."""
        return self._lock
