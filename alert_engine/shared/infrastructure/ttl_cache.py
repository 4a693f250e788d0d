"""Lazily-expiring TTL cache with prefix invalidation."""

import time
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from loguru import logger

V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    """Cached value with its absolute expiry on the cache clock."""

    value: V
    expires_at: float


class TTLCache(Generic[V]):
    """
    Key/value cache where entries expire after a fixed TTL.

    Expired entries are dropped when read; there is no background sweep.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry[V]] = {}

    def get(self, key: str) -> V | None:
        """Return the cached value, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None

        return entry.value

    def set(self, key: str, value: V, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def invalidate(self, prefix: str) -> int:
        """
        Drop every key starting with ``prefix``.

        Returns:
            Number of entries removed
        """
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]

        if doomed:
            logger.debug(f"Invalidated {len(doomed)} cache entries with prefix {prefix!r}")
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[str]:
        return list(self._entries)

    def stats(self) -> dict:
        """Size and keys currently held, expired or not."""
        return {"size": len(self._entries), "keys": self.keys()}

    def __len__(self):
        return len(self._entries)
