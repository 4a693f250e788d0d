"""Per-key asyncio locks for single-writer-per-key mutation."""

import asyncio


class KeyedLocks:
    """Hands out one ``asyncio.Lock`` per key; keys never contend with each other."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def discard(self, key: str) -> None:
        """Forget the lock for ``key`` unless someone holds it."""
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    def __len__(self):
        return len(self._locks)
