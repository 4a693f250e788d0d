"""Cancellable keyed timers for escalation and deferred work."""

import asyncio
import heapq
import itertools
from dataclasses import dataclass, field

from loguru import logger

from alert_engine.shared.domain.protocols import Scheduler, TimerCallback


class AsyncioScheduler(Scheduler):
    """
    Timers backed by the running event loop.

    Each key owns at most one pending ``loop.call_later`` handle. When a timer
    fires, its callback runs as a task; tasks are tracked so they can be
    awaited on shutdown.
    """

    def __init__(self):
        self._handles: dict[str, tuple[asyncio.TimerHandle, float]] = {}
        self._running: set[asyncio.Task] = set()

    def schedule(self, key: str, delay_seconds: float, callback: TimerCallback) -> None:
        """Arm a single-shot timer for ``key``, replacing any pending one."""
        self.cancel(key)

        loop = asyncio.get_running_loop()
        fire_at = loop.time() + max(0.0, delay_seconds)
        handle = loop.call_later(max(0.0, delay_seconds), self._fire, key, callback)
        self._handles[key] = (handle, fire_at)

        logger.debug(f"Scheduled timer {key} in {delay_seconds:.1f}s")

    def _fire(self, key: str, callback: TimerCallback) -> None:
        self._handles.pop(key, None)

        task = asyncio.ensure_future(callback())
        self._running.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._running.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"✗ Timer callback failed: {error}")

    def cancel(self, key: str) -> bool:
        entry = self._handles.pop(key, None)
        if entry is None:
            return False
        entry[0].cancel()
        logger.debug(f"Cancelled timer {key}")
        return True

    def is_scheduled(self, key: str) -> bool:
        return key in self._handles

    def time_remaining(self, key: str) -> float | None:
        entry = self._handles.get(key)
        if entry is None:
            return None
        return max(0.0, entry[1] - asyncio.get_running_loop().time())

    def cancel_all(self) -> int:
        count = len(self._handles)
        for handle, _ in self._handles.values():
            handle.cancel()
        self._handles.clear()
        return count

    async def drain(self) -> None:
        """Wait for callbacks that have already fired to finish."""
        if self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)


@dataclass(order=True)
class _ManualTimer:
    fire_at: float
    sequence: int
    key: str = field(compare=False)
    callback: TimerCallback = field(compare=False)
    cancelled: bool = field(default=False, compare=False)


class ManualScheduler(Scheduler):
    """
    Deterministic scheduler driven by a virtual clock.

    Time only moves when :meth:`advance` is awaited, which makes it suitable for
    replaying incident timelines and for simulations. Timers due during an
    advance fire in order of their due time.
    """

    def __init__(self, start: float = 0.0):
        self.now = start
        self._queue: list[_ManualTimer] = []
        self._pending: dict[str, _ManualTimer] = {}
        self._sequence = itertools.count()

    def schedule(self, key: str, delay_seconds: float, callback: TimerCallback) -> None:
        self.cancel(key)
        timer = _ManualTimer(
            fire_at=self.now + max(0.0, delay_seconds),
            sequence=next(self._sequence),
            key=key,
            callback=callback,
        )
        heapq.heappush(self._queue, timer)
        self._pending[key] = timer

    def cancel(self, key: str) -> bool:
        timer = self._pending.pop(key, None)
        if timer is None:
            return False
        timer.cancelled = True
        return True

    def is_scheduled(self, key: str) -> bool:
        return key in self._pending

    def time_remaining(self, key: str) -> float | None:
        timer = self._pending.get(key)
        if timer is None:
            return None
        return max(0.0, timer.fire_at - self.now)

    def cancel_all(self) -> int:
        count = len(self._pending)
        for timer in self._pending.values():
            timer.cancelled = True
        self._pending.clear()
        self._queue.clear()
        return count

    async def advance(self, seconds: float) -> int:
        """
        Move the virtual clock forward, firing every timer that comes due.

        Returns:
            Number of callbacks that ran
        """
        target = self.now + seconds
        fired = 0

        while self._queue and self._queue[0].fire_at <= target:
            timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue

            self.now = timer.fire_at
            self._pending.pop(timer.key, None)
            await timer.callback()
            fired += 1

        self.now = target
        return fired

    async def advance_minutes(self, minutes: float) -> int:
        """Convenience wrapper around :meth:`advance`."""
        return await self.advance(minutes * 60)
