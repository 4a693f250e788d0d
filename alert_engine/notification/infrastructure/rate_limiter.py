"""Rolling-window send counters per user and channel."""

from collections import deque
from datetime import datetime, timedelta

from loguru import logger

from alert_engine.notification.domain.models import RateLimit
from alert_engine.shared.domain.models import NotificationChannel

HOUR = timedelta(hours=1)
DAY = timedelta(days=1)


class RateLimitTracker:
    """
    Records when each (user, channel) pair was sent to.

    The tracker lives apart from user preferences, so editing or removing a
    rate limit never gives back quota that was already consumed. Only
    :meth:`reset` clears usage.
    """

    def __init__(self):
        self._sends: dict[tuple[str, NotificationChannel], deque[datetime]] = {}

    def record(self, user_id: str, channel: NotificationChannel, at: datetime) -> None:
        key = (user_id, channel)
        self._prune(key, at)
        self._sends.setdefault(key, deque()).append(at)

    def _prune(self, key: tuple[str, NotificationChannel], now: datetime) -> deque[datetime]:
        sends = self._sends.get(key)
        if sends is None:
            return deque()
        while sends and sends[0] <= now - DAY:
            sends.popleft()
        if not sends:
            del self._sends[key]
        return sends

    def count(self, user_id: str, channel: NotificationChannel, now: datetime) -> tuple[int, int]:
        """Sends in the last hour and the last day."""
        sends = self._prune((user_id, channel), now)
        last_hour = sum(1 for sent_at in sends if sent_at > now - HOUR)
        return last_hour, len(sends)

    def is_exhausted(self, user_id: str, channel: NotificationChannel, limit: RateLimit, now: datetime) -> bool:
        last_hour, last_day = self.count(user_id, channel, now)
        return last_hour >= limit.max_per_hour or last_day >= limit.max_per_day

    def reset(self, user_id: str | None = None) -> int:
        """
        Forget usage for one user, or for everyone.

        Returns:
            Number of (user, channel) counters removed
        """
        if user_id is None:
            removed = len(self._sends)
            self._sends.clear()
        else:
            doomed = [key for key in self._sends if key[0] == user_id]
            for key in doomed:
                del self._sends[key]
            removed = len(doomed)

        logger.info(f"🔄 Reset {removed} rate limit counters" + (f" for user {user_id}" if user_id else ""))
        return removed

    def tracked_users(self) -> set[str]:
        return {user_id for user_id, _ in self._sends}

    def __len__(self):
        """Send timestamps currently retained across all counters."""
        return sum(len(sends) for sends in self._sends.values())
