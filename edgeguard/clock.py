"""
Clock Abstraction

Every TTL, session and recency computation in edgeguard reads time through a
Clock so that session boundaries and cache expiry can be simulated in tests.
Times are epoch milliseconds (int) or timezone-aware UTC datetimes.
"""

import threading
import time
from datetime import datetime, timezone

from dateutil.parser import isoparse


class Clock:
    """Source of the current time"""

    def now_ms(self) -> int:
        raise NotImplementedError

    def now(self) -> datetime:
        """Current time as an aware UTC datetime"""
        return datetime.fromtimestamp(self.now_ms() / 1000.0, tz=timezone.utc)

    def utc_hour(self) -> int:
        return self.now().hour


class SystemClock(Clock):
    """Wall clock"""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class ManualClock(Clock):
    """
    Clock that only moves when told to.

    Used by tests and replay tooling to step through cache TTLs and
    session windows deterministically.
    """

    def __init__(self, start_ms: int = 0):
        self._now_ms = int(start_ms)
        self._lock = threading.Lock()

    @classmethod
    def at(cls, moment: datetime) -> "ManualClock":
        """Create a clock pinned to an aware (or naive UTC) datetime"""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return cls(int(moment.timestamp() * 1000))

    def now_ms(self) -> int:
        with self._lock:
            return self._now_ms

    def advance(self, ms: int = 0, seconds: float = 0.0, minutes: float = 0.0) -> int:
        with self._lock:
            self._now_ms += int(ms + seconds * 1000 + minutes * 60_000)
            return self._now_ms

    def set(self, moment_ms: int):
        with self._lock:
            self._now_ms = int(moment_ms)


def to_epoch_ms(value) -> int:
    """Normalize datetime, ISO-8601 string or epoch-ms input to epoch ms"""
    if isinstance(value, str):
        value = isoparse(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    return int(value)
