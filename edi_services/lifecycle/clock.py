from __future__ import annotations
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
import threading


class Clock(ABC):
    """Source of timezone-aware UTC timestamps for audit records."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Test clock: returns a fixed instant, advanced manually (or by ``step`` per call)."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(0)):
        self._now = start or datetime(2026, 2, 19, 12, 0, tzinfo=timezone.utc)
        self._step = step
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            current = self._now
            self._now = current + self._step
            return current

    def advance(self, delta: timedelta) -> None:
        with self._lock:
            self._now += delta
