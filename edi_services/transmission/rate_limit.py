from __future__ import annotations
from typing import Callable
import threading
import time

from edi_services.config.logging_config import get_logger

logger = get_logger("transmission.rate_limit")


class LeakyBucket:
    """Blocking call budget shared by every worker talking to one API.

    Starts full at ``capacity`` permits and regains ``refill_rate`` permits per
    second, never more than ``capacity``. ``acquire()`` takes one permit and
    sleeps until one is available.
    """

    def __init__(self, capacity: int, refill_rate: float,
                 clock: Callable[[], float] = time.monotonic, sleep: Callable[[float], None] = time.sleep):
        if capacity < 1 or refill_rate <= 0:
            raise ValueError("LeakyBucket needs capacity >= 1 and refill_rate > 0")
        self.capacity = capacity
        self.refill_rate = float(refill_rate)
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.refill_rate)
        self._updated = now

    def available(self) -> int:
        with self._lock:
            self._refill()
            return int(self._tokens)

    def acquire(self) -> float:
        """Take one permit; returns the seconds spent waiting for it."""
        waited = 0.0
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return waited
                wait = (1 - self._tokens) / self.refill_rate
            logger.debug("[RATE] Bucket empty; waiting %.3fs for a permit", wait)
            self._sleep(wait)
            waited += wait
