"""Selected time window shared by every statistics category."""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

logger = logging.getLogger("activitystats.time_window")

TIME_1_HOUR_MS = 60 * 60 * 1000
TIME_24_HOUR_MS = 24 * TIME_1_HOUR_MS
TIME_7_DAYS_MS = 7 * TIME_24_HOUR_MS


class TimeCategory(Enum):
    ONE_HOUR = "1h"
    TWENTY_FOUR_HOUR = "24h"
    SEVEN_DAYS = "7d"

    @property
    def duration_ms(self) -> int:
        return _DURATIONS[self]


_DURATIONS = {
    TimeCategory.ONE_HOUR: TIME_1_HOUR_MS,
    TimeCategory.TWENTY_FOUR_HOUR: TIME_24_HOUR_MS,
    TimeCategory.SEVEN_DAYS: TIME_7_DAYS_MS,
}


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval [start, end) in epoch milliseconds."""
    start: int
    end: int

    @property
    def is_valid(self) -> bool:
        return self.start <= self.end


def now_ms() -> int:
    return int(time.time() * 1000)


class TimeWindowStore:
    """Holds the current window; replaced whole on every selection."""

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._window: TimeWindow | None = None
        self._listeners: list[Callable[[TimeWindow], None]] = []

    @property
    def window(self) -> TimeWindow | None:
        return self._window

    def add_listener(self, listener: Callable[[TimeWindow], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[TimeWindow], None]) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def select(self, category: TimeCategory) -> TimeWindow:
        """Publish a fresh window ending now. Repeated selections slide forward."""
        with self._lock:
            end = self._clock()
            window = TimeWindow(start=end - category.duration_ms, end=end)
            self._window = window
            listeners = list(self._listeners)
        logger.debug("Time window set to %s: [%d, %d)", category.value, window.start, window.end)
        for listener in listeners:
            listener(window)
        return window
