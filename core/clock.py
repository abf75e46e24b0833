"""
Core Module - System Clock.

============================================================
RESPONSIBILITY
============================================================
Provides a testable clock abstraction for the monitor.

- Range clamping, status "since" stamps and rate-limit windows
  all read time from an injected clock
- Enables deterministic testing of minute-window rollover

============================================================
DESIGN PRINCIPLES
============================================================
- UTC only - no timezone conversions in business logic
- Passed explicitly to every component, no global instance
- Mockable for testing

============================================================
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional
import threading
import time


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for system clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC datetime."""
        pass

    @abstractmethod
    def timestamp(self) -> float:
        """Get current Unix timestamp."""
        pass

    def unix(self) -> int:
        """Current Unix timestamp truncated to whole seconds."""
        return int(self.timestamp())

    def current_minute(self) -> int:
        """Index of the current wall-clock minute since the epoch."""
        return self.unix() // 60


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """
    Production clock using actual system time.

    All times are in UTC.
    """

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def timestamp(self) -> float:
        return time.time()


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Mock clock for testing.

    Allows time manipulation for deterministic tests.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        """
        Initialize mock clock.

        Args:
            initial_time: Starting time (defaults to current UTC)
        """
        initial_time = initial_time or datetime.now(timezone.utc)
        if initial_time.tzinfo is None:
            initial_time = initial_time.replace(tzinfo=timezone.utc)
        self._time = initial_time
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._time

    def timestamp(self) -> float:
        with self._lock:
            return self._time.timestamp()

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """
        Advance time by the specified amount.

        Args:
            seconds: Number of seconds to advance
            **kwargs: Passed to timedelta (hours, minutes, days, etc.)
        """
        with self._lock:
            self._time = self._time + timedelta(seconds=seconds, **kwargs)


# ============================================================
# TIMESTAMP UTILITIES
# ============================================================

def from_unix(ts: float) -> datetime:
    """Convert a Unix timestamp to an aware UTC datetime."""
    return datetime.fromtimestamp(ts, tz=timezone.utc)


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "from_unix",
]
