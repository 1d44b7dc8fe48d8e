"""
Core Module - System Clock.

============================================================
RESPONSIBILITY
============================================================
Provides the injectable clock used by every time-dependent
decision in the execution core.

- Session freshness is judged against clock.now()
- Daily KYC ceilings roll over on the clock's UTC date
- Execution record steps are stamped from the clock

============================================================
DESIGN PRINCIPLES
============================================================
- UTC only, always timezone-aware
- Mockable for deterministic tests
- Thread-safe

============================================================
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Optional
import threading


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for system clock."""
    
    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC datetime."""
        pass
    
    def today(self) -> date:
        """Get current UTC date."""
        return self.now().date()
    
    def seconds_since(self, moment: datetime) -> float:
        """Seconds elapsed between moment and now."""
        return (self.now() - ensure_utc(moment)).total_seconds()


def ensure_utc(moment: datetime) -> datetime:
    """Attach UTC to naive datetimes."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """Production clock backed by the wall clock."""
    
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Mock clock for testing.
    
    Time only moves when the test moves it.
    """
    
    def __init__(self, initial_time: Optional[datetime] = None):
        self._time = ensure_utc(initial_time or datetime.now(timezone.utc))
        self._lock = threading.Lock()
    
    def now(self) -> datetime:
        with self._lock:
            return self._time
    
    def set_time(self, new_time: datetime) -> None:
        """Jump to an absolute time."""
        with self._lock:
            self._time = ensure_utc(new_time)
    
    def advance(self, seconds: float = 0, **kwargs) -> None:
        """
        Advance time.
        
        Args:
            seconds: Number of seconds to advance
            **kwargs: Passed to timedelta (minutes, hours, days)
        """
        with self._lock:
            self._time = self._time + timedelta(seconds=seconds, **kwargs)
