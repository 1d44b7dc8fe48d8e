"""
Clock Tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.clock import MockClock, SystemClock, ensure_utc


class TestSystemClock:
    """Tests for SystemClock."""

    def test_now_is_timezone_aware_utc(self):
        """Test now() returns aware UTC datetimes."""
        now = SystemClock().now()

        assert now.tzinfo is not None
        assert now.utcoffset() == timedelta(0)


class TestMockClock:
    """Tests for MockClock."""

    def test_time_only_moves_when_told(self):
        start = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        clock = MockClock(start)

        assert clock.now() == start
        assert clock.now() == start

    def test_advance(self):
        """Test advance by seconds and timedelta kwargs."""
        start = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        clock = MockClock(start)

        clock.advance(30)
        clock.advance(minutes=1, hours=1)

        assert clock.now() == start + timedelta(hours=1, minutes=1, seconds=30)

    def test_set_time_attaches_utc(self):
        clock = MockClock()
        clock.set_time(datetime(2024, 1, 1, 0, 0))

        assert clock.now() == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_today_and_seconds_since(self):
        clock = MockClock(datetime(2024, 5, 2, 23, 59, 30, tzinfo=timezone.utc))

        assert clock.today().isoformat() == "2024-05-02"
        assert clock.seconds_since(datetime(2024, 5, 2, 23, 59, 0)) == pytest.approx(30.0)


def test_ensure_utc_keeps_aware_values():
    aware = datetime(2024, 1, 1, tzinfo=timezone(timedelta(hours=2)))

    assert ensure_utc(aware) is aware
