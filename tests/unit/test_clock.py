"""Test clock implementations."""

from datetime import datetime, timezone

import pytest

from trade_intelligence.core.clock import FixedClock, WallClock


class TestWallClock:
    def test_returns_utc(self):
        now = WallClock().now()
        assert now.tzinfo is not None
        assert now.utcoffset().total_seconds() == 0


class TestFixedClock:
    def test_stays_put(self):
        start = datetime(2024, 3, 1, tzinfo=timezone.utc)
        clock = FixedClock(start)
        assert clock.now() == start
        assert clock.now() == start

    def test_advance(self):
        clock = FixedClock(datetime(2024, 3, 1, tzinfo=timezone.utc))
        clock.advance(90)
        assert clock.now() == datetime(2024, 3, 1, 0, 1, 30, tzinfo=timezone.utc)

    def test_cannot_go_backwards(self):
        clock = FixedClock()
        with pytest.raises(ValueError):
            clock.advance(-1)
