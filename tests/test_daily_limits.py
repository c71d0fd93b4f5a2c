"""
Daily Limit Tests.

Covers:
- Trade count and loss limits
- Lazy UTC midnight rollover
"""

from datetime import datetime, timedelta, timezone

from trade_bridge.core.daily_limits import DailyLimitTracker

from conftest import FakeClock


def _tracker(clock, trades=3, loss=50.0):
    return DailyLimitTracker(trades, loss, clock)


class TestDailyLimits:

    def test_trade_limit(self, clock):
        tracker = _tracker(clock)
        for _ in range(3):
            tracker.record_trade()

        assert tracker.can_trade() == (False, "Daily trade limit reached (3)")

    def test_loss_limit_is_inclusive(self, clock):
        tracker = _tracker(clock)
        tracker.record_pnl(-20.0)
        assert tracker.can_trade() == (True, None)

        tracker.record_pnl(-30.0)
        assert tracker.can_trade() == (False, "Daily loss limit reached ($50.00)")

    def test_wins_offset_losses(self, clock):
        tracker = _tracker(clock)
        tracker.record_pnl(-40.0)
        tracker.record_pnl(25.0)
        tracker.record_pnl(-30.0)

        assert tracker.can_trade()[0]
        assert (tracker.wins_today, tracker.losses_today) == (1, 2)

    def test_rollover_at_utc_midnight(self):
        clock = FakeClock(datetime(2024, 3, 1, 23, 59, tzinfo=timezone.utc))
        tracker = _tracker(clock)
        tracker.record_trade()
        tracker.record_pnl(-60.0)
        assert not tracker.can_trade()[0]

        clock.now += timedelta(minutes=2)

        assert tracker.can_trade() == (True, None)
        assert tracker.trades_today == 0
        assert tracker.realized_pnl_today == 0.0

    def test_rollover_uses_utc_not_local_offset(self):
        # 19:30 at UTC-5 is already the next UTC day
        eastern = timezone(timedelta(hours=-5))
        clock = FakeClock(datetime(2024, 3, 1, 18, 0, tzinfo=eastern))
        tracker = _tracker(clock)
        tracker.record_trade()

        clock.now = datetime(2024, 3, 1, 19, 30, tzinfo=eastern)

        assert tracker.check_day_reset()
        assert tracker.trades_today == 0

    def test_set_limits(self, clock):
        tracker = _tracker(clock)
        tracker.record_trade()

        tracker.set_limits(max_daily_trades=1)

        assert not tracker.can_trade()[0]
        assert tracker.max_loss_per_day_usd == 50.0
