"""
Daily trade and loss limits with UTC-midnight rollover
"""

from datetime import date, datetime, timezone
from typing import Callable, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DailyLimitTracker:
    """
    Tracks today's trades and realized P&L against the configured caps

    The rollover is checked lazily on every call rather than by a timer,
    so an idle process never drifts past midnight with stale counters.
    """

    def __init__(
        self,
        max_daily_trades: int,
        max_loss_per_day_usd: float,
        clock: Callable[[], datetime] = utc_now
    ):
        self.max_daily_trades = max_daily_trades
        self.max_loss_per_day_usd = max_loss_per_day_usd
        self._clock = clock

        self.trades_today = 0
        self.realized_pnl_today = 0.0
        self.wins_today = 0
        self.losses_today = 0
        self.last_reset: date = self._today()

    def _today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    def check_day_reset(self) -> bool:
        """Reset daily counters if a UTC midnight has passed. Returns True on reset."""
        today = self._today()

        if today > self.last_reset:
            logger.info(
                f"New trading day - resetting daily counters. "
                f"Previous day: {self.trades_today} trades, P&L ${self.realized_pnl_today:.2f}"
            )
            self.trades_today = 0
            self.realized_pnl_today = 0.0
            self.wins_today = 0
            self.losses_today = 0
            self.last_reset = today
            return True

        return False

    def set_limits(self, max_daily_trades: Optional[int] = None, max_loss_per_day_usd: Optional[float] = None) -> None:
        if max_daily_trades is not None:
            self.max_daily_trades = max_daily_trades
        if max_loss_per_day_usd is not None:
            self.max_loss_per_day_usd = max_loss_per_day_usd

    def record_trade(self) -> None:
        """Count an executed opening trade"""
        self.check_day_reset()
        self.trades_today += 1

    def record_pnl(self, pnl: float) -> None:
        """Record realized P&L from a closed position"""
        self.check_day_reset()
        self.realized_pnl_today += pnl

        if pnl >= 0:
            self.wins_today += 1
        else:
            self.losses_today += 1

        logger.info(f"Realized P&L ${pnl:.2f}, daily total ${self.realized_pnl_today:.2f}")

    def can_trade(self) -> Tuple[bool, Optional[str]]:
        """Check whether today's limits still allow a new trade"""
        self.check_day_reset()

        if self.trades_today >= self.max_daily_trades:
            return False, f"Daily trade limit reached ({self.max_daily_trades})"

        if self.realized_pnl_today <= -self.max_loss_per_day_usd:
            return False, f"Daily loss limit reached (${self.max_loss_per_day_usd:.2f})"

        return True, None
