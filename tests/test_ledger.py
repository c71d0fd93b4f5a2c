"""
Paper Ledger Tests.

Covers:
- Accept/skip decisions
- Default stop and target placement
- Exit detection (stop, target, trail)
- Realized P&L and balance
"""

import pytest

from trade_bridge.core.ledger import (
    ClosablePositionLedger,
    LedgerAction,
    PaperPositionLedger,
    PositionLedger,
)
from trade_bridge.core.signals import Direction
from trade_bridge.utils.config_loader import LedgerConfig

from conftest import make_signal


class TestDecisions:
    """process_signal."""

    def test_satisfies_protocols(self, ledger):
        assert isinstance(ledger, PositionLedger)
        assert isinstance(ledger, ClosablePositionLedger)

    def test_open(self, ledger):
        decision = ledger.process_signal(make_signal())

        assert decision.accepted
        assert decision.action == LedgerAction.OPEN
        position = decision.position
        assert position.margin_used == pytest.approx(50.0)
        assert position.notional_size == pytest.approx(500.0)
        assert position.quantity == pytest.approx(0.01)
        assert position.stop_loss == pytest.approx(49000.0)
        assert position.take_profit == pytest.approx(52000.0)

    def test_short_levels(self, ledger):
        position = ledger.process_signal(make_signal(direction=Direction.SHORT)).position

        assert position.stop_loss == pytest.approx(51000.0)
        assert position.take_profit == pytest.approx(48000.0)

    def test_signal_levels_win(self, ledger):
        position = ledger.process_signal(
            make_signal(suggested_stop_loss=49500.0, suggested_take_profit=55000.0)
        ).position

        assert position.stop_loss == 49500.0
        assert position.take_profit == 55000.0

    def test_duplicate_skipped(self, ledger):
        ledger.process_signal(make_signal())
        decision = ledger.process_signal(make_signal())

        assert not decision.accepted
        assert decision.action == LedgerAction.SKIP
        assert decision.reason == "Already have LONG position in BTCUSDT"

    def test_max_positions(self):
        ledger = PaperPositionLedger(LedgerConfig(max_positions=1))
        ledger.process_signal(make_signal())

        decision = ledger.process_signal(make_signal(symbol="ETHUSDT", price=3000.0))

        assert decision.reason == "Max positions reached (1)"

    def test_margin_capped_by_available_balance(self):
        ledger = PaperPositionLedger(LedgerConfig(initial_balance=100.0))

        position = ledger.process_signal(make_signal(size=500.0)).position

        assert position.margin_used == pytest.approx(90.0)


class TestExits:
    """update_prices and close_position."""

    def test_stop_loss(self, ledger):
        ledger.process_signal(make_signal())

        closed = ledger.update_prices({"BTCUSDT": 48900.0})

        assert len(closed) == 1
        assert closed[0].exit_reason == "stop_loss"
        assert closed[0].realized_pnl == pytest.approx(-11.0)
        assert ledger.balance == pytest.approx(9989.0)

    def test_take_profit(self, ledger):
        ledger.process_signal(make_signal())

        closed = ledger.update_prices({"BTCUSDT": 52000.0})

        assert closed[0].exit_reason == "take_profit"
        assert closed[0].realized_pnl_percent == pytest.approx(40.0)

    def test_trailing_stop(self, ledger):
        position = ledger.process_signal(make_signal()).position

        assert ledger.update_prices({"BTCUSDT": 51000.0}) == []
        assert position.trail_activated
        assert position.stop_loss == pytest.approx(50850.0)
        assert position.trail_level == 4

        closed = ledger.update_prices({"BTCUSDT": 50800.0})

        assert closed[0].exit_reason == "trailing_stop"
        assert closed[0].realized_pnl > 0

    def test_unknown_and_bad_prices_ignored(self, ledger):
        ledger.process_signal(make_signal())

        assert ledger.update_prices({"ETHUSDT": 1.0, "BTCUSDT": 0.0}) == []
        assert len(ledger.get_positions()) == 1

    def test_close_position(self, ledger):
        position = ledger.process_signal(make_signal()).position

        closed = ledger.close_position(position.position_id, 50500.0, "manual")

        assert closed.exit_reason == "manual"
        assert closed.realized_pnl == pytest.approx(5.0)
        assert ledger.get_position(position.position_id) is None
        assert ledger.close_position(position.position_id, 50500.0, "manual") is None

    def test_stats(self, ledger):
        position = ledger.process_signal(make_signal()).position
        ledger.close_position(position.position_id, 50500.0, "manual")

        stats = ledger.get_stats()

        assert stats["closed_positions"] == 1
        assert stats["win_rate"] == pytest.approx(100.0)
        assert stats["balance"] == pytest.approx(10005.0)
