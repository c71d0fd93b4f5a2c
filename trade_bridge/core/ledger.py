"""
Position ledger
The PositionLedger protocol the bridge consumes, plus an in-memory paper ledger
"""

import itertools
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Protocol, runtime_checkable
import logging

from .signals import Direction, TradeSignal
from ..utils.config_loader import LedgerConfig

logger = logging.getLogger(__name__)


class LedgerAction(Enum):
    OPEN = "open"
    SKIP = "skip"


@dataclass
class Position:
    """Open paper position"""
    position_id: str
    symbol: str
    direction: Direction
    timeframe: str
    entry_price: float
    entry_time: datetime
    margin_used: float
    notional_size: float
    leverage: int
    stop_loss: float
    take_profit: float
    trail_trigger_percent: float = 10.0
    trail_activated: bool = False
    trail_level: int = 0
    highest_pnl_percent: float = 0.0
    current_price: float = 0.0
    unrealized_pnl: float = 0.0
    unrealized_pnl_percent: float = 0.0
    signal_id: str = ""

    @property
    def key(self):
        return (self.symbol, self.direction)

    @property
    def quantity(self) -> float:
        return self.notional_size / self.entry_price


@dataclass
class ClosedPosition(Position):
    """Position moved to closed state"""
    exit_price: float = 0.0
    exit_time: Optional[datetime] = None
    exit_reason: str = ""
    realized_pnl: float = 0.0
    realized_pnl_percent: float = 0.0
    duration_seconds: float = 0.0


@dataclass
class LedgerDecision:
    """Ledger accept/reject answer for a signal"""
    action: LedgerAction
    reason: str
    position: Optional[Position] = None

    @property
    def accepted(self) -> bool:
        return self.action == LedgerAction.OPEN and self.position is not None


@runtime_checkable
class PositionLedger(Protocol):
    """What the bridge needs from a ledger"""

    def process_signal(self, signal: TradeSignal) -> LedgerDecision:
        ...

    def get_positions(self) -> List[Position]:
        ...

    def update_prices(self, prices: Dict[str, float]) -> List[ClosedPosition]:
        ...


@runtime_checkable
class ClosablePositionLedger(PositionLedger, Protocol):
    """Ledger that also supports closing a position on demand"""

    def close_position(self, position_id: str, price: float, reason: str) -> Optional[ClosedPosition]:
        ...


class PaperPositionLedger:
    """
    In-memory paper-trading ledger

    Accepts at most one position per (symbol, direction), sizes from the
    signal's suggested margin capped at 90% of balance, and exits on stop
    loss, take profit or a trailing stop that follows the peak ROI.
    """

    def __init__(self, config: Optional[LedgerConfig] = None):
        self.config = config or LedgerConfig()
        self.balance = self.config.initial_balance
        self.positions: Dict[str, Position] = {}
        self.closed_positions: List[ClosedPosition] = []
        self._seq = itertools.count(1)

    def _find(self, symbol: str, direction: Direction) -> Optional[Position]:
        return next(
            (p for p in self.positions.values() if p.symbol == symbol and p.direction == direction),
            None
        )

    def process_signal(self, signal: TradeSignal) -> LedgerDecision:
        """Accept (open) or skip a signal"""
        if self._find(signal.symbol, signal.direction):
            return LedgerDecision(
                LedgerAction.SKIP,
                f"Already have {signal.direction.label} position in {signal.symbol}"
            )

        if len(self.positions) >= self.config.max_positions:
            return LedgerDecision(LedgerAction.SKIP, f"Max positions reached ({self.config.max_positions})")

        margin = min(signal.suggested_position_size, self.available_balance * 0.9)
        if margin <= 0:
            return LedgerDecision(LedgerAction.SKIP, "Insufficient balance for position")

        position = self._open(signal, margin)
        return LedgerDecision(LedgerAction.OPEN, f"Opened {signal.direction.label} {signal.symbol}", position)

    def _open(self, signal: TradeSignal, margin: float) -> Position:
        entry = signal.price
        leverage = signal.suggested_leverage
        sign = signal.direction.sign

        if signal.suggested_stop_loss and signal.suggested_stop_loss > 0:
            stop_loss = signal.suggested_stop_loss
        else:
            stop_loss = entry * (1 - sign * self.config.initial_stop_percent / 100)

        if signal.suggested_take_profit and signal.suggested_take_profit > 0:
            take_profit = signal.suggested_take_profit
        else:
            # 2:1 reward to risk
            take_profit = entry + sign * abs(entry - stop_loss) * 2

        position = Position(
            position_id=f"{signal.symbol}-{signal.timeframe}-{int(signal.timestamp.timestamp() * 1000)}-{next(self._seq)}",
            symbol=signal.symbol,
            direction=signal.direction,
            timeframe=signal.timeframe,
            entry_price=entry,
            entry_time=signal.timestamp,
            margin_used=margin,
            notional_size=margin * leverage,
            leverage=leverage,
            stop_loss=stop_loss,
            take_profit=take_profit,
            trail_trigger_percent=self.config.default_trail_trigger_percent,
            current_price=entry,
            signal_id=signal.signal_id
        )
        self.positions[position.position_id] = position

        logger.info(
            f"[PAPER] Opened {position.direction.label} {position.symbol} @ {entry:.4f} "
            f"margin=${margin:.2f} {leverage}x SL={stop_loss:.4f} TP={take_profit:.4f}"
        )
        return position

    def get_positions(self) -> List[Position]:
        return list(self.positions.values())

    def get_position(self, position_id: str) -> Optional[Position]:
        return self.positions.get(position_id)

    def update_prices(self, prices: Dict[str, float]) -> List[ClosedPosition]:
        """Mark positions to market and close any whose exit fired"""
        closed = []

        for position in list(self.positions.values()):
            price = prices.get(position.symbol)
            if not price or price <= 0:
                continue

            self._mark(position, price)

            exit_reason = self._exit_reason(position, price)
            if exit_reason:
                closed_position = self.close_position(position.position_id, price, exit_reason)
                if closed_position:
                    closed.append(closed_position)

        return closed

    def _mark(self, position: Position, price: float) -> None:
        sign = position.direction.sign
        change = sign * (price - position.entry_price) / position.entry_price

        position.current_price = price
        position.unrealized_pnl = change * position.notional_size
        position.unrealized_pnl_percent = change * 100 * position.leverage
        position.highest_pnl_percent = max(position.highest_pnl_percent, position.unrealized_pnl_percent)

        if not position.trail_activated and position.unrealized_pnl_percent >= position.trail_trigger_percent:
            position.trail_activated = True
            logger.info(f"[PAPER] Trail activated for {position.symbol} at {position.unrealized_pnl_percent:.1f}% ROI")

        if position.trail_activated and self.config.use_trailing_stop:
            step = self.config.trail_step_percent
            trail_roi = position.highest_pnl_percent - step
            if trail_roi > 0:
                new_stop = position.entry_price * (1 + sign * trail_roi / position.leverage / 100)
                better = new_stop > position.stop_loss if sign > 0 else new_stop < position.stop_loss
                if better:
                    position.stop_loss = new_stop
                    position.trail_level = int((position.highest_pnl_percent - position.trail_trigger_percent) // step) + 1

    def _exit_reason(self, position: Position, price: float) -> Optional[str]:
        long = position.direction == Direction.LONG

        if self.config.use_take_profit:
            if (long and price >= position.take_profit) or (not long and price <= position.take_profit):
                return "take_profit"

        if (long and price <= position.stop_loss) or (not long and price >= position.stop_loss):
            return "trailing_stop" if position.trail_activated else "stop_loss"

        return None

    def close_position(self, position_id: str, price: float, reason: str) -> Optional[ClosedPosition]:
        """Close a position at price. Returns None for an unknown id."""
        position = self.positions.pop(position_id, None)
        if position is None:
            return None

        if price and price > 0:
            self._mark(position, price)
        exit_price = price if price and price > 0 else position.current_price

        now = datetime.now(timezone.utc)
        change = position.direction.sign * (exit_price - position.entry_price) / position.entry_price

        closed = ClosedPosition(
            **{f.name: getattr(position, f.name) for f in fields(Position)},
            exit_price=exit_price,
            exit_time=now,
            exit_reason=reason,
            realized_pnl=change * position.notional_size,
            realized_pnl_percent=change * 100 * position.leverage,
            duration_seconds=(now - position.entry_time).total_seconds()
        )

        self.balance += closed.realized_pnl
        self.closed_positions.append(closed)

        logger.info(
            f"[PAPER] Closed {closed.direction.label} {closed.symbol} @ {exit_price:.4f} "
            f"P&L=${closed.realized_pnl:.2f} ({closed.realized_pnl_percent:.1f}%) reason={reason}"
        )
        return closed

    @property
    def available_balance(self) -> float:
        return self.balance - sum(p.margin_used for p in self.positions.values())

    def get_stats(self) -> Dict:
        wins = [c for c in self.closed_positions if c.realized_pnl > 0]
        total = len(self.closed_positions)
        return {
            "balance": self.balance,
            "available_balance": self.available_balance,
            "open_positions": len(self.positions),
            "closed_positions": total,
            "win_rate": (len(wins) / total * 100) if total else 0.0,
            "realized_pnl": sum(c.realized_pnl for c in self.closed_positions)
        }
