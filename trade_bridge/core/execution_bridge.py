"""
Execution Bridge
Gates signals through safety limits and mediates between the position ledger and the exchange

Modes:
- LOG_ONLY: log what would happen, no orders anywhere
- PAPER_MIRROR: the ledger's own bookkeeping is the execution
- REAL_MONEY: mirror every ledger open/close on the exchange
"""

import asyncio
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from .daily_limits import DailyLimitTracker, utc_now
from .exchange_client import (
    CloseAllResult,
    ExchangeClient,
    ExchangePosition,
    OrderRequest,
    OrderResult,
    POSITION_NOT_FOUND,
)
from .ledger import ClosablePositionLedger, ClosedPosition, Position, PositionLedger
from .reconciliation import ReconciliationResult, ReconciliationService
from .scheduler import PeriodicTask
from .signals import Direction, TradeSignal
from .trailing_stop import TrailingStopManager
from ..errors import (
    BridgeNotInitializedError,
    ClientNotInitializedError,
    ConfigError,
    safe_error_message,
)
from ..utils.config_loader import (
    BridgeConfig,
    ExecutionMode,
    LIVE_CONFIRMATION_TOKEN,
    RECONFIGURABLE_FIELDS,
    TradingMode,
)

logger = logging.getLogger(__name__)


class SignalAction(Enum):
    """Outcome of process_signal"""
    EXECUTED = "executed"
    REJECTED = "rejected"
    ERROR = "error"


class TradeAction(Enum):
    OPEN = "open"
    CLOSE = "close"


@dataclass(frozen=True)
class ExecutedTrade:
    """Audit record, one per execution attempt"""
    timestamp: datetime
    signal_id: str
    position_id: str
    symbol: str
    direction: Direction
    action: TradeAction
    quantity: float
    price: float
    leverage: int
    mode: ExecutionMode
    order_id: Optional[str]
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "signal_id": self.signal_id,
            "position_id": self.position_id,
            "symbol": self.symbol,
            "direction": self.direction.value,
            "action": self.action.value,
            "quantity": self.quantity,
            "price": self.price,
            "leverage": self.leverage,
            "mode": self.mode.value,
            "order_id": self.order_id,
            "success": self.success,
            "error": self.error
        }


@dataclass
class SignalResult:
    """Result of processing a signal"""
    action: SignalAction
    reason: str
    trade: Optional[ExecutedTrade] = None


@dataclass
class BridgeStats:
    """Bridge counters. Daily fields roll over at UTC midnight."""
    signals_received: int = 0
    signals_accepted: int = 0
    signals_rejected: int = 0
    trades_executed: int = 0
    trades_failed: int = 0
    open_positions: int = 0
    daily_pnl: float = 0.0
    daily_trades: int = 0
    last_reconcile_time: Optional[datetime] = None
    orphaned_positions: int = 0


@dataclass
class PositionMapping:
    """Ledger position <-> exchange order"""
    position_id: str
    order_id: str
    exchange_symbol: str
    direction: Direction
    quantity: float
    leverage: int
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class ConfigChange:
    """Audit record for one reconfigured field"""
    timestamp: datetime
    field: str
    old_value: Any
    new_value: Any


@dataclass
class ReconfigureResult:
    success: bool
    reason: str
    changes: List[ConfigChange] = field(default_factory=list)
    config: Optional[BridgeConfig] = None


class BridgeObserver:
    """
    Bridge event hooks

    Subclass and override what you need. Hooks run synchronously, in
    registration order, after the bridge state has been updated.
    """

    def on_trade_executed(self, trade: ExecutedTrade) -> None:
        pass

    def on_position_opened(self, position: Position, trade: ExecutedTrade) -> None:
        pass

    def on_position_closed(self, position: Position, trade: ExecutedTrade) -> None:
        pass

    def on_mode_changed(self, old_mode: ExecutionMode, new_mode: ExecutionMode) -> None:
        pass


class ExecutionBridge:
    """
    Execution Bridge

    Coordinates:
    - Mode gating and daily/position limits
    - Ledger accept/reject and exchange mirroring
    - Trailing stop registration for live positions
    - Reconciliation timer
    - Append-only trade audit log
    """

    def __init__(
        self,
        config: BridgeConfig,
        ledger: PositionLedger,
        client: Optional[ExchangeClient] = None,
        trailing_stops: Optional[TrailingStopManager] = None,
        reconciler: Optional[ReconciliationService] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.config = config
        self.ledger = ledger
        self.client = client
        self.trailing_stops = trailing_stops
        self.reconciler = reconciler
        if self.reconciler is None and client is not None:
            self.reconciler = ReconciliationService(client, ledger, config.auto_close_orphans)

        self.daily_limits = DailyLimitTracker(
            config.max_daily_trades,
            config.max_loss_per_day_usd,
            clock
        )

        self.stats = BridgeStats()
        self.trades: List[ExecutedTrade] = []
        self.position_mappings: Dict[str, PositionMapping] = {}
        self.config_history: List[ConfigChange] = []

        self._observers: List[BridgeObserver] = []
        self._lock = asyncio.Lock()
        self._initialized = False
        self._reconcile_task: Optional[PeriodicTask] = None

    # Lifecycle

    async def initialize(self) -> bool:
        """
        Prepare the bridge

        Real-money mode that cannot reach a tradable exchange client is
        downgraded to log-only with a warning instead of failing.
        """
        if self.config.is_live:
            ready, reason = await self._bring_up_exchange()
            if not ready:
                logger.warning(f"Real-money mode unavailable ({reason}) - downgrading to log-only")
                old_mode = self.config.mode
                self._apply_config(replace(self.config, mode=ExecutionMode.LOG_ONLY))
                self._notify("on_mode_changed", old_mode, self.config.mode)

        self._initialized = True
        await self._restart_reconcile_timer()

        logger.info(
            f"Execution bridge initialized: mode={self.config.mode.value}, "
            f"trading={self.config.trading_mode.value}, long_only={self.config.long_only}"
        )
        return True

    async def shutdown(self) -> None:
        """Stop background loops"""
        if self._reconcile_task:
            await self._reconcile_task.stop()
            self._reconcile_task = None
        if self.trailing_stops:
            await self.trailing_stops.stop_polling()
        logger.info("Execution bridge shut down")

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise BridgeNotInitializedError()

    async def _bring_up_exchange(self) -> Tuple[bool, Optional[str]]:
        if self.client is None:
            return False, "no exchange client configured"

        if not self.client.is_ready():
            if not await self.client.initialize():
                return False, "exchange credentials missing or invalid"

        allowed, reason = self.client.can_trade()
        if not allowed:
            return False, reason

        return True, None

    async def _restart_reconcile_timer(self) -> None:
        if self._reconcile_task:
            await self._reconcile_task.stop()
            self._reconcile_task = None

        if self.config.reconcile_interval_ms > 0:
            self._reconcile_task = PeriodicTask(
                "reconcile",
                self.reconcile,
                self.config.reconcile_interval_ms / 1000
            )
            self._reconcile_task.start()

    # Observers

    def add_observer(self, observer: BridgeObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: BridgeObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _notify(self, hook: str, *args) -> None:
        for observer in list(self._observers):
            try:
                getattr(observer, hook)(*args)
            except Exception as e:
                logger.error(f"Observer {type(observer).__name__}.{hook} failed: {e}")

    # Signals

    async def process_signal(self, signal: TradeSignal) -> SignalResult:
        """
        Process an incoming signal

        Checks run in order: daily reset, long-only, daily limits, position
        limits, then the ledger decides. Accepted signals are executed in
        the current mode.
        """
        self._require_initialized()

        async with self._lock:
            self.stats.signals_received += 1
            self.daily_limits.check_day_reset()

            if signal.direction == Direction.SHORT and self.config.long_only:
                return self._reject(signal, "SHORT signal rejected (long-only mode)")

            allowed, reason = self.daily_limits.can_trade()
            if not allowed:
                return self._reject(signal, reason)

            if self.config.trading_mode == TradingMode.SPOT:
                signal = signal.for_spot()

            reason = self._check_position_limits(signal)
            if reason:
                return self._reject(signal, reason)

            decision = self.ledger.process_signal(signal)
            if not decision.accepted:
                return self._reject(signal, decision.reason)

            self.stats.signals_accepted += 1
            position = decision.position

            trade = await self.execute_trade(signal, position, TradeAction.OPEN)

            if trade.success:
                self.daily_limits.record_trade()
                self._notify("on_position_opened", position, trade)
                return SignalResult(
                    SignalAction.EXECUTED,
                    f"Opened {position.direction.label} {position.symbol} ({self.config.mode.value})",
                    trade
                )

            self._rollback_open(position, trade.error)
            return SignalResult(SignalAction.ERROR, trade.error or "Execution failed", trade)

    def _reject(self, signal: TradeSignal, reason: str) -> SignalResult:
        self.stats.signals_rejected += 1
        logger.info(f"Signal rejected: {signal.direction.label} {signal.symbol} - {reason}")
        return SignalResult(SignalAction.REJECTED, reason)

    def _check_position_limits(self, signal: TradeSignal) -> Optional[str]:
        positions = self.ledger.get_positions()

        if len(positions) >= self.config.max_concurrent_positions:
            return f"Max concurrent positions reached ({self.config.max_concurrent_positions})"

        size = signal.suggested_position_size
        if size > self.config.max_position_size_usd:
            return f"Position size ${size:.2f} exceeds max ${self.config.max_position_size_usd:.2f}"

        exposure = sum(p.margin_used for p in positions) + size
        if exposure > self.config.max_total_exposure_usd:
            return f"Total exposure ${exposure:.2f} would exceed max ${self.config.max_total_exposure_usd:.2f}"

        return None

    def _rollback_open(self, position: Position, error: Optional[str]) -> None:
        """Drop a ledger position whose exchange open failed"""
        if isinstance(self.ledger, ClosablePositionLedger):
            self.ledger.close_position(position.position_id, position.entry_price, "execution_failed")
            logger.warning(f"Rolled back ledger position {position.position_id}: {error}")
        else:
            logger.warning(f"Ledger position {position.position_id} has no exchange counterpart: {error}")

    # Execution

    async def execute_trade(
        self,
        signal: Optional[TradeSignal],
        position: Position,
        action: TradeAction,
        price: Optional[float] = None
    ) -> ExecutedTrade:
        """
        Execute an open or close in the current mode

        Never raises for trading failures: the returned record carries
        success=False and a sanitized error.
        """
        if price is None:
            price = signal.price if signal else (position.current_price or position.entry_price)
        signal_id = signal.signal_id if signal else position.signal_id

        if action == TradeAction.OPEN:
            quantity = position.notional_size / price if price > 0 else 0.0
        else:
            quantity = position.quantity

        mode = self.config.mode

        if action == TradeAction.CLOSE and not self.config.is_live:
            await self._release_mapping(position)

        if mode == ExecutionMode.LOG_ONLY:
            logger.info(
                f"[LOG-ONLY] Would {action.value.upper()} {position.direction.label} "
                f"{quantity:.6f} {position.symbol} @ {price:.4f} ({position.leverage}x)"
            )
            return self._record(signal_id, position, action, quantity, price, None, True)

        if mode == ExecutionMode.PAPER_MIRROR:
            order_id = f"paper-{uuid.uuid4().hex[:8]}"
            logger.info(
                f"[PAPER] {action.value.upper()} {position.direction.label} "
                f"{quantity:.6f} {position.symbol} @ {price:.4f} ({position.leverage}x)"
            )
            return self._record(signal_id, position, action, quantity, price, order_id, True)

        return await self._execute_live(signal_id, position, action, quantity, price)

    async def _execute_live(
        self,
        signal_id: str,
        position: Position,
        action: TradeAction,
        quantity: float,
        price: float
    ) -> ExecutedTrade:
        client = self.client
        exchange_symbol = client.to_exchange_symbol(position.symbol)

        try:
            if action == TradeAction.OPEN:
                order = OrderRequest(exchange_symbol, position.direction, quantity, position.leverage)
                valid, reason = client.validate_order(order, price)
                if not valid:
                    logger.warning(f"[LIVE] Order rejected by safety check: {reason}")
                    return self._record(signal_id, position, action, quantity, price, None, False, reason)

                result = await client.place_market_order(
                    exchange_symbol, position.direction, quantity, position.leverage
                )
                if result.success:
                    self.position_mappings[position.position_id] = PositionMapping(
                        position_id=position.position_id,
                        order_id=result.order_id,
                        exchange_symbol=exchange_symbol,
                        direction=position.direction,
                        quantity=quantity,
                        leverage=position.leverage
                    )
                    if self.trailing_stops:
                        await self.trailing_stops.create_trailing_stop(
                            position.position_id,
                            exchange_symbol,
                            position.direction,
                            result.price or price,
                            quantity,
                            position.leverage
                        )
            else:
                result = await self._close_on_exchange(position)

        except (ClientNotInitializedError, BridgeNotInitializedError):
            raise
        except Exception as e:
            logger.error(f"[LIVE] {action.value} {position.symbol} failed: {safe_error_message(e)}")
            result = OrderResult(success=False, error=safe_error_message(e))

        return self._record(
            signal_id, position, action, quantity, result.price or price,
            result.order_id, result.success, result.error
        )

    async def _release_mapping(self, position: Position) -> None:
        """Forget the exchange side of a position closed while not live"""
        if self.position_mappings.pop(position.position_id, None) is None:
            return

        logger.warning(
            f"Exchange position for {position.symbol} ({position.position_id}) left open: "
            f"bridge is in {self.config.mode.value} mode"
        )
        if self.trailing_stops:
            await self.trailing_stops.remove_trailing_stop(position.position_id, cancel_order=False)

    async def _close_on_exchange(self, position: Position) -> OrderResult:
        mapping = self.position_mappings.get(position.position_id)
        if mapping is None:
            # Opened while not live: nothing to close on the exchange
            logger.info(f"[LIVE] {position.symbol} ({position.position_id}) has no exchange position")
            return OrderResult(success=True)

        result = await self.client.close_position(mapping.exchange_symbol, mapping.direction, mapping.quantity)

        if result.error == POSITION_NOT_FOUND:
            logger.warning(
                f"[LIVE] {mapping.direction.label} {mapping.exchange_symbol} ({position.position_id}) "
                f"already closed on the exchange"
            )
            result = OrderResult(success=True)

        if result.success:
            self.position_mappings.pop(position.position_id, None)
            if self.trailing_stops:
                await self.trailing_stops.remove_trailing_stop(position.position_id)

        return result

    def _record(
        self,
        signal_id: str,
        position: Position,
        action: TradeAction,
        quantity: float,
        price: float,
        order_id: Optional[str],
        success: bool,
        error: Optional[str] = None
    ) -> ExecutedTrade:
        trade = ExecutedTrade(
            timestamp=datetime.now(timezone.utc),
            signal_id=signal_id,
            position_id=position.position_id,
            symbol=position.symbol,
            direction=position.direction,
            action=action,
            quantity=quantity,
            price=price,
            leverage=position.leverage,
            mode=self.config.mode,
            order_id=order_id,
            success=success,
            error=error
        )
        self.trades.append(trade)

        if success:
            self.stats.trades_executed += 1
        else:
            self.stats.trades_failed += 1
            logger.error(f"Trade failed: {action.value} {position.symbol} - {error}")

        self._notify("on_trade_executed", trade)
        return trade

    # Prices and closes

    async def update_prices(self, prices: Dict[str, float]) -> List[ClosedPosition]:
        """Mark the ledger to market and mirror any exits it produces"""
        self._require_initialized()

        async with self._lock:
            closed = self.ledger.update_prices(prices)
            for position in closed:
                await self._handle_position_closed(position)

        if self.trailing_stops and self.config.is_live:
            to_exchange = self.client.to_exchange_symbol if self.client else (lambda s: s)
            await self.trailing_stops.update_prices({to_exchange(s): p for s, p in prices.items()})

        return closed

    async def _handle_position_closed(self, position: ClosedPosition) -> ExecutedTrade:
        """Ledger closed a position by itself (stop, target, trail)"""
        self.daily_limits.record_pnl(position.realized_pnl)

        trade = await self.execute_trade(None, position, TradeAction.CLOSE, position.exit_price)
        self._notify("on_position_closed", position, trade)
        return trade

    async def force_close(self, position_id: str, reason: str = "manual") -> Optional[ExecutedTrade]:
        """Close one ledger position now. Returns None for an unknown id."""
        self._require_initialized()
        async with self._lock:
            return await self._force_close_locked(position_id, reason)

    async def _force_close_locked(self, position_id: str, reason: str) -> Optional[ExecutedTrade]:
        position = next((p for p in self.ledger.get_positions() if p.position_id == position_id), None)
        if position is None:
            logger.warning(f"Force close: unknown position {position_id}")
            return None

        price = position.current_price or position.entry_price
        logger.info(f"Force closing {position.direction.label} {position.symbol} ({position_id}): {reason}")

        trade = await self.execute_trade(None, position, TradeAction.CLOSE, price)
        if not trade.success:
            return trade

        if isinstance(self.ledger, ClosablePositionLedger):
            closed = self.ledger.close_position(position_id, price, reason)
            if closed:
                self.daily_limits.record_pnl(closed.realized_pnl)
                self._notify("on_position_closed", closed, trade)
        else:
            logger.warning(f"Ledger cannot close positions on demand; {position_id} stays in the ledger")

        return trade

    async def emergency_close_all(self) -> CloseAllResult:
        """Close every ledger position, then flatten the exchange in real-money mode"""
        self._require_initialized()

        async with self._lock:
            result = CloseAllResult()
            positions = list(self.ledger.get_positions())

            if positions:
                logger.warning(f"EMERGENCY CLOSE ALL: {len(positions)} open positions")

            for position in positions:
                trade = await self._force_close_locked(position.position_id, "emergency_close")
                if trade and trade.success:
                    result.closed += 1
                else:
                    result.failed += 1
                    result.errors.append(f"{position.symbol}: {trade.error if trade else 'not found'}")

            if self.config.is_live and self.client and self.client.is_ready():
                # Ledger positions whose close just failed stay mapped; they are already counted
                mapped = [(m.exchange_symbol, m.direction) for m in self.position_mappings.values()]
                exchange_result = await self.client.emergency_close_all(skip=mapped)
                result.closed += exchange_result.closed
                result.failed += exchange_result.failed
                result.errors.extend(exchange_result.errors)

        if positions or result.closed or result.failed:
            logger.warning(f"Emergency close complete: {result.closed} closed, {result.failed} failed")
        return result

    # Reconciliation

    async def reconcile(self) -> ReconciliationResult:
        """Diff ledger against exchange. No-op outside real-money mode."""
        if not self.config.is_live or self.reconciler is None or not self.client or not self.client.is_ready():
            return ReconciliationResult()

        result = await self.reconciler.reconcile()
        self.stats.last_reconcile_time = result.timestamp
        if result.error is None:
            self.stats.orphaned_positions = result.orphaned
            if self.trailing_stops:
                await self._close_external_exits(result.exchange_positions)
        return result

    async def _close_external_exits(self, exchange_positions: List[ExchangePosition]) -> int:
        """
        Mirror exchange-side exits (a filled stop, a manual close) into the ledger

        A tracked position missing from the snapshot is confirmed closed,
        its mapping dropped, and the ledger position closed with reason
        external_close at the decided stop price (the last seen price under
        native trailing).
        """
        closed = 0
        for position_id in self.trailing_stops.detect_potential_closes(exchange_positions):
            async with self._lock:
                state = await self.trailing_stops.confirm_external_close(position_id)
                if state is None:
                    continue
                self.position_mappings.pop(position_id, None)

                position = next((p for p in self.ledger.get_positions() if p.position_id == position_id), None)
                if position is None:
                    continue

                exit_price = state.current_price if state.native_trailing else state.current_stop_price
                trade = self._record(
                    position.signal_id, position, TradeAction.CLOSE,
                    position.quantity, exit_price, None, True
                )
                closed += 1

                if isinstance(self.ledger, ClosablePositionLedger):
                    closed_position = self.ledger.close_position(position_id, exit_price, "external_close")
                    if closed_position:
                        self.daily_limits.record_pnl(closed_position.realized_pnl)
                        self._notify("on_position_closed", closed_position, trade)
                else:
                    logger.warning(f"Ledger cannot close positions on demand; {position_id} stays in the ledger")

        return closed

    # Configuration

    async def reconfigure(
        self,
        updates: Dict[str, Any],
        confirmation: Optional[str] = None
    ) -> ReconfigureResult:
        """
        Change configuration in place

        Open positions, exchange mappings, trailing stops and stats carry
        over. Entering real-money mode requires LIVE_CONFIRMATION_TOKEN; a
        rejected request changes nothing.
        """
        unknown = set(updates) - RECONFIGURABLE_FIELDS
        if unknown:
            return ReconfigureResult(False, f"Unknown config fields: {sorted(unknown)}", config=self.config)

        try:
            new_config = replace(self.config, **updates)
        except (ConfigError, TypeError, ValueError) as e:
            return ReconfigureResult(False, f"Invalid config: {safe_error_message(e)}", config=self.config)

        entering_live = new_config.is_live and not self.config.is_live
        leaving_live = self.config.is_live and not new_config.is_live

        if entering_live and confirmation != LIVE_CONFIRMATION_TOKEN:
            logger.warning("Rejected switch to real_money mode: missing or wrong confirmation token")
            return ReconfigureResult(
                False,
                "Switching to real_money mode requires the confirmation token",
                config=self.config
            )

        async with self._lock:
            if entering_live:
                ready, reason = await self._bring_up_exchange()
                if not ready:
                    logger.warning(f"Rejected switch to real_money mode: {reason}")
                    return ReconfigureResult(False, f"Cannot enter real_money mode: {reason}", config=self.config)

            old_config = self.config
            changes = self._apply_config(new_config)

        if not changes:
            return ReconfigureResult(True, "No changes", config=self.config)

        timer_changed = (
            old_config.reconcile_interval_ms != new_config.reconcile_interval_ms
        )
        if self._initialized and timer_changed:
            await self._restart_reconcile_timer()

        if self.trailing_stops:
            if leaving_live:
                # Resting exchange stops stay in place; no further exchange I/O
                await self.trailing_stops.stop_polling()
            elif entering_live and self.trailing_stops.get_active_stops():
                self.trailing_stops.start_polling()

        if old_config.mode != new_config.mode:
            logger.warning(f"Execution mode changed: {old_config.mode.value} -> {new_config.mode.value}")
            self._notify("on_mode_changed", old_config.mode, new_config.mode)

        return ReconfigureResult(True, "Configuration updated", changes, self.config)

    def _apply_config(self, new_config: BridgeConfig) -> List[ConfigChange]:
        old = self.config.to_dict()
        new = new_config.to_dict()
        now = datetime.now(timezone.utc)

        changes = [ConfigChange(now, key, old[key], new[key]) for key in new if old[key] != new[key]]
        for change in changes:
            logger.warning(f"Config change: {change.field} {change.old_value} -> {change.new_value}")

        self.config_history.extend(changes)
        self.config = new_config
        self.daily_limits.set_limits(new_config.max_daily_trades, new_config.max_loss_per_day_usd)
        if self.reconciler:
            self.reconciler.auto_close_orphans = new_config.auto_close_orphans

        return changes

    # Getters

    def is_live(self) -> bool:
        return self.config.is_live

    def get_config(self) -> BridgeConfig:
        return self.config

    def get_stats(self) -> BridgeStats:
        """Snapshot of the counters"""
        self.daily_limits.check_day_reset()
        return replace(
            self.stats,
            open_positions=len(self.ledger.get_positions()),
            daily_pnl=self.daily_limits.realized_pnl_today,
            daily_trades=self.daily_limits.trades_today
        )

    def get_trades(self, limit: int = 50) -> List[ExecutedTrade]:
        """Most recent trades first"""
        if limit <= 0:
            return []
        return list(reversed(self.trades[-limit:]))

    def get_open_positions(self) -> List[Position]:
        return list(self.ledger.get_positions())

    def get_position_mappings(self) -> Dict[str, PositionMapping]:
        return dict(self.position_mappings)

    def get_status(self) -> Dict[str, Any]:
        stats = self.get_stats()
        return {
            "initialized": self._initialized,
            "config": self.config.to_dict(),
            "exchange_ready": bool(self.client and self.client.is_ready()),
            "stats": {
                "signals_received": stats.signals_received,
                "signals_accepted": stats.signals_accepted,
                "signals_rejected": stats.signals_rejected,
                "trades_executed": stats.trades_executed,
                "trades_failed": stats.trades_failed,
                "open_positions": stats.open_positions,
                "daily_pnl": stats.daily_pnl,
                "daily_trades": stats.daily_trades,
                "last_reconcile_time": stats.last_reconcile_time.isoformat() if stats.last_reconcile_time else None,
                "orphaned_positions": stats.orphaned_positions
            },
            "position_mappings": len(self.position_mappings),
            "trailing_stops": len(self.trailing_stops.get_active_stops()) if self.trailing_stops else 0,
            "reconcile_loop": self._reconcile_task.get_stats() if self._reconcile_task else None
        }
