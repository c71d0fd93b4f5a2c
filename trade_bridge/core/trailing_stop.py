"""
Trailing Stop Manager
Moves a protective stop toward profit as a position gains, in one of three modes:

- NATIVE: arm an exchange-side trailing order once ROI crosses the activation threshold
- MANUAL: walk ROI levels locally and ratchet a fixed stop order
- HYBRID: decide activation locally, then hand off to a native trailing order,
          optionally falling back to MANUAL if the exchange refuses it
"""

import asyncio
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Any
import logging

from .exchange_client import ExchangeClient, ExchangePosition
from .reconciliation import normalize_symbol
from .scheduler import PeriodicTask
from .signals import Direction
from ..errors import BridgeError
from ..utils.config_loader import TrailingMode, TrailingStopConfig

logger = logging.getLogger(__name__)


def calculate_roi(direction: Direction, entry_price: float, price: float, leverage: float) -> float:
    """ROI% = price change % in the position's favour x leverage"""
    change = (price - entry_price) if direction == Direction.LONG else (entry_price - price)
    return change / entry_price * leverage * 100


def stop_price_for_roi(direction: Direction, entry_price: float, roi_percent: float, leverage: float) -> float:
    """Inverse of calculate_roi: the price at which the position shows roi_percent"""
    return entry_price * (1 + direction.sign * roi_percent / leverage / 100)


def is_more_protective(direction: Direction, new_stop: float, current_stop: Optional[float]) -> bool:
    """Strictly tighter toward profit: higher for longs, lower for shorts"""
    if current_stop is None:
        return True
    if direction == Direction.LONG:
        return new_stop > current_stop
    return new_stop < current_stop


def _same_price(a: Optional[float], b: Optional[float]) -> bool:
    if a is None or b is None:
        return False
    return abs(a - b) <= 1e-9 * max(1.0, abs(b))


@dataclass
class TrailingStopState:
    """Trailing stop bookkeeping for one position"""
    position_id: str
    symbol: str
    direction: Direction
    entry_price: float
    quantity: float
    leverage: int
    mode: TrailingMode
    current_stop_price: float
    peak_price: float
    trough_price: float
    current_price: float
    is_activated: bool = False
    current_level: int = 0
    last_roi: float = 0.0

    # Exchange side
    stop_order_id: Optional[str] = None
    stop_order_price: Optional[float] = None
    native_trailing: bool = False
    # Set when the order vanished without our cancel; placement then waits for the position check
    stop_missing: bool = False

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["direction"] = self.direction.value
        data["mode"] = self.mode.value
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrailingStopState":
        data = dict(data)
        data["direction"] = Direction.parse(data["direction"])
        data["mode"] = TrailingMode.parse(data["mode"])
        for key in ("created_at", "updated_at"):
            if isinstance(data.get(key), str):
                data[key] = datetime.fromisoformat(data[key])
        return cls(**data)


class TrailingStopManager:
    """
    Trailing stop manager

    current_stop_price is the decided protective level and only ever
    tightens. The exchange order is synced toward it on every update, so a
    failed placement is retried on the next tick and a retried replacement
    adopts an order already resting at the target instead of duplicating it.
    """

    def __init__(
        self,
        client: Optional[ExchangeClient] = None,
        config: Optional[TrailingStopConfig] = None,
        auto_poll: bool = True
    ):
        self.client = client
        self.config = config or TrailingStopConfig()
        self.auto_poll = auto_poll

        self.active_stops: Dict[str, TrailingStopState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

        self._poller = PeriodicTask(
            "trailing-poll",
            self.poll_prices,
            self.config.poll_interval_seconds
        )

    # Helpers

    def _lock_for(self, position_id: str) -> asyncio.Lock:
        lock = self._locks.get(position_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[position_id] = lock
        return lock

    def _exchange_enabled(self) -> bool:
        if self.client is None or not self.client.is_ready():
            return False
        allowed, _ = self.client.can_trade(reduce_only=True)
        return allowed

    def _level_for_roi(self, roi: float) -> int:
        """1-based index of the highest level whose trigger has been reached, 0 for none"""
        level = 0
        for i, lvl in enumerate(self.config.levels, start=1):
            if roi >= lvl.trigger_roi_percent:
                level = i
        return level

    @staticmethod
    def _needs_polling(state: TrailingStopState) -> bool:
        return state.mode in (TrailingMode.MANUAL, TrailingMode.HYBRID) and not state.native_trailing

    # Lifecycle

    async def create_trailing_stop(
        self,
        position_id: str,
        symbol: str,
        direction: Direction,
        entry_price: float,
        quantity: float,
        leverage: int,
        mode: Optional[TrailingMode] = None
    ) -> TrailingStopState:
        """
        Register a position and place its initial protective stop

        Calling again for a known position returns the existing state.
        """
        existing = self.active_stops.get(position_id)
        if existing:
            return existing

        direction = Direction.parse(direction)
        initial_stop = stop_price_for_roi(
            direction, entry_price, self.config.initial_stop_roi_percent, leverage
        )

        state = TrailingStopState(
            position_id=position_id,
            symbol=symbol,
            direction=direction,
            entry_price=entry_price,
            quantity=quantity,
            leverage=leverage,
            mode=mode or self.config.mode,
            current_stop_price=initial_stop,
            peak_price=entry_price,
            trough_price=entry_price,
            current_price=entry_price
        )
        self.active_stops[position_id] = state

        logger.info(
            f"Trailing stop created: {direction.label} {symbol} entry={entry_price:.4f} "
            f"stop={initial_stop:.4f} mode={state.mode.value}"
        )

        async with self._lock_for(position_id):
            await self._sync_stop_order(state)

        if self.auto_poll and self._needs_polling(state) and not self._poller.is_running:
            self._poller.start()

        return state

    async def remove_trailing_stop(self, position_id: str, cancel_order: bool = True) -> bool:
        """Stop tracking a position and, unless told otherwise, cancel its resting stop order"""
        async with self._lock_for(position_id):
            state = self.active_stops.pop(position_id, None)
            if state is None:
                return False

            if cancel_order and state.stop_order_id and self._exchange_enabled():
                await self.client.cancel_stop_order(state.symbol, state.stop_order_id)

        self._locks.pop(position_id, None)
        logger.info(f"Trailing stop removed: {state.symbol} ({position_id})")
        return True

    def detect_potential_closes(
        self,
        open_positions: Iterable[ExchangePosition],
        now: Optional[datetime] = None
    ) -> List[str]:
        """
        Position ids whose exchange position is gone from an open-positions snapshot

        Stops younger than close_grace_seconds are skipped so a fresh open is
        not mistaken for a close. Nothing is removed here; the caller confirms
        each id with confirm_external_close.
        """
        now = now or datetime.now(timezone.utc)
        grace = timedelta(seconds=self.config.close_grace_seconds)
        open_keys = {(normalize_symbol(p.symbol), p.side) for p in open_positions}

        return [
            position_id for position_id, state in self.active_stops.items()
            if now - state.created_at >= grace
            and (normalize_symbol(state.symbol), state.direction) not in open_keys
        ]

    async def confirm_external_close(self, position_id: str) -> Optional[TrailingStopState]:
        """Stop tracking a position closed outside the bridge. Returns its final state."""
        state = self.active_stops.get(position_id)
        if state is None or not await self.remove_trailing_stop(position_id):
            return None

        logger.warning(
            f"External close confirmed: {state.direction.label} {state.symbol} ({position_id}) "
            f"last price {state.current_price:.4f}, stop {state.current_stop_price:.4f}"
        )
        return state

    def get_active_stops(self) -> List[TrailingStopState]:
        return list(self.active_stops.values())

    def get_stop_state(self, position_id: str) -> Optional[TrailingStopState]:
        return self.active_stops.get(position_id)

    # Price updates

    async def update_price(self, position_id: str, price: float) -> Optional[TrailingStopState]:
        """Feed a price for one position and advance its stop"""
        async with self._lock_for(position_id):
            state = self.active_stops.get(position_id)
            if state is None or price <= 0:
                return state

            state.current_price = price
            state.peak_price = max(state.peak_price, price)
            state.trough_price = min(state.trough_price, price)
            state.updated_at = datetime.now(timezone.utc)

            roi = calculate_roi(state.direction, state.entry_price, price, state.leverage)
            state.last_roi = roi

            if state.mode == TrailingMode.NATIVE:
                await self._handle_native(state, roi)
            elif state.mode == TrailingMode.MANUAL:
                await self._handle_manual(state, roi)
            else:
                await self._handle_hybrid(state, roi)

            return state

    async def update_prices(self, prices: Dict[str, float]) -> int:
        """Feed a symbol -> price map to every tracked position"""
        updated = 0
        for state in list(self.active_stops.values()):
            price = prices.get(state.symbol)
            if price is not None:
                await self.update_price(state.position_id, price)
                updated += 1
        return updated

    async def _handle_native(self, state: TrailingStopState, roi: float) -> None:
        if state.is_activated:
            return

        if roi >= self.config.activation_percent:
            await self._arm_native(state, roi)
        else:
            await self._sync_stop_order(state)

    async def _handle_manual(self, state: TrailingStopState, roi: float) -> None:
        level = self._level_for_roi(roi)
        if level > state.current_level:
            logger.info(f"Trail level {state.current_level} -> {level} for {state.symbol} (ROI {roi:.2f}%)")
            state.current_level = level
            state.is_activated = True

        if state.current_level > 0:
            stop_roi = self.config.levels[state.current_level - 1].stop_roi_percent
            target = stop_price_for_roi(state.direction, state.entry_price, stop_roi, state.leverage)

            if is_more_protective(state.direction, target, state.current_stop_price):
                logger.info(
                    f"Trailing stop tightened for {state.symbol}: "
                    f"{state.current_stop_price:.4f} -> {target:.4f} (level {state.current_level})"
                )
                state.current_stop_price = target

        await self._sync_stop_order(state)

    async def _handle_hybrid(self, state: TrailingStopState, roi: float) -> None:
        if state.native_trailing:
            return

        if not self.config.use_native_execution:
            await self._handle_manual(state, roi)
            return

        if roi < self.config.activation_percent:
            await self._sync_stop_order(state)
            return

        # stop_missing still set means the position is gone, not that the exchange refused
        if await self._arm_native(state, roi) or state.stop_missing:
            return

        if self.config.fallback_to_manual:
            logger.warning(f"Native trailing unavailable for {state.symbol}, falling back to manual")
            state.mode = TrailingMode.MANUAL
            await self._handle_manual(state, roi)

    async def _arm_native(self, state: TrailingStopState, roi: float) -> bool:
        """Swap the fixed stop for an exchange trailing order. Returns True once armed."""
        if not self._exchange_enabled():
            state.is_activated = True
            state.native_trailing = True
            logger.info(f"[LOCAL] Native trailing armed for {state.symbol} at ROI {roi:.2f}%")
            return True

        if state.stop_order_id:
            if not await self._cancel_or_confirm_gone(state):
                return False

        if state.stop_missing and not await self._position_still_open(state):
            return False

        order_id = await self.client.place_trailing_stop(
            state.symbol,
            state.direction,
            state.quantity,
            self.config.callback_percent,
            price_type=self.config.price_type
        )

        if order_id:
            state.stop_order_id = order_id
            state.stop_order_price = None
            state.native_trailing = True
            state.is_activated = True
            logger.info(
                f"Native trailing armed for {state.symbol} at ROI {roi:.2f}% "
                f"(callback {self.config.callback_percent}%)"
            )
            return True

        # Never leave the position without a stop
        logger.error(f"Native trailing placement failed for {state.symbol}, restoring fixed stop")
        await self._sync_stop_order(state)
        return False

    async def _cancel_or_confirm_gone(self, state: TrailingStopState) -> bool:
        """Cancel the resting order. True once it is confirmed no longer open."""
        if await self.client.cancel_stop_order(state.symbol, state.stop_order_id):
            state.stop_order_id = None
            state.stop_order_price = None
            return True

        try:
            open_ids = {o.order_id for o in await self.client.get_stop_orders(state.symbol)}
        except BridgeError as e:
            logger.warning(f"Could not confirm stop state for {state.symbol}: {e.safe_message}")
            return False

        if state.stop_order_id in open_ids:
            return False

        # Already gone (filled, or cancelled by an earlier attempt)
        state.stop_order_id = None
        state.stop_order_price = None
        state.stop_missing = True
        return True

    async def _position_still_open(self, state: TrailingStopState) -> bool:
        """Check the exchange still holds the position before re-placing a vanished stop"""
        try:
            positions = await self.client.get_open_positions()
        except BridgeError as e:
            logger.warning(f"Position lookup failed for {state.symbol}, retrying next tick: {e.safe_message}")
            return False

        key = (normalize_symbol(state.symbol), state.direction)
        if any((normalize_symbol(p.symbol), p.side) == key for p in positions):
            state.stop_missing = False
            return True

        logger.warning(
            f"{state.direction.label} {state.symbol} ({state.position_id}) is no longer open on the exchange, "
            f"not re-placing its stop"
        )
        return False

    async def _sync_stop_order(self, state: TrailingStopState) -> None:
        """Bring the resting stop order in line with current_stop_price (cancel, then place)"""
        if state.native_trailing or not self._exchange_enabled():
            return

        target = state.current_stop_price
        if state.stop_order_id and _same_price(state.stop_order_price, target):
            return

        if state.stop_order_id:
            if not await self._cancel_or_confirm_gone(state):
                return

        try:
            resting = await self.client.get_stop_orders(state.symbol)
        except BridgeError as e:
            logger.warning(f"Stop order lookup failed for {state.symbol}, retrying next tick: {e.safe_message}")
            return

        match = next(
            (o for o in resting
             if not o.trailing and o.side == state.direction and _same_price(o.stop_price, target)),
            None
        )
        if match:
            state.stop_order_id = match.order_id
            state.stop_order_price = match.stop_price
            logger.info(f"Adopted resting stop {match.order_id} for {state.symbol} @ {target:.4f}")
            return

        if state.stop_missing and not await self._position_still_open(state):
            return

        order_id = await self.client.place_stop_order(state.symbol, state.direction, state.quantity, target)
        if order_id:
            state.stop_order_id = order_id
            state.stop_order_price = target
        else:
            logger.warning(f"Stop placement failed for {state.symbol} @ {target:.4f}, retrying next tick")

    # Polling

    async def poll_prices(self) -> int:
        """One poll tick: fetch prices for manual/hybrid positions and update them"""
        if self.client is None:
            return 0

        states = [s for s in list(self.active_stops.values()) if self._needs_polling(s)]
        if not states:
            return 0

        updated = 0
        for symbol in sorted({s.symbol for s in states}):
            try:
                price = await self.client.get_ticker_price(symbol)
            except BridgeError as e:
                logger.warning(f"Price fetch failed for {symbol}, skipping this tick: {e.safe_message}")
                continue

            for state in states:
                if state.symbol == symbol:
                    await self.update_price(state.position_id, price)
                    updated += 1

        return updated

    def start_polling(self) -> None:
        if not self._poller.is_running:
            self._poller.start()

    async def stop_polling(self) -> None:
        await self._poller.stop()

    def get_poll_stats(self) -> Dict:
        return self._poller.get_stats()

    # State persistence

    def export_state(self) -> List[Dict[str, Any]]:
        """Serializable snapshot of every tracked stop"""
        return [state.to_dict() for state in self.active_stops.values()]

    def restore_state(self, states: List[Dict[str, Any]]) -> int:
        """
        Reinstate stops from export_state()

        No orders are placed here; the next price update syncs each stop
        with the exchange. Call start_polling() afterwards for manual/hybrid.
        """
        restored = 0
        for data in states:
            state = TrailingStopState.from_dict(data)
            if state.position_id in self.active_stops:
                continue
            self.active_stops[state.position_id] = state
            restored += 1

        logger.info(f"Restored {restored} trailing stops")
        return restored
