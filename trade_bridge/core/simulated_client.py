"""
Simulated exchange for tests and local runs without API keys

Implements the ExchangeClient wire primitives over in-memory state, so the
safety gating, cancel throttle and result handling exercised against it are
the production code paths.
"""

import itertools
from typing import Dict, List, Optional, Set, Tuple, Any
import logging

from .exchange_client import (
    AccountBalance,
    ExchangeClient,
    ExchangePosition,
    OrderRequest,
    StopOrder,
)
from .signals import Direction
from ..errors import ExchangeAPIError, NetworkError
from ..utils.config_loader import SafetyConfig

logger = logging.getLogger(__name__)


class SimulatedExchangeClient(ExchangeClient):
    """In-memory exchange with failure injection"""

    def __init__(
        self,
        safety: Optional[SafetyConfig] = None,
        prices: Optional[Dict[str, float]] = None,
        balance: float = 1000.0,
        credentials_valid: bool = True
    ):
        super().__init__(safety or SafetyConfig(live_trading_enabled=True, cancel_min_interval=0.0))
        self.prices: Dict[str, float] = dict(prices or {})
        self.balance = balance
        self.credentials_valid = credentials_valid

        self.positions: Dict[Tuple[str, Direction], ExchangePosition] = {}
        self.stop_orders: Dict[str, StopOrder] = {}
        self.orders: List[OrderRequest] = []
        self.calls: List[Tuple[str, Any]] = []
        self.leverage: Dict[str, int] = {}

        # Failure injection
        self.network_down = False
        self.failing_prices: Set[str] = set()
        self.fail_stop_orders = False
        self.fail_trailing_orders = False
        self.reject_orders: Optional[str] = None

        self._ids = itertools.count(1)

    async def initialize(self) -> bool:
        self.calls.append(("initialize", None))
        if not self.credentials_valid:
            logger.warning("Exchange client not initialized: API credentials not configured")
            return False
        self._initialized = True
        return True

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def _check_network(self, call: str, args: Any = None) -> None:
        self.calls.append((call, args))
        if self.network_down:
            raise NetworkError(f"Exchange unreachable: {call}")

    # Test helpers

    def open_position(
        self,
        symbol: str,
        side: Direction,
        quantity: float,
        entry_price: float,
        leverage: int = 1
    ) -> ExchangePosition:
        """Seed a position directly, as if opened outside this process"""
        position = ExchangePosition(
            symbol=symbol,
            side=side,
            quantity=quantity,
            entry_price=entry_price,
            mark_price=self.prices.get(symbol, entry_price),
            leverage=leverage
        )
        self.positions[(symbol, side)] = position
        return position

    def stops_for(self, symbol: str) -> List[StopOrder]:
        return [o for o in self.stop_orders.values() if o.symbol == symbol]

    # Queries

    async def get_balance(self) -> AccountBalance:
        self._check_network("get_balance")
        unrealized = sum(p.unrealized_pnl for p in self.positions.values())
        margin = sum(p.quantity * p.entry_price / max(p.leverage, 1) for p in self.positions.values())
        return AccountBalance("USDT", self.balance + unrealized, self.balance - margin, unrealized)

    async def get_open_positions(self) -> List[ExchangePosition]:
        self._check_network("get_open_positions")
        return list(self.positions.values())

    async def get_ticker_price(self, symbol: str) -> float:
        self._check_network("get_ticker_price", symbol)
        if symbol in self.failing_prices:
            raise NetworkError(f"Request timed out: ticker {symbol}")
        if symbol not in self.prices:
            raise ExchangeAPIError(f"Exchange API error: unknown symbol {symbol}")
        return self.prices[symbol]

    async def get_stop_orders(self, symbol: str) -> List[StopOrder]:
        self._check_network("get_stop_orders", symbol)
        return self.stops_for(symbol)

    # Wire primitives

    async def _set_leverage(self, symbol: str, leverage: int) -> None:
        self._check_network("set_leverage", (symbol, leverage))
        self.leverage[symbol] = leverage

    async def _submit_market_order(self, order: OrderRequest) -> str:
        self._check_network("submit_market_order", order)
        if self.reject_orders:
            raise ExchangeAPIError(f"Exchange API error: {self.reject_orders}")

        self.orders.append(order)
        price = self.prices[order.symbol]
        key = (order.symbol, order.side)

        if order.reduce_only:
            position = self.positions.get(key)
            if position:
                position.quantity -= order.quantity
                if position.quantity <= 1e-12:
                    del self.positions[key]
        else:
            existing = self.positions.get(key)
            if existing:
                total = existing.quantity + order.quantity
                existing.entry_price = (existing.entry_price * existing.quantity + price * order.quantity) / total
                existing.quantity = total
            else:
                self.positions[key] = ExchangePosition(
                    symbol=order.symbol,
                    side=order.side,
                    quantity=order.quantity,
                    entry_price=price,
                    mark_price=price,
                    leverage=self.leverage.get(order.symbol, order.leverage)
                )

        return self._next_id("sim")

    async def _place_stop_order(self, symbol: str, side: Direction, quantity: float, stop_price: float) -> str:
        self._check_network("place_stop_order", (symbol, stop_price))
        if self.fail_stop_orders:
            raise ExchangeAPIError("Exchange API error: stop order rejected")
        order_id = self._next_id("stop")
        self.stop_orders[order_id] = StopOrder(order_id, symbol, side, stop_price, quantity)
        return order_id

    async def _modify_stop_order(self, symbol: str, order_id: str, stop_price: float) -> str:
        self._check_network("modify_stop_order", (order_id, stop_price))
        order = self.stop_orders.get(order_id)
        if order is None:
            raise ExchangeAPIError(f"Exchange API error: stop order {order_id} not found")
        order.stop_price = stop_price
        return order_id

    async def _cancel_stop_order(self, symbol: str, order_id: str) -> None:
        self._check_network("cancel_stop_order", order_id)
        if order_id not in self.stop_orders:
            raise ExchangeAPIError(f"Exchange API error: stop order {order_id} not found")
        del self.stop_orders[order_id]

    async def _place_trailing_stop(
        self,
        symbol: str,
        side: Direction,
        quantity: float,
        callback_percent: float,
        activation_price: Optional[float],
        price_type: str
    ) -> str:
        self._check_network("place_trailing_stop", (symbol, callback_percent))
        if self.fail_trailing_orders:
            raise ExchangeAPIError("Exchange API error: trailing order rejected")
        order_id = self._next_id("trail")
        self.stop_orders[order_id] = StopOrder(
            order_id, symbol, side, activation_price or 0.0, quantity, trailing=True
        )
        return order_id
