"""
Exchange Client
Authenticated order, position and stop-order operations with pre-trade safety validation

ExchangeClient owns the safety gating shared by every adapter; adapters only
implement the wire primitives. MexcFuturesClient is the production adapter.
"""

import time
import hmac
import hashlib
import json
import asyncio
import aiohttp
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any, Tuple
from urllib.parse import urlencode
import logging

from .signals import Direction
from ..errors import (
    BridgeError,
    ClientNotInitializedError,
    ConfigError,
    ExchangeAPIError,
    NetworkError,
    safe_error_message,
)
from ..utils.config_loader import SafetyConfig
from ..utils.logger import SecretRedactionFilter, mask_value

logger = logging.getLogger(__name__)


MIN_CREDENTIAL_LENGTH = 20
POSITION_NOT_FOUND = "Position not found"


@dataclass
class OrderRequest:
    """Order to validate and submit"""
    symbol: str
    side: Direction
    quantity: float
    leverage: int
    reduce_only: bool = False


@dataclass
class OrderResult:
    """Outcome of an order attempt. Errors are sanitized messages."""
    success: bool
    order_id: Optional[str] = None
    error: Optional[str] = None
    price: Optional[float] = None
    quantity: Optional[float] = None


@dataclass
class CloseAllResult:
    """Outcome of an emergency close"""
    closed: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, int]:
        return {"closed": self.closed, "failed": self.failed}


@dataclass
class ExchangePosition:
    """Exchange-reported open position, observed only"""
    symbol: str
    side: Direction
    quantity: float
    entry_price: float
    mark_price: float
    leverage: int
    liquidation_price: Optional[float] = None
    unrealized_pnl: float = 0.0
    position_id: Optional[str] = None

    @property
    def notional(self) -> float:
        return self.quantity * (self.mark_price or self.entry_price)


@dataclass
class AccountBalance:
    currency: str
    equity: float
    available: float
    unrealized_pnl: float = 0.0


@dataclass
class StopOrder:
    """Protective stop (or trailing) order resting on the exchange"""
    order_id: str
    symbol: str
    side: Direction
    stop_price: float
    quantity: float
    trailing: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class Credentials:
    api_key: str = field(default="", repr=False)
    api_secret: str = field(default="", repr=False)

    def __repr__(self) -> str:
        return f"Credentials(api_key={mask_value(self.api_key)!r})"


class ExchangeClient(ABC):
    """
    Exchange client interface

    Public order methods never raise for trading failures; they return
    OrderResult / None / False with a sanitized error. Only calling them
    before initialize() raises ClientNotInitializedError. Query methods
    (balance, positions, ticker, stop orders) raise NetworkError so callers
    can tell "nothing there" from "could not ask".
    """

    def __init__(self, safety: Optional[SafetyConfig] = None):
        self.safety = safety or SafetyConfig()
        self._initialized = False

        # Cancel throttle
        self._cancel_lock = asyncio.Lock()
        self._last_cancel_time = 0.0

    # Lifecycle

    @abstractmethod
    async def initialize(self) -> bool:
        """Load credentials and prepare the client. Returns False instead of raising."""

    async def close(self) -> None:
        """Release network resources"""

    def is_ready(self) -> bool:
        return self._initialized

    def to_exchange_symbol(self, symbol: str) -> str:
        """Map a signal symbol onto the exchange's contract naming"""
        return symbol

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise ClientNotInitializedError()

    def can_trade(self, reduce_only: bool = False) -> Tuple[bool, Optional[str]]:
        """Check whether orders may be sent at all"""
        if not self._initialized:
            return False, "Client not initialized"
        if self.safety.emergency_stop and not reduce_only:
            return False, "Emergency stop is active"
        if not self.safety.live_trading_enabled:
            return False, "Live trading disabled in config"
        return True, None

    # Safety

    def validate_order(
        self,
        order: OrderRequest,
        current_price: float,
        open_exposure: float = 0.0
    ) -> Tuple[bool, Optional[str]]:
        """
        Pre-trade validation, no network effects

        Reduce-only orders shrink exposure, so only the trading-enabled flag
        applies to them.

        Args:
            order: Order to check
            current_price: Latest price for sizing
            open_exposure: Notional already open on the exchange

        Returns:
            Tuple of (valid, reason)
        """
        safety = self.safety

        if order.reduce_only:
            if not safety.live_trading_enabled:
                return False, "Live trading disabled"
            return True, None

        if safety.emergency_stop:
            return False, "Emergency stop active"

        if not safety.live_trading_enabled:
            return False, "Live trading disabled"

        blacklist = {s.replace("_", "") for s in safety.blacklisted_symbols}
        if order.symbol.upper().replace("_", "") in blacklist:
            return False, f"Symbol {order.symbol} is blacklisted"

        if order.leverage > safety.max_leverage:
            return False, f"Leverage {order.leverage}x exceeds max {safety.max_leverage}x"

        if order.quantity <= 0:
            return False, f"Order quantity must be positive, got {order.quantity}"

        if current_price <= 0:
            return False, "Invalid current price"

        position_size = order.quantity * current_price
        if position_size > safety.max_position_size_usdt:
            return False, (
                f"Position size ${position_size:.2f} exceeds max ${safety.max_position_size_usdt:.2f}"
            )

        if open_exposure + position_size > safety.max_total_exposure_usdt:
            return False, (
                f"Total exposure ${open_exposure + position_size:.2f} exceeds max "
                f"${safety.max_total_exposure_usdt:.2f}"
            )

        return True, None

    def get_safety_config(self) -> SafetyConfig:
        return self.safety

    def update_safety_config(self, **changes) -> SafetyConfig:
        """Apply safety changes (validated) and log them"""
        try:
            updated = replace(self.safety, **changes)
        except TypeError as e:
            raise ConfigError(f"Unknown safety setting: {e}")

        for key, value in changes.items():
            old = getattr(self.safety, key)
            if old != value:
                logger.warning(f"Safety config changed: {key} {old} -> {value}")

        self.safety = updated
        return updated

    # Queries

    @abstractmethod
    async def get_balance(self) -> AccountBalance:
        """Account balance in the settlement currency"""

    @abstractmethod
    async def get_open_positions(self) -> List[ExchangePosition]:
        """All open positions"""

    @abstractmethod
    async def get_ticker_price(self, symbol: str) -> float:
        """Last traded price"""

    @abstractmethod
    async def get_stop_orders(self, symbol: str) -> List[StopOrder]:
        """Open stop orders for a symbol"""

    # Wire primitives (raise BridgeError subclasses on failure)

    @abstractmethod
    async def _set_leverage(self, symbol: str, leverage: int) -> None:
        ...

    @abstractmethod
    async def _submit_market_order(self, order: OrderRequest) -> str:
        """Submit and return the exchange order id"""

    @abstractmethod
    async def _place_stop_order(self, symbol: str, side: Direction, quantity: float, stop_price: float) -> str:
        ...

    @abstractmethod
    async def _modify_stop_order(self, symbol: str, order_id: str, stop_price: float) -> str:
        """Move a stop; returns the (possibly reissued) order id"""

    @abstractmethod
    async def _cancel_stop_order(self, symbol: str, order_id: str) -> None:
        ...

    @abstractmethod
    async def _place_trailing_stop(
        self,
        symbol: str,
        side: Direction,
        quantity: float,
        callback_percent: float,
        activation_price: Optional[float],
        price_type: str
    ) -> str:
        ...

    # Orders

    async def set_leverage(self, symbol: str, leverage: int) -> bool:
        """Set leverage, capped to the configured max"""
        self._require_initialized()
        capped = max(1, min(int(leverage), self.safety.max_leverage))
        if capped != leverage:
            logger.warning(f"Leverage {leverage}x capped to {capped}x for {symbol}")

        try:
            await self._set_leverage(symbol, capped)
            return True
        except BridgeError as e:
            logger.error(f"Failed to set leverage for {symbol}: {e.safe_message}")
            return False

    async def place_market_order(
        self,
        symbol: str,
        side: Direction,
        quantity: float,
        leverage: int,
        reduce_only: bool = False
    ) -> OrderResult:
        """
        Place a market order

        Args:
            symbol: Contract symbol (e.g. "BTC_USDT")
            side: Position direction being opened, or closed when reduce_only
            quantity: Order size
            leverage: Requested leverage
            reduce_only: Close/reduce an existing position

        Returns:
            OrderResult
        """
        self._require_initialized()

        allowed, reason = self.can_trade(reduce_only=reduce_only)
        if not allowed:
            logger.warning(f"Order blocked for {symbol}: {reason}")
            return OrderResult(success=False, error=reason)

        try:
            price = await self.get_ticker_price(symbol)
        except BridgeError as e:
            logger.error(f"Price fetch failed for {symbol}: {e.safe_message}")
            return OrderResult(success=False, error="Failed to get current price")

        if not price or price <= 0:
            return OrderResult(success=False, error="Failed to get current price")

        open_exposure = 0.0
        if not reduce_only:
            try:
                positions = await self.get_open_positions()
                open_exposure = sum(p.notional for p in positions)
            except BridgeError as e:
                logger.error(f"Exposure check failed for {symbol}: {e.safe_message}")
                return OrderResult(success=False, error=f"Exposure check failed: {e.safe_message}")

        order = OrderRequest(symbol, side, quantity, leverage, reduce_only)
        valid, reason = self.validate_order(order, price, open_exposure)
        if not valid:
            logger.warning(f"Order rejected for {symbol}: {reason}")
            return OrderResult(success=False, error=reason)

        if not reduce_only and not await self.set_leverage(symbol, leverage):
            return OrderResult(success=False, error="Failed to set leverage")

        action = "CLOSE" if reduce_only else "OPEN"
        try:
            order_id = await self._submit_market_order(order)
        except BridgeError as e:
            logger.error(f"[LIVE] {action} {side.label} {symbol} failed: {e.safe_message}")
            return OrderResult(success=False, error=e.safe_message)

        logger.info(f"[LIVE] {action} {side.label} {quantity:.6f} {symbol} @ ~{price:.4f} ({leverage}x) order={order_id}")
        return OrderResult(success=True, order_id=order_id, price=price, quantity=quantity)

    async def close_position(self, symbol: str, side: Direction, quantity: Optional[float] = None) -> OrderResult:
        """Close (all or part of) an open exchange position"""
        self._require_initialized()

        try:
            positions = await self.get_open_positions()
        except BridgeError as e:
            return OrderResult(success=False, error=e.safe_message)

        position = next((p for p in positions if p.symbol == symbol and p.side == side), None)
        if position is None:
            return OrderResult(success=False, error=POSITION_NOT_FOUND)

        close_qty = min(quantity, position.quantity) if quantity else position.quantity
        return await self.place_market_order(symbol, side, close_qty, position.leverage, reduce_only=True)

    async def emergency_close_all(self, skip: Optional[List[Tuple[str, Direction]]] = None) -> CloseAllResult:
        """Flatten every open position on the exchange except the (symbol, side) keys in skip"""
        self._require_initialized()
        logger.warning("EMERGENCY CLOSE: closing all exchange positions")

        result = CloseAllResult()
        try:
            positions = await self.get_open_positions()
        except BridgeError as e:
            logger.error(f"Emergency close could not list positions: {e.safe_message}")
            result.errors.append(e.safe_message)
            return result

        for position in positions:
            if skip and (position.symbol, position.side) in skip:
                logger.warning(f"Emergency close skipping {position.side.label} {position.symbol}")
                continue
            order = await self.place_market_order(
                position.symbol, position.side, position.quantity, position.leverage, reduce_only=True
            )
            if order.success:
                result.closed += 1
            else:
                result.failed += 1
                result.errors.append(f"{position.symbol}: {order.error}")

        logger.warning(f"Emergency close complete: {result.closed} closed, {result.failed} failed")
        return result

    # Stop orders

    async def place_stop_order(self, symbol: str, side: Direction, quantity: float, stop_price: float) -> Optional[str]:
        """Place a protective stop for a position. Returns the order id, or None on failure."""
        self._require_initialized()
        allowed, reason = self.can_trade(reduce_only=True)
        if not allowed:
            logger.warning(f"Stop order blocked for {symbol}: {reason}")
            return None

        try:
            order_id = await self._place_stop_order(symbol, side, quantity, stop_price)
        except BridgeError as e:
            logger.error(f"Stop order failed for {symbol}: {e.safe_message}")
            return None

        logger.info(f"Stop placed: {side.label} {symbol} @ {stop_price:.4f} order={order_id}")
        return order_id

    async def modify_stop_order(self, symbol: str, order_id: str, stop_price: float) -> Optional[str]:
        """Move a stop. Returns the order id now protecting the position, or None."""
        self._require_initialized()
        try:
            new_id = await self._modify_stop_order(symbol, order_id, stop_price)
        except BridgeError as e:
            logger.error(f"Stop modify failed for {symbol} {order_id}: {e.safe_message}")
            return None

        logger.info(f"Stop moved: {symbol} @ {stop_price:.4f} order={new_id}")
        return new_id

    async def cancel_stop_order(self, symbol: str, order_id: str) -> bool:
        """Cancel a stop order, throttled to one cancel per cancel_min_interval"""
        self._require_initialized()
        await self._wait_for_cancel_slot()

        try:
            await self._cancel_stop_order(symbol, order_id)
        except BridgeError as e:
            logger.error(f"Stop cancel failed for {symbol} {order_id}: {e.safe_message}")
            return False

        logger.info(f"Stop cancelled: {symbol} order={order_id}")
        return True

    async def place_trailing_stop(
        self,
        symbol: str,
        side: Direction,
        quantity: float,
        callback_percent: float,
        activation_price: Optional[float] = None,
        price_type: str = "last"
    ) -> Optional[str]:
        """Place an exchange-managed trailing stop. Returns the order id, or None."""
        self._require_initialized()
        allowed, reason = self.can_trade(reduce_only=True)
        if not allowed:
            logger.warning(f"Trailing stop blocked for {symbol}: {reason}")
            return None

        try:
            order_id = await self._place_trailing_stop(
                symbol, side, quantity, callback_percent, activation_price, price_type
            )
        except BridgeError as e:
            logger.error(f"Trailing stop failed for {symbol}: {e.safe_message}")
            return None

        logger.info(f"Trailing stop placed: {side.label} {symbol} callback={callback_percent}% order={order_id}")
        return order_id

    async def _wait_for_cancel_slot(self) -> None:
        """Wait-before-send gate keyed on the last cancel time"""
        async with self._cancel_lock:
            elapsed = time.monotonic() - self._last_cancel_time
            wait = self.safety.cancel_min_interval - elapsed
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_cancel_time = time.monotonic()


class MexcFuturesClient(ExchangeClient):
    """MEXC contract API client"""

    BASE_URL = "https://contract.mexc.com"

    # Order side codes
    SIDE_OPEN_LONG = 1
    SIDE_CLOSE_SHORT = 2
    SIDE_OPEN_SHORT = 3
    SIDE_CLOSE_LONG = 4

    ORDER_TYPE_MARKET = 5
    OPEN_TYPE_ISOLATED = 1

    PRICE_TYPES = {"last": 1, "fair": 2, "index": 3}

    def __init__(
        self,
        api_key: str = "",
        api_secret: str = "",
        safety: Optional[SafetyConfig] = None,
        base_url: Optional[str] = None
    ):
        super().__init__(safety)
        self._credentials = Credentials(api_key or "", api_secret or "")
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self._session: Optional[aiohttp.ClientSession] = None

    def __repr__(self) -> str:
        return f"MexcFuturesClient(base_url={self.base_url!r}, ready={self._initialized})"

    def to_exchange_symbol(self, symbol: str) -> str:
        """BTCUSDT -> BTC_USDT"""
        symbol = symbol.upper().replace("-", "_").replace("/", "_")
        if "_" not in symbol:
            for quote in ("USDT", "USDC", "USD"):
                if symbol.endswith(quote) and len(symbol) > len(quote):
                    return f"{symbol[:-len(quote)]}_{quote}"
        return symbol

    async def initialize(self) -> bool:
        """Validate credentials. Missing or malformed keys leave the client unready."""
        try:
            self._validate_credentials()
        except ConfigError as e:
            logger.warning(f"Exchange client not initialized: {e.safe_message}")
            return False

        SecretRedactionFilter.register_secret(self._credentials.api_key)
        SecretRedactionFilter.register_secret(self._credentials.api_secret)

        self._initialized = True
        logger.info(
            f"Exchange client initialized: key={mask_value(self._credentials.api_key)}, "
            f"live trading {'ENABLED' if self.safety.live_trading_enabled else 'DISABLED'}, "
            f"max leverage {self.safety.max_leverage}x"
        )
        return True

    def _validate_credentials(self) -> None:
        creds = self._credentials
        if not creds.api_key or not creds.api_secret:
            raise ConfigError("API credentials not configured")
        if len(creds.api_key) < MIN_CREDENTIAL_LENGTH or len(creds.api_secret) < MIN_CREDENTIAL_LENGTH:
            raise ConfigError("API credentials appear malformed")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.safety.request_timeout)
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    # Signing

    @staticmethod
    def canonical_payload(method: str, params: Optional[Dict[str, Any]]) -> str:
        """Sorted query string for GET/DELETE, compact sorted JSON for POST"""
        if not params:
            return ""
        if method.upper() in ("GET", "DELETE"):
            return urlencode(sorted((k, v) for k, v in params.items() if v is not None))
        return json.dumps(params, separators=(",", ":"), sort_keys=True)

    def sign(self, timestamp: str, payload: str) -> str:
        """Hex HMAC-SHA256 over api key + timestamp + payload"""
        message = f"{self._credentials.api_key}{timestamp}{payload}"
        return hmac.new(
            self._credentials.api_secret.encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha256
        ).hexdigest()

    def _get_headers(self, payload: str) -> Dict[str, str]:
        """Generate authenticated headers"""
        timestamp = str(int(time.time() * 1000))
        return {
            "ApiKey": self._credentials.api_key,
            "Request-Time": timestamp,
            "Signature": self.sign(timestamp, payload),
            "Content-Type": "application/json"
        }

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        signed: bool = True
    ) -> Any:
        """Make API request. Raises NetworkError / ExchangeAPIError with sanitized messages."""
        session = await self._get_session()
        method = method.upper()
        payload = self.canonical_payload(method, params)

        url = f"{self.base_url}{path}"
        if method in ("GET", "DELETE") and payload:
            url = f"{url}?{payload}"

        headers = self._get_headers(payload) if signed else {"Content-Type": "application/json"}
        body = payload if method == "POST" and payload else None

        try:
            async with session.request(method, url, headers=headers, data=body) as response:
                try:
                    data = await response.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError):
                    data = None

                if not isinstance(data, dict):
                    data = {}

                if response.status >= 400 or not data.get("success", False):
                    message = data.get("message") or data.get("msg") or f"HTTP {response.status}"
                    logger.error(f"Exchange API error on {method} {path}: status={response.status} code={data.get('code')}")
                    raise ExchangeAPIError(
                        f"Exchange API error: {message}",
                        status=response.status,
                        code=data.get("code")
                    )

                return data.get("data")

        except asyncio.TimeoutError:
            logger.error(f"Request timed out: {method} {path}")
            raise NetworkError(f"Request timed out: {path}")
        except aiohttp.ClientError as e:
            logger.error(f"Request failed: {method} {path}: {safe_error_message(e)}")
            raise NetworkError(f"Exchange unreachable: {type(e).__name__}")

    # Queries

    async def get_balance(self) -> AccountBalance:
        self._require_initialized()
        data = await self._request("GET", "/api/v1/private/account/asset/USDT") or {}
        return AccountBalance(
            currency=data.get("currency", "USDT"),
            equity=float(data.get("equity", 0)),
            available=float(data.get("availableBalance", 0)),
            unrealized_pnl=float(data.get("unrealized", 0))
        )

    async def get_open_positions(self) -> List[ExchangePosition]:
        self._require_initialized()
        data = await self._request("GET", "/api/v1/private/position/open_positions") or []

        positions = []
        for p in data:
            entry = float(p.get("holdAvgPrice", 0))
            liq = p.get("liquidatePrice")
            positions.append(ExchangePosition(
                symbol=p.get("symbol", ""),
                side=Direction.LONG if int(p.get("positionType", 1)) == 1 else Direction.SHORT,
                quantity=float(p.get("holdVol", 0)),
                entry_price=entry,
                mark_price=float(p.get("markPrice") or entry),
                leverage=int(p.get("leverage", 1)),
                liquidation_price=float(liq) if liq else None,
                unrealized_pnl=float(p.get("unrealised", 0) or 0),
                position_id=str(p.get("positionId")) if p.get("positionId") is not None else None
            ))
        return positions

    async def get_ticker_price(self, symbol: str) -> float:
        data = await self._request("GET", "/api/v1/contract/ticker", {"symbol": symbol}, signed=False) or {}
        return float(data.get("lastPrice", 0))

    async def get_stop_orders(self, symbol: str) -> List[StopOrder]:
        self._require_initialized()
        data = await self._request(
            "GET", "/api/v1/private/planorder/list/orders", {"symbol": symbol, "states": 1}
        ) or []

        orders = []
        for o in data:
            side_code = int(o.get("side", self.SIDE_CLOSE_LONG))
            orders.append(StopOrder(
                order_id=str(o.get("id") or o.get("orderId")),
                symbol=o.get("symbol", symbol),
                side=Direction.LONG if side_code == self.SIDE_CLOSE_LONG else Direction.SHORT,
                stop_price=float(o.get("triggerPrice", 0)),
                quantity=float(o.get("vol", 0))
            ))
        return orders

    # Wire primitives

    async def _set_leverage(self, symbol: str, leverage: int) -> None:
        for position_type in (1, 2):
            await self._request("POST", "/api/v1/private/position/change_leverage", {
                "symbol": symbol,
                "leverage": leverage,
                "openType": self.OPEN_TYPE_ISOLATED,
                "positionType": position_type
            })

    def _side_code(self, side: Direction, reduce_only: bool) -> int:
        if side == Direction.LONG:
            return self.SIDE_CLOSE_LONG if reduce_only else self.SIDE_OPEN_LONG
        return self.SIDE_CLOSE_SHORT if reduce_only else self.SIDE_OPEN_SHORT

    @staticmethod
    def _extract_order_id(data: Any) -> str:
        if isinstance(data, dict):
            data = data.get("orderId") or data.get("id")
        if data is None or data == "":
            raise ExchangeAPIError("Exchange API error: missing order id in response")
        return str(data)

    async def _submit_market_order(self, order: OrderRequest) -> str:
        data = await self._request("POST", "/api/v1/private/order/submit", {
            "symbol": order.symbol,
            "vol": order.quantity,
            "leverage": order.leverage,
            "side": self._side_code(order.side, order.reduce_only),
            "type": self.ORDER_TYPE_MARKET,
            "openType": self.OPEN_TYPE_ISOLATED
        })
        return self._extract_order_id(data)

    async def _place_stop_order(self, symbol: str, side: Direction, quantity: float, stop_price: float) -> str:
        # Long stops fire when price falls to the trigger, short stops when it rises
        data = await self._request("POST", "/api/v1/private/planorder/place", {
            "symbol": symbol,
            "vol": quantity,
            "side": self._side_code(side, reduce_only=True),
            "openType": self.OPEN_TYPE_ISOLATED,
            "triggerPrice": stop_price,
            "triggerType": 2 if side == Direction.LONG else 1,
            "executeCycle": 3,
            "orderType": self.ORDER_TYPE_MARKET,
            "trend": self.PRICE_TYPES["last"]
        })
        return self._extract_order_id(data)

    async def _modify_stop_order(self, symbol: str, order_id: str, stop_price: float) -> str:
        # Plan orders cannot be repriced in place: reissue at the new trigger
        existing = next((o for o in await self.get_stop_orders(symbol) if o.order_id == order_id), None)
        if existing is None:
            raise ExchangeAPIError(f"Exchange API error: stop order {order_id} not found")

        await self._wait_for_cancel_slot()
        await self._cancel_stop_order(symbol, order_id)
        return await self._place_stop_order(symbol, existing.side, existing.quantity, stop_price)

    async def _cancel_stop_order(self, symbol: str, order_id: str) -> None:
        await self._request("POST", "/api/v1/private/planorder/cancel", {
            "symbol": symbol,
            "orderId": order_id
        })

    async def _place_trailing_stop(
        self,
        symbol: str,
        side: Direction,
        quantity: float,
        callback_percent: float,
        activation_price: Optional[float],
        price_type: str
    ) -> str:
        params = {
            "symbol": symbol,
            "vol": quantity,
            "side": self._side_code(side, reduce_only=True),
            "openType": self.OPEN_TYPE_ISOLATED,
            "trend": self.PRICE_TYPES.get(price_type, 1),
            "backType": 1,  # Percentage callback
            "backValue": callback_percent / 100
        }
        if activation_price:
            params["activePrice"] = activation_price

        data = await self._request("POST", "/api/v1/private/trackorder/place", params)
        return self._extract_order_id(data)
