"""
Shared fixtures for the execution bridge tests.
"""

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from trade_bridge.core.execution_bridge import ExecutionBridge
from trade_bridge.core.ledger import PaperPositionLedger
from trade_bridge.core.signals import Direction, TradeSignal
from trade_bridge.core.simulated_client import SimulatedExchangeClient
from trade_bridge.core.trailing_stop import TrailingStopManager
from trade_bridge.utils.config_loader import (
    BridgeConfig,
    ExecutionMode,
    LedgerConfig,
    SafetyConfig,
    TrailingMode,
    TrailingStopConfig,
)
from trade_bridge.utils.logger import SecretRedactionFilter


PRICES = {"BTCUSDT": 50000.0, "ETHUSDT": 3000.0, "SOLUSDT": 100.0}


class FakeClock:
    """Settable UTC clock for daily-rollover tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def make_signal(
    symbol: str = "BTCUSDT",
    direction: Direction = Direction.LONG,
    price: float = 50000.0,
    leverage: int = 10,
    size: float = 50.0,
    **kwargs
) -> TradeSignal:
    return TradeSignal(
        symbol=symbol,
        direction=direction,
        timeframe="15m",
        price=price,
        suggested_leverage=leverage,
        suggested_position_size=size,
        **kwargs
    )


@pytest.fixture(autouse=True)
def clear_registered_secrets():
    """Secrets registered by one test must not leak into another."""
    SecretRedactionFilter.clear()
    yield
    SecretRedactionFilter.clear()


@pytest.fixture
def safety() -> SafetyConfig:
    return SafetyConfig(
        live_trading_enabled=True,
        max_position_size_usdt=10_000.0,
        max_total_exposure_usdt=50_000.0,
        max_leverage=20,
        cancel_min_interval=0.0
    )


@pytest.fixture
def sim_client(safety) -> SimulatedExchangeClient:
    return SimulatedExchangeClient(safety=safety, prices=dict(PRICES))


@pytest_asyncio.fixture
async def ready_client(sim_client) -> SimulatedExchangeClient:
    await sim_client.initialize()
    return sim_client


@pytest.fixture
def ledger() -> PaperPositionLedger:
    return PaperPositionLedger(LedgerConfig(initial_balance=10_000.0, max_positions=10))


@pytest.fixture
def manual_config() -> TrailingStopConfig:
    return TrailingStopConfig(mode=TrailingMode.MANUAL)


@pytest.fixture
def bridge_config() -> BridgeConfig:
    return BridgeConfig(mode=ExecutionMode.PAPER_MIRROR, reconcile_interval_ms=0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def paper_bridge(bridge_config, ledger, clock):
    bridge = ExecutionBridge(bridge_config, ledger, clock=clock)
    await bridge.initialize()
    yield bridge
    await bridge.shutdown()


@pytest_asyncio.fixture
async def live_bridge(ledger, ready_client, manual_config, clock):
    trailing = TrailingStopManager(ready_client, manual_config, auto_poll=False)
    bridge = ExecutionBridge(
        BridgeConfig(mode=ExecutionMode.REAL_MONEY, reconcile_interval_ms=0),
        ledger,
        client=ready_client,
        trailing_stops=trailing,
        clock=clock
    )
    await bridge.initialize()
    yield bridge
    await bridge.shutdown()
