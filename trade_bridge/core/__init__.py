"""
Trade Bridge Core Module
"""

from .signals import Direction, TradeSignal
from .exchange_client import (
    ExchangeClient,
    MexcFuturesClient,
    OrderRequest,
    OrderResult,
    CloseAllResult,
    ExchangePosition,
    AccountBalance,
    StopOrder
)
from .simulated_client import SimulatedExchangeClient
from .trailing_stop import (
    TrailingStopManager,
    TrailingStopState,
    calculate_roi,
    stop_price_for_roi
)
from .ledger import (
    PositionLedger,
    ClosablePositionLedger,
    PaperPositionLedger,
    Position,
    ClosedPosition,
    LedgerDecision,
    LedgerAction
)
from .daily_limits import DailyLimitTracker
from .reconciliation import ReconciliationService, ReconciliationResult
from .scheduler import PeriodicTask, SchedulerConfig, LoopStats
from .execution_bridge import (
    ExecutionBridge,
    BridgeObserver,
    BridgeStats,
    ExecutedTrade,
    SignalResult,
    SignalAction,
    TradeAction,
    PositionMapping,
    ConfigChange,
    ReconfigureResult
)
from .app import BridgeApplication, run_bridge

__all__ = [
    # Signals
    "Direction",
    "TradeSignal",
    # Exchange
    "ExchangeClient",
    "MexcFuturesClient",
    "SimulatedExchangeClient",
    "OrderRequest",
    "OrderResult",
    "CloseAllResult",
    "ExchangePosition",
    "AccountBalance",
    "StopOrder",
    # Trailing Stops
    "TrailingStopManager",
    "TrailingStopState",
    "calculate_roi",
    "stop_price_for_roi",
    # Ledger
    "PositionLedger",
    "ClosablePositionLedger",
    "PaperPositionLedger",
    "Position",
    "ClosedPosition",
    "LedgerDecision",
    "LedgerAction",
    # Limits
    "DailyLimitTracker",
    # Reconciliation
    "ReconciliationService",
    "ReconciliationResult",
    # Scheduler
    "PeriodicTask",
    "SchedulerConfig",
    "LoopStats",
    # Bridge
    "ExecutionBridge",
    "BridgeObserver",
    "BridgeStats",
    "ExecutedTrade",
    "SignalResult",
    "SignalAction",
    "TradeAction",
    "PositionMapping",
    "ConfigChange",
    "ReconfigureResult",
    # Application
    "BridgeApplication",
    "run_bridge"
]
