"""
Bridge Application
Builds the exchange client, trailing stops, ledger and execution bridge from
configuration and ties their lifecycle to start/stop
"""

import asyncio
import signal
from typing import Any, Dict, Optional

import logging

from .exchange_client import ExchangeClient, MexcFuturesClient
from .execution_bridge import ExecutionBridge, ReconfigureResult
from .ledger import PaperPositionLedger, PositionLedger
from .trailing_stop import TrailingStopManager
from ..utils.config_loader import CLOSE_ALL_CONFIRMATION_TOKEN, ConfigManager
from ..utils.logger import setup_logging

logger = logging.getLogger(__name__)


class BridgeApplication:
    """
    Application wiring

    Every component is constructed here once and passed explicitly to the
    ones that need it. Inject a ledger or client to replace the defaults.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        ledger: Optional[PositionLedger] = None,
        client: Optional[ExchangeClient] = None
    ):
        self.config = config_manager

        self.client = client or MexcFuturesClient(
            api_key=config_manager.api_key,
            api_secret=config_manager.api_secret,
            safety=config_manager.safety,
            base_url=config_manager.base_url
        )
        self.ledger = ledger or PaperPositionLedger(config_manager.ledger)
        self.trailing_stops = TrailingStopManager(self.client, config_manager.trailing)
        self.bridge = ExecutionBridge(
            config_manager.bridge,
            self.ledger,
            client=self.client,
            trailing_stops=self.trailing_stops
        )

        self.running = False
        self._started = False

    async def start(self) -> None:
        """Initialize the bridge"""
        if self._started:
            return

        await self.bridge.initialize()
        self._started = True
        self.running = True

        config = self.bridge.get_config()
        logger.info("=" * 60)
        logger.info("EXECUTION BRIDGE STARTED")
        logger.info(f"Mode: {config.mode.value}")
        logger.info(f"Trading: {config.trading_mode.value} (long_only={config.long_only})")
        logger.info(
            f"Limits: {config.max_concurrent_positions} positions, "
            f"${config.max_position_size_usd:.2f}/position, "
            f"${config.max_total_exposure_usd:.2f} total, "
            f"{config.max_daily_trades} trades/day, "
            f"${config.max_loss_per_day_usd:.2f} daily loss"
        )
        logger.info("=" * 60)

    async def stop(self) -> None:
        """Stop background loops and release the exchange session"""
        if not self._started:
            return

        logger.info("Stopping execution bridge...")
        self.running = False

        await self.bridge.shutdown()
        await self.client.close()
        self._started = False

        stats = self.bridge.get_stats()
        logger.info("=" * 60)
        logger.info("EXECUTION BRIDGE STOPPED")
        logger.info(f"Signals: {stats.signals_received} received, {stats.signals_accepted} accepted")
        logger.info(f"Trades: {stats.trades_executed} executed, {stats.trades_failed} failed")
        logger.info(f"Open positions: {stats.open_positions}")
        logger.info("=" * 60)

    async def run_forever(self) -> None:
        """Block until stop is requested"""
        try:
            while self.running:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass

    def _setup_signal_handlers(self) -> None:
        """Setup graceful shutdown handlers"""
        def handle_signal(signum, frame):
            logger.info(f"Received signal {signum}, initiating shutdown...")
            self.running = False

        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)

    # Operator actions

    async def switch_mode(self, mode: str, confirmation: Optional[str] = None) -> ReconfigureResult:
        """Change execution mode. Entering real_money needs the live confirmation token."""
        result = await self.bridge.reconfigure({"mode": mode}, confirmation)
        if not result.success:
            logger.warning(f"Mode switch to {mode} rejected: {result.reason}")
        return result

    async def update_config(self, updates: Dict[str, Any], confirmation: Optional[str] = None) -> ReconfigureResult:
        return await self.bridge.reconfigure(updates, confirmation)

    async def close_all(self, confirmation: Optional[str] = None) -> Dict[str, Any]:
        """Emergency close everything. Requires CLOSE_ALL_CONFIRMATION_TOKEN."""
        if confirmation != CLOSE_ALL_CONFIRMATION_TOKEN:
            logger.warning("Close-all rejected: missing or wrong confirmation token")
            return {
                "success": False,
                "reason": f"Confirmation required: pass '{CLOSE_ALL_CONFIRMATION_TOKEN}'",
                "closed": 0,
                "failed": 0
            }

        result = await self.bridge.emergency_close_all()
        return {
            "success": result.failed == 0,
            "reason": "Close-all complete",
            "closed": result.closed,
            "failed": result.failed,
            "errors": list(result.errors)
        }

    def get_status(self) -> Dict[str, Any]:
        status = self.bridge.get_status()
        status["running"] = self.running
        status["trailing_poll"] = self.trailing_stops.get_poll_stats()

        reconciler = self.bridge.reconciler
        status["last_reconciliation"] = (
            reconciler.last_result.to_dict() if reconciler and reconciler.last_result else None
        )

        if hasattr(self.ledger, "get_stats"):
            status["ledger"] = self.ledger.get_stats()
        return status


async def run_bridge(config_path: str = None) -> None:
    """
    Main entry point to run the bridge until SIGINT/SIGTERM

    Args:
        config_path: Path to configuration file
    """
    config = ConfigManager(config_path)
    log_cfg = config.logging
    setup_logging(log_cfg.level, log_cfg.file, log_cfg.max_size_mb, log_cfg.backup_count)

    app = BridgeApplication(config)

    try:
        await app.start()
        app._setup_signal_handlers()
        await app.run_forever()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except Exception as e:
        logger.error(f"Bridge error: {e}", exc_info=True)
    finally:
        await app.stop()
