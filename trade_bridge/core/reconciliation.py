"""
Reconciliation
Diffs the ledger's open positions against the exchange's

Exchange positions with no ledger counterpart are orphans; ledger positions
with no exchange counterpart are missing. Orphans are only closed when
auto_close_orphans is set. Missing positions are reported, never recreated.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple
import logging

from .exchange_client import ExchangeClient, ExchangePosition
from .ledger import Position, PositionLedger
from .signals import Direction
from ..errors import BridgeError

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    """Outcome of one reconciliation pass"""
    matched: int = 0
    orphaned: int = 0
    missing: int = 0
    orphans: List[ExchangePosition] = field(default_factory=list)
    missing_positions: List[Position] = field(default_factory=list)
    closed_orphans: int = 0
    # Exchange snapshot the pass compared against
    exchange_positions: List[ExchangePosition] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None

    @property
    def in_sync(self) -> bool:
        return self.error is None and self.orphaned == 0 and self.missing == 0

    def to_dict(self) -> Dict:
        return {
            "matched": self.matched,
            "orphaned": self.orphaned,
            "missing": self.missing,
            "closed_orphans": self.closed_orphans,
            "orphans": [f"{p.symbol} {p.side.label}" for p in self.orphans],
            "missing_positions": [p.position_id for p in self.missing_positions],
            "timestamp": self.timestamp.isoformat(),
            "error": self.error
        }


def normalize_symbol(symbol: str) -> str:
    """BTC_USDT, BTC-USDT and btcusdt all compare equal"""
    return symbol.replace("_", "").replace("-", "").replace("/", "").upper()


class ReconciliationService:
    """Snapshot-then-compare reconciliation between ledger and exchange"""

    def __init__(
        self,
        client: ExchangeClient,
        ledger: PositionLedger,
        auto_close_orphans: bool = False
    ):
        self.client = client
        self.ledger = ledger
        self.auto_close_orphans = auto_close_orphans

        self.last_result: Optional[ReconciliationResult] = None
        self.runs = 0

    async def reconcile(self) -> ReconciliationResult:
        """
        Run one reconciliation pass

        The exchange query is awaited without holding any bridge lock; the
        ledger view is copied right after it so both sides are compared as
        snapshots.
        """
        try:
            exchange_positions = list(await self.client.get_open_positions())
        except BridgeError as e:
            logger.error(f"Reconciliation failed: {e.safe_message}")
            result = ReconciliationResult(error=e.safe_message)
            self.last_result = result
            return result

        ledger_positions = list(self.ledger.get_positions())

        result = self.diff(exchange_positions, ledger_positions)

        for orphan in result.orphans:
            logger.warning(
                f"ORPHANED position on exchange: {orphan.side.label} {orphan.symbol} "
                f"qty={orphan.quantity} entry={orphan.entry_price:.4f} (not in ledger)"
            )

        for missing in result.missing_positions:
            logger.warning(
                f"MISSING position: ledger has {missing.direction.label} {missing.symbol} "
                f"({missing.position_id}) but exchange does not"
            )

        if self.auto_close_orphans and result.orphans:
            result.closed_orphans = await self._close_orphans(result.orphans)

        self.runs += 1
        self.last_result = result

        log = logger.info if result.in_sync else logger.warning
        log(
            f"Reconciliation: {result.matched} matched, {result.orphaned} orphaned, "
            f"{result.missing} missing"
            + (f", {result.closed_orphans} orphans closed" if result.closed_orphans else "")
        )
        return result

    @staticmethod
    def diff(
        exchange_positions: List[ExchangePosition],
        ledger_positions: List[Position]
    ) -> ReconciliationResult:
        """Classify positions by (symbol, direction). Pure."""
        ledger_keys: Dict[Tuple[str, Direction], Position] = {
            (normalize_symbol(p.symbol), p.direction): p for p in ledger_positions
        }
        exchange_keys = set()

        result = ReconciliationResult(exchange_positions=list(exchange_positions))

        for ex in exchange_positions:
            key = (normalize_symbol(ex.symbol), ex.side)
            exchange_keys.add(key)
            if key in ledger_keys:
                result.matched += 1
            else:
                result.orphans.append(ex)

        for key, position in ledger_keys.items():
            if key not in exchange_keys:
                result.missing_positions.append(position)

        result.orphaned = len(result.orphans)
        result.missing = len(result.missing_positions)
        return result

    async def _close_orphans(self, orphans: List[ExchangePosition]) -> int:
        closed = 0
        for orphan in orphans:
            logger.warning(f"Auto-closing orphan: {orphan.side.label} {orphan.symbol}")
            order = await self.client.close_position(orphan.symbol, orphan.side)
            if order.success:
                closed += 1
            else:
                logger.error(f"Failed to close orphan {orphan.symbol}: {order.error}")
        return closed
