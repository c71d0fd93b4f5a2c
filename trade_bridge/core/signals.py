"""
Trade signal and direction types shared by the ledger, bridge and exchange client
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from ..errors import ValidationError


class Direction(Enum):
    """Position direction"""
    LONG = "long"
    SHORT = "short"

    @classmethod
    def parse(cls, value: Any) -> "Direction":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown direction: {value}")

    @property
    def sign(self) -> int:
        """+1 for long, -1 for short"""
        return 1 if self == Direction.LONG else -1

    @property
    def opposite(self) -> "Direction":
        return Direction.SHORT if self == Direction.LONG else Direction.LONG

    @property
    def label(self) -> str:
        return self.value.upper()


@dataclass(frozen=True)
class TradeSignal:
    """
    Abstract trading intent from a signal source

    suggested_position_size is the margin (USD) to commit; notional is
    margin x leverage.
    """
    symbol: str
    direction: Direction
    timeframe: str
    price: float
    suggested_leverage: int = 1
    suggested_position_size: float = 0.0
    suggested_stop_loss: Optional[float] = None
    suggested_take_profit: Optional[float] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    signal_id: str = ""

    def __post_init__(self):
        object.__setattr__(self, "direction", Direction.parse(self.direction))
        object.__setattr__(self, "symbol", self.symbol.strip().upper())

        if self.price <= 0:
            raise ValidationError(f"Signal price must be positive, got {self.price}")
        if self.suggested_leverage < 1:
            raise ValidationError(f"Signal leverage must be >= 1, got {self.suggested_leverage}")
        if self.suggested_position_size < 0:
            raise ValidationError(f"Signal position size must be >= 0, got {self.suggested_position_size}")

        if not self.signal_id:
            object.__setattr__(
                self, "signal_id",
                f"{self.symbol}-{self.timeframe}-{int(self.timestamp.timestamp() * 1000)}-{uuid.uuid4().hex[:6]}"
            )

    @property
    def notional_size(self) -> float:
        return self.suggested_position_size * self.suggested_leverage

    def for_spot(self) -> "TradeSignal":
        """Spot has no leverage: fold it into the position size"""
        return replace(
            self,
            suggested_leverage=1,
            suggested_position_size=self.suggested_position_size * self.suggested_leverage,
        )
