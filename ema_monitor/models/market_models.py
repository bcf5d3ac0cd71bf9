"""Market domain models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Literal, Optional

Timeframe = Literal["15m", "4h"]
SignalKind = Literal["BUY", "SELL"]

TIMEFRAME_SECONDS: Dict[str, int] = {"15m": 900, "4h": 14400}


@dataclass(frozen=True)
class Candle:
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True)
class CrossoverIndicators:
    """EMA values for one evaluation tick (current and one candle ago)."""

    ema_trend: Optional[float] = None
    ema_fast: Optional[float] = None
    ema_slow: Optional[float] = None
    prev_ema_fast: Optional[float] = None
    prev_ema_slow: Optional[float] = None
    trend_close: Optional[float] = None

    def is_complete(self) -> bool:
        return None not in (
            self.ema_trend,
            self.ema_fast,
            self.ema_slow,
            self.prev_ema_fast,
            self.prev_ema_slow,
            self.trend_close,
        )


@dataclass(frozen=True)
class Signal:
    kind: SignalKind
    price: float
    timestamp: datetime
    rationale: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "price": self.price,
            "timestamp": self.timestamp.isoformat(),
            "rationale": self.rationale,
        }
