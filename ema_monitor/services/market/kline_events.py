"""Inbound kline events -> Candle.

Event shape (per timeframe update):
  {"timeframe": "15m"|"4h", "open", "high", "low", "close", "volume", "openTime"}
Prices/volume may be numeric strings; openTime is epoch seconds.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from pydantic import BaseModel, ConfigDict, Field

from ema_monitor.infrastructure.utils.timeutils import from_epoch
from ema_monitor.models.market_models import Candle, Timeframe

JsonDict = Dict[str, Any]

# 9999-12-31T23:59:59Z, the last second a datetime can hold
MAX_OPEN_TIME = 253_402_300_799


class KlineEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    timeframe: Timeframe
    open: float = Field(gt=0)
    high: float = Field(gt=0)
    low: float = Field(gt=0)
    close: float = Field(gt=0)
    volume: float = Field(default=0.0, ge=0)
    open_time: float = Field(alias="openTime", ge=0, le=MAX_OPEN_TIME)

    def to_candle(self) -> Candle:
        return Candle(
            timestamp=from_epoch(self.open_time),
            open=self.open,
            high=self.high,
            low=self.low,
            close=self.close,
            volume=self.volume,
        )


def event_from_coinex_row(timeframe: str, row: Sequence[Any]) -> JsonDict:
    """
    CoinEx v1 kline row: [time, open, close, high, low, volume, amount, market].
    Raises ValueError for rows that are too short.
    """
    if not isinstance(row, (list, tuple)) or len(row) < 6:
        raise ValueError(f"unexpected kline row: {row!r}")
    return {
        "timeframe": timeframe,
        "openTime": row[0],
        "open": row[1],
        "close": row[2],
        "high": row[3],
        "low": row[4],
        "volume": row[5],
    }


def rows_in_params(params: Any) -> List[Sequence[Any]]:
    """Pick kline rows out of a `kline.update` params list (non-list items are skipped)."""
    if not isinstance(params, list):
        return []
    return [p for p in params if isinstance(p, (list, tuple))]
