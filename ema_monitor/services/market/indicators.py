"""Moving averages over a chronological candle window.

Every call recomputes from the supplied window; nothing is carried between calls.
None means "not enough data".
"""

from __future__ import annotations

from typing import Optional, Sequence

from ema_monitor.models.market_models import Candle


def _ema(prev: float, value: float, period: int) -> float:
    alpha = 2.0 / (period + 1.0)
    return value * alpha + prev * (1 - alpha)


def sma(candles: Sequence[Candle], period: int) -> Optional[float]:
    """Simple average of the last `period` closes."""
    if period < 1 or len(candles) < period:
        return None
    closes = [float(c.close) for c in candles[-period:]]
    return sum(closes) / period


def ema(candles: Sequence[Candle], period: int) -> Optional[float]:
    """EMA as of the last candle.

    Seeded with the simple average of the first `period` closes (oldest first),
    then smoothed forward over the remaining candles.
    """
    if period < 1 or len(candles) < period:
        return None

    value = sum(float(c.close) for c in candles[:period]) / period
    for c in candles[period:]:
        value = _ema(value, float(c.close), period)
    return value
