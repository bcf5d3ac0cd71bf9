"""Higher-timeframe (4h) trend bias: latest close vs. its long EMA."""

from __future__ import annotations

from typing import Literal, Optional, Tuple

from ema_monitor.services.market.candle_series import CandleSeries
from ema_monitor.services.market.indicators import ema

TrendKind = Literal["bullish", "bearish"]


def classify_trend(close: float, ema_value: float) -> TrendKind:
    """Strictly above the EMA is bullish; anything else counts as bearish."""
    return "bullish" if close > ema_value else "bearish"


class HigherTimeframeTrend:
    """
    Reads the 4h series and exposes the trend so 15m crossovers are only
    taken in the direction it favours.
    """

    def __init__(self, series: CandleSeries, period: int = 200) -> None:
        self._series = series
        self._period = int(period)

    @property
    def period(self) -> int:
        return self._period

    @property
    def candle_count(self) -> int:
        return len(self._series)

    def ema_and_close(self) -> Tuple[Optional[float], Optional[float]]:
        latest = self._series.latest()
        value = ema(self._series.chronological(), self._period)
        return value, (float(latest.close) if latest else None)

    def get_trend(self) -> Optional[TrendKind]:
        """None while there is not enough 4h history."""
        value, close = self.ema_and_close()
        if value is None or close is None:
            return None
        return classify_trend(close, value)
