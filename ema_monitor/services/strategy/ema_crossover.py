"""EMA20/EMA50 crossover on 15m, filtered by the 4h close vs. EMA200."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ema_monitor.infrastructure.logging.logging import get_logger
from ema_monitor.infrastructure.utils.timeutils import utc_now
from ema_monitor.models.market_models import CrossoverIndicators, Signal, SignalKind
from ema_monitor.services.market.candle_series import CandleSeries
from ema_monitor.services.market.higher_tf_trend import HigherTimeframeTrend, TrendKind, classify_trend
from ema_monitor.services.market.indicators import ema

log = get_logger("ema_crossover")


def detect_crossover(ind: CrossoverIndicators, trend: TrendKind) -> Optional[SignalKind]:
    """
    BUY: bullish trend and fast EMA moved from <= slow to > slow.
    SELL: bearish trend and fast EMA moved from >= slow to < slow.
    BUY is checked first; the two are mutually exclusive.
    """
    if not ind.is_complete():
        return None

    if trend == "bullish" and ind.prev_ema_fast <= ind.prev_ema_slow and ind.ema_fast > ind.ema_slow:
        return "BUY"
    elif trend == "bearish" and ind.prev_ema_fast >= ind.prev_ema_slow and ind.ema_fast < ind.ema_slow:
        return "SELL"
    return None


class EmaCrossoverDetector:
    """
    Re-evaluated from scratch on every 15m update. All state lives in the two
    candle series; the detector itself keeps none.
    """

    def __init__(
        self,
        fast_series: CandleSeries,
        trend: HigherTimeframeTrend,
        *,
        fast_period: int = 20,
        slow_period: int = 50,
        min_fast_candles: int = 50,
        min_trend_candles: int = 200,
        fast_label: str = "15m",
        trend_label: str = "4h",
    ) -> None:
        if slow_period <= fast_period:
            raise ValueError("slow_period must be greater than fast_period")
        self._fast_series = fast_series
        self._trend = trend
        self.fast_period = int(fast_period)
        self.slow_period = int(slow_period)
        self.min_fast_candles = int(min_fast_candles)
        self.min_trend_candles = int(min_trend_candles)
        self.fast_label = fast_label
        self.trend_label = trend_label

    def has_enough_data(self) -> bool:
        return (
            len(self._fast_series) >= self.min_fast_candles
            and self._trend.candle_count >= self.min_trend_candles
        )

    def compute_indicators(self) -> Optional[CrossoverIndicators]:
        """None while either series is still warming up."""
        if not self.has_enough_data():
            return None

        current = self._fast_series.chronological()
        previous = self._fast_series.chronological(skip_latest=1)
        ema_trend, trend_close = self._trend.ema_and_close()

        return CrossoverIndicators(
            ema_trend=ema_trend,
            ema_fast=ema(current, self.fast_period),
            ema_slow=ema(current, self.slow_period),
            prev_ema_fast=ema(previous, self.fast_period),
            prev_ema_slow=ema(previous, self.slow_period),
            trend_close=trend_close,
        )

    def rationale(self, kind: SignalKind) -> str:
        direction = "above" if kind == "BUY" else "below"
        trend = "bullish" if kind == "BUY" else "bearish"
        return (
            f"EMA{self.fast_period} crossed {direction} EMA{self.slow_period} "
            f"on {self.fast_label} with {trend} {self.trend_label} trend"
        )

    def evaluate(self, now: Optional[datetime] = None) -> Optional[Signal]:
        ind = self.compute_indicators()
        if ind is None:
            log.debug(
                "waiting_for_data",
                fast_candles=len(self._fast_series),
                trend_candles=self._trend.candle_count,
            )
            return None

        if not ind.is_complete():
            log.warning("indicators_incomplete", indicators=ind.__dict__)
            return None

        current = self._fast_series.latest()
        if current is None:
            return None

        trend = classify_trend(ind.trend_close, ind.ema_trend)
        log.debug(
            "signal_inputs",
            price=round(current.close, 2),
            trend=trend,
            ema_trend=round(ind.ema_trend, 2),
            ema_fast=round(ind.ema_fast, 2),
            prev_ema_fast=round(ind.prev_ema_fast, 2),
            ema_slow=round(ind.ema_slow, 2),
            prev_ema_slow=round(ind.prev_ema_slow, 2),
        )

        kind = detect_crossover(ind, trend)
        if kind is None:
            return None

        return Signal(
            kind=kind,
            price=float(current.close),
            timestamp=now or utc_now(),
            rationale=self.rationale(kind),
        )
