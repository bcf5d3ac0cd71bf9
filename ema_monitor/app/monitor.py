"""Signal monitor: owns the candle series and the signal log.

One instance is built at startup and handed to the stream handlers and the API.
Each candle event is processed to completion (upsert -> detect -> log -> notify)
before the next one; notification runs as a background task.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Set

from pydantic import ValidationError

from ema_monitor.infrastructure.logging.logging import get_logger
from ema_monitor.infrastructure.utils.config import MonitorConfig
from ema_monitor.infrastructure.utils.timeutils import utc_now
from ema_monitor.models.market_models import Candle, Signal
from ema_monitor.services.market.candle_series import CandleSeries
from ema_monitor.services.market.higher_tf_trend import HigherTimeframeTrend
from ema_monitor.services.market.kline_events import KlineEvent
from ema_monitor.services.signals.signal_log import SignalLog
from ema_monitor.services.strategy.ema_crossover import EmaCrossoverDetector

JsonDict = Dict[str, Any]
Notifier = Callable[[Signal], Awaitable[Any]]

FAST_TF = "15m"
TREND_TF = "4h"


class SignalMonitor:
    def __init__(
        self,
        *,
        exchange: str = "COINEX",
        pair: str = "ETH/USDT",
        capacity: int = 300,
        fast_period: int = 20,
        slow_period: int = 50,
        trend_period: int = 200,
        min_fast_candles: int = 50,
        min_trend_candles: int = 200,
        max_history: Optional[int] = None,
        status_recent: int = 5,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self._log = get_logger("monitor")
        self.exchange = exchange
        self.pair = pair
        self.status_recent = status_recent
        self.notifier = notifier

        self.series: Dict[str, CandleSeries] = {
            FAST_TF: CandleSeries(FAST_TF, capacity),
            TREND_TF: CandleSeries(TREND_TF, capacity),
        }
        self.trend = HigherTimeframeTrend(self.series[TREND_TF], period=trend_period)
        self.detector = EmaCrossoverDetector(
            self.series[FAST_TF],
            self.trend,
            fast_period=fast_period,
            slow_period=slow_period,
            min_fast_candles=min_fast_candles,
            min_trend_candles=min_trend_candles,
            fast_label=FAST_TF,
            trend_label=TREND_TF,
        )
        self.signal_log = SignalLog(max_history=max_history)
        self._pending: Set[asyncio.Task[Any]] = set()

    @classmethod
    def from_config(cls, config: MonitorConfig, notifier: Optional[Notifier] = None) -> "SignalMonitor":
        st = config.strategy
        return cls(
            exchange=config.exchange.name,
            pair=config.exchange.pair_label,
            capacity=st.series_capacity,
            fast_period=st.fast_period,
            slow_period=st.slow_period,
            trend_period=st.trend_period,
            min_fast_candles=st.min_fast_candles,
            min_trend_candles=st.min_trend_candles,
            max_history=config.signals.max_history,
            status_recent=config.signals.status_recent,
            notifier=notifier,
        )

    # ---- ingestion ----
    def ingest(self, event: Mapping[str, Any]) -> Optional[Signal]:
        """Validate one inbound kline event and process it. Malformed events are logged and dropped."""
        try:
            parsed = KlineEvent.model_validate(event)
            candle = parsed.to_candle()
        except ValidationError as e:
            self._log.warning("malformed_kline_event", error=str(e).splitlines()[0], errors=e.error_count())
            return None
        except (ValueError, OverflowError, OSError) as e:
            self._log.warning("malformed_kline_event", error=str(e))
            return None
        return self.on_candle(parsed.timeframe, candle)

    def on_candle(self, timeframe: str, candle: Candle) -> Optional[Signal]:
        series = self.series.get(timeframe)
        if series is None:
            self._log.warning("unknown_timeframe", timeframe=timeframe)
            return None

        is_new = series.upsert(candle)
        self._log.debug(
            "candle_updated",
            timeframe=timeframe,
            open_time=candle.timestamp.isoformat(),
            close=candle.close,
            new=is_new,
            size=len(series),
        )

        # Only 15m updates drive detection
        if timeframe != FAST_TF:
            return None

        signal = self.detector.evaluate()
        if signal is None:
            return None

        self.signal_log.append(signal)
        self._log.info(
            "signal_generated",
            kind=signal.kind,
            price=round(signal.price, 2),
            rationale=signal.rationale,
        )
        self._dispatch(signal)
        return signal

    def load_history(self, timeframe: str, candles: Iterable[Candle]) -> int:
        """Bulk load (oldest -> newest). Returns the resulting series length."""
        series = self.series[timeframe]
        series.load_bulk(sorted(candles, key=lambda c: c.timestamp))
        return len(series)

    # ---- notification ----
    def _dispatch(self, signal: Signal) -> None:
        if self.notifier is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._log.warning("notify_skipped_no_loop", kind=signal.kind)
            return
        task = loop.create_task(self.notifier(signal))
        self._pending.add(task)
        task.add_done_callback(self._on_notify_done)

    def _on_notify_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._log.error("notify_failed", error=str(exc))

    async def drain(self) -> None:
        """Wait for in-flight notifications (tests / shutdown)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ---- read side ----
    def current_price(self) -> Optional[float]:
        latest = self.series[FAST_TF].latest()
        return float(latest.close) if latest else None

    def status(self) -> JsonDict:
        return {
            "status": "running",
            "exchange": self.exchange,
            "pair": self.pair,
            "currentPrice": self.current_price(),
            "dataPoints": {tf: len(s) for tf, s in self.series.items()},
            "lastSignals": [s.to_dict() for s in self.signal_log.recent(self.status_recent)],
        }

    def signals(self) -> JsonDict:
        signals, count = self.signal_log.all()
        return {"signals": [s.to_dict() for s in signals], "count": count}

    def health(self) -> JsonDict:
        return {
            "status": "ok",
            "timestamp": utc_now().isoformat(),
            "message": f"{self.exchange.title()} monitor is running",
        }
