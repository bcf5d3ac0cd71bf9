"""Pytest configuration and fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Sequence

import pytest

from ema_monitor.app.monitor import SignalMonitor
from ema_monitor.models.market_models import Candle

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def build_candles(closes: Sequence[float], step_sec: int = 900, start: datetime = START) -> List[Candle]:
    return [
        Candle(
            timestamp=start + timedelta(seconds=i * step_sec),
            open=float(c),
            high=float(c),
            low=float(c),
            close=float(c),
            volume=1.0,
        )
        for i, c in enumerate(closes)
    ]


@pytest.fixture
def make_candles() -> Callable[..., List[Candle]]:
    """Flat OHLC candles with the given closes, one per step starting at START."""
    return build_candles


@pytest.fixture
def bullish_4h() -> List[Candle]:
    """210 rising 4h closes: last close 1209, EMA200 = 1109.5."""
    return build_candles([1000 + i for i in range(210)], step_sec=14400)


@pytest.fixture
def bearish_4h() -> List[Candle]:
    """210 falling 4h closes: last close below its EMA200."""
    return build_candles([3000 - i for i in range(210)], step_sec=14400)


@pytest.fixture
def falling_15m() -> List[Candle]:
    """59 falling 15m closes (159 -> 101): EMA20 ~110.5 sits below EMA50 ~125.5."""
    return build_candles([159 - i for i in range(59)])


@pytest.fixture
def rising_15m() -> List[Candle]:
    """59 rising 15m closes (1001 -> 1059): EMA20 ~1049.5 sits above EMA50 ~1034.5."""
    return build_candles([1001 + i for i in range(59)])


@pytest.fixture
def monitor() -> SignalMonitor:
    return SignalMonitor()


@pytest.fixture
def base_config_data() -> dict:
    return {
        "exchange": {"api_key": "key-123", "api_secret": "secret-456"},
        "telegram": {"bot_token": "123:abc", "chat_id": "42"},
    }
