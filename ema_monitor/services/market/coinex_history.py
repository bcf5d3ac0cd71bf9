"""Fetch CoinEx kline history once at startup and turn it into candles (oldest first)."""

from __future__ import annotations

from typing import Any, Dict, List

import httpx
from pydantic import ValidationError

from ema_monitor.infrastructure.logging.logging import get_logger
from ema_monitor.models.market_models import Candle
from ema_monitor.services.market.kline_events import KlineEvent, event_from_coinex_row

log = get_logger("coinex_history")

# CoinEx v1 REST kline "type" per timeframe
KLINE_TYPES: Dict[str, str] = {"15m": "15min", "4h": "4hour"}


class CoinexHistoryError(RuntimeError):
    pass


def rows_to_candles(timeframe: str, rows: List[Any]) -> List[Candle]:
    """Parse kline rows, skipping bad ones, sorted oldest -> newest with one candle per timestamp."""
    by_time: Dict[Any, Candle] = {}
    skipped = 0
    for row in rows:
        try:
            candle = KlineEvent.model_validate(event_from_coinex_row(timeframe, row)).to_candle()
        except (ValueError, OverflowError, OSError, ValidationError):
            skipped += 1
            continue
        by_time[candle.timestamp] = candle
    if skipped:
        log.warning("history_rows_skipped", timeframe=timeframe, skipped=skipped)
    return [by_time[t] for t in sorted(by_time)]


async def fetch_kline_history(
    client: httpx.AsyncClient,
    market: str,
    timeframe: str,
    *,
    limit: int = 250,
    base_url: str = "https://api.coinex.com/v1",
    timeout_sec: float = 10.0,
) -> List[Candle]:
    """
    GET {base_url}/market/kline?market=..&type=..&limit=..
    Raises CoinexHistoryError on transport errors, timeouts or a non-zero API code.
    """
    kline_type = KLINE_TYPES.get(timeframe)
    if kline_type is None:
        raise CoinexHistoryError(f"Unsupported timeframe: {timeframe}")

    try:
        resp = await client.get(
            f"{base_url.rstrip('/')}/market/kline",
            params={"market": market, "type": kline_type, "limit": limit},
            timeout=timeout_sec,
        )
        resp.raise_for_status()
        body = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        raise CoinexHistoryError(f"CoinEx kline request failed ({timeframe}): {e}") from e

    if not isinstance(body, dict):
        raise CoinexHistoryError(f"Unexpected CoinEx response ({timeframe})")

    code = body.get("code", 0)
    if code not in (0, "0", None):
        raise CoinexHistoryError(f"CoinEx kline error ({timeframe}): code={code} message={body.get('message')}")

    rows = body.get("data") or []
    if not isinstance(rows, list):
        raise CoinexHistoryError(f"Unexpected CoinEx kline payload ({timeframe})")

    candles = rows_to_candles(timeframe, rows)
    log.info("history_loaded", market=market, timeframe=timeframe, rows=len(rows), candles=len(candles))
    return candles
