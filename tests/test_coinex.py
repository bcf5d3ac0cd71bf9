from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from ema_monitor.app import engine
from ema_monitor.app.engine import load_history
from ema_monitor.app.monitor import SignalMonitor
from ema_monitor.infrastructure.coinex import coinex_ws_client
from ema_monitor.infrastructure.coinex.coinex_ws_client import CoinexKlineStream
from ema_monitor.infrastructure.utils.config import MonitorConfig
from ema_monitor.services.market.coinex_history import (
    CoinexHistoryError,
    fetch_kline_history,
    rows_to_candles,
)
from ema_monitor.services.market.kline_events import event_from_coinex_row

ROW = [1_700_000_000, "2000.1", "2005.5", "2010.0", "1990.0", "12.5", "25000", "ETHUSDT"]


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_event_from_row_layout():
    event = event_from_coinex_row("15m", ROW)
    assert event == {
        "timeframe": "15m",
        "openTime": 1_700_000_000,
        "open": "2000.1",
        "close": "2005.5",
        "high": "2010.0",
        "low": "1990.0",
        "volume": "12.5",
    }


def test_event_from_short_row():
    with pytest.raises(ValueError):
        event_from_coinex_row("15m", [1, 2, 3])


# ---- REST history ----

@pytest.mark.asyncio
async def test_fetch_history_sorted_oldest_first():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        seen["path"] = request.url.path
        rows = [
            [1_700_001_800, "3", "3", "3", "3", "1"],
            [1_700_000_900, "2", "2", "2", "2", "1"],
            [1_700_000_000, "1", "1", "1", "1", "1"],
            ["bad-row"],
        ]
        return httpx.Response(200, json={"code": 0, "data": rows, "message": "OK"})

    async with _client(handler) as client:
        candles = await fetch_kline_history(client, "ETHUSDT", "15m", limit=250)

    assert seen["path"] == "/v1/market/kline"
    assert seen["params"] == {"market": "ETHUSDT", "type": "15min", "limit": "250"}
    assert [c.close for c in candles] == [1.0, 2.0, 3.0]


@pytest.mark.asyncio
async def test_fetch_history_uses_4h_type():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["type"] = request.url.params["type"]
        return httpx.Response(200, json={"code": 0, "data": []})

    async with _client(handler) as client:
        assert await fetch_kline_history(client, "ETHUSDT", "4h") == []
    assert seen["type"] == "4hour"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"code": 227, "message": "invalid market", "data": None}),
        httpx.Response(503, text="unavailable"),
        httpx.Response(200, text="<html>"),
    ],
)
async def test_fetch_history_errors(response):
    async with _client(lambda request: response) as client:
        with pytest.raises(CoinexHistoryError):
            await fetch_kline_history(client, "ETHUSDT", "15m")


@pytest.mark.asyncio
async def test_fetch_history_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    async with _client(handler) as client:
        with pytest.raises(CoinexHistoryError):
            await fetch_kline_history(client, "ETHUSDT", "15m")


@pytest.mark.asyncio
async def test_engine_history_failure_leaves_series_empty(base_config_data):
    config = MonitorConfig.from_mapping(base_config_data, env={})
    monitor = SignalMonitor.from_config(config)

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["type"] == "4hour":
            return httpx.Response(500)
        return httpx.Response(200, json={"code": 0, "data": [ROW]})

    async with _client(handler) as client:
        counts = await load_history(monitor, client, config)

    assert counts == {"15m": 1, "4h": 0}
    assert monitor.status()["dataPoints"] == {"15m": 1, "4h": 0}


# ---- WebSocket frames ----

@pytest.fixture
def collected():
    return []


@pytest.fixture
def stream(collected):
    async def on_kline(event):
        collected.append(event)

    return CoinexKlineStream("wss://example.invalid/", "ETHUSDT", "15m", on_kline)


@pytest.mark.asyncio
async def test_kline_update_rows_are_forwarded(stream, collected):
    await stream.handle_frame(json.dumps({"method": "kline.update", "params": [ROW, ROW], "id": None}))
    assert len(collected) == 2
    assert collected[0]["timeframe"] == "15m"
    assert collected[0]["close"] == "2005.5"


@pytest.mark.asyncio
async def test_kline_update_with_symbol_and_interval(stream, collected):
    await stream.handle_frame(json.dumps({"method": "kline.update", "params": ["ETHUSDT", 900, ROW], "id": None}))
    assert len(collected) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        json.dumps([1, 2, 3]),
        json.dumps({"method": "kline.update", "params": [[1, 2]], "id": None}),
        json.dumps({"method": "depth.update", "params": [], "id": None}),
        json.dumps({"error": None, "result": {"status": "success"}, "id": 7}),
    ],
)
async def test_other_frames_are_not_forwarded(stream, collected, raw):
    await stream.handle_frame(raw)
    assert collected == []


@pytest.mark.asyncio
async def test_stream_feeds_monitor(monitor):
    async def on_kline(event):
        monitor.ingest(event)

    stream = CoinexKlineStream("wss://example.invalid/", "ETHUSDT", "4h", on_kline)
    await stream.handle_frame(json.dumps({"method": "kline.update", "params": [ROW], "id": None}))

    assert len(monitor.series["4h"]) == 1
    assert monitor.series["4h"].latest().close == 2005.5


def test_unsupported_timeframe():
    async def on_kline(event):
        pass

    with pytest.raises(ValueError):
        CoinexKlineStream("wss://example.invalid/", "ETHUSDT", "1h", on_kline)


@pytest.mark.asyncio
async def test_out_of_range_open_time_keeps_stream_reading(monitor):
    async def on_kline(event):
        monitor.ingest(event)

    stream = CoinexKlineStream("wss://example.invalid/", "ETHUSDT", "15m", on_kline)
    bad = [10**12, "1", "1", "1", "1", "1"]
    huge = [10**20, "1", "1", "1", "1", "1"]
    await stream.handle_frame(json.dumps({"method": "kline.update", "params": [bad, huge, ROW], "id": None}))

    assert len(monitor.series["15m"]) == 1
    assert monitor.series["15m"].latest().close == 2005.5


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_later_rows(collected):
    async def on_kline(event):
        if not collected:
            collected.append("failed")
            raise RuntimeError("handler exploded")
        collected.append(event)

    stream = CoinexKlineStream("wss://example.invalid/", "ETHUSDT", "15m", on_kline)
    await stream.handle_frame(json.dumps({"method": "kline.update", "params": [ROW, ROW], "id": None}))

    assert len(collected) == 2
    assert collected[1]["close"] == "2005.5"


@pytest.mark.asyncio
async def test_history_skips_out_of_range_rows():
    rows = [[10**20, "1", "1", "1", "1", "1"], ROW]

    async with _client(lambda request: httpx.Response(200, json={"code": 0, "data": rows})) as client:
        candles = await fetch_kline_history(client, "ETHUSDT", "15m")

    assert [c.close for c in candles] == [2005.5]


@pytest.mark.asyncio
async def test_engine_history_unexpected_error_is_logged_not_raised(base_config_data, monkeypatch):
    config = MonitorConfig.from_mapping(base_config_data, env={})
    monitor = SignalMonitor.from_config(config)

    async def fake_fetch(client, market, timeframe, **kwargs):
        if timeframe == "4h":
            raise OverflowError("timestamp out of range")
        return rows_to_candles(timeframe, [ROW])

    monkeypatch.setattr(engine, "fetch_kline_history", fake_fetch)
    async with _client(lambda request: httpx.Response(500)) as client:
        counts = await load_history(monitor, client, config)

    assert counts == {"15m": 1, "4h": 0}


# ---- reconnect ----

class FakeKlineSocket:
    """Acks every request, pushes one kline row, then closes."""

    def __init__(self, row):
        self.sent = []
        self._row = row
        self._frames: asyncio.Queue = asyncio.Queue()

    async def send(self, text):
        msg = json.loads(text)
        self.sent.append(msg)
        await self._frames.put(json.dumps({"error": None, "result": {"status": "success"}, "id": msg["id"]}))
        await self._frames.put(json.dumps({"method": "kline.update", "params": [self._row], "id": None}))
        await self._frames.put(None)

    async def __aiter__(self):
        while True:
            frame = await self._frames.get()
            if frame is None:
                return
            yield frame

    async def ping(self):
        fut = asyncio.get_running_loop().create_future()
        fut.set_result(None)
        return fut

    async def close(self):
        pass


class FakeConnect:
    def __init__(self, outcome):
        self._outcome = outcome

    async def __aenter__(self):
        if isinstance(self._outcome, Exception):
            raise self._outcome
        return self._outcome

    async def __aexit__(self, *exc_info):
        return False


@pytest.mark.asyncio
async def test_reconnects_with_fixed_delay_and_resubscribes(monitor, make_candles, monkeypatch):
    monitor.load_history("15m", make_candles([10, 11, 12]))
    last_open = int(monitor.series["15m"].latest().timestamp.timestamp())
    sockets = [
        FakeKlineSocket([last_open + 900, "13", "13", "13", "13", "1"]),
        FakeKlineSocket([last_open + 1800, "14", "14", "14", "14", "1"]),
    ]
    outcomes = [OSError("connection refused"), sockets[0], sockets[1]]
    connect_calls = []

    def fake_connect(url, **kwargs):
        connect_calls.append(url)
        return FakeConnect(outcomes[len(connect_calls) - 1])

    async def on_kline(event):
        monitor.ingest(event)

    stream = CoinexKlineStream(
        "wss://example.invalid/",
        "ETHUSDT",
        "15m",
        on_kline,
        reconnect_delay_sec=5.0,
        heartbeat_interval_sec=600.0,
    )

    real_sleep = asyncio.sleep
    delays = []

    async def fake_sleep(delay, *args, **kwargs):
        if delay == 600.0:
            # heartbeat; cancelled when the connection ends
            return await real_sleep(delay)
        delays.append(delay)
        if len(delays) == len(outcomes):
            stream._stop_evt.set()
        await real_sleep(0)

    monkeypatch.setattr(coinex_ws_client.websockets, "connect", fake_connect)
    monkeypatch.setattr(coinex_ws_client.asyncio, "sleep", fake_sleep)

    await asyncio.wait_for(stream._run_forever(), timeout=5)

    assert len(connect_calls) == 3
    assert delays == [5.0, 5.0, 5.0]
    for sock in sockets:
        assert [(m["method"], m["params"]) for m in sock.sent] == [("kline.subscribe", ["ETHUSDT", 900])]
    assert len(monitor.series["15m"]) == 5
    assert monitor.series["15m"].latest().close == 14.0
