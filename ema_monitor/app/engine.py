"""Monitor runtime: history load, kline streams and the status API on one event loop."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import httpx
import uvicorn

from ema_monitor.api.server import create_app
from ema_monitor.api.state import AppState
from ema_monitor.app.monitor import FAST_TF, TREND_TF, SignalMonitor
from ema_monitor.infrastructure.coinex.coinex_ws_client import CoinexKlineStream
from ema_monitor.infrastructure.logging.logging import get_logger
from ema_monitor.infrastructure.telegram.telegram_notifier import TelegramNotifier
from ema_monitor.infrastructure.utils.config import MonitorConfig
from ema_monitor.services.market.coinex_history import fetch_kline_history


async def load_history(monitor: SignalMonitor, client: httpx.AsyncClient, config: MonitorConfig) -> Dict[str, int]:
    """Bulk load both timeframes concurrently. A failed timeframe is logged and left as is (no retry)."""
    log = get_logger("engine")
    ex = config.exchange
    timeframes = [FAST_TF, TREND_TF]

    results = await asyncio.gather(
        *(
            fetch_kline_history(
                client,
                ex.market,
                tf,
                limit=ex.history_limit,
                base_url=ex.rest_url,
                timeout_sec=ex.request_timeout_sec,
            )
            for tf in timeframes
        ),
        return_exceptions=True,
    )

    counts: Dict[str, int] = {}
    for tf, result in zip(timeframes, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            log.error("history_load_failed", timeframe=tf, error=str(result), error_type=type(result).__name__)
            counts[tf] = len(monitor.series[tf])
            continue
        counts[tf] = monitor.load_history(tf, result)

    log.info("history_ready", data_points=counts)
    return counts


async def run_engine(config: MonitorConfig) -> None:
    log = get_logger("engine")
    ex = config.exchange
    log.info(
        "config_loaded",
        exchange=ex.name,
        market=ex.market,
        api_key_len=len(ex.api_key),
        port=config.api.port,
    )

    async with httpx.AsyncClient() as http:
        notifier = TelegramNotifier(
            http,
            config.telegram.bot_token,
            config.telegram.chat_id,
            exchange=ex.name,
            pair=ex.pair_label,
            strategy_label=config.strategy.label,
            api_url=config.telegram.api_url,
            timeout_sec=config.telegram.timeout_sec,
        )
        monitor = SignalMonitor.from_config(config, notifier=notifier.send)

        app = create_app(AppState(monitor=monitor, cors_origins=config.api.cors_origins))
        server = uvicorn.Server(
            uvicorn.Config(app, host=config.api.host, port=config.api.port, log_config=None)
        )
        server_task = asyncio.create_task(server.serve())
        log.info(
            "api_started",
            host=config.api.host,
            port=config.api.port,
            endpoints=["/api/status", "/api/signals", "/health"],
        )

        await load_history(monitor, http, config)

        async def on_kline(event: Dict[str, Any]) -> None:
            monitor.ingest(event)

        streams: List[CoinexKlineStream] = [
            CoinexKlineStream(
                ex.websocket_url,
                ex.market,
                tf,
                on_kline,
                reconnect_delay_sec=ex.reconnect_delay_sec,
                heartbeat_interval_sec=ex.heartbeat_interval_sec,
                request_timeout_sec=ex.request_timeout_sec,
            )
            for tf in (FAST_TF, TREND_TF)
        ]
        for stream in streams:
            await stream.start()
        log.info("engine_started", market=ex.market, timeframes=[s.timeframe for s in streams])

        try:
            await server_task
        finally:
            for stream in streams:
                await stream.stop()
            await monitor.drain()
            server.should_exit = True
            log.info("engine_stopped")
