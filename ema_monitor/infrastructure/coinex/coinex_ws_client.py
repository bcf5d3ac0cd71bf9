"""CoinEx kline stream using asyncio + websockets.

Features:
- One connection per timeframe (CoinEx v1 keeps a single kline subscription per connection)
- Subscribe ack correlated by request id (MessageRouter)
- Heartbeat (ping) task
- Reconnection after a fixed delay, forever; subscription is recreated on every connect
- Malformed frames are logged and dropped, never kill the stream
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from ema_monitor.infrastructure.logging.logging import get_logger
from ema_monitor.models.market_models import TIMEFRAME_SECONDS
from ema_monitor.services.market.kline_events import event_from_coinex_row, rows_in_params

JsonDict = Dict[str, Any]
KlineHandler = Callable[[JsonDict], Awaitable[None]]


class CoinexWSError(RuntimeError):
    pass


class MessageRouter:
    def __init__(self) -> None:
        self._futures: Dict[int, asyncio.Future[JsonDict]] = {}

    def register(self, req_id: int) -> asyncio.Future[JsonDict]:
        fut: asyncio.Future[JsonDict] = asyncio.get_running_loop().create_future()
        self._futures[req_id] = fut
        return fut

    def resolve(self, req_id: int, msg: JsonDict) -> None:
        fut = self._futures.pop(req_id, None)
        if fut and not fut.done():
            fut.set_result(msg)

    def reject_all(self, exc: BaseException) -> None:
        for fut in self._futures.values():
            if not fut.done():
                fut.set_exception(exc)
        self._futures.clear()


class CoinexKlineStream:
    def __init__(
        self,
        websocket_url: str,
        market: str,
        timeframe: str,
        on_kline: KlineHandler,
        *,
        reconnect_delay_sec: float = 5.0,
        heartbeat_interval_sec: float = 20.0,
        request_timeout_sec: float = 10.0,
    ) -> None:
        if timeframe not in TIMEFRAME_SECONDS:
            raise ValueError(f"Unsupported timeframe: {timeframe}")
        self._logger = get_logger("coinex_ws", timeframe=timeframe)
        self._url = websocket_url
        self._market = market
        self._timeframe = timeframe
        self._interval_sec = TIMEFRAME_SECONDS[timeframe]
        self._on_kline = on_kline
        self._reconnect_delay = reconnect_delay_sec
        self._heartbeat_interval = heartbeat_interval_sec
        self._request_timeout = request_timeout_sec

        self._ws: Optional[Any] = None
        self._router = MessageRouter()
        self._connected_evt = asyncio.Event()
        self._stop_evt = asyncio.Event()
        self._runner_task: Optional[asyncio.Task[None]] = None
        self._req_id = 0

    @property
    def timeframe(self) -> str:
        return self._timeframe

    @property
    def is_connected(self) -> bool:
        return self._connected_evt.is_set()

    async def start(self) -> None:
        self._stop_evt.clear()
        self._runner_task = asyncio.create_task(self._run_forever())

    async def stop(self) -> None:
        self._stop_evt.set()
        if self._runner_task:
            self._runner_task.cancel()
            try:
                await self._runner_task
            except asyncio.CancelledError:
                pass
            self._runner_task = None
        await self._disconnect()

    async def _run_forever(self) -> None:
        while not self._stop_evt.is_set():
            try:
                await self._connect_and_run()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.error("ws_loop_error", error=str(e))

            if self._stop_evt.is_set():
                break

            # Fixed delay, no backoff growth, no retry cap
            self._logger.warning("ws_reconnect", seconds=self._reconnect_delay)
            await asyncio.sleep(self._reconnect_delay)

    async def _connect_and_run(self) -> None:
        self._logger.info("ws_connect", url=self._url, market=self._market)

        async with websockets.connect(
            self._url,
            ping_interval=None,  # heartbeat handled below
            close_timeout=5,
            max_queue=256,
        ) as ws:
            self._ws = ws
            reader = asyncio.create_task(self._reader_loop())
            heartbeat: Optional[asyncio.Task[None]] = None

            try:
                await self.subscribe()
                self._connected_evt.set()
                heartbeat = asyncio.create_task(self._heartbeat_loop())

                done, pending = await asyncio.wait(
                    [reader, heartbeat],
                    return_when=asyncio.FIRST_COMPLETED,
                )
                for t in done:
                    exc = t.exception()
                    if exc:
                        raise exc
                self._logger.warning("ws_closed")
            finally:
                self._connected_evt.clear()
                self._router.reject_all(CoinexWSError("Disconnected"))
                for t in (reader, heartbeat):
                    if t and not t.done():
                        t.cancel()
                self._ws = None

    async def _disconnect(self) -> None:
        self._connected_evt.clear()
        self._router.reject_all(CoinexWSError("Disconnected"))
        if self._ws:
            try:
                await self._ws.close()
            except Exception as e:
                self._logger.debug("ws_close_failed", error=str(e))
            self._ws = None

    def _next_req_id(self) -> int:
        self._req_id += 1
        return self._req_id

    async def request(self, method: str, params: list) -> JsonDict:
        if not self._ws:
            raise CoinexWSError("WebSocket not open")

        req_id = self._next_req_id()
        fut = self._router.register(req_id)
        await self._ws.send(json.dumps({"method": method, "params": params, "id": req_id}))

        try:
            resp = await asyncio.wait_for(fut, timeout=self._request_timeout)
        except asyncio.TimeoutError as e:
            raise CoinexWSError(f"Request timeout method={method} id={req_id}") from e

        if resp.get("error"):
            raise CoinexWSError(f"{method} error: {resp['error']}")
        return resp

    async def subscribe(self) -> None:
        await self.request("kline.subscribe", [self._market, self._interval_sec])
        self._logger.info("subscribed", market=self._market, interval=self._interval_sec)

    async def handle_frame(self, raw: Any) -> None:
        """Route one text frame: request acks to the router, kline updates to the handler."""
        try:
            msg = json.loads(raw)
        except (TypeError, ValueError) as e:
            self._logger.warning("malformed_frame", error=str(e))
            return
        if not isinstance(msg, dict):
            self._logger.warning("malformed_frame", error="not an object")
            return

        req_id = msg.get("id")
        if isinstance(req_id, int) and msg.get("method") is None:
            self._router.resolve(req_id, msg)
            return

        if msg.get("method") != "kline.update":
            return

        for row in rows_in_params(msg.get("params")):
            try:
                event = event_from_coinex_row(self._timeframe, row)
            except ValueError as e:
                self._logger.warning("malformed_kline", error=str(e))
                continue
            try:
                await self._on_kline(event)
            except Exception as e:
                # keep reading after a failing row
                self._logger.error("kline_handler_failed", error=str(e), row=row)

    async def _reader_loop(self) -> None:
        assert self._ws is not None
        try:
            async for raw in self._ws:
                await self.handle_frame(raw)
        except ConnectionClosed as e:
            self._logger.warning("ws_connection_closed", code=getattr(e, "code", None))

    async def _heartbeat_loop(self) -> None:
        assert self._ws is not None
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                pong_waiter = await self._ws.ping()
                await asyncio.wait_for(pong_waiter, timeout=5.0)
                self._logger.debug("ws_ping_ok")
            except Exception as e:
                self._logger.warning("ws_ping_failed", error=str(e))
                raise
