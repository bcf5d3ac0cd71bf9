"""Telegram alert sink: format a signal and POST it to sendMessage.

Failures are logged and dropped; a missed alert never blocks candle processing.
"""

from __future__ import annotations

from html import escape
from typing import Optional

import httpx

from ema_monitor.infrastructure.logging.logging import get_logger
from ema_monitor.models.market_models import Signal

KIND_EMOJI = {"BUY": "🟢", "SELL": "🔴"}


def format_signal_message(
    signal: Signal,
    *,
    exchange: str,
    pair: str,
    strategy_label: str,
) -> str:
    emoji = KIND_EMOJI.get(signal.kind, "⚪")
    local_ts = signal.timestamp.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")
    return (
        f"{emoji} <b>New Trading Signal</b> {emoji}\n"
        f"Exchange: {escape(exchange)}\n"
        f"Pair: {escape(pair)}\n"
        f"Type: {signal.kind}\n"
        f"Strategy: {escape(strategy_label)}\n"
        f"Price: {signal.price:.2f}\n"
        f"Time: {local_ts}\n"
        f"<i>{escape(signal.rationale)}</i>"
    )


class TelegramNotifier:
    def __init__(
        self,
        client: httpx.AsyncClient,
        bot_token: str,
        chat_id: str,
        *,
        exchange: str,
        pair: str,
        strategy_label: str,
        api_url: str = "https://api.telegram.org",
        timeout_sec: float = 10.0,
    ) -> None:
        self._log = get_logger("telegram")
        self._client = client
        self._url = f"{api_url.rstrip('/')}/bot{bot_token}/sendMessage"
        self._chat_id = chat_id
        self._exchange = exchange
        self._pair = pair
        self._strategy_label = strategy_label
        self._timeout = timeout_sec

    def format(self, signal: Signal) -> str:
        return format_signal_message(
            signal,
            exchange=self._exchange,
            pair=self._pair,
            strategy_label=self._strategy_label,
        )

    async def send(self, signal: Signal) -> bool:
        payload = {"chat_id": self._chat_id, "text": self.format(signal), "parse_mode": "HTML"}
        error: Optional[str] = None
        try:
            resp = await self._client.post(self._url, json=payload, timeout=self._timeout)
            if resp.status_code != 200:
                error = f"HTTP {resp.status_code}: {resp.text[:200]}"
        except httpx.HTTPError as e:
            error = f"{type(e).__name__}: {e}"

        if error:
            self._log.error("telegram_send_failed", kind=signal.kind, error=error)
            return False

        self._log.info("telegram_sent", kind=signal.kind, price=round(signal.price, 2))
        return True
