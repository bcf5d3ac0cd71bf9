"""In-memory signal history, newest first."""

from __future__ import annotations

from collections import deque
from typing import Deque, List, Optional, Tuple

from ema_monitor.models.market_models import Signal


class SignalLog:
    def __init__(self, max_history: Optional[int] = None) -> None:
        if max_history is not None and max_history < 1:
            raise ValueError("max_history must be >= 1 (or None for unbounded)")
        self._signals: Deque[Signal] = deque(maxlen=max_history)

    def __len__(self) -> int:
        return len(self._signals)

    def append(self, signal: Signal) -> None:
        self._signals.appendleft(signal)

    def recent(self, n: int) -> List[Signal]:
        if n <= 0:
            return []
        return list(self._signals)[:n]

    def all(self) -> Tuple[List[Signal], int]:
        signals = list(self._signals)
        return signals, len(signals)
