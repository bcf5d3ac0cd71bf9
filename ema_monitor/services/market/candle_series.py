"""Rolling candle store for one timeframe.

- Newest-first, one entry per timestamp.
- Same timestamp -> replaced in place (the live, still-open candle gets updated many times).
- Bounded: once over capacity the oldest entry is evicted.
"""

from __future__ import annotations

from collections import deque
from itertools import islice
from typing import Deque, Iterable, List, Optional

from ema_monitor.models.market_models import Candle

DEFAULT_CAPACITY = 300


class CandleSeries:
    def __init__(self, timeframe: str, capacity: int = DEFAULT_CAPACITY) -> None:
        if int(capacity) < 1:
            raise ValueError("capacity must be >= 1")
        self._timeframe = timeframe
        self._capacity = int(capacity)
        # index 0 = newest; appendleft on a full deque drops the right end (oldest)
        self._candles: Deque[Candle] = deque(maxlen=self._capacity)

    @property
    def timeframe(self) -> str:
        return self._timeframe

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._candles)

    def upsert(self, candle: Candle) -> bool:
        """Insert or replace by timestamp. Returns True if the candle was new."""
        for i, existing in enumerate(self._candles):
            if existing.timestamp == candle.timestamp:
                self._candles[i] = candle
                return False
        self._candles.appendleft(candle)
        return True

    def load_bulk(self, candles: Iterable[Candle]) -> None:
        """Replace the whole series. Input must be oldest -> newest."""
        fresh: Deque[Candle] = deque(maxlen=self._capacity)
        for c in candles:
            fresh.appendleft(c)
        self._candles = fresh

    def latest(self) -> Optional[Candle]:
        return self._candles[0] if self._candles else None

    def window(self, n: int) -> Optional[List[Candle]]:
        """Most recent n candles, oldest first. None if fewer than n are stored.

        Read-side query. The indicator path recomputes over `chronological()`.
        """
        if n < 1 or len(self._candles) < n:
            return None
        recent = list(islice(self._candles, n))
        recent.reverse()
        return recent

    def chronological(self, skip_latest: int = 0) -> List[Candle]:
        """All candles oldest first, leaving out the `skip_latest` most recent ones."""
        out = list(islice(self._candles, max(0, skip_latest), None))
        out.reverse()
        return out
