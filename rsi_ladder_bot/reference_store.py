from __future__ import annotations

from collections import deque
from typing import Deque, Optional

from .indicators import pct_change, round_pct
from .models import ReferenceReading, ReferenceSample


class ReferenceAssetTracker:
    """Rolling price history of the reference asset (BTC by default)."""

    def __init__(self, retention_min: int = 31, window_min: int = 30) -> None:
        self.retention_ms = max(1, int(retention_min)) * 60_000
        self.window_min = int(window_min)
        self.history: Deque[ReferenceSample] = deque()
        self._prev_price: Optional[float] = None

    def update(self, price: float, ts_ms: int) -> ReferenceReading:
        if self.history:
            self._prev_price = self.history[-1].price
        self.history.append(ReferenceSample(price=float(price), ts_ms=int(ts_ms)))
        cutoff = int(ts_ms) - self.retention_ms
        while self.history and self.history[0].ts_ms < cutoff:
            self.history.popleft()
        return ReferenceReading(
            price=float(price),
            change=self.instantaneous_change(),
            change_30m=self.change_over_window(self.window_min),
        )

    @property
    def latest(self) -> Optional[ReferenceSample]:
        return self.history[-1] if self.history else None

    def instantaneous_change(self) -> Optional[float]:
        cur = self.latest
        if cur is None:
            return None
        return round_pct(pct_change(cur.price, self._prev_price))

    def change_over_window(self, minutes: int = 30) -> Optional[float]:
        cur = self.latest
        if cur is None:
            return None
        # history is ordered by time, so the oldest sample is the only candidate
        oldest = self.history[0]
        if oldest.ts_ms > cur.ts_ms - int(minutes) * 60_000:
            return None
        return round_pct(pct_change(cur.price, oldest.price))
