from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

from .models import OpenSignal


class SignalStore:
    """All per-symbol mutable state: open signals, throttle timestamps, locks."""

    def __init__(self) -> None:
        self._open: Dict[str, OpenSignal] = {}
        self._last_open_ms: Dict[str, int] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, symbol: str) -> Optional[OpenSignal]:
        return self._open.get(symbol)

    def put(self, signal: OpenSignal) -> None:
        if signal.symbol in self._open:
            raise ValueError(f"Signal already open for {signal.symbol}")
        self._open[signal.symbol] = signal

    def pop(self, symbol: str) -> Optional[OpenSignal]:
        return self._open.pop(symbol, None)

    def open_symbols(self) -> List[str]:
        return list(self._open.keys())

    def attach_handles(self, symbol: str, handles: Dict[str, int]) -> None:
        sig = self._open.get(symbol)
        if sig is not None and handles:
            sig.handles.update(handles)

    def last_open(self, symbol: str) -> Optional[int]:
        return self._last_open_ms.get(symbol)

    def mark_opened(self, symbol: str, ts_ms: int) -> None:
        self._last_open_ms[symbol] = int(ts_ms)

    def is_throttled(self, symbol: str, now_ms: int, cooldown_ms: int) -> bool:
        last = self._last_open_ms.get(symbol)
        return last is not None and (now_ms - last) < cooldown_ms

    def lock(self, symbol: str) -> asyncio.Lock:
        lk = self._locks.get(symbol)
        if lk is None:
            lk = self._locks[symbol] = asyncio.Lock()
        return lk
