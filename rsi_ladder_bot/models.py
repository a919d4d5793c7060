from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional


OPEN = "OPEN"
LADDER = "LADDER"
CLOSE = "CLOSE"


@dataclass(frozen=True)
class IndicatorSnapshot:
    symbol: str
    ts_ms: int
    rsi_long: float  # 4h
    rsi_mid: float  # 15m
    rsi_short: float  # 1m
    macd_long: float  # 4h
    macd_crossover_long: Optional[bool]  # 6h, None when unavailable
    current_price: float


@dataclass(frozen=True)
class MacdSample:
    macd: float
    signal: float
    histogram: float


@dataclass(frozen=True)
class MacdResult:
    macd_line: List[float]
    signal_line: List[Optional[float]]  # aligned with macd_line
    histogram: List[float]
    current: MacdSample
    previous: Optional[MacdSample] = None


@dataclass(frozen=True)
class ReferenceSample:
    price: float
    ts_ms: int


@dataclass(frozen=True)
class ReferenceReading:
    price: Optional[float]
    change: Optional[float] = None
    change_30m: Optional[float] = None


@dataclass
class OpenSignal:
    symbol: str
    entry_prices: List[float]  # newest first
    target_price: float
    opened_at_ms: int
    bottom_price: float
    reference_price_at_open: Optional[float] = None
    crossover_at_open: Optional[bool] = None
    opened_snapshot: Optional[IndicatorSnapshot] = None
    handles: Dict[str, int] = field(default_factory=dict)  # chat_id -> message_id

    @property
    def latest_entry(self) -> float:
        return self.entry_prices[0]


@dataclass(frozen=True)
class TradeSummary:
    symbol: str
    opened_at_ms: int
    closed_at_ms: int
    entry_price: float
    entry_prices: List[float]
    target_price: float
    close_price: float
    bottom_price: float
    drawdown_pct: float
    duration_s: int
    duration_text: str
    reference_change: Optional[float]
    reference_change_30m: Optional[float]
    opened_snapshot: Optional[IndicatorSnapshot] = None


@dataclass(frozen=True)
class SignalEvent:
    kind: str  # OPEN | LADDER | CLOSE
    symbol: str
    signal: OpenSignal
    price: float
    ts_ms: int
    summary: Optional[TradeSummary] = None
