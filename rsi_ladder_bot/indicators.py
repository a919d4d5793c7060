from __future__ import annotations
from typing import List, Optional, Sequence

from .models import MacdResult, MacdSample


MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9
MACD_MIN_POINTS = MACD_SLOW
FULL_MACD_MIN_POINTS = MACD_SLOW + MACD_SIGNAL


def compute_rsi(closes: Sequence[float], period: int = 14) -> Optional[float]:
    if period <= 0 or len(closes) < period + 1:
        return None
    gains = 0.0
    losses = 0.0
    for i in range(len(closes) - period, len(closes)):
        ch = closes[i] - closes[i - 1]
        if ch > 0:
            gains += ch
        else:
            losses -= ch
    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def compute_ema(values: Sequence[float], period: int) -> List[Optional[float]]:
    """EMA aligned with ``values``; ``None`` before the SMA seed at ``period - 1``."""
    out: List[Optional[float]] = [None] * len(values)
    if period <= 0 or len(values) < period:
        return out
    k = 2.0 / (period + 1.0)
    prev = sum(values[:period]) / float(period)
    out[period - 1] = prev
    for i in range(period, len(values)):
        prev = values[i] * k + prev * (1.0 - k)
        out[i] = prev
    return out


def compute_macd(closes: Sequence[float]) -> Optional[float]:
    if len(closes) < MACD_MIN_POINTS:
        return None
    fast = compute_ema(closes, MACD_FAST)
    slow = compute_ema(closes, MACD_SLOW)
    return fast[-1] - slow[-1]


def compute_full_macd(closes: Sequence[float]) -> Optional[MacdResult]:
    """MACD line, 9-period signal line and histogram.

    The MACD line starts on the first bar after the slow EMA seed, so
    26 + 9 closes produce exactly one histogram sample.
    """
    if len(closes) < FULL_MACD_MIN_POINTS:
        return None
    fast = compute_ema(closes, MACD_FAST)
    slow = compute_ema(closes, MACD_SLOW)
    macd_line = [fast[i] - slow[i] for i in range(MACD_SLOW, len(closes))]
    signal_line = compute_ema(macd_line, MACD_SIGNAL)
    histogram = [m - s for m, s in zip(macd_line, signal_line) if s is not None]

    current = MacdSample(macd=macd_line[-1], signal=signal_line[-1], histogram=histogram[-1])
    previous = None
    if len(histogram) >= 2:
        previous = MacdSample(macd=macd_line[-2], signal=signal_line[-2], histogram=histogram[-2])
    return MacdResult(
        macd_line=macd_line,
        signal_line=signal_line,
        histogram=histogram,
        current=current,
        previous=previous,
    )


def detect_bullish_crossover(
    macd_line: Sequence[Optional[float]],
    signal_line: Sequence[Optional[float]],
    lookback: int = 5,
    strength: float = 1.05,
) -> bool:
    """Heuristic bullish MACD check, not a strict crossover detector.

    True when MACD is above signal now and either crossed up within the last
    ``lookback`` samples or sits above ``signal * strength``. Ambiguous cases
    resolve to True.
    """
    if not macd_line or not signal_line or len(macd_line) != len(signal_line):
        return False

    cur = len(macd_line) - 1
    m_now, s_now = macd_line[cur], signal_line[cur]
    if m_now is None or s_now is None or not m_now > s_now:
        return False

    for i in range(max(0, cur - lookback), cur):
        m0, s0 = macd_line[i], signal_line[i]
        m1, s1 = macd_line[i + 1], signal_line[i + 1]
        if None in (m0, s0, m1, s1):
            continue
        if m0 <= s0 and m1 > s1:
            return True

    return m_now > s_now * strength


def macd_crossover(closes: Optional[Sequence[float]], lookback: int = 5, strength: float = 1.05) -> Optional[bool]:
    if not closes:
        return None
    res = compute_full_macd(closes)
    if res is None:
        return None
    return detect_bullish_crossover(res.macd_line, res.signal_line, lookback=lookback, strength=strength)


def pct_change(new: Optional[float], old: Optional[float]) -> Optional[float]:
    if new is None or old is None or old == 0:
        return None
    return (new - old) / old * 100.0


def round_pct(value: Optional[float], ndigits: int = 2) -> Optional[float]:
    return None if value is None else round(value, ndigits)
