from __future__ import annotations

import math

from rsi_ladder_bot.indicators import (
    compute_full_macd,
    compute_macd,
    compute_rsi,
    detect_bullish_crossover,
)


def synthetic_closes(n: int = 60, base: float = 100.0):
    """Slow decline followed by a recovery, with a small wobble."""
    out = []
    for i in range(n):
        trend = -0.4 * i if i < n // 2 else -0.4 * (n // 2) + 0.9 * (i - n // 2)
        out.append(base + trend + math.sin(i / 2.0))
    return out


def main():
    closes = synthetic_closes()
    print("RSI(14) last 15:", compute_rsi(closes[-15:]))
    print("MACD(12,26):", compute_macd(closes))

    res = compute_full_macd(closes)
    print("MACD line samples:", len(res.macd_line), "histogram samples:", len(res.histogram))
    print("current:", res.current)
    print("previous:", res.previous)
    print("bullish crossover:", detect_bullish_crossover(res.macd_line, res.signal_line))

    print("MACD with 35 points, histogram len:", len(compute_full_macd(closes[:35]).histogram))


if __name__ == "__main__":
    main()
