from __future__ import annotations

import logging
from typing import List, Optional

from .config import StrategyConfig
from .indicators import pct_change, round_pct
from .models import CLOSE, LADDER, OPEN, IndicatorSnapshot, OpenSignal, SignalEvent, TradeSummary
from .signal_store import SignalStore

log = logging.getLogger("strategy")


def format_duration(seconds: int) -> str:
    seconds = max(0, int(seconds))
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    return f"{h}h {m}m {s}s"


class StrategyEngine:
    """Per-symbol IDLE -> OPEN -> IDLE signal lifecycle.

    All mutable state lives in the injected ``SignalStore``. Methods return
    the lifecycle events they produced; delivering them is the caller's job.
    """

    def __init__(self, cfg: StrategyConfig, store: Optional[SignalStore] = None):
        self.cfg = cfg
        self.store = store if store is not None else SignalStore()

    @property
    def cooldown_ms(self) -> int:
        return int(self.cfg.cooldown_min) * 60_000

    def entry_conditions(self, snap: IndicatorSnapshot, *, in_window: bool) -> bool:
        c = self.cfg
        if not in_window:
            return False
        if not (snap.macd_long > c.macd_long_min):
            return False
        if not (snap.rsi_long > c.rsi_long_min):
            return False
        if not (snap.rsi_mid < c.rsi_mid_max):
            return False
        if not (snap.rsi_short < c.rsi_short_max):
            return False
        if c.require_long_crossover and snap.macd_crossover_long is not True:
            return False
        return True

    def evaluate(
        self,
        snap: IndicatorSnapshot,
        *,
        now_ms: int,
        in_window: bool,
        reference_price: Optional[float] = None,
        reference_change_30m: Optional[float] = None,
    ) -> List[SignalEvent]:
        """Run one evaluation for ``snap.symbol`` (indicators already complete)."""
        if self.store.get(snap.symbol) is not None:
            return self.observe_price(
                snap.symbol,
                snap.current_price,
                now_ms=now_ms,
                reference_price=reference_price,
                reference_change_30m=reference_change_30m,
            )

        if not self.entry_conditions(snap, in_window=in_window):
            return []
        if self.store.is_throttled(snap.symbol, now_ms, self.cooldown_ms):
            log.info("open_throttled symbol=%s last_open_ms=%s", snap.symbol, self.store.last_open(snap.symbol))
            return []

        return [self._open(snap, now_ms=now_ms, reference_price=reference_price)]

    def _open(self, snap: IndicatorSnapshot, *, now_ms: int, reference_price: Optional[float]) -> SignalEvent:
        price = snap.current_price
        sig = OpenSignal(
            symbol=snap.symbol,
            entry_prices=[price],
            target_price=round(price * (1.0 + self.cfg.target_premium), 8),
            opened_at_ms=int(now_ms),
            bottom_price=price,
            reference_price_at_open=reference_price,
            crossover_at_open=snap.macd_crossover_long,
            opened_snapshot=snap,
        )
        self.store.mark_opened(snap.symbol, now_ms)
        self.store.put(sig)
        log.info(
            "signal_open symbol=%s entry=%s target=%s variant=%s ref_price=%s",
            sig.symbol,
            price,
            sig.target_price,
            self.cfg.variant,
            reference_price,
        )
        return SignalEvent(kind=OPEN, symbol=sig.symbol, signal=sig, price=price, ts_ms=int(now_ms))

    def observe_price(
        self,
        symbol: str,
        price: float,
        *,
        now_ms: int,
        reference_price: Optional[float] = None,
        reference_change_30m: Optional[float] = None,
    ) -> List[SignalEvent]:
        sig = self.store.get(symbol)
        if sig is None:
            return []

        sig.bottom_price = min(sig.bottom_price, price)

        if price >= sig.target_price:
            return [self._close(sig, price, now_ms=now_ms, reference_price=reference_price,
                                reference_change_30m=reference_change_30m)]

        latest = sig.latest_entry
        if price < latest and price <= latest * self.cfg.ladder_step:
            depth = len(sig.entry_prices)
            if self.cfg.max_ladder_depth and depth >= self.cfg.max_ladder_depth:
                log.info("ladder_capped symbol=%s depth=%d price=%s", symbol, depth, price)
                return []
            sig.entry_prices.insert(0, price)
            log.info("signal_ladder symbol=%s price=%s depth=%d target=%s", symbol, price, depth + 1, sig.target_price)
            return [SignalEvent(kind=LADDER, symbol=symbol, signal=sig, price=price, ts_ms=int(now_ms))]
        return []

    def _close(
        self,
        sig: OpenSignal,
        price: float,
        *,
        now_ms: int,
        reference_price: Optional[float],
        reference_change_30m: Optional[float],
    ) -> SignalEvent:
        duration_s = max(0, (int(now_ms) - sig.opened_at_ms) // 1000)
        entry = sig.latest_entry
        drawdown = round((entry - sig.bottom_price) / entry * 100.0, 2) if entry else 0.0
        summary = TradeSummary(
            symbol=sig.symbol,
            opened_at_ms=sig.opened_at_ms,
            closed_at_ms=int(now_ms),
            entry_price=entry,
            entry_prices=list(sig.entry_prices),
            target_price=sig.target_price,
            close_price=price,
            bottom_price=sig.bottom_price,
            drawdown_pct=drawdown,
            duration_s=duration_s,
            duration_text=format_duration(duration_s),
            reference_change=round_pct(pct_change(reference_price, sig.reference_price_at_open)),
            reference_change_30m=reference_change_30m,
            opened_snapshot=sig.opened_snapshot,
        )
        self.store.pop(sig.symbol)
        log.info(
            "signal_close symbol=%s entry=%s target=%s price=%s bottom=%s drawdown=%.2f%% duration=%s",
            sig.symbol,
            entry,
            sig.target_price,
            price,
            sig.bottom_price,
            drawdown,
            summary.duration_text,
        )
        return SignalEvent(kind=CLOSE, symbol=sig.symbol, signal=sig, price=price, ts_ms=int(now_ms), summary=summary)
