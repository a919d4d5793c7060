from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from .config import Config
from .formatters import format_event
from .indicators import compute_macd, compute_rsi, macd_crossover
from .journal import CsvJournal
from .models import CLOSE, LADDER, OPEN, IndicatorSnapshot, ReferenceReading, SignalEvent
from .notifier.telegram import TelegramNotifier
from .providers.binance import BinanceProvider
from .reference_store import ReferenceAssetTracker
from .signal_store import SignalStore
from .strategy import StrategyEngine
from .timefilter import SignalWindows

log = logging.getLogger("runner")


def _now_ms() -> int:
    return int(time.time() * 1000)


class AlertRunner:
    """Evaluation driver: fetch, compute, feed the engine, deliver events."""

    def __init__(
        self,
        cfg: Config,
        *,
        provider=None,
        notifier=None,
        journal=None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.cfg = cfg
        self.provider = provider or BinanceProvider(
            market=cfg.provider.market,
            rest_timeout_s=cfg.provider.rest_timeout_s,
            rest_max_retries=cfg.provider.rest_max_retries,
        )
        if notifier is None:
            tg = cfg.telegram
            notifier = TelegramNotifier(
                token=tg.token if tg.enabled else "",
                chat_ids=tg.chat_ids,
                parse_mode=cfg.alerts.parse_mode,
                disable_web_page_preview=tg.disable_web_page_preview,
                timeout_s=tg.timeout_s,
            )
        self.notifier = notifier
        self.journal = journal or CsvJournal(
            cfg.journal.snapshot_path,
            cfg.journal.trade_path,
            enabled=cfg.journal.enabled,
        )
        self.windows = SignalWindows(enabled=cfg.signal_windows.enabled, windows=cfg.signal_windows.windows)
        self.store = SignalStore()
        self.engine = StrategyEngine(cfg.strategy, self.store)
        self.reference = ReferenceAssetTracker(
            retention_min=cfg.reference.retention_min,
            window_min=cfg.reference.window_min,
        )
        self._ref_lock = asyncio.Lock()
        self._clock = clock or _now_ms
        # (symbol, handles, text, failed chats, attempt) close summaries still owed to some chats
        self._pending_close: List[Tuple[str, Dict[str, int], str, List[str], int]] = []

    @property
    def symbols(self) -> List[str]:
        return list(self.cfg.provider.symbols or [])

    # ---- data -------------------------------------------------------------

    async def _record_reference(self, price: Optional[float]) -> ReferenceReading:
        if price is None:
            return ReferenceReading(price=None)
        async with self._ref_lock:
            return self.reference.update(price, self._clock())

    async def _fetch_inputs(self, symbol: str) -> Tuple:
        p = self.provider
        n_rsi = int(self.cfg.strategy.rsi_period) + 1
        n_macd = int(self.cfg.strategy.macd_candles)
        return await asyncio.wait_for(
            asyncio.gather(
                p.fetch_close_series(symbol, "4h", n_macd),
                p.fetch_close_series(symbol, "15m", n_rsi),
                p.fetch_close_series(symbol, "1m", n_rsi),
                p.fetch_close_series(symbol, "6h", n_macd),
                p.fetch_price(self.cfg.reference.symbol),
            ),
            timeout=self.cfg.provider.cycle_timeout_s,
        )

    def _build_snapshot(self, symbol: str, closes_4h, closes_15m, closes_1m, closes_6h, now_ms: int) -> Optional[IndicatorSnapshot]:
        s = self.cfg.strategy
        rsi_long = compute_rsi(closes_4h or [], s.rsi_period)
        rsi_mid = compute_rsi(closes_15m or [], s.rsi_period)
        rsi_short = compute_rsi(closes_1m or [], s.rsi_period)
        macd_long = compute_macd(closes_4h or [])
        crossover = macd_crossover(closes_6h, lookback=s.crossover_lookback, strength=s.crossover_strength)

        missing = [
            name
            for name, val in (("rsi_4h", rsi_long), ("rsi_15m", rsi_mid), ("rsi_1m", rsi_short), ("macd_4h", macd_long))
            if val is None
        ]
        if s.require_long_crossover and crossover is None:
            missing.append("macd_6h_crossover")
        if missing:
            log.info("skip symbol=%s reason=data_unavailable missing=%s", symbol, ",".join(missing))
            return None

        return IndicatorSnapshot(
            symbol=symbol,
            ts_ms=now_ms,
            rsi_long=rsi_long,
            rsi_mid=rsi_mid,
            rsi_short=rsi_short,
            macd_long=macd_long,
            macd_crossover_long=crossover,
            current_price=closes_1m[-1],
        )

    # ---- entry points ----------------------------------------------------

    async def evaluate_symbol(self, symbol: str) -> List[SignalEvent]:
        async with self.store.lock(symbol):
            try:
                return await self._evaluate_locked(symbol)
            except asyncio.TimeoutError:
                log.warning("skip symbol=%s reason=timeout timeout_s=%s", symbol, self.cfg.provider.cycle_timeout_s)
            except Exception as e:
                log.exception("evaluate_failed symbol=%s err=%s", symbol, e)
            return []

    async def _evaluate_locked(self, symbol: str) -> List[SignalEvent]:
        closes_4h, closes_15m, closes_1m, closes_6h, ref_price = await self._fetch_inputs(symbol)
        reading = await self._record_reference(ref_price)

        now_ms = self._clock()
        snap = self._build_snapshot(symbol, closes_4h, closes_15m, closes_1m, closes_6h, now_ms)
        if snap is None:
            return []

        log.info(
            "indicators symbol=%s macd6h_cross=%s macd4h=%.6g rsi4h=%.2f rsi15m=%.2f rsi1m=%.2f price=%s btc=%s btc_chg=%s btc_30m=%s",
            symbol,
            snap.macd_crossover_long,
            snap.macd_long,
            snap.rsi_long,
            snap.rsi_mid,
            snap.rsi_short,
            snap.current_price,
            reading.price,
            reading.change,
            reading.change_30m,
        )
        self.journal.log_snapshot(snap)

        await self._resend_missing_open(symbol)

        events = self.engine.evaluate(
            snap,
            now_ms=now_ms,
            in_window=self.windows.within(now_ms),
            reference_price=reading.price,
            reference_change_30m=reading.change_30m,
        )
        for evt in events:
            await self._dispatch(evt)
        return events

    async def evaluate_all(self) -> List[SignalEvent]:
        sem = asyncio.Semaphore(max(1, int(self.cfg.provider.fetch_concurrency)))

        async def _one(sym: str) -> List[SignalEvent]:
            async with sem:
                return await self.evaluate_symbol(sym)

        results = await asyncio.gather(*[_one(sym) for sym in self.symbols])
        return [evt for evts in results for evt in evts]

    async def check_target(self, symbol: str) -> List[SignalEvent]:
        async with self.store.lock(symbol):
            if self.store.get(symbol) is None:
                return []
            try:
                closes_1m, ref_price = await asyncio.wait_for(
                    asyncio.gather(
                        self.provider.fetch_close_series(symbol, "1m", int(self.cfg.strategy.rsi_period) + 1),
                        self.provider.fetch_price(self.cfg.reference.symbol),
                    ),
                    timeout=self.cfg.provider.cycle_timeout_s,
                )
                if not closes_1m:
                    log.info("skip_target_check symbol=%s reason=data_unavailable", symbol)
                    return []
                reading = await self._record_reference(ref_price)
                events = self.engine.observe_price(
                    symbol,
                    closes_1m[-1],
                    now_ms=self._clock(),
                    reference_price=reading.price,
                    reference_change_30m=reading.change_30m,
                )
                for evt in events:
                    await self._dispatch(evt)
                return events
            except asyncio.TimeoutError:
                log.warning("skip_target_check symbol=%s reason=timeout", symbol)
            except Exception as e:
                log.exception("target_check_failed symbol=%s err=%s", symbol, e)
            return []

    async def check_targets(self) -> List[SignalEvent]:
        await self._retry_pending_closes()
        results = await asyncio.gather(*[self.check_target(sym) for sym in self.store.open_symbols()])
        return [evt for evts in results for evt in evts]

    # ---- delivery --------------------------------------------------------

    async def _dispatch(self, evt: SignalEvent) -> None:
        try:
            if evt.kind == CLOSE and evt.summary is not None:
                self.journal.log_trade(evt.summary)
            if not self.notifier.enabled():
                return
            text = format_event(evt, self.cfg.alerts)
            if evt.kind == OPEN:
                await self._deliver_open(evt.symbol, text)
            elif evt.kind == LADDER:
                if not evt.signal.handles:
                    return  # open notice still pending; resent with current rungs next cycle
                failed = await self.notifier.update_message(evt.signal.handles, text)
                if failed:
                    log.warning("ladder_notify_failed symbol=%s chats=%s (not retried)", evt.symbol, ",".join(sorted(failed)))
            elif evt.kind == CLOSE:
                await self._deliver_close(evt.symbol, dict(evt.signal.handles), text)
        except Exception as e:
            log.exception("dispatch_failed kind=%s symbol=%s err=%s", evt.kind, evt.symbol, e)

    async def _send_to_chats(self, handles: Dict[str, int], text: str, chats: List[str]) -> List[str]:
        """Edit where a handle exists, send a new message elsewhere. Returns the chats that failed."""
        edits = {c: handles[c] for c in chats if c in handles}
        fresh = [c for c in chats if c not in handles]
        failed = set()
        if edits:
            failed.update(await self.notifier.update_message(edits, text))
        if fresh:
            created = await self.notifier.create_message(text, chat_ids=fresh)
            failed.update(c for c in fresh if c not in created)
        return [c for c in chats if c in failed]

    async def _deliver_open(self, symbol: str, text: str, chat_ids: Optional[List[str]] = None) -> None:
        targets = list(self.notifier.chat_ids) if chat_ids is None else list(chat_ids)
        handles = await self.notifier.create_message(text, chat_ids=targets)
        if handles:
            self.store.attach_handles(symbol, handles)
            log.info("open_notified symbol=%s chats=%d", symbol, len(handles))
        missed = [c for c in targets if c not in handles]
        if missed:
            log.warning("open_notify_failed symbol=%s chats=%s retry=next_cycle", symbol, ",".join(missed))

    async def _deliver_close(
        self,
        symbol: str,
        handles: Dict[str, int],
        text: str,
        chats: Optional[List[str]] = None,
        attempt: int = 0,
    ) -> bool:
        chats = list(self.notifier.chat_ids) if chats is None else chats
        failed = await self._send_to_chats(handles, text, chats)
        if not failed:
            return True
        limit = max(0, int(self.cfg.alerts.close_retry_limit))
        if attempt >= limit:
            log.error("close_notify_dropped symbol=%s chats=%s attempts=%d", symbol, ",".join(failed), attempt + 1)
        else:
            log.warning("close_notify_failed symbol=%s chats=%s retry=next_target_check", symbol, ",".join(failed))
            self._pending_close.append((symbol, handles, text, failed, attempt + 1))
        return False

    async def _resend_missing_open(self, symbol: str) -> None:
        sig = self.store.get(symbol)
        if sig is None or not self.notifier.enabled():
            return
        missing = [c for c in self.notifier.chat_ids if c not in sig.handles]
        if not missing:
            return
        kind = LADDER if len(sig.entry_prices) > 1 else OPEN
        evt = SignalEvent(kind=kind, symbol=symbol, signal=sig, price=sig.latest_entry, ts_ms=self._clock())
        await self._deliver_open(symbol, format_event(evt, self.cfg.alerts), chat_ids=missing)

    async def _retry_pending_closes(self) -> None:
        if not self._pending_close or not self.notifier.enabled():
            return
        pending, self._pending_close = self._pending_close, []
        for symbol, handles, text, chats, attempt in pending:
            if await self._deliver_close(symbol, handles, text, chats, attempt):
                log.info("close_notify_retried symbol=%s chats=%s", symbol, ",".join(chats))

    # ---- scheduling ------------------------------------------------------

    async def _periodic(self, name: str, interval_s: float, fn: Callable[[], Awaitable]) -> None:
        loop = asyncio.get_running_loop()
        while True:
            started = loop.time()
            try:
                await fn()
            except Exception as e:
                log.exception("tick_failed task=%s err=%s", name, e)
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, float(interval_s) - elapsed))

    async def run_once(self) -> List[SignalEvent]:
        events = await self.evaluate_all()
        events.extend(await self.check_targets())
        return events

    async def run_forever(self) -> None:
        if not self.symbols:
            raise ValueError("No symbols configured.")

        s = self.cfg.strategy
        log.info("strategy variant=%s signature=%s", s.variant, s.signature())
        log.info("start symbols=%d reference=%s windows=%s", len(self.symbols), self.cfg.reference.symbol, self.windows.windows)
        if self.notifier.enabled():
            await self.notifier.create_message(
                f"✅ {self.cfg.app.name}: monitoring {len(self.symbols)} symbols (variant={s.variant})."
            )

        sched = self.cfg.scheduler
        await asyncio.gather(
            self._periodic("evaluate", sched.evaluate_interval_s, self.evaluate_all),
            self._periodic("target_check", sched.target_check_interval_s, self.check_targets),
        )
