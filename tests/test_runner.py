import asyncio
from datetime import datetime, timezone

from rsi_ladder_bot.config import build_config
from rsi_ladder_bot.models import CLOSE, LADDER, OPEN
from rsi_ladder_bot.runner import AlertRunner

IN_WINDOW_MS = int(datetime(2024, 3, 5, 0, 45, tzinfo=timezone.utc).timestamp() * 1000)
OUT_OF_WINDOW_MS = int(datetime(2024, 3, 5, 2, 0, tzinfo=timezone.utc).timestamp() * 1000)


def _falling_to(price: float, n: int = 15):
    return [price + (n - 1 - i) for i in range(n)]


def _series(last_1m: float = 100.0):
    return {
        "4h": [100.0 + i for i in range(50)],  # RSI 100, MACD > 0
        "15m": [200.0 - i for i in range(15)],  # RSI 0
        "1m": _falling_to(last_1m),  # RSI 0
        "6h": [0.0] * 50,
    }


class FakeProvider:
    def __init__(self, series, price=20000.0, fail_symbols=(), delay_s=0.0):
        self.series = series
        self.price = price
        self.fail_symbols = set(fail_symbols)
        self.delay_s = delay_s
        self.calls = []

    async def fetch_close_series(self, symbol, interval, limit):
        self.calls.append((symbol, interval, limit))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if symbol in self.fail_symbols:
            raise RuntimeError("boom")
        s = self.series.get(interval)
        return None if s is None else list(s)[-limit:]

    async def fetch_price(self, symbol):
        return self.price

    async def close(self):
        pass


class FakeNotifier:
    MESSAGE_IDS = {"chat-a": 11, "chat-b": 22}

    def __init__(self, fail_create=False, fail_update=False, fail_chats=()):
        self.chat_ids = ["chat-a", "chat-b"]
        self.fail_create = fail_create
        self.fail_update = fail_update
        self.fail_chats = set(fail_chats)  # rejects both sends and edits
        self.created = []
        self.updated = []

    def enabled(self):
        return True

    async def create_message(self, text, chat_ids=None):
        targets = list(self.chat_ids if chat_ids is None else chat_ids)
        self.created.append((targets, text))
        if self.fail_create:
            return {}
        return {c: self.MESSAGE_IDS[c] for c in targets if c not in self.fail_chats}

    async def update_message(self, handles, text):
        self.updated.append((dict(handles), text))
        if self.fail_update:
            return set(handles)
        return {c for c in handles if c in self.fail_chats}


class FakeJournal:
    def __init__(self):
        self.snapshots = []
        self.trades = []

    def log_snapshot(self, snap):
        self.snapshots.append(snap)

    def log_trade(self, summary):
        self.trades.append(summary)


def _runner(provider, notifier=None, *, variant="plain", clock_ms=IN_WINDOW_MS, symbols=("ETHUSDT",), **provider_cfg):
    cfg = build_config(
        {
            "provider": {"symbols": list(symbols), **provider_cfg},
            "strategy": {"variant": variant},
            "journal": {"enabled": False},
        }
    )
    journal = FakeJournal()
    runner = AlertRunner(
        cfg,
        provider=provider,
        notifier=notifier or FakeNotifier(),
        journal=journal,
        clock=lambda: clock_ms,
    )
    return runner, journal


def test_open_stores_one_handle_per_chat():
    async def _run():
        notifier = FakeNotifier()
        runner, journal = _runner(FakeProvider(_series()), notifier)
        events = await runner.evaluate_symbol("ETHUSDT")

        assert [e.kind for e in events] == [OPEN]
        assert len(notifier.created) == 1
        assert "ETHUSDT" in notifier.created[0][1]
        sig = runner.store.get("ETHUSDT")
        assert sig.handles == {"chat-a": 11, "chat-b": 22}
        assert sig.reference_price_at_open == 20000.0
        assert len(journal.snapshots) == 1
        assert journal.snapshots[0].current_price == 100.0

    asyncio.run(_run())


def test_fetches_all_inputs_for_a_symbol():
    async def _run():
        provider = FakeProvider(_series())
        runner, _ = _runner(provider)
        await runner.evaluate_symbol("ETHUSDT")
        intervals = sorted(iv for _, iv, _ in provider.calls)
        assert intervals == ["15m", "1m", "4h", "6h"]

    asyncio.run(_run())


def test_second_tick_does_not_reopen():
    async def _run():
        notifier = FakeNotifier()
        runner, _ = _runner(FakeProvider(_series()), notifier)
        await runner.evaluate_all()
        events = await runner.evaluate_all()

        assert events == []
        assert len(notifier.created) == 1
        assert runner.store.get("ETHUSDT").entry_prices == [100.0]

    asyncio.run(_run())


def test_ladder_update_reuses_handles():
    async def _run():
        provider = FakeProvider(_series())
        notifier = FakeNotifier()
        runner, _ = _runner(provider, notifier)
        await runner.evaluate_symbol("ETHUSDT")

        provider.series = _series(last_1m=98.0)
        events = await runner.evaluate_symbol("ETHUSDT")

        assert [e.kind for e in events] == [LADDER]
        handles, text = notifier.updated[-1]
        assert handles == {"chat-a": 11, "chat-b": 22}
        assert "98 - 100" in text

    asyncio.run(_run())


def test_target_check_closes_and_journals():
    async def _run():
        provider = FakeProvider(_series())
        notifier = FakeNotifier()
        runner, journal = _runner(provider, notifier)
        await runner.evaluate_symbol("ETHUSDT")

        provider.series = dict(_series(), **{"1m": [90.0 + i for i in range(15)]})
        events = await runner.check_targets()

        assert [e.kind for e in events] == [CLOSE]
        assert runner.store.open_symbols() == []
        assert len(journal.trades) == 1
        assert journal.trades[0].close_price == 104.0
        assert journal.trades[0].reference_change == 0.0
        assert "Target Achieved" in notifier.updated[-1][1]

        assert await runner.check_targets() == []

    asyncio.run(_run())


def test_missing_data_skips_symbol_without_state_change():
    async def _run():
        series = _series()
        series["15m"] = None
        runner, journal = _runner(FakeProvider(series))
        assert await runner.evaluate_symbol("ETHUSDT") == []
        assert runner.store.open_symbols() == []
        assert journal.snapshots == []

    asyncio.run(_run())


def test_insufficient_history_skips_symbol():
    async def _run():
        series = _series()
        series["4h"] = series["4h"][:20]
        runner, _ = _runner(FakeProvider(series))
        assert await runner.evaluate_symbol("ETHUSDT") == []
        assert runner.store.open_symbols() == []

    asyncio.run(_run())


def test_strict_variant_needs_6h_data():
    async def _run():
        series = _series()
        series["6h"] = None
        runner, journal = _runner(FakeProvider(series), variant="strict")
        assert await runner.evaluate_symbol("ETHUSDT") == []
        assert journal.snapshots == []

    asyncio.run(_run())


def test_outside_signal_window_does_not_open():
    async def _run():
        runner, journal = _runner(FakeProvider(_series()), clock_ms=OUT_OF_WINDOW_MS)
        assert await runner.evaluate_symbol("ETHUSDT") == []
        assert len(journal.snapshots) == 1

    asyncio.run(_run())


def test_failed_open_notice_is_resent_next_cycle():
    async def _run():
        notifier = FakeNotifier(fail_create=True)
        runner, _ = _runner(FakeProvider(_series()), notifier)
        await runner.evaluate_symbol("ETHUSDT")
        assert runner.store.get("ETHUSDT").handles == {}

        notifier.fail_create = False
        await runner.evaluate_symbol("ETHUSDT")
        assert len(notifier.created) == 2
        assert runner.store.get("ETHUSDT").handles == {"chat-a": 11, "chat-b": 22}

    asyncio.run(_run())


def test_failed_close_notice_is_retried():
    async def _run():
        provider = FakeProvider(_series())
        notifier = FakeNotifier()
        runner, _ = _runner(provider, notifier)
        await runner.evaluate_symbol("ETHUSDT")

        notifier.fail_update = True
        provider.series = dict(_series(), **{"1m": [90.0 + i for i in range(15)]})
        await runner.check_targets()
        assert len(runner._pending_close) == 1

        notifier.fail_update = False
        await runner.check_targets()
        assert runner._pending_close == []
        assert "Target Achieved" in notifier.updated[-1][1]

    asyncio.run(_run())


def test_one_failing_symbol_does_not_stop_the_tick():
    async def _run():
        provider = FakeProvider(_series(), fail_symbols={"BADUSDT"})
        runner, _ = _runner(provider, symbols=("BADUSDT", "ETHUSDT"))
        events = await runner.evaluate_all()
        assert [(e.kind, e.symbol) for e in events] == [(OPEN, "ETHUSDT")]

    asyncio.run(_run())


def test_slow_fetch_times_out():
    async def _run():
        provider = FakeProvider(_series(), delay_s=0.5)
        runner, journal = _runner(provider, cycle_timeout_s=0.05)
        assert await runner.evaluate_symbol("ETHUSDT") == []
        assert journal.snapshots == []

    asyncio.run(_run())


def test_run_once_evaluates_and_checks_targets():
    async def _run():
        runner, _ = _runner(FakeProvider(_series()))
        events = await runner.run_once()
        assert [e.kind for e in events] == [OPEN]

    asyncio.run(_run())


def _close_series():
    return dict(_series(), **{"1m": [90.0 + i for i in range(15)]})


def test_partial_close_failure_retries_only_the_failed_chat():
    async def _run():
        provider = FakeProvider(_series())
        notifier = FakeNotifier()
        runner, _ = _runner(provider, notifier)
        await runner.evaluate_symbol("ETHUSDT")

        notifier.fail_chats = {"chat-b"}
        provider.series = _close_series()
        await runner.check_targets()
        assert [entry[3] for entry in runner._pending_close] == [["chat-b"]]

        notifier.fail_chats = set()
        await runner.check_targets()
        assert runner._pending_close == []
        handles, text = notifier.updated[-1]
        assert handles == {"chat-b": 22}
        assert "Target Achieved" in text

    asyncio.run(_run())


def test_close_notice_is_dropped_after_retry_limit():
    async def _run():
        provider = FakeProvider(_series())
        notifier = FakeNotifier()
        runner, _ = _runner(provider, notifier)
        limit = runner.cfg.alerts.close_retry_limit
        await runner.evaluate_symbol("ETHUSDT")

        notifier.fail_update = True
        provider.series = _close_series()
        await runner.check_targets()
        for _ in range(limit):
            assert len(runner._pending_close) == 1
            await runner.check_targets()
        assert runner._pending_close == []

        await runner.check_targets()
        close_edits = [u for u in notifier.updated if "Target Achieved" in u[1]]
        assert len(close_edits) == limit + 1

    asyncio.run(_run())


def test_partial_open_failure_resends_to_missing_chat_only():
    async def _run():
        notifier = FakeNotifier(fail_chats={"chat-b"})
        runner, _ = _runner(FakeProvider(_series()), notifier)
        await runner.evaluate_symbol("ETHUSDT")
        assert runner.store.get("ETHUSDT").handles == {"chat-a": 11}

        notifier.fail_chats = set()
        await runner.evaluate_symbol("ETHUSDT")
        targets, text = notifier.created[-1]
        assert targets == ["chat-b"]
        assert "Buy Signal" in text
        assert runner.store.get("ETHUSDT").handles == {"chat-a": 11, "chat-b": 22}

        await runner.evaluate_symbol("ETHUSDT")
        assert len(notifier.created) == 2

    asyncio.run(_run())


def test_close_reaches_chat_that_never_got_the_open_notice():
    async def _run():
        provider = FakeProvider(_series())
        notifier = FakeNotifier(fail_chats={"chat-b"})
        runner, _ = _runner(provider, notifier)
        await runner.evaluate_symbol("ETHUSDT")

        notifier.fail_chats = set()
        provider.series = _close_series()
        await runner.check_targets()

        assert notifier.updated[-1][0] == {"chat-a": 11}
        targets, text = notifier.created[-1]
        assert targets == ["chat-b"]
        assert "Target Achieved" in text
        assert runner._pending_close == []

    asyncio.run(_run())
