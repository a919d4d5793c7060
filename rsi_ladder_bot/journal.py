from __future__ import annotations

import csv
import logging
import os
from datetime import datetime, timezone
from typing import List, Optional

from .models import IndicatorSnapshot, TradeSummary

log = logging.getLogger("journal")

SCHEMA_VERSION = 1

SNAPSHOT_COLUMNS: List[str] = [
    "schema",
    "timestamp",
    "symbol",
    "macd_6h_crossover",
    "macd_4h",
    "rsi_4h",
    "rsi_15m",
    "rsi_1m",
    "price",
]

TRADE_COLUMNS: List[str] = [
    "schema",
    "timestamp",
    "symbol",
    "opened_at",
    "macd_6h_crossover",
    "macd_4h",
    "rsi_4h",
    "rsi_15m",
    "rsi_1m",
    "buy_price",
    "entries",
    "sell_price",
    "close_price",
    "duration",
    "bottom_price",
    "drawdown_pct",
    "btc_change",
    "btc_change_30m",
]


def _fmt_ts(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _legacy_path(path: str) -> str:
    legacy = path + ".legacy"
    n = 1
    while os.path.exists(legacy):
        legacy = f"{path}.legacy.{n}"
        n += 1
    return legacy


def _cell(v) -> str:
    if v is None:
        return ""
    if isinstance(v, bool):
        return "true" if v else "false"
    return str(v)


def _indicator_cells(snap: Optional[IndicatorSnapshot]) -> List[str]:
    if snap is None:
        return ["", "", "", "", ""]
    return [
        _cell(snap.macd_crossover_long),
        _cell(snap.macd_long),
        _cell(snap.rsi_long),
        _cell(snap.rsi_mid),
        _cell(snap.rsi_short),
    ]


class CsvJournal:
    """Append-only CSV diagnostics: one row per evaluation, one per completed trade.

    Trade rows repeat the indicators captured when the signal opened.
    """

    def __init__(self, snapshot_path: str, trade_path: str, *, enabled: bool = True) -> None:
        self.snapshot_path = snapshot_path
        self.trade_path = trade_path
        self.enabled = enabled
        if enabled:
            self._ensure_header(self.snapshot_path, SNAPSHOT_COLUMNS)
            self._ensure_header(self.trade_path, TRADE_COLUMNS)

    def _ensure_header(self, path: str, columns: List[str]) -> None:
        try:
            if os.path.exists(path) and os.path.getsize(path) > 0:
                with open(path, "r", newline="", encoding="utf-8") as f:
                    header = next(csv.reader(f), [])
                if header == columns:
                    return
                legacy = _legacy_path(path)
                os.replace(path, legacy)
                log.warning("journal_schema_mismatch path=%s moved_to=%s schema=%d", path, legacy, SCHEMA_VERSION)
            parent = os.path.dirname(path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(path, "w", newline="", encoding="utf-8") as f:
                csv.writer(f).writerow(columns)
        except OSError as e:
            log.warning("journal_init_failed path=%s err=%s", path, e)

    def _append(self, path: str, row: List[str]) -> None:
        if not self.enabled:
            return
        try:
            with open(path, "a", newline="", encoding="utf-8") as f:
                csv.writer(f).writerow(row)
        except OSError as e:
            log.warning("journal_write_failed path=%s err=%s", path, e)

    def log_snapshot(self, snap: IndicatorSnapshot) -> None:
        row = [str(SCHEMA_VERSION), _fmt_ts(snap.ts_ms), snap.symbol]
        row += _indicator_cells(snap)
        row.append(_cell(snap.current_price))
        self._append(self.snapshot_path, row)

    def log_trade(self, s: TradeSummary) -> None:
        row = [str(SCHEMA_VERSION), _fmt_ts(s.closed_at_ms), s.symbol, _fmt_ts(s.opened_at_ms)]
        row += _indicator_cells(s.opened_snapshot)
        row += [
            _cell(s.entry_price),
            " ".join(_cell(p) for p in s.entry_prices),
            _cell(s.target_price),
            _cell(s.close_price),
            s.duration_text,
            _cell(s.bottom_price),
            f"{s.drawdown_pct:.2f}",
            _cell(s.reference_change),
            _cell(s.reference_change_30m),
        ]
        self._append(self.trade_path, row)
