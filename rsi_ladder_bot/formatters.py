from __future__ import annotations

import html
from datetime import datetime, timezone
from typing import Optional

from .models import CLOSE, LADDER, OPEN, SignalEvent


def _fmt_ms(ts_ms: int, tz=timezone.utc) -> str:
    dt = datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc).astimezone(tz)
    return dt.strftime("%Y-%m-%d %H:%M")


def _escape_markdown_v2(text: str) -> str:
    specials = r"\_*[]()~`>#+-=|{}.!"
    escaped = []
    for ch in str(text):
        if ch in specials:
            escaped.append("\\" + ch)
        else:
            escaped.append(ch)
    return "".join(escaped)


def _escape_text(text: str, parse_mode: str) -> str:
    if parse_mode == "MARKDOWNV2":
        return _escape_markdown_v2(text)
    return html.escape(str(text), quote=False)


def _bold(text: str, parse_mode: str) -> str:
    escaped = _escape_text(text, parse_mode)
    if parse_mode == "MARKDOWNV2":
        return f"*{escaped}*"
    return f"<b>{escaped}</b>"


def _link(label: str, url: str, parse_mode: str) -> str:
    if parse_mode == "MARKDOWNV2":
        # inside (...) only ")" and "\\" need escaping
        safe_url = url.replace("\\", "\\\\").replace(")", "\\)")
        return f"[{_escape_markdown_v2(label)}]({safe_url})"
    return f'<a href="{html.escape(url)}">{html.escape(label, quote=False)}</a>'


def fmt_price(val: Optional[float]) -> str:
    if val is None:
        return "-"
    s = f"{val:.8f}".rstrip("0").rstrip(".")
    return s or "0"


def fmt_pct(val: Optional[float]) -> str:
    return "n/a" if val is None else f"{val:+.2f}%"


def _trade_line(symbol: str, cfg, parse_mode: str) -> str:
    template = getattr(cfg, "trade_url", "") or ""
    if not template:
        return ""
    url = template.format(symbol=symbol)
    return f"{_escape_text('Trade on: ', parse_mode)}{_link('Binance', url, parse_mode)}"


def _format_open(event: SignalEvent, parse_mode: str, cfg) -> list:
    sig = event.signal
    return [
        _bold("Buy Signal", parse_mode),
        _escape_text(f"Token: #{sig.symbol}", parse_mode),
        _escape_text(f"Entry Price: {fmt_price(sig.latest_entry)}", parse_mode),
        _escape_text(f"Target Sell: {fmt_price(sig.target_price)}", parse_mode),
        _escape_text(f"Opened: {_fmt_ms(sig.opened_at_ms)} UTC", parse_mode),
    ]


def _format_ladder(event: SignalEvent, parse_mode: str, cfg) -> list:
    sig = event.signal
    entries = " - ".join(fmt_price(p) for p in sig.entry_prices)
    return [
        _bold("Buy Signal Update", parse_mode),
        _escape_text(f"Token: #{sig.symbol}", parse_mode),
        _escape_text(f"Entry Prices: {entries}", parse_mode),
        _escape_text(f"Target Sell: {fmt_price(sig.target_price)}", parse_mode),
        _escape_text(f"Updated: {_fmt_ms(event.ts_ms)} UTC", parse_mode),
    ]


def _format_close(event: SignalEvent, parse_mode: str, cfg) -> list:
    s = event.summary
    lines = [
        _bold("Target Achieved", parse_mode),
        _escape_text(f"Token: #{s.symbol}", parse_mode),
        _escape_text(f"Entry: {fmt_price(s.entry_price)}", parse_mode),
        _escape_text(f"Target: {fmt_price(s.target_price)}", parse_mode),
        _escape_text(f"Bottom: {fmt_price(s.bottom_price)} ({s.drawdown_pct:.2f}% drawdown)", parse_mode),
        _escape_text(f"Duration: {s.duration_text}", parse_mode),
    ]
    if len(s.entry_prices) > 1:
        entries = " - ".join(fmt_price(p) for p in s.entry_prices)
        lines.append(_escape_text(f"Entries: {entries}", parse_mode))
    if s.reference_change is not None:
        lines.append(_escape_text(f"BTC since open: {fmt_pct(s.reference_change)}", parse_mode))
    return lines


_FORMATTERS = {
    OPEN: _format_open,
    LADDER: _format_ladder,
    CLOSE: _format_close,
}


def format_event(event: SignalEvent, cfg) -> str:
    """Render a lifecycle event as Telegram text (HTML or MarkdownV2)."""
    parse_mode = (getattr(cfg, "parse_mode", "HTML") or "HTML").upper()
    try:
        builder = _FORMATTERS[event.kind]
    except KeyError:
        raise ValueError(f"Unknown event kind: {event.kind}")
    lines = builder(event, parse_mode, cfg)

    trade = _trade_line(event.symbol, cfg, parse_mode)
    if trade:
        lines.append(trade)

    footer = (getattr(cfg, "footer", "") or "").strip()
    if footer:
        lines.append("")
        lines.append(_escape_text(footer, parse_mode))

    return "\n".join(lines)
