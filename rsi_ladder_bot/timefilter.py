from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple


# 60-minute windows around each 4h candle boundary, offset by 30 minutes (UTC).
DEFAULT_WINDOWS: Tuple[Tuple[int, int], ...] = (
    (30, 90),  # 00:30-01:30
    (270, 330),  # 04:30-05:30
    (510, 570),  # 08:30-09:30
    (750, 810),  # 12:30-13:30
    (990, 1050),  # 16:30-17:30
    (1230, 1290),  # 20:30-21:30
)


def minute_of_day(ts_ms: int) -> int:
    dt = datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc)
    return dt.hour * 60 + dt.minute


def in_signal_window(minute: int, windows: Sequence[Tuple[int, int]] = DEFAULT_WINDOWS) -> bool:
    return any(start <= minute < end for start, end in windows)


@dataclass
class SignalWindows:
    enabled: bool = True
    windows: Optional[List[Tuple[int, int]]] = None

    def __post_init__(self) -> None:
        if self.windows is None:
            self.windows = [tuple(w) for w in DEFAULT_WINDOWS]
        else:
            self.windows = [(int(s), int(e)) for s, e in self.windows]
        for s, e in self.windows:
            if not (0 <= s < e <= 1440):
                raise ValueError(f"Invalid signal window [{s}, {e}) (minutes of day, start < end)")

    def within(self, ts_ms: int) -> bool:
        if not self.enabled:
            return True
        return in_signal_window(minute_of_day(ts_ms), self.windows)
