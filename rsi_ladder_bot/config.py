from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, List, Optional, Tuple
import os
import yaml


DEFAULT_SYMBOLS: List[str] = [
    "BTCUSDT", "ETHUSDT", "XRPUSDT", "SOLUSDT", "ADAUSDT",
    "DOTUSDT", "LTCUSDT", "LINKUSDT", "AVAXUSDT", "ATOMUSDT",
    "POLUSDT", "ARBUSDT", "NEARUSDT", "OPUSDT", "INJUSDT",
    "APTUSDT", "AAVEUSDT", "ETCUSDT", "FILUSDT", "HBARUSDT",
    "EGLDUSDT", "STXUSDT", "XLMUSDT", "TONUSDT", "ALGOUSDT",
    "RUNEUSDT", "SUIUSDT", "DYDXUSDT",
]

# plain: RSI/MACD gating only. strict: also requires the 6h MACD crossover.
VARIANT_PRESETS: Dict[str, Dict[str, object]] = {
    "plain": {"require_long_crossover": False, "target_premium": 0.012},
    "strict": {"require_long_crossover": True, "target_premium": 0.023},
}


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


def _split_ids(raw: str) -> List[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]


@dataclass
class StrategyConfig:
    variant: str = "strict"  # plain | strict
    require_long_crossover: bool = True
    target_premium: float = 0.023

    rsi_period: int = 14
    rsi_long_min: float = 55.0  # 4h RSI must be above
    rsi_mid_max: float = 45.0  # 15m RSI must be below
    rsi_short_max: float = 30.0  # 1m RSI must be below
    macd_long_min: float = 0.0  # 4h MACD must be above
    macd_candles: int = 50

    crossover_lookback: int = 5
    crossover_strength: float = 1.05

    cooldown_min: int = 30
    ladder_step: float = 0.99  # new rung at or below this fraction of the latest entry
    max_ladder_depth: int = 10  # 0 = unbounded

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "StrategyConfig":
        raw = dict(raw or {})
        variant = str(raw.get("variant", cls.variant)).lower()
        if variant not in VARIANT_PRESETS:
            raise ValueError(f"Unknown strategy variant: {variant} (use {', '.join(VARIANT_PRESETS)})")
        merged: Dict[str, Any] = dict(VARIANT_PRESETS[variant])
        merged.update(raw)
        merged["variant"] = variant
        return cls(**merged)

    def validate(self) -> None:
        errs = []
        if self.target_premium <= 0:
            errs.append("target_premium must be > 0")
        if not (0 < self.ladder_step < 1):
            errs.append("ladder_step must be in (0, 1)")
        if self.rsi_period <= 0:
            errs.append("rsi_period must be > 0")
        if self.macd_candles < 35:
            errs.append("macd_candles must be >= 35")
        if self.max_ladder_depth < 0:
            errs.append("max_ladder_depth must be >= 0")
        if errs:
            raise ValueError("Strategy config violation: " + "; ".join(errs))

    def signature(self) -> Dict[str, object]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class ProviderConfig:
    type: str = "binance"
    market: str = "spot"  # futures|spot
    symbols: List[str] = None
    rest_timeout_s: int = 20
    rest_max_retries: int = 2
    cycle_timeout_s: float = 45.0
    fetch_concurrency: int = 5


@dataclass
class SignalWindowsConfig:
    enabled: bool = True
    windows: Optional[List[Tuple[int, int]]] = None  # [start_min, end_min) UTC


@dataclass
class ReferenceConfig:
    symbol: str = "BTCUSDT"
    retention_min: int = 31
    window_min: int = 30


@dataclass
class TelegramConfig:
    enabled: bool = True
    token: str = ""
    chat_ids: List[str] = None
    disable_web_page_preview: bool = True
    timeout_s: int = 15


@dataclass
class AlertsConfig:
    parse_mode: str = "HTML"  # HTML | MarkdownV2
    trade_url: str = "https://www.binance.com/en/trade/{symbol}"
    footer: str = ""
    close_retry_limit: int = 3  # target checks a failed close notice is retried before giving up


@dataclass
class JournalConfig:
    enabled: bool = True
    snapshot_path: str = "./rsi_data.csv"
    trade_path: str = "./buy_signals.csv"


@dataclass
class SchedulerConfig:
    evaluate_interval_s: float = 60.0
    target_check_interval_s: float = 30.0


@dataclass
class AppConfig:
    name: str = "RSI Ladder Bot"
    log_level: str = "INFO"


@dataclass
class Config:
    app: AppConfig
    provider: ProviderConfig
    strategy: StrategyConfig
    signal_windows: SignalWindowsConfig
    reference: ReferenceConfig
    telegram: TelegramConfig
    alerts: AlertsConfig
    journal: JournalConfig
    scheduler: SchedulerConfig

    def as_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        if d["telegram"].get("token"):
            d["telegram"]["token"] = "***"
        return d


def build_config(raw: Optional[Dict[str, Any]] = None) -> Config:
    raw = raw or {}
    cfg = Config(
        app=AppConfig(**raw.get("app", {})),
        provider=ProviderConfig(**raw.get("provider", {})),
        strategy=StrategyConfig.from_dict(raw.get("strategy", {})),
        signal_windows=SignalWindowsConfig(**raw.get("signal_windows", {})),
        reference=ReferenceConfig(**raw.get("reference", {})),
        telegram=TelegramConfig(**raw.get("telegram", {})),
        alerts=AlertsConfig(**raw.get("alerts", {})),
        journal=JournalConfig(**raw.get("journal", {})),
        scheduler=SchedulerConfig(**raw.get("scheduler", {})),
    )
    cfg.strategy.validate()

    if not cfg.provider.symbols:
        cfg.provider.symbols = list(DEFAULT_SYMBOLS)
    cfg.provider.symbols = [s.strip().upper() for s in cfg.provider.symbols if s.strip()]
    cfg.provider.market = _env_override(cfg.provider.market, "BINANCE_MARKET")
    cfg.reference.symbol = cfg.reference.symbol.upper()

    # env overrides (useful on servers)
    cfg.telegram.token = _env_override(cfg.telegram.token, "TELEGRAM_TOKEN")
    if cfg.telegram.chat_ids is None:
        cfg.telegram.chat_ids = []
    cfg.telegram.chat_ids = [str(x).strip() for x in cfg.telegram.chat_ids if str(x).strip()]

    # Allow TELEGRAM_CHAT_IDS="id1,id2"
    chat_env = os.getenv("TELEGRAM_CHAT_IDS")
    if chat_env:
        cfg.telegram.chat_ids = _split_ids(chat_env)

    return cfg


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return build_config(raw)
