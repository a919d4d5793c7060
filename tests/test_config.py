import pytest

from rsi_ladder_bot.config import DEFAULT_SYMBOLS, StrategyConfig, build_config, load_config


def test_defaults():
    cfg = build_config({})
    assert cfg.strategy.variant == "strict"
    assert cfg.strategy.require_long_crossover is True
    assert cfg.strategy.target_premium == 0.023
    assert cfg.provider.symbols == DEFAULT_SYMBOLS
    assert cfg.reference.symbol == "BTCUSDT"
    assert cfg.telegram.chat_ids == []


def test_plain_preset_and_explicit_override():
    plain = StrategyConfig.from_dict({"variant": "plain"})
    assert plain.require_long_crossover is False
    assert plain.target_premium == 0.012

    custom = StrategyConfig.from_dict({"variant": "PLAIN", "target_premium": 0.03})
    assert custom.variant == "plain"
    assert custom.target_premium == 0.03


def test_unknown_variant_rejected():
    with pytest.raises(ValueError):
        StrategyConfig.from_dict({"variant": "yolo"})


def test_invalid_strategy_values_rejected():
    with pytest.raises(ValueError):
        build_config({"strategy": {"ladder_step": 1.5}})
    with pytest.raises(ValueError):
        build_config({"strategy": {"macd_candles": 20}})


def test_unknown_key_raises():
    with pytest.raises(TypeError):
        build_config({"provider": {"nope": 1}})


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("TELEGRAM_TOKEN", "abc")
    monkeypatch.setenv("TELEGRAM_CHAT_IDS", "1, 2,,3")
    monkeypatch.setenv("BINANCE_MARKET", "futures")
    cfg = build_config({"telegram": {"chat_ids": ["9"]}})
    assert cfg.telegram.token == "abc"
    assert cfg.telegram.chat_ids == ["1", "2", "3"]
    assert cfg.provider.market == "futures"
    assert cfg.as_dict()["telegram"]["token"] == "***"


def test_load_yaml(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text(
        "provider:\n"
        "  symbols: [ethusdt, ' solusdt ']\n"
        "strategy:\n"
        "  variant: plain\n"
        "  max_ladder_depth: 0\n"
        "signal_windows:\n"
        "  windows: [[0, 60]]\n",
        encoding="utf-8",
    )
    cfg = load_config(str(path))
    assert cfg.provider.symbols == ["ETHUSDT", "SOLUSDT"]
    assert cfg.strategy.max_ladder_depth == 0
    assert cfg.strategy.target_premium == 0.012
    assert cfg.signal_windows.windows == [[0, 60]]


def test_empty_yaml(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(str(path)).app.name == "RSI Ladder Bot"
