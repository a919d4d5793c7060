from __future__ import annotations

import argparse
import pprint

from rsi_ladder_bot.config import VARIANT_PRESETS, load_config
from rsi_ladder_bot.timefilter import SignalWindows


def main():
    p = argparse.ArgumentParser(description="Print the resolved strategy parameters for a config")
    p.add_argument("--config", required=True, help="Path to YAML config")
    args = p.parse_args()

    cfg = load_config(args.config)
    windows = SignalWindows(enabled=cfg.signal_windows.enabled, windows=cfg.signal_windows.windows)

    print("STRATEGY:")
    pprint.pprint(cfg.strategy.signature())
    print("\nVARIANT PRESETS:")
    pprint.pprint(VARIANT_PRESETS)
    print("\nSIGNAL WINDOWS (UTC minutes, enabled=%s):" % windows.enabled)
    pprint.pprint(windows.windows)
    print("\nSYMBOLS (%d):" % len(cfg.provider.symbols))
    print(", ".join(cfg.provider.symbols))


if __name__ == "__main__":
    main()
