from __future__ import annotations

import argparse
import asyncio
import logging

from .config import load_config
from .runner import AlertRunner


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="RSI Ladder Bot - RSI/MACD buy signal alerts with entry laddering")
    p.add_argument("--config", required=True, help="Path to YAML config")
    p.add_argument("--once", action="store_true", help="Run one evaluation tick and one target check, then exit")
    args = p.parse_args(argv)

    try:
        cfg = load_config(args.config)
    except (OSError, TypeError, ValueError) as e:
        _setup_logging("INFO")
        logging.getLogger("main").error("config_error path=%s err=%s", args.config, e)
        return 1
    _setup_logging(cfg.app.log_level)

    async def _run() -> None:
        runner = AlertRunner(cfg)
        try:
            if args.once:
                await runner.run_once()
            else:
                await runner.run_forever()
        finally:
            # Close shared REST session cleanly.
            await runner.provider.close()

    try:
        asyncio.run(_run())
        return 0
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logging.getLogger("main").exception("fatal err=%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
