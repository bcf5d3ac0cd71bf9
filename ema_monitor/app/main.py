"""Entrypoint.

Usage:
  python -m ema_monitor.app.main run                  # history + streams + status API
  python -m ema_monitor.app.main run --config my.yaml
  python -m ema_monitor.app.main check-config         # validate config and exit
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from ema_monitor.app.engine import run_engine
from ema_monitor.infrastructure.logging.logging import configure_logging, get_logger
from ema_monitor.infrastructure.utils.config import ConfigError, load_config


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser("ema-monitor")
    parser.add_argument("command", choices=["run", "check-config"], help="What to run")
    parser.add_argument("--config", type=Path, default=None, help="YAML config path")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        configure_logging("ERROR")
        get_logger("main").error("config_invalid", error=str(e))
        return 1

    configure_logging(config.log_level, config.log_format)
    log = get_logger("main")

    if args.command == "check-config":
        log.info("config_ok", market=config.exchange.market, port=config.api.port)
        return 0

    try:
        asyncio.run(run_engine(config))
    except KeyboardInterrupt:
        log.info("shutdown_requested")
    return 0


if __name__ == "__main__":
    sys.exit(main())
