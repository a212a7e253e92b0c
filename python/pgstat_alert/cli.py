"""
Command line entry point.

Usage:
    pgstat-alert config.yaml
    pgstat-alert config.yaml --check
"""

from __future__ import annotations

import argparse
import signal
import sys
from collections.abc import Sequence

import structlog

from pgstat_alert import __version__
from pgstat_alert.config import Config, set_config
from pgstat_alert.exceptions import PgStatAlertError
from pgstat_alert.logging import setup_logging
from pgstat_alert.monitor import MonitorRegistry

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pgstat-alert",
        description="Run SQL probes against PostgreSQL instances and send threshold alerts.",
    )
    parser.add_argument("config", help="Path to the YAML configuration file")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Override logging.level from the configuration",
    )
    parser.add_argument(
        "--log-format",
        choices=["json", "plain"],
        help="Override logging.format from the configuration",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Validate the configuration and exit without connecting",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def run(config: Config) -> None:
    """
    Connect to every database and monitor until SIGINT or SIGTERM.

    Raises:
        PgStatAlertError: If startup fails.
    """
    registry = MonitorRegistry.from_config(config)

    def signal_handler(signum: int, _frame: object) -> None:
        logger.info("shutdown_signal_received", signal=signal.Signals(signum).name)
        registry.request_stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        registry.start()
        registry.wait()
    finally:
        registry.close()
        logger.info("monitor_shutdown_complete", status=registry.get_status())


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the pgstat-alert command."""
    args = build_parser().parse_args(argv)

    try:
        config = Config.from_yaml(args.config)
        set_config(config)
        setup_logging(level=args.log_level, format=args.log_format)
        config.validate_runtime()

        if args.check:
            logger.info(
                "config_valid",
                databases=len(config.databases),
                queries=len(config.queries),
            )
            return 0

        logger.info("starting_monitor", config=args.config, version=__version__)
        run(config)
    except PgStatAlertError as e:
        logger.error("monitor_failed", error=str(e), error_code=e.error_code.value)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
