#!/usr/bin/env python3
"""
Run the scheduled circuit breaker sweep.

Loads accounts from a JSON state file, re-evaluates every account's daily
circuit breaker and persists any new locks back to the same file. Loss and
profit locks are sent through the alert channels enabled in the config and
the PROPGUARD_ALERT_* environment variables.

Usage:
    # Single tick (cron style)
    python scripts/run_breaker_sweep.py --state-file data/accounts.json --once

    # Continuous sweep every 3 minutes
    python scripts/run_breaker_sweep.py --config config/propguard.yaml

    # Start a new trading day first (UTC midnight job)
    python scripts/run_breaker_sweep.py --state-file data/accounts.json --reset-daily --once

CTRL+C stops the continuous sweep after the current tick.
"""

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from propguard.accounts.stores import InMemoryAccountStore, InMemoryTradeHistory
from propguard.engine.api import RiskEngine
from propguard.engine.scheduler import BreakerSweep
from propguard.lib.alerts import AlertManagerDispatcher, create_alert_manager_from_env
from propguard.lib.config import ConfigValidationError, load_config, validate_config
from propguard.lib.errors import DependencyUnavailableError
from propguard.lib.logging_utils import setup_logging

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Re-evaluate daily circuit breakers for all accounts",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--state-file",
        type=str,
        default=None,
        help="JSON account state file (overrides sweep.state_file)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single tick and exit",
    )
    parser.add_argument(
        "--ticks",
        type=int,
        default=None,
        help="Stop after this many ticks",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between ticks (overrides sweep.interval_seconds)",
    )
    parser.add_argument(
        "--reset-daily",
        action="store_true",
        help="Reset every account's start-of-day equity before sweeping",
    )
    parser.add_argument(
        "--no-alerts",
        action="store_true",
        help="Do not send loss/profit notifications",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (overrides output.log_level)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the tick summary as JSON (with --once)",
    )

    return parser.parse_args()


def main():
    """Main entry point."""
    args = parse_args()

    config = load_config(args.config)
    if args.state_file:
        config.sweep.state_file = args.state_file
    if args.interval is not None:
        config.sweep.interval_seconds = args.interval
    if args.log_level:
        config.output.log_level = args.log_level
    if args.no_alerts:
        config.breaker.alerts_enabled = False

    setup_logging(level=config.output.log_level, log_dir=config.output.logs_dir)

    try:
        for warning in validate_config(config):
            logger.warning(f"Config: {warning}")
    except ConfigValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    if not config.sweep.state_file:
        logger.error("No account state file given (--state-file or sweep.state_file)")
        sys.exit(2)

    try:
        store = InMemoryAccountStore(state_file=Path(config.sweep.state_file))
    except DependencyUnavailableError as e:
        logger.error(str(e))
        sys.exit(1)

    if args.reset_daily:
        for account_id in store.list_account_ids():
            store.reset_daily_equity(account_id)
        logger.info(f"Reset start-of-day equity for {len(store.list_account_ids())} accounts")

    dispatcher = None
    if config.breaker.alerts_enabled:
        dispatcher = AlertManagerDispatcher(create_alert_manager_from_env(config.alerts))

    engine = RiskEngine.from_config(config, store, InMemoryTradeHistory(), alerts=dispatcher)
    sweep = BreakerSweep(engine.breaker, store, config.sweep)

    try:
        if args.once:
            summary = sweep.run_once()
            if args.json:
                print(json.dumps(summary.to_dict(), indent=2))
        else:
            stop_event = threading.Event()
            signal.signal(signal.SIGINT, lambda *_: stop_event.set())
            signal.signal(signal.SIGTERM, lambda *_: stop_event.set())
            sweep.run_forever(stop_event, max_ticks=args.ticks)
    finally:
        if dispatcher is not None:
            dispatcher.flush(timeout=config.sweep.timeout_seconds)
            dispatcher.close()


if __name__ == '__main__':
    main()
