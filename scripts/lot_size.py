#!/usr/bin/env python3
"""
Lot size calculator.

Usage:
    # From a stop distance in pips
    python scripts/lot_size.py --balance 20000 --risk 1 --stop-pips 20 --symbol EURUSD

    # From entry and stop prices
    python scripts/lot_size.py --balance 50000 --risk 0.5 --symbol XAUUSD --entry 2350 --stop 2340

    # With a firm cap and JSON output
    python scripts/lot_size.py --balance 100000 --risk 2 --stop-pips 5 --firm The5ers --json
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from propguard.lib.config import load_config
from propguard.lib.logging_utils import setup_logging
from propguard.risk.position_sizing import PositionSizer, calculate_risk_reward
from propguard.risk.rule_catalog import RuleCatalog


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Compute a prop-firm-safe lot size",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("--balance", type=float, required=True, help="Account balance")
    parser.add_argument("--risk", type=float, required=True, help="Risk per trade in percent")
    parser.add_argument("--stop-pips", type=float, default=None, help="Stop distance in pips")
    parser.add_argument("--entry", type=float, default=None, help="Entry price")
    parser.add_argument("--stop", type=float, default=None, help="Stop loss price")
    parser.add_argument("--target", type=float, default=None, help="Take profit price (R:R)")
    parser.add_argument(
        "--direction",
        type=str,
        default="buy",
        choices=["buy", "sell"],
        help="Trade direction (R:R only)",
    )
    parser.add_argument("--symbol", type=str, default=None, help="Instrument symbol")
    parser.add_argument("--pip-value", type=float, default=None, help="USD per pip per standard lot")
    parser.add_argument("--firm", type=str, default=None, help="Prop firm whose cap applies")
    parser.add_argument("--config", type=str, default=None, help="Path to YAML configuration file")
    parser.add_argument("--json", action="store_true", help="Print the full result as JSON")

    return parser.parse_args()


def main():
    """Main entry point."""
    args = parse_args()
    config = load_config(args.config)
    setup_logging(level="WARNING")

    catalog = RuleCatalog.from_yaml(config.rule_catalog_path) if config.rule_catalog_path else RuleCatalog()
    sizer = PositionSizer(config.sizing, catalog)

    if args.stop_pips is not None:
        result = sizer.compute_lot_size(
            account_balance=args.balance,
            risk_percentage_pct=args.risk,
            stop_loss_distance_in_pips=args.stop_pips,
            instrument_pip_value_usd=args.pip_value,
            symbol=args.symbol,
            prop_firm=args.firm,
        )
    elif args.entry is not None and args.stop is not None and args.symbol:
        result = sizer.compute_signal_lot_size(
            symbol=args.symbol,
            entry_price=args.entry,
            stop_price=args.stop,
            account_balance=args.balance,
            risk_percentage_pct=args.risk,
            prop_firm=args.firm,
        )
    else:
        print("Either --stop-pips or --symbol with --entry and --stop is required", file=sys.stderr)
        sys.exit(2)

    output = result.to_dict()
    if args.entry is not None and args.stop is not None and args.target is not None:
        output["risk_reward"] = calculate_risk_reward(args.entry, args.stop, args.target, args.direction)

    if args.json:
        print(json.dumps(output, indent=2))
        return

    print("=" * 50)
    print(f"Lot size:     {result.lot_size:.2f}")
    print(f"Risk amount:  ${result.risk_amount:,.2f}")
    print(f"Stop:         {result.stop_loss_pips:g} pips")
    print(f"Pip value:    ${result.pip_value:g}/lot" + (" (default)" if result.pip_value_fallback else ""))
    if result.firm_max_lots is not None:
        print(f"Firm cap:     {result.firm_max_lots:.2f}" + (" (applied)" if result.capped else ""))
    if "risk_reward" in output:
        print(f"Risk/reward:  {output['risk_reward']['ratio']}")
    if result.degraded:
        print(f"WARNING: {result.reason}")
    print("=" * 50)


if __name__ == '__main__':
    main()
