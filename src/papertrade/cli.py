"""Command-line interface for the papertrade runtime."""

from __future__ import annotations

import argparse
import sys

from papertrade.config import Settings, parse_symbols
from papertrade.runtime import run, show_portfolio


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""
    parser = argparse.ArgumentParser(
        description="Virtual trading ledger with abnormal-volume detection"
    )
    parser.add_argument(
        "--mode",
        choices=["virtual", "paper", "live"],
        help="Where auto-trades go: the in-memory ledger or the Alpaca account",
    )
    parser.add_argument("--symbols", type=str, help="Comma-separated watchlist")
    parser.add_argument("--user-id", type=str, help="Ledger user the detector trades for")
    parser.add_argument("--max-passes", type=int, help="Stop after a fixed number of status passes")
    parser.add_argument("--interval-seconds", type=int, help="Seconds between status passes")
    parser.add_argument(
        "--order-check-seconds", type=int, help="Seconds between pending limit-order sweeps"
    )
    parser.add_argument("--events-dir", type=str, help="Run outputs directory")
    parser.add_argument("--volume-threshold", type=float, help="Absolute z-score alert threshold")
    parser.add_argument("--min-volume", type=float, help="Minimum bar volume for an alert")
    parser.add_argument(
        "--portfolio",
        action="store_true",
        help="List current live account balances and positions, then exit",
    )
    return parser


def apply_cli_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Apply CLI values onto environment-derived settings."""
    overrides: dict[str, object] = {}
    if args.mode:
        overrides["mode"] = args.mode
    if args.symbols:
        overrides["symbols"] = parse_symbols(args.symbols, settings.symbols)
    if args.user_id:
        overrides["user_id"] = args.user_id.strip()
    if args.max_passes is not None:
        overrides["max_passes"] = args.max_passes
    if args.interval_seconds is not None:
        overrides["interval_seconds"] = args.interval_seconds
    if args.order_check_seconds is not None:
        overrides["order_check_interval_seconds"] = args.order_check_seconds
    if args.events_dir:
        overrides["events_dir"] = args.events_dir
    if args.volume_threshold is not None:
        overrides["volume_threshold"] = args.volume_threshold
    if args.min_volume is not None:
        overrides["min_volume"] = args.min_volume

    merged = settings.with_overrides(**overrides)
    if args.portfolio and merged.mode != "live":
        raise ValueError("--portfolio requires --mode live")
    return merged


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = apply_cli_overrides(Settings.from_env(), args)
        if args.portfolio:
            return show_portfolio(settings)
        return run(settings)
    except ValueError as exc:
        print(f"Configuration error: {exc}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
