"""Command line entry point.

    python -m collateral_engine.cli expire [--as-of 2024-06-01T00:00:00Z]
"""
import argparse
import asyncio
import json
import sys

from common.datetime import parse_iso8601
from common.logging import configure_logging

from .config import load_settings
from .errors import CollateralError
from .runtime import build_engine


async def _expire(as_of) -> dict:
    engine = build_engine(load_settings())
    try:
        report = await engine.ledger.expire_all(as_of)
    finally:
        await engine.aclose()
    return report.as_dict()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="collateral_engine")
    sub = parser.add_subparsers(dest="command", required=True)
    expire = sub.add_parser("expire", help="expire ACTIVE encumbrances past their expiry date")
    expire.add_argument("--as-of", help="ISO-8601 cut-off (default: now, UTC)")
    args = parser.parse_args(argv)

    # stdout carries the JSON report
    configure_logging(load_settings().log_format, service_name="collateral-cli", stream=sys.stderr)
    if args.command == "expire":
        try:
            as_of = parse_iso8601(args.as_of) if args.as_of else None
        except ValueError as exc:
            parser.error(str(exc))
        try:
            report = asyncio.run(_expire(as_of))
        except CollateralError as exc:
            print(f"expiry sweep failed: {exc}", file=sys.stderr)
            return 1
        print(json.dumps(report, indent=2))
        return 1 if report["failures"] else 0
    return 2


if __name__ == "__main__":
    sys.exit(main())
