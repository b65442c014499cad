#!/usr/bin/env python3
"""
Tag Shopify orders with their purchase sequence for a date window.

Usage:
    python scripts/tag_orders.py --from-date 2024-01-01 --to-date 2024-01-31 [--dry-run]
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import structlog

from order_tagger.config import get_settings
from order_tagger.exceptions import SyncRunError
from order_tagger.models import DateWindow
from order_tagger.observability import configure_logging
from order_tagger.services.order_tagging import run_tagging

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--from-date", required=True, help="First day of the window (YYYY-MM-DD)")
    parser.add_argument("--to-date", required=True, help="Last day of the window (YYYY-MM-DD)")
    parser.add_argument("--dry-run", action="store_true", help="Compute tags without writing them")
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    """Main tagging function."""
    args = parse_args(argv)
    settings = get_settings()
    configure_logging(settings)

    try:
        window = DateWindow.parse(args.from_date, args.to_date)
    except ValueError as e:
        logger.error("Invalid date window", error=str(e))
        return 2

    logger.info("Running tagger", **window.to_dict(), dry_run=args.dry_run)

    try:
        summary = await run_tagging(settings, window, dry_run=args.dry_run)
    except SyncRunError as e:
        logger.error("Tagging run failed", error=str(e))
        return 1

    logger.info("All done", **summary.counts())
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
