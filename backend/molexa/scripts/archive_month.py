"""
Manual archival of one month.

Usage:
  python -m molexa.scripts.archive_month 2025-01 [--prune] [--archive-dir archives]
"""
import argparse
import asyncio
import logging
import sys

from molexa.core.config import settings
from molexa.core.database import Database
from molexa.services.aggregator import ConnectedAggregator
from molexa.services.archiver import Archiver
from molexa.services.errors import InvalidPeriod
from molexa.services.events import validate_period_key

log = logging.getLogger("molexa.scripts.archive")


async def run(period: str, database_url: str, archive_dir: str, prune: bool):
    aggregator = ConnectedAggregator(Database(database_url))
    try:
        archiver = Archiver(aggregator, archive_dir, prune_after_archive=prune)
        return await archiver.archive(period)
    finally:
        await aggregator.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Archive one month of moleXa analytics")
    parser.add_argument("period", help="Month to archive, YYYY-MM (e.g. 2025-01)")
    parser.add_argument("--database-url", default=settings.database_url)
    parser.add_argument("--archive-dir", default=settings.archive_dir)
    parser.add_argument("--prune", action="store_true", default=settings.prune_after_archive,
                        help="Delete the month's raw events after archiving")
    args = parser.parse_args(argv)

    try:
        validate_period_key(args.period)
    except InvalidPeriod:
        print("Invalid format. Use YYYY-MM format (e.g., 2025-01)")
        return 1

    if not args.database_url:
        print("No database configured. Set DATABASE_URL or pass --database-url.")
        return 1

    log.info("Archiving data for %s…", args.period)
    try:
        result = asyncio.run(run(args.period, args.database_url, args.archive_dir, args.prune))
    except Exception as e:
        print(f"Archive failed: {e}")
        return 1

    print(f"Archived {result.total_requests} requests to: {result.location}")
    if result.pruned:
        print(f"Pruned {result.pruned} raw events for {args.period}")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    sys.exit(main())
