"""
Print the durable summary of one month and how its requests break down.

Usage:
  python -m molexa.scripts.inspect_analytics [YYYY-MM]
"""
import argparse
import asyncio
import json
import logging
import sys
from typing import Dict

from molexa.core.config import settings
from molexa.core.database import Database
from molexa.services.aggregator import ConnectedAggregator
from molexa.services.events import PeriodSummary, period_key

# Dashboard buckets built from raw categories
BUCKETS = {
    "educational": ("Educational Overview", "Educational Annotations"),
    "safety": ("Safety Data",),
    "search": ("Autocomplete", "Name Search", "CID Lookup", "Formula Search", "SMILES Search"),
    "properties": ("Properties",),
    "pharmacology": ("Pharmacology",),
    "structures": ("Structure Image", "Structure File"),
}


def bucket_counts(summary: PeriodSummary) -> Dict[str, int]:
    counts = summary.counts_by_category
    return {name: sum(counts.get(c, 0) for c in cats) for name, cats in BUCKETS.items()}


async def load(period: str, database_url: str):
    aggregator = ConnectedAggregator(Database(database_url))
    try:
        return await aggregator.metrics_for_period(period)
    finally:
        await aggregator.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Inspect moleXa analytics for a month")
    parser.add_argument("period", nargs="?", default=period_key())
    parser.add_argument("--database-url", default=settings.database_url)
    args = parser.parse_args(argv)

    if not args.database_url:
        print("No database configured. Set DATABASE_URL or pass --database-url.")
        return 1

    print(f"Checking summary for: {args.period}")
    try:
        summary = asyncio.run(load(args.period, args.database_url))
    except Exception as e:
        print(f"Error fetching summary: {e}")
        return 1

    if summary is None:
        print("No summary found for this month.")
        return 1

    print(f"\nTotal Requests: {summary.total_count}")
    print(f"Average Response Time: {summary.average_duration_ms}ms")
    print(f"Archived At: {summary.archived_at.isoformat() if summary.archived_at else '-'}")
    print("\nRequests by Type:")
    print(json.dumps(summary.counts_by_category, indent=2))

    buckets = bucket_counts(summary)
    print("\nDashboard Buckets:")
    print(json.dumps(buckets, indent=2))

    unaccounted = summary.total_count - sum(buckets.values())
    print(f"\nUnaccounted Requests: {unaccounted}")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)
    sys.exit(main())
