"""
Analytics database initialisation.
Run this once to create the api_requests / monthly_summaries tables.
"""
import argparse
import logging
import sys

from molexa.core.config import settings
from molexa.core.database import Base, Database

logger = logging.getLogger("molexa.scripts.init_db")


def init_db(url: str) -> Database:
    """Create all analytics tables on the given database."""
    database = Database(url)
    database.ping()
    database.create_all()
    logger.info("All tables created successfully")
    return database


def drop_all(url: str) -> None:
    """Drop all analytics tables (use with caution)."""
    database = Database(url)
    from molexa.models import analytics  # noqa: F401

    Base.metadata.drop_all(bind=database.engine)
    logger.info("All tables dropped")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create the moleXa analytics tables")
    parser.add_argument("--database-url", default=settings.database_url,
                        help="SQLAlchemy URL (defaults to DATABASE_URL)")
    parser.add_argument("--drop", action="store_true", help="Drop the tables instead")
    args = parser.parse_args(argv)

    if not args.database_url:
        print("No database configured. Set DATABASE_URL or pass --database-url.")
        return 1

    if args.drop:
        drop_all(args.database_url)
        print("Analytics tables dropped.")
    else:
        init_db(args.database_url).dispose()
        print("Database initialized successfully!")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    sys.exit(main())
