"""Create the swap event table ahead of the first indexer run.

Usage:
    swap-db-init
    swap-db-init --database-url postgresql+psycopg2://indexer:***@db:5432/swaps
    python -m swap_db.init_db --database-url sqlite:////var/lib/swap-indexer/swap_events.db

Without --database-url the SWAPINDEXER_DATABASE_URL environment variable is
used, falling back to sqlite:///swap_events.db in the working directory.
"""

import argparse
import sys
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from swap_db.settings import DatabaseSettings
from swap_db.database import DatabaseFactory


def initialize_database(settings: Optional[DatabaseSettings] = None) -> DatabaseFactory:
    """Create all tables and return the factory bound to them."""
    db = DatabaseFactory(settings or DatabaseSettings())
    db.create_tables()
    return db


def main(argv=None) -> int:
    """CLI entry point for database initialization."""
    parser = argparse.ArgumentParser(description="Create the swap event store")
    parser.add_argument("--database-url", help="SQLAlchemy URL of the store")
    parser.add_argument("--echo-sql", action="store_true", help="Echo SQL statements")
    args = parser.parse_args(argv)

    overrides = {}
    if args.database_url:
        overrides["database_url"] = args.database_url
    if args.echo_sql:
        overrides["echo_sql"] = True

    try:
        settings = DatabaseSettings(**overrides)
    except ValidationError as e:
        print(f"Invalid database settings: {e.errors()[0]['msg']}", file=sys.stderr)
        return 1

    print(f"Initializing swap event store: {settings.safe_url}")
    try:
        db = initialize_database(settings)
        tables = inspect(db.engine).get_table_names()
        db.dispose()
    except SQLAlchemyError as e:
        print(f"Error initializing database: {e}", file=sys.stderr)
        return 1

    print(f"Store ready. Tables: {', '.join(tables)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
