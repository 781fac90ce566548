"""Main entry point for the swap indexer.

Usage:
    python -m swap_indexer.main
    python -m swap_indexer.main --config path/to/swap_indexer.yaml
    python -m swap_indexer.main --debug
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from swap_db import DatabaseFactory, DatabaseSettings, redact_db_url

from swap_indexer.config import ConfigError, load_config, resolve_pool
from swap_indexer.indexer import SwapIndexer


logger = logging.getLogger(__name__)


def setup_logging(debug: bool = False) -> None:
    """Configure logging for the indexer.

    Args:
        debug: Enable DEBUG level logging.
    """
    level = logging.DEBUG if debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


async def main(config_path: Optional[str] = None) -> int:
    """Main async entry point.

    Args:
        config_path: Path to configuration file.

    Returns:
        Exit code (0 for success, 1 for configuration errors, 2 for store or
        runtime failures).
    """
    try:
        config = load_config(config_path)
        pool = resolve_pool(config)
        db_settings = DatabaseSettings(database_url=config.database_url)
    except (ConfigError, ValidationError) as e:
        logger.error(f"Configuration error: {e}")
        return 1

    logger.info("Swap indexer configuration:")
    logger.info(f"  RPC: {config.rpc_url}")
    logger.info(f"  Mode: {config.mode}")
    logger.info(f"  Pool: {pool.swap_account}")
    logger.info(f"  Vaults: {pool.vault_a}, {pool.vault_b}")
    logger.info(f"  Role strategy: {config.role_strategy}")
    logger.info(f"  Database: {redact_db_url(config.database_url)}")

    db = DatabaseFactory(db_settings)
    try:
        db.create_tables()
    except SQLAlchemyError as e:
        logger.error(f"Cannot open event store: {e}")
        return 2
    logger.info("Database tables initialized")

    indexer = SwapIndexer(config=config, db=db, pool=pool)

    try:
        await indexer.start()
        await indexer.run_until_shutdown()
    except Exception as e:
        logger.error(f"Indexer error: {e}")
        await indexer.stop()
        return 2
    finally:
        db.dispose()

    return 0


def cli() -> None:
    """Command-line interface entry point."""
    parser = argparse.ArgumentParser(
        description="Swap Indexer - records swaps of one SPL token-swap pool",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Path to configuration file (default: conf/swap_indexer.yaml, if present)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()
    setup_logging(debug=args.debug)

    try:
        exit_code = asyncio.run(main(args.config))
        sys.exit(exit_code)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(130)


if __name__ == "__main__":
    cli()
