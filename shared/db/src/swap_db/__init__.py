"""
Swap event store for the swap indexer.

Supports SQLite (development) and PostgreSQL (production).
"""

from swap_db.settings import DatabaseSettings, redact_db_url
from swap_db.database import DatabaseFactory
from swap_db.models import Base, CheckpointRecord, SwapEventRecord
from swap_db.repositories import BaseRepository, CheckpointRepository, SwapEventRepository

__all__ = [
    # Settings
    "DatabaseSettings",
    "redact_db_url",
    # Database
    "DatabaseFactory",
    # Models
    "Base",
    "SwapEventRecord",
    "CheckpointRecord",
    # Repositories
    "BaseRepository",
    "SwapEventRepository",
    "CheckpointRepository",
]
