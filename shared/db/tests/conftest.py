"""Test fixtures for database tests."""

from decimal import Decimal

import pytest

from swap_db.database import DatabaseFactory
from swap_db.settings import DatabaseSettings
from swap_db.models import SwapEventRecord


@pytest.fixture
def db_settings():
    """In-memory SQLite settings for testing."""
    return DatabaseSettings(database_url="sqlite:///:memory:")


@pytest.fixture
def db(db_settings):
    """Create fresh database for each test."""
    database = DatabaseFactory(db_settings)
    database.create_tables()
    yield database
    database.drop_tables()


@pytest.fixture
def session(db):
    """Provide a session for each test.

    Note: Uses manual session management to handle tests that expect errors.
    Tests that raise IntegrityError should call session.rollback() after.
    """
    session = db.session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def make_record():
    """Factory for SwapEventRecord instances."""
    def _make(signature="sig-1", instruction_index=0, timestamp=1_700_000_000, **overrides):
        fields = dict(
            signature=signature,
            instruction_index=instruction_index,
            timestamp=timestamp,
            slot=100,
            source_mint="MintA",
            dest_mint="MintB",
            amount_in=Decimal("1"),
            amount_out=Decimal("2"),
            price=Decimal("2"),
            pool_price=Decimal("1.96"),
        )
        fields.update(overrides)
        return SwapEventRecord(**fields)

    return _make
