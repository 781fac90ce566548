"""Engine and session management for the event store."""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from swap_db.settings import DatabaseSettings
from swap_db.models import Base


logger = logging.getLogger(__name__)


class DatabaseFactory:
    """Owns the engine for one event store.

    Sessions are opened from worker threads (the sink writes via
    asyncio.to_thread while the API reads the in-memory view), so SQLite
    connections are not pinned to the creating thread.

    Usage:
        db = DatabaseFactory(DatabaseSettings(database_url="sqlite:///swap_events.db"))
        db.create_tables()

        with db.get_session() as session:
            SwapEventRepository(session).bulk_insert(records)
            # Commits automatically on success
    """

    def __init__(self, settings: Optional[DatabaseSettings] = None):
        self.settings = settings or DatabaseSettings()
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def engine(self) -> Engine:
        """Lazy-load SQLAlchemy engine."""
        if self._engine is None:
            self._engine = self._create_engine()
            logger.debug(f"Created engine for {self.settings.safe_url}")
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        return self._session_factory

    def _create_engine(self) -> Engine:
        settings = self.settings
        if not settings.is_sqlite:
            return create_engine(
                settings.database_url,
                echo=settings.echo_sql,
                pool_pre_ping=True,
                pool_size=settings.pool_size,
                max_overflow=settings.max_overflow,
                pool_recycle=settings.pool_recycle,
            )

        connect_args = {"check_same_thread": False, "timeout": settings.sqlite_busy_timeout}
        if settings.is_memory:
            # A single connection, otherwise each thread would see its own empty database
            return create_engine(
                settings.database_url,
                echo=settings.echo_sql,
                connect_args=connect_args,
                poolclass=StaticPool,
            )

        engine = create_engine(settings.database_url, echo=settings.echo_sql, connect_args=connect_args)
        if settings.sqlite_wal:
            @event.listens_for(engine, "connect")
            def _set_sqlite_pragma(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA synchronous=NORMAL")
                cursor.close()
        return engine

    def create_tables(self) -> None:
        """Create the swap_events table if it does not exist."""
        Base.metadata.create_all(bind=self.engine)

    def drop_tables(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    def dispose(self) -> None:
        """Close pooled connections."""
        if self._engine is not None:
            self._engine.dispose()

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Session scope: commit on success, roll back and re-raise on error."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
