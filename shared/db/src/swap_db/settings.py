"""Event store connection settings."""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError


SUPPORTED_SCHEMES = ("sqlite", "postgresql")


def redact_db_url(url: str) -> str:
    """Database URL with any password masked, for logs and console output.

    >>> redact_db_url("postgresql+psycopg2://indexer:secret@db:5432/swaps")
    'postgresql+psycopg2://indexer:***@db:5432/swaps'
    """
    return make_url(url).render_as_string(hide_password=True)


class DatabaseSettings(BaseSettings):
    """Where swap events are stored.

    A single SQLAlchemy URL selects the backend: a SQLite file for a single
    indexer, PostgreSQL when other services read the table. Values come from
    arguments or SWAPINDEXER_* environment variables (SWAPINDEXER_DATABASE_URL).
    """

    database_url: str = "sqlite:///swap_events.db"

    # SQLite: the query API reads while the sink flushes
    sqlite_wal: bool = True
    sqlite_busy_timeout: float = 30.0

    # PostgreSQL connection pool
    pool_size: int = 5
    max_overflow: int = 10
    pool_recycle: int = 1800

    echo_sql: bool = False

    model_config = SettingsConfigDict(env_prefix="SWAPINDEXER_", env_file=".env", extra="ignore")

    @field_validator("database_url")
    @classmethod
    def _check_scheme(cls, value: str) -> str:
        try:
            backend = make_url(value).get_backend_name()
        except ArgumentError as e:
            raise ValueError(f"Malformed database URL: {e}") from e
        if backend not in SUPPORTED_SCHEMES:
            raise ValueError(
                f"Unsupported database URL scheme '{backend}' (expected one of {', '.join(SUPPORTED_SCHEMES)})"
            )
        return value

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def is_memory(self) -> bool:
        """In-memory SQLite: one shared connection, nothing survives dispose()."""
        return self.is_sqlite and (":memory:" in self.database_url or self.database_url.rstrip("/") == "sqlite:")

    @property
    def safe_url(self) -> str:
        return redact_db_url(self.database_url)
