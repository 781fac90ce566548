"""SQLAlchemy ORM models for the swap event store.

swap_events holds one row per reconstructed swap, keyed for idempotent
inserts on (signature, instruction_index). reconcile_checkpoints holds the
reconciliation cursor, written in the same transaction as the events it
covers.
"""

from datetime import datetime, UTC
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Numeric,
    Index,
    UniqueConstraint,
    BigInteger,
    Integer,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class ExactDecimal(TypeDecorator):
    """Decimal column that reads back exactly what was written.

    PostgreSQL stores an unconstrained NUMERIC. SQLite has no decimal
    storage class (NUMERIC affinity degrades to REAL), so the canonical
    string form is stored in a text column instead.
    """

    impl = Numeric
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(96))
        return dialect.type_descriptor(Numeric(asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name != "sqlite":
            return value
        return str(Decimal(value))

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, Decimal):
            return value
        return Decimal(value)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class SwapEventRecord(Base):
    """A reconstructed swap, one row per swap instruction."""

    __tablename__ = "swap_events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    signature: Mapped[str] = mapped_column(String(88), nullable=False)
    instruction_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)  # Unix seconds
    slot: Mapped[Optional[int]] = mapped_column(BigInteger)
    source_mint: Mapped[str] = mapped_column(String(44), nullable=False)
    dest_mint: Mapped[str] = mapped_column(String(44), nullable=False)
    amount_in: Mapped[Decimal] = mapped_column(ExactDecimal, nullable=False)
    amount_out: Mapped[Decimal] = mapped_column(ExactDecimal, nullable=False)
    price: Mapped[Decimal] = mapped_column(ExactDecimal, nullable=False)
    pool_price: Mapped[Optional[Decimal]] = mapped_column(ExactDecimal)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        UniqueConstraint("signature", "instruction_index", name="uq_swap_events_signature_instruction"),
        Index("ix_swap_events_timestamp", "timestamp"),
    )


class CheckpointRecord(Base):
    """Reconciliation cursor of one feed; NULL signature means from the start of history."""

    __tablename__ = "reconcile_checkpoints"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    signature: Mapped[Optional[str]] = mapped_column(String(88))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
