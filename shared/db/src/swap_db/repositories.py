"""Repository pattern for swap event storage."""

from typing import Generic, TypeVar, Optional, List

from sqlalchemy import func, insert, select
from sqlalchemy.orm import Session
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.dialects.postgresql import insert as postgresql_insert

from swap_db.models import Base, CheckpointRecord, SwapEventRecord, utc_now


T = TypeVar("T", bound=Base)

_CONFLICT_KEY = ["signature", "instruction_index"]


class BaseRepository(Generic[T]):
    """Base repository with common operations.

    Usage:
        repo = BaseRepository(session, SwapEventRecord)
        repo.create(record)
    """

    def __init__(self, session: Session, model_class: type[T]):
        """Initialize repository with session and model class.

        Args:
            session: SQLAlchemy session instance.
            model_class: The ORM model class to operate on.
        """
        self.session = session
        self.model_class = model_class

    def create(self, entity: T) -> T:
        """Create new entity.

        Args:
            entity: Entity instance to insert.

        Returns:
            The created entity with generated fields populated.
        """
        self.session.add(entity)
        self.session.flush()
        return entity

    def count(self) -> int:
        return self.session.scalar(select(func.count()).select_from(self.model_class)) or 0


class SwapEventRepository(BaseRepository[SwapEventRecord]):
    """Repository for SwapEventRecord operations."""

    def __init__(self, session: Session):
        super().__init__(session, SwapEventRecord)

    def bulk_insert(self, records: List[SwapEventRecord]) -> int:
        """Bulk insert swap events.

        Uses ON CONFLICT DO NOTHING on (signature, instruction_index), so
        re-inserting an already stored swap is a silent no-op.

        Args:
            records: List of SwapEventRecord instances to insert.

        Returns:
            Number of events inserted (excluding duplicates).
        """
        if not records:
            return 0

        records_data = [
            {
                "signature": r.signature,
                "instruction_index": r.instruction_index,
                "timestamp": r.timestamp,
                "slot": r.slot,
                "source_mint": r.source_mint,
                "dest_mint": r.dest_mint,
                "amount_in": r.amount_in,
                "amount_out": r.amount_out,
                "price": r.price,
                "pool_price": r.pool_price,
            }
            for r in records
        ]

        # Use dialect-specific insert for ON CONFLICT support
        db_dialect = self.session.get_bind().dialect.name
        if db_dialect == "postgresql":
            stmt = postgresql_insert(SwapEventRecord).values(records_data)
            stmt = stmt.on_conflict_do_nothing(index_elements=_CONFLICT_KEY)
        elif db_dialect == "sqlite":
            stmt = sqlite_insert(SwapEventRecord).values(records_data)
            stmt = stmt.on_conflict_do_nothing(index_elements=_CONFLICT_KEY)
        else:
            # Fallback for unsupported dialects - no conflict handling
            stmt = insert(SwapEventRecord).values(records_data)

        result = self.session.execute(stmt)
        self.session.flush()
        return result.rowcount if result.rowcount else 0

    def get_all_ordered(self, limit: Optional[int] = None) -> List[SwapEventRecord]:
        """Get stored events in insertion order (oldest first).

        Args:
            limit: Only return the most recent `limit` events (still oldest first).
        """
        if limit is None:
            stmt = select(SwapEventRecord).order_by(SwapEventRecord.id)
            return list(self.session.scalars(stmt))

        stmt = select(SwapEventRecord).order_by(SwapEventRecord.id.desc()).limit(limit)
        return list(reversed(self.session.scalars(stmt).all()))

    def get_last_signature(self) -> Optional[str]:
        """Signature of the most recently stored event, or None when empty."""
        stmt = select(SwapEventRecord.signature).order_by(SwapEventRecord.id.desc()).limit(1)
        return self.session.scalar(stmt)

    def get_recent_signatures(self, limit: int) -> List[str]:
        """Distinct signatures of the most recent events, newest first."""
        stmt = (
            select(SwapEventRecord.signature, func.max(SwapEventRecord.id).label("last_id"))
            .group_by(SwapEventRecord.signature)
            .order_by(func.max(SwapEventRecord.id).desc())
            .limit(limit)
        )
        return [row.signature for row in self.session.execute(stmt)]

    def exists(self, signature: str, instruction_index: int = 0) -> bool:
        """Check whether a swap is already stored."""
        stmt = select(SwapEventRecord.id).where(
            SwapEventRecord.signature == signature,
            SwapEventRecord.instruction_index == instruction_index,
        )
        return self.session.scalar(stmt) is not None


class CheckpointRepository(BaseRepository[CheckpointRecord]):
    """Repository for the reconciliation cursor."""

    def __init__(self, session: Session):
        super().__init__(session, CheckpointRecord)

    def get(self, key: str) -> Optional[CheckpointRecord]:
        return self.session.get(CheckpointRecord, key)

    def save(self, key: str, signature: Optional[str]) -> CheckpointRecord:
        """Insert or update the checkpoint stored under key."""
        record = self.get(key)
        if record is None:
            return self.create(CheckpointRecord(key=key, signature=signature))
        record.signature = signature
        record.updated_at = utc_now()
        self.session.flush()
        return record
