"""
SQLAlchemy models for the outbound mutation queue and sync bookkeeping.
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, Text, JSON, Index, Enum as SQLEnum
)
from sqlalchemy.sql import func
from sqlalchemy.ext.hybrid import hybrid_property
import enum

from skilllab.core.database import Base
from skilllab.models.records import RecordKind


class MutationType(str, enum.Enum):
    """Mutation carried by an outbound queue entry."""
    CREATE = "create"
    UPDATE = "update"
    EXPORT = "export"
    UNLOCK = "unlock"
    LOCK = "lock"
    REVIEW = "review"
    DELETE = "delete"


class QueueStatus(str, enum.Enum):
    """Delivery status of an outbound queue entry."""
    PENDING = "pending"      # waiting to be pushed (or retried)
    BLOCKED = "blocked"      # an earlier entry for the same record conflicted
    FAILED = "failed"        # rejected by the remote store, kept until acknowledged


class ConflictKind(str, enum.Enum):
    STALE_WRITE = "stale_write"
    PERMISSION_DENIED = "permission_denied"
    INVALID_TRANSITION = "invalid_transition"
    VALIDATION_FAILURE = "validation_failure"
    RECORD_DELETED = "record_deleted"


class OutboundMutation(Base):
    """One local mutation waiting to be pushed to the remote store."""

    __tablename__ = "outbound_mutations"

    # Autoincrement id doubles as the FIFO sequence
    id = Column(Integer, primary_key=True, autoincrement=True)
    record_id = Column(String(64), nullable=False, index=True)
    record_kind = Column(SQLEnum(RecordKind), nullable=False)
    operation = Column(SQLEnum(MutationType), nullable=False)
    payload = Column(JSON, nullable=True)  # full document after the mutation; None for delete
    based_on_edit_count = Column(Integer, nullable=True)  # None for create
    author_session = Column(String(64), nullable=False)  # user who issued it

    status = Column(SQLEnum(QueueStatus), nullable=False, default=QueueStatus.PENDING)
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        Index('ix_outbound_record_status', 'record_id', 'status'),
    )


class SyncConflict(Base):
    """Conflict surfaced to the user instead of being merged."""

    __tablename__ = "sync_conflicts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    record_id = Column(String(64), nullable=False, index=True)
    record_kind = Column(SQLEnum(RecordKind), nullable=False)
    mutation_id = Column(Integer, nullable=True)
    conflict_kind = Column(SQLEnum(ConflictKind), nullable=False)
    reason = Column(Text, nullable=False)

    local_data = Column(JSON, nullable=True)
    remote_data = Column(JSON, nullable=True)

    detected_at = Column(DateTime(timezone=True), server_default=func.now())
    acknowledged_at = Column(DateTime(timezone=True), nullable=True)

    @hybrid_property
    def is_open(self) -> bool:
        return self.acknowledged_at is None


class SyncCheckpoint(Base):
    """Last successful pull per visibility scope."""

    __tablename__ = "sync_checkpoints"

    scope_key = Column(String(500), primary_key=True)
    last_pulled_at = Column(DateTime(timezone=True), nullable=False)
    records_seen = Column(Integer, default=0)
