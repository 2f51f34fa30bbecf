"""
Outbound mutation queue and sync bookkeeping persisted in the local cache.

Entries are keyed by record id and kept in insertion order; the autoincrement
id is the FIFO sequence. Conflicts and pull checkpoints live alongside.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from skilllab.models.records import RecordKind
from skilllab.models.sync_metadata import (
    OutboundMutation, SyncConflict, SyncCheckpoint,
    MutationType, QueueStatus, ConflictKind
)

logger = logging.getLogger(__name__)

OUTSTANDING_STATUSES = (QueueStatus.PENDING, QueueStatus.BLOCKED, QueueStatus.FAILED)


class OutboundQueue:
    """Persistent FIFO of local mutations waiting for the remote store."""

    def __init__(self, db: Session):
        self.db = db

    # ==================== ENQUEUE ====================

    def enqueue(
        self,
        record_id: str,
        kind: RecordKind,
        operation: MutationType,
        payload: Optional[Dict[str, Any]],
        based_on_edit_count: Optional[int],
        issued_by: str
    ) -> OutboundMutation:
        """Append a mutation; the caller commits together with the record change."""
        entry = OutboundMutation(
            record_id=record_id,
            record_kind=kind,
            operation=operation,
            payload=payload,
            based_on_edit_count=based_on_edit_count,
            author_session=issued_by,
            status=QueueStatus.PENDING,
            attempts=0
        )
        self.db.add(entry)
        logger.debug(f"Queued {operation.value} for {kind.value}/{record_id} (base {based_on_edit_count})")
        return entry

    # ==================== READ ====================

    def record_ids_in_order(self) -> List[str]:
        """Record ids with outstanding entries, ordered by their oldest entry."""
        stmt = (
            select(OutboundMutation.record_id, func.min(OutboundMutation.id).label("first_id"))
            .where(OutboundMutation.status.in_(OUTSTANDING_STATUSES))
            .group_by(OutboundMutation.record_id)
            .order_by("first_id")
        )
        return [row.record_id for row in self.db.execute(stmt)]

    def entries_for(self, record_id: str) -> List[OutboundMutation]:
        stmt = (
            select(OutboundMutation)
            .where(
                OutboundMutation.record_id == record_id,
                OutboundMutation.status.in_(OUTSTANDING_STATUSES)
            )
            .order_by(OutboundMutation.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def has_outstanding(self, record_id: str) -> bool:
        stmt = (
            select(func.count(OutboundMutation.id))
            .where(
                OutboundMutation.record_id == record_id,
                OutboundMutation.status.in_(OUTSTANDING_STATUSES)
            )
        )
        return self.db.execute(stmt).scalar_one() > 0

    def count_by_status(self) -> Dict[QueueStatus, int]:
        stmt = (
            select(OutboundMutation.status, func.count(OutboundMutation.id))
            .group_by(OutboundMutation.status)
        )
        counts = {status: 0 for status in QueueStatus}
        for status, count in self.db.execute(stmt):
            counts[QueueStatus(status)] = count
        return counts

    # ==================== DELIVERY OUTCOMES ====================

    def complete(self, entry: OutboundMutation) -> None:
        """Remote store accepted the entry; it no longer needs to be kept."""
        self.db.delete(entry)
        self.db.commit()

    def schedule_retry(self, entry: OutboundMutation, error: str, next_attempt_at: datetime) -> None:
        entry.attempts += 1
        entry.last_error = error
        entry.next_attempt_at = next_attempt_at
        self.db.commit()

    def fail_and_block(self, entry: OutboundMutation, error: str) -> int:
        """Terminate ``entry`` and hold back the later entries for the same record."""
        entry.status = QueueStatus.FAILED
        entry.last_error = error
        blocked = 0
        for later in self.entries_for(entry.record_id):
            if later.id > entry.id and later.status == QueueStatus.PENDING:
                later.status = QueueStatus.BLOCKED
                blocked += 1
        self.db.commit()
        return blocked

    def discard_outstanding(self, record_id: str) -> int:
        """Drop every outstanding entry for a record once its conflict is acknowledged."""
        entries = self.entries_for(record_id)
        for entry in entries:
            self.db.delete(entry)
        return len(entries)

    # ==================== CONFLICTS ====================

    def record_conflict(
        self,
        entry: OutboundMutation,
        conflict_kind: ConflictKind,
        reason: str,
        local_data: Optional[Dict[str, Any]],
        remote_data: Optional[Dict[str, Any]]
    ) -> SyncConflict:
        conflict = SyncConflict(
            record_id=entry.record_id,
            record_kind=entry.record_kind,
            mutation_id=entry.id,
            conflict_kind=conflict_kind,
            reason=reason,
            local_data=local_data,
            remote_data=remote_data
        )
        self.db.add(conflict)
        self.db.commit()
        return conflict

    def open_conflicts(self) -> List[SyncConflict]:
        stmt = (
            select(SyncConflict)
            .where(SyncConflict.acknowledged_at.is_(None))
            .order_by(SyncConflict.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_conflict(self, conflict_id: int) -> Optional[SyncConflict]:
        return self.db.get(SyncConflict, conflict_id)

    # ==================== CHECKPOINTS ====================

    def get_checkpoint(self, scope_key: str) -> Optional[SyncCheckpoint]:
        return self.db.get(SyncCheckpoint, scope_key)

    def save_checkpoint(self, scope_key: str, pulled_at: datetime, records_seen: int) -> SyncCheckpoint:
        checkpoint = self.get_checkpoint(scope_key)
        if checkpoint is None:
            checkpoint = SyncCheckpoint(scope_key=scope_key)
            self.db.add(checkpoint)
        checkpoint.last_pulled_at = pulled_at
        checkpoint.records_seen = records_seen
        self.db.commit()
        return checkpoint
