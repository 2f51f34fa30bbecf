"""
Lifecycle engine for attendance and assessment records.

Validates every intent against the shared rule table, applies the state
machine (draft -> exported -> locked, unlock back to draft), keeps the edit
counter and appends each accepted mutation to the outbound queue. All methods
are synchronous and run against the local cache only; the sync coordinator
delivers the queued mutations later.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.orm import Session

from skilllab.core.errors import (
    RecordError, PermissionDenied, ValidationError, NotFound, StaleWrite, InvalidState
)
from skilllab.models.records import (
    RECORD_MODELS, LifecycleState, RecordKind, TrackedRecordMixin, AssessmentRecord
)
from skilllab.models.sync_metadata import MutationType
from skilllab.schemas.records import (
    CREATE_SCHEMAS, PATCH_SCHEMAS, ExportBatchResult, ExportRejection
)
from skilllab.security.access_control import (
    Operation, REVIEWABLE_STATES, deny_reason, transition_target
)
from skilllab.security.session import SessionContext
from skilllab.services.record_store import LocalRecordStore
from skilllab.services.sync.outbound_queue import OutboundQueue

logger = logging.getLogger(__name__)


class LifecycleEngine:
    """Permission-checked state machine over the local record cache."""

    def __init__(
        self,
        db: Session,
        store: Optional[LocalRecordStore] = None,
        queue: Optional[OutboundQueue] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.db = db
        self.store = store or LocalRecordStore(db)
        self.queue = queue or OutboundQueue(db)
        self._now = clock or datetime.utcnow

    # ==================== READ ====================

    def get(self, session: SessionContext, kind: RecordKind, record_id: str) -> TrackedRecordMixin:
        record = self.store.get(kind, record_id)
        if record is None:
            raise NotFound(f"{RecordKind(kind).value} record {record_id} not found", record_id=record_id)
        self._check(session, record, Operation.READ)
        return record

    def list_visible(
        self,
        session: SessionContext,
        kind: RecordKind,
        **equals: Any
    ) -> List[TrackedRecordMixin]:
        """Records the session may read, optionally narrowed by field equality."""
        if not session.is_active:
            return []
        if not session.is_admin:
            equals["author_id"] = session.user_id
        try:
            records = self.store.query(kind, equals=equals)
        except ValueError as e:
            raise ValidationError(str(e))
        # Scope is a set of (group, year) pairs, finish the filter in Python
        return [r for r in records if deny_reason(session, r, Operation.READ) is None]

    def list_exported(self, session: SessionContext, kind: RecordKind) -> List[TrackedRecordMixin]:
        return [
            r for r in self.list_visible(session, kind)
            if r.lifecycle_state != LifecycleState.DRAFT
        ]

    def list_drafts(self, session: SessionContext, kind: RecordKind) -> List[TrackedRecordMixin]:
        return self.list_visible(session, kind, lifecycle_state=LifecycleState.DRAFT)

    def is_pending_sync(self, record_id: str) -> bool:
        return self.queue.has_outstanding(record_id)

    # ==================== CREATE / UPDATE ====================

    def create(self, session: SessionContext, kind: RecordKind, data: Dict[str, Any]) -> TrackedRecordMixin:
        """Create a draft record for a student inside the session's scope."""
        kind = RecordKind(kind)
        schema = CREATE_SCHEMAS[kind]
        try:
            parsed = schema(**data)
        except SchemaValidationError as e:
            raise ValidationError(f"Invalid {kind.value} record: {e}", details={"errors": e.errors()})

        student = self.store.get_student(parsed.student_id)
        if student is None:
            raise ValidationError(f"Student {parsed.student_id} does not exist")
        if (student.group_id, student.year) != (parsed.group_id, parsed.year):
            raise ValidationError(
                f"Student {student.id} belongs to {student.group_id}/{student.year}, "
                f"not {parsed.group_id}/{parsed.year}"
            )

        self._check(session, student, Operation.CREATE)

        author_id = session.user_id
        if parsed.author_id and parsed.author_id != session.user_id:
            if not session.is_admin:
                raise PermissionDenied("Only an admin can enter records on behalf of another trainer")
            author_id = parsed.author_id

        record_id = parsed.id or f"{kind.value}-{uuid.uuid4().hex}"
        if self.store.find(record_id) is not None:
            raise ValidationError(f"Record {record_id} already exists", record_id=record_id)

        now = self._now()
        record = RECORD_MODELS[kind](
            id=record_id,
            student_id=student.id,
            group_id=parsed.group_id,
            year=parsed.year,
            author_id=author_id,
            lifecycle_state=LifecycleState.DRAFT,
            edit_count=0,
            last_edited_at=now,
            last_edited_by=session.user_id,
            created_at=now
        )
        record.apply_payload(parsed.dict(include=set(record.PAYLOAD_FIELDS)))

        self.store.add(record)
        self._enqueue(record, MutationType.CREATE, session, based_on=None)
        self._commit()

        logger.info(f"Created {kind.value} record {record_id} for student {student.id} by {session.user_id}")
        return record

    def update(
        self,
        session: SessionContext,
        record_id: str,
        patch: Dict[str, Any],
        expected_edit_count: int
    ) -> TrackedRecordMixin:
        """
        Apply a payload patch.

        The caller supplies the edit count it last observed; a mismatch raises
        StaleWrite and nothing is written.
        """
        record = self._require(record_id)
        self._check(session, record, Operation.UPDATE)

        if expected_edit_count != record.edit_count:
            raise StaleWrite(
                f"Record {record_id} changed since it was loaded "
                f"(expected edit {expected_edit_count}, found {record.edit_count})",
                record_id=record_id,
                expected_edit_count=expected_edit_count,
                actual_edit_count=record.edit_count
            )

        try:
            changes = PATCH_SCHEMAS[record.kind](**patch).dict(exclude_unset=True)
        except SchemaValidationError as e:
            raise ValidationError(f"Invalid patch for {record_id}: {e}", record_id=record_id,
                                  details={"errors": e.errors()})
        if not changes:
            raise ValidationError(f"Patch for {record_id} changes nothing", record_id=record_id)

        if isinstance(record, AssessmentRecord):
            score = changes.get("score", record.score)
            max_score = changes.get("max_score", record.max_score)
            if score > max_score:
                raise ValidationError(f"Score {score} exceeds max score {max_score}", record_id=record_id)

        if session.is_admin and record.lifecycle_state != LifecycleState.DRAFT:
            logger.warning(
                f"Admin {session.user_id} overriding {record.lifecycle_state.value} record {record_id}"
            )

        based_on = record.edit_count
        record.apply_payload(changes)
        self._touch(record, session)
        self._enqueue(record, MutationType.UPDATE, session, based_on=based_on)
        self._commit()

        logger.info(f"Updated record {record_id} -> edit {record.edit_count} by {session.user_id}")
        return record

    # ==================== LIFECYCLE TRANSITIONS ====================

    def export_batch(self, session: SessionContext, record_ids: Iterable[str]) -> ExportBatchResult:
        """
        Export each record independently.

        A record that cannot be exported lands in ``rejected`` with its reason
        and does not stop the rest of the batch.
        """
        result = ExportBatchResult()
        now = self._now()

        for record_id in record_ids:
            try:
                self._export_one(session, record_id, now)
            except RecordError as e:
                result.rejected.append(
                    ExportRejection(record_id=record_id, error_kind=e.error_kind, reason=e.message)
                )
                continue
            result.succeeded.append(record_id)

        if result.succeeded:
            self._commit()

        logger.info(
            f"Export by {session.user_id}: {len(result.succeeded)} succeeded, "
            f"{len(result.rejected)} rejected"
        )
        return result

    def _export_one(self, session: SessionContext, record_id: str, now: datetime) -> None:
        record = self._require(record_id)

        reason = deny_reason(session, record, Operation.EXPORT)
        if reason is not None:
            owns_it = deny_reason(session, record, Operation.READ) is None and not session.is_admin
            if owns_it and record.lifecycle_state != LifecycleState.DRAFT:
                exported_on = record.exported_at.isoformat() if record.exported_at else "an earlier export"
                raise InvalidState(
                    f"Record {record_id} is already {record.lifecycle_state.value} ({exported_on})",
                    record_id=record_id
                )
            raise PermissionDenied(f"Record {record_id}: {reason}", record_id=record_id)

        based_on = record.edit_count
        record.lifecycle_state = transition_target(Operation.EXPORT, record.lifecycle_state)
        record.exported_at = now
        record.exported_by = session.user_id
        self._touch(record, session, now)
        self._enqueue(record, MutationType.EXPORT, session, based_on=based_on)

    def unlock(self, session: SessionContext, record_id: str) -> TrackedRecordMixin:
        """Return an exported or locked record to draft so its author can edit it again."""
        record = self._require(record_id)
        self._check(session, record, Operation.UNLOCK)

        target = transition_target(Operation.UNLOCK, record.lifecycle_state)
        if target is None:
            logger.info(f"Unlock of {record_id} ignored: already a draft")
            return record

        based_on = record.edit_count
        record.lifecycle_state = target
        record.exported_at = None
        record.exported_by = None
        record.reviewed_at = None
        record.reviewed_by = None
        self._touch(record, session)
        self._enqueue(record, MutationType.UNLOCK, session, based_on=based_on)
        self._commit()

        logger.info(f"Admin {session.user_id} unlocked record {record_id} (edit {record.edit_count})")
        return record

    def lock(self, session: SessionContext, record_id: str) -> TrackedRecordMixin:
        """Freeze an exported record."""
        record = self._require(record_id)
        self._check(session, record, Operation.LOCK)

        target = transition_target(Operation.LOCK, record.lifecycle_state)
        if target is None:
            raise InvalidState(
                f"Only exported records can be locked; {record_id} is {record.lifecycle_state.value}",
                record_id=record_id
            )

        based_on = record.edit_count
        record.lifecycle_state = target
        self._touch(record, session)
        self._enqueue(record, MutationType.LOCK, session, based_on=based_on)
        self._commit()

        logger.info(f"Admin {session.user_id} locked record {record_id}")
        return record

    def mark_reviewed(self, session: SessionContext, record_id: str) -> TrackedRecordMixin:
        record = self._require(record_id)
        self._check(session, record, Operation.REVIEW)

        if record.lifecycle_state not in REVIEWABLE_STATES:
            raise InvalidState(f"Record {record_id} has not been exported", record_id=record_id)

        now = self._now()
        based_on = record.edit_count
        record.reviewed_at = now
        record.reviewed_by = session.user_id
        self._touch(record, session, now)
        self._enqueue(record, MutationType.REVIEW, session, based_on=based_on)
        self._commit()
        return record

    # ==================== DELETE ====================

    def delete(self, session: SessionContext, record_id: str) -> None:
        """Delete a draft; admins may also delete exported or locked records."""
        record = self._require(record_id)

        if session.is_admin and session.is_active:
            if record.lifecycle_state != LifecycleState.DRAFT:
                self._delete_finalized_as_admin(session, record)
                return
        else:
            self._check(session, record, Operation.READ)
            if record.lifecycle_state != LifecycleState.DRAFT:
                raise InvalidState(
                    f"Record {record_id} is {record.lifecycle_state.value} and can no longer be deleted",
                    record_id=record_id
                )
        self._check(session, record, Operation.DELETE)
        self._remove(session, record)
        logger.info(f"Deleted draft record {record_id} by {session.user_id}")

    def _delete_finalized_as_admin(self, session: SessionContext, record: TrackedRecordMixin) -> None:
        logger.warning(
            f"Admin {session.user_id} deleting {record.lifecycle_state.value} record {record.id} "
            f"(author {record.author_id}, exported by {record.exported_by} at {record.exported_at}, "
            f"edit {record.edit_count})"
        )
        self._remove(session, record)

    def _remove(self, session: SessionContext, record: TrackedRecordMixin) -> None:
        self.queue.enqueue(
            record_id=record.id,
            kind=record.kind,
            operation=MutationType.DELETE,
            payload=None,
            based_on_edit_count=record.edit_count,
            issued_by=session.user_id
        )
        self.store.remove(record)
        self._commit()

    # ==================== RECONCILIATION ====================

    def peek(self, kind: RecordKind, record_id: str) -> Optional[TrackedRecordMixin]:
        """Raw cache lookup for the sync coordinator; no permission check."""
        return self.store.get(kind, record_id)

    def apply_remote(self, document: Dict[str, Any]) -> TrackedRecordMixin:
        """Replace the local copy with the authoritative remote document."""
        kind = RecordKind(document["kind"])
        record = self.store.get(kind, document["id"])
        if record is None:
            record = RECORD_MODELS[kind]()
            record.apply_document(document)
            self.store.add(record)
        else:
            record.apply_document(document)
        self._commit()
        logger.debug(f"Applied remote {kind.value}/{record.id} at edit {record.edit_count}")
        return record

    def evict(self, kind: RecordKind, record_id: str) -> bool:
        record = self.store.get(kind, record_id)
        if record is None:
            return False
        self.store.remove(record)
        self._commit()
        logger.info(f"Evicted {RecordKind(kind).value}/{record_id} from local cache")
        return True

    # ==================== HELPERS ====================

    def _require(self, record_id: str) -> TrackedRecordMixin:
        record = self.store.find(record_id)
        if record is None:
            raise NotFound(f"Record {record_id} not found", record_id=record_id)
        return record

    def _check(self, session: SessionContext, target: Any, operation: Operation) -> None:
        reason = deny_reason(session, target, operation)
        if reason is not None:
            record_id = getattr(target, "id", None) if operation != Operation.CREATE else None
            raise PermissionDenied(
                f"{session.user_id} {reason}" if record_id is None else f"Record {record_id}: {reason}",
                record_id=record_id
            )

    def _touch(self, record: TrackedRecordMixin, session: SessionContext, now: Optional[datetime] = None) -> None:
        record.edit_count += 1
        record.last_edited_at = now or self._now()
        record.last_edited_by = session.user_id

    def _enqueue(
        self,
        record: TrackedRecordMixin,
        operation: MutationType,
        session: SessionContext,
        based_on: Optional[int]
    ) -> None:
        self.queue.enqueue(
            record_id=record.id,
            kind=record.kind,
            operation=operation,
            payload=record.to_document(),
            based_on_edit_count=based_on,
            issued_by=session.user_id
        )

    def _commit(self) -> None:
        try:
            self.store.commit()
        except Exception:
            self.store.rollback()
            raise
