"""
Presentation-layer entry point.

Every UI intent goes through ``IntentHandler.dispatch`` and comes back as an
envelope: ``{"success": True, "data": ...}`` or
``{"success": False, "errorKind": ..., "message": ...}``.
"""
import logging
from typing import Any, Callable, Dict, Optional

from skilllab.core.errors import RecordError, ValidationError
from skilllab.models.records import RecordKind, TrackedRecordMixin
from skilllab.models.student import Student
from skilllab.models.sync_metadata import SyncConflict
from skilllab.models.user import User, UserRole
from skilllab.schemas.records import IntentResponse
from skilllab.security.access_control import is_editable
from skilllab.security.session import SessionContext
from skilllab.services.lifecycle_engine import LifecycleEngine
from skilllab.services.student_directory import StudentDirectory
from skilllab.services.user_directory import UserDirectory
from skilllab.services.sync.sync_coordinator import SyncCoordinator

logger = logging.getLogger(__name__)


class IntentHandler:
    def __init__(
        self,
        engine: LifecycleEngine,
        coordinator: Optional[SyncCoordinator] = None,
        students: Optional[StudentDirectory] = None,
        users: Optional[UserDirectory] = None
    ):
        self.engine = engine
        self.coordinator = coordinator
        self.students = students or StudentDirectory(engine.db)
        self.users = users or UserDirectory(engine.db)
        self._handlers: Dict[str, Callable[[SessionContext, Dict[str, Any]], Any]] = {
            "list": self._list,
            "get": self._get,
            "create": self._create,
            "update": self._update,
            "exportBatch": self._export_batch,
            "unlock": self._unlock,
            "lock": self._lock,
            "markReviewed": self._mark_reviewed,
            "delete": self._delete,
            "syncStatus": self._sync_status,
            "listConflicts": self._list_conflicts,
            "acknowledgeConflict": self._acknowledge_conflict,
            "listStudents": self._list_students,
            "addStudent": self._add_student,
            "importStudents": self._import_students,
            "listUsers": self._list_users,
            "createUser": self._create_user,
            "setScope": self._set_scope,
            "deactivateUser": self._deactivate_user,
        }

    def dispatch(self, session: SessionContext, intent: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        handler = self._handlers.get(intent)
        try:
            if handler is None:
                raise ValidationError(f"Unknown intent '{intent}'")
            data = handler(session, payload or {})
        except RecordError as e:
            if e.category in ("permission", "concurrency"):
                logger.warning(f"Intent {intent} by {session.user_id} refused: {e.message}")
            else:
                logger.info(f"Intent {intent} by {session.user_id} failed: {e.error_kind}: {e.message}")
            return IntentResponse(success=False, errorKind=e.error_kind, message=e.message).envelope()
        return IntentResponse(success=True, data=data).envelope()

    def record_view(self, session: SessionContext, record: TrackedRecordMixin) -> Dict[str, Any]:
        """Document plus the derived flags the UI renders."""
        view = record.to_document()
        view.update({
            "is_editable": is_editable(session, record),
            "is_locked": record.is_locked,
            "status_label": record.status_label,
            "pending_sync": self.engine.is_pending_sync(record.id),
        })
        return view

    # ==================== RECORD INTENTS ====================

    def _list(self, session, payload):
        kind = self._kind(payload)
        view = payload.get("view", "all")
        if view == "exported":
            records = self.engine.list_exported(session, kind)
        elif view == "drafts":
            records = self.engine.list_drafts(session, kind)
        else:
            records = self.engine.list_visible(session, kind, **payload.get("filters", {}))
        return [self.record_view(session, r) for r in records]

    def _get(self, session, payload):
        record = self.engine.get(session, self._kind(payload), self._require(payload, "record_id"))
        return self.record_view(session, record)

    def _create(self, session, payload):
        record = self.engine.create(session, self._kind(payload), self._require(payload, "data"))
        return self.record_view(session, record)

    def _update(self, session, payload):
        record = self.engine.update(
            session,
            self._require(payload, "record_id"),
            self._require(payload, "patch"),
            self._require(payload, "expected_edit_count")
        )
        return self.record_view(session, record)

    def _export_batch(self, session, payload):
        result = self.engine.export_batch(session, self._require(payload, "record_ids"))
        return result.model_dump()

    def _unlock(self, session, payload):
        return self.record_view(session, self.engine.unlock(session, self._require(payload, "record_id")))

    def _lock(self, session, payload):
        return self.record_view(session, self.engine.lock(session, self._require(payload, "record_id")))

    def _mark_reviewed(self, session, payload):
        return self.record_view(session, self.engine.mark_reviewed(session, self._require(payload, "record_id")))

    def _delete(self, session, payload):
        record_id = self._require(payload, "record_id")
        self.engine.delete(session, record_id)
        return {"record_id": record_id}

    # ==================== SYNC INTENTS ====================

    def _sync_status(self, session, payload):
        return self._coordinator().status().model_dump(mode="json")

    def _list_conflicts(self, session, payload):
        return [self._conflict_view(c) for c in self._coordinator().open_conflicts()]

    def _acknowledge_conflict(self, session, payload):
        conflict = self._coordinator().acknowledge_conflict(self._require(payload, "conflict_id"))
        return self._conflict_view(conflict)

    @staticmethod
    def _conflict_view(conflict: SyncConflict) -> Dict[str, Any]:
        return {
            "id": conflict.id,
            "record_id": conflict.record_id,
            "kind": conflict.record_kind.value,
            "conflict_kind": conflict.conflict_kind.value,
            "reason": conflict.reason,
            "local": conflict.local_data,
            "remote": conflict.remote_data,
            "acknowledged": conflict.acknowledged_at is not None,
        }

    # ==================== DIRECTORY INTENTS ====================

    def _list_students(self, session, payload):
        students = self.students.list(session, group_id=payload.get("group_id"), year=payload.get("year"))
        return [self._student_view(s) for s in students]

    def _add_student(self, session, payload):
        return self._student_view(self.students.add_student(session, self._require(payload, "data")))

    def _import_students(self, session, payload):
        return self.students.add_students(session, self._require(payload, "rows")).model_dump()

    def _list_users(self, session, payload):
        return [self._user_view(u) for u in self.users.list_users(session)]

    def _create_user(self, session, payload):
        try:
            role = UserRole(self._require(payload, "role"))
        except ValueError:
            raise ValidationError(f"Unknown role {payload.get('role')!r}")
        user = self.users.create_user(
            session, self._require(payload, "username"), role,
            email=payload.get("email"), user_id=payload.get("user_id")
        )
        return self._user_view(user)

    def _set_scope(self, session, payload):
        pairs = []
        for item in self._require(payload, "scope"):
            try:
                group_id, year = item
                pairs.append((str(group_id), int(year)))
            except (TypeError, ValueError):
                raise ValidationError(f"Scope entries must be [group_id, year] pairs, got {item!r}")
        return self._user_view(self.users.set_scope(session, self._require(payload, "user_id"), pairs))

    def _deactivate_user(self, session, payload):
        return self._user_view(self.users.deactivate(session, self._require(payload, "user_id")))

    @staticmethod
    def _student_view(student: Student) -> Dict[str, Any]:
        return {
            "id": student.id,
            "name": student.name,
            "student_number": student.student_number,
            "email": student.email,
            "group_id": student.group_id,
            "year": student.year,
            "unit": student.unit,
        }

    @staticmethod
    def _user_view(user: User) -> Dict[str, Any]:
        return {
            "id": user.id,
            "username": user.username,
            "email": user.email,
            "role": user.role.value,
            "is_active": user.is_active,
            "scope": sorted([a.group_id, a.year] for a in user.assignments),
        }

    # ==================== HELPERS ====================

    def _coordinator(self) -> SyncCoordinator:
        if self.coordinator is None:
            raise ValidationError("Sync is not configured on this device")
        return self.coordinator

    @staticmethod
    def _kind(payload: Dict[str, Any]) -> RecordKind:
        try:
            return RecordKind(payload.get("kind"))
        except ValueError:
            raise ValidationError(f"Unknown record kind {payload.get('kind')!r}")

    @staticmethod
    def _require(payload: Dict[str, Any], key: str) -> Any:
        if key not in payload:
            raise ValidationError(f"Missing '{key}'")
        return payload[key]
