"""
Tracked attendance and assessment records held in the local cache.

Both subtypes share the lifecycle columns of ``TrackedRecordMixin``; the
subtype-specific columns are listed in ``PAYLOAD_FIELDS`` so the records can be
flattened into, and rebuilt from, the document shape the remote store keeps.
"""

from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, Float, Enum as SQLEnum
from sqlalchemy.sql import func
from datetime import date, datetime
from typing import Any, Dict, Optional
import enum

from skilllab.core.database import Base


class LifecycleState(str, enum.Enum):
    DRAFT = "draft"
    EXPORTED = "exported"
    LOCKED = "locked"


class RecordKind(str, enum.Enum):
    ATTENDANCE = "attendance"
    ASSESSMENT = "assessment"


class AttendanceStatus(str, enum.Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    EXCUSED = "excused"


class AssessmentType(str, enum.Enum):
    EXAM = "exam"
    QUIZ = "quiz"
    ASSIGNMENT = "assignment"
    PROJECT = "project"
    PRESENTATION = "presentation"


# Fields that identify a record and never change after creation
IDENTITY_FIELDS = ("id", "kind", "student_id", "group_id", "year", "author_id")

LIFECYCLE_FIELDS = (
    "lifecycle_state", "exported_at", "exported_by", "edit_count",
    "last_edited_at", "last_edited_by", "reviewed_at", "reviewed_by",
)


def _to_wire(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class TrackedRecordMixin:
    """Columns shared by every lifecycle-tracked record."""

    KIND = None
    PAYLOAD_FIELDS = ()
    ENUM_FIELDS = {}

    id = Column(String(64), primary_key=True, index=True)
    student_id = Column(String(64), nullable=False, index=True)
    group_id = Column(String(64), nullable=False, index=True)
    year = Column(Integer, nullable=False)
    author_id = Column(String(64), nullable=False, index=True)

    # Lifecycle
    lifecycle_state = Column(SQLEnum(LifecycleState), nullable=False, default=LifecycleState.DRAFT)
    exported_at = Column(DateTime(timezone=True), nullable=True)
    exported_by = Column(String(64), nullable=True)

    # Edit tracking
    edit_count = Column(Integer, nullable=False, default=0)
    last_edited_at = Column(DateTime(timezone=True), nullable=True)
    last_edited_by = Column(String(64), nullable=True)

    # Admin review
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_by = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def kind(self) -> RecordKind:
        return self.KIND

    @property
    def is_locked(self) -> bool:
        return self.lifecycle_state != LifecycleState.DRAFT

    @property
    def status_label(self) -> str:
        if self.lifecycle_state == LifecycleState.LOCKED:
            return "Locked by Admin"
        if self.lifecycle_state == LifecycleState.EXPORTED:
            if self.reviewed_at is not None:
                return "Reviewed by Admin"
            return "Exported to Admin"
        return "Draft"

    def payload(self) -> Dict[str, Any]:
        return {name: _to_wire(getattr(self, name)) for name in self.PAYLOAD_FIELDS}

    def to_document(self) -> Dict[str, Any]:
        """Flatten the record into the remote store's document shape."""
        return {
            "id": self.id,
            "kind": self.KIND.value,
            "student_id": self.student_id,
            "group_id": self.group_id,
            "year": self.year,
            "author_id": self.author_id,
            "lifecycle_state": _to_wire(self.lifecycle_state),
            "exported_at": _to_wire(self.exported_at),
            "exported_by": self.exported_by,
            "edit_count": self.edit_count,
            "last_edited_at": _to_wire(self.last_edited_at),
            "last_edited_by": self.last_edited_by,
            "reviewed_at": _to_wire(self.reviewed_at),
            "reviewed_by": self.reviewed_by,
            "payload": self.payload(),
        }

    def apply_document(self, document: Dict[str, Any]) -> None:
        """Overwrite every column from an authoritative document."""
        self.id = document["id"]
        self.student_id = document["student_id"]
        self.group_id = document["group_id"]
        self.year = document["year"]
        self.author_id = document["author_id"]
        self.lifecycle_state = LifecycleState(document["lifecycle_state"])
        self.exported_at = _parse_datetime(document.get("exported_at"))
        self.exported_by = document.get("exported_by")
        self.edit_count = document["edit_count"]
        self.last_edited_at = _parse_datetime(document.get("last_edited_at"))
        self.last_edited_by = document.get("last_edited_by")
        self.reviewed_at = _parse_datetime(document.get("reviewed_at"))
        self.reviewed_by = document.get("reviewed_by")
        self.apply_payload(document.get("payload") or {})

    def apply_payload(self, payload: Dict[str, Any]) -> None:
        for name, value in payload.items():
            if name not in self.PAYLOAD_FIELDS:
                continue
            if name == "date" and isinstance(value, str):
                value = date.fromisoformat(value)
            elif name in self.ENUM_FIELDS and value is not None:
                value = self.ENUM_FIELDS[name](value)
            setattr(self, name, value)


class AttendanceRecord(TrackedRecordMixin, Base):
    __tablename__ = "attendance_records"

    KIND = RecordKind.ATTENDANCE
    PAYLOAD_FIELDS = ("date", "status", "unit", "notes")
    ENUM_FIELDS = {"status": AttendanceStatus}

    date = Column(Date, nullable=False)
    status = Column(SQLEnum(AttendanceStatus), nullable=False, default=AttendanceStatus.PRESENT)
    unit = Column(String(20), nullable=True)
    notes = Column(String(500), nullable=True)


class AssessmentRecord(TrackedRecordMixin, Base):
    __tablename__ = "assessment_records"

    KIND = RecordKind.ASSESSMENT
    PAYLOAD_FIELDS = (
        "assessment_name", "assessment_type", "score", "max_score",
        "date", "week", "unit", "notes", "is_excused",
    )
    ENUM_FIELDS = {"assessment_type": AssessmentType}

    assessment_name = Column(String(200), nullable=False)
    assessment_type = Column(SQLEnum(AssessmentType), nullable=False)
    score = Column(Float, nullable=False)
    max_score = Column(Float, nullable=False, default=100.0)
    date = Column(Date, nullable=False)
    week = Column(Integer, nullable=True)  # 1-10
    unit = Column(String(20), nullable=True)
    notes = Column(String(500), nullable=True)
    is_excused = Column(Boolean, default=False, nullable=False)


RECORD_MODELS = {
    RecordKind.ATTENDANCE: AttendanceRecord,
    RecordKind.ASSESSMENT: AssessmentRecord,
}
