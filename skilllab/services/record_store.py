"""
Local record cache.

Thin repository over the device-local SQLAlchemy session: typed lookups per
record subtype plus equality / membership predicate queries. Permission checks
live in the lifecycle engine, which is the only writer.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from skilllab.models.records import RECORD_MODELS, RecordKind, TrackedRecordMixin
from skilllab.models.student import Student


TrackedRecord = TrackedRecordMixin


class LocalRecordStore:
    """CRUD and predicate queries over the cached records."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, kind: RecordKind, record_id: str) -> Optional[TrackedRecord]:
        return self.db.get(RECORD_MODELS[RecordKind(kind)], record_id)

    def find(self, record_id: str) -> Optional[TrackedRecord]:
        """Look a record up by id across every subtype."""
        for model in RECORD_MODELS.values():
            record = self.db.get(model, record_id)
            if record is not None:
                return record
        return None

    def query(
        self,
        kind: RecordKind,
        equals: Optional[Dict[str, Any]] = None,
        members: Optional[Dict[str, Iterable[Any]]] = None,
        order_by: Sequence[str] = ("created_at", "id"),
    ) -> List[TrackedRecord]:
        model = RECORD_MODELS[RecordKind(kind)]
        stmt = select(model)

        for field_name, value in (equals or {}).items():
            stmt = stmt.where(self._column(model, field_name) == value)

        for field_name, values in (members or {}).items():
            values = list(values)
            if not values:
                # Empty membership matches nothing
                return []
            stmt = stmt.where(self._column(model, field_name).in_(values))

        stmt = stmt.order_by(*(self._column(model, name) for name in order_by))
        return list(self.db.execute(stmt).scalars().all())

    def add(self, record: TrackedRecord) -> None:
        self.db.add(record)

    def remove(self, record: TrackedRecord) -> None:
        self.db.delete(record)

    def get_student(self, student_id: str) -> Optional[Student]:
        return self.db.get(Student, student_id)

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    @staticmethod
    def _column(model, field_name: str):
        column = getattr(model, field_name, None)
        if column is None or not hasattr(column, "in_"):
            raise ValueError(f"{model.__name__} has no queryable field '{field_name}'")
        return column
