"""
Student and group directory.

Students are owned centrally: admins add them, trainers only read the ones in
their assigned groups. Records reference students by id.
"""
import logging
import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError as SchemaValidationError
from sqlalchemy import select, func
from sqlalchemy.orm import Session

from skilllab.core.errors import PermissionDenied, ValidationError, NotFound
from skilllab.models.student import Group, Student
from skilllab.schemas.records import StudentCreate
from skilllab.security.session import SessionContext

logger = logging.getLogger(__name__)


class StudentImportResult(BaseModel):
    added: int = 0
    skipped: int = 0
    errors: List[str] = []


def normalize_name(name: str) -> str:
    return " ".join(name.split()).lower()


class StudentDirectory:
    """Admin-maintained student roster with duplicate detection."""

    def __init__(self, db: Session):
        self.db = db

    def add_group(
        self,
        session: SessionContext,
        group_id: str,
        name: str,
        year: int,
        current_unit: Optional[str] = None
    ) -> Group:
        self._require_admin(session, "add groups")
        if self.db.get(Group, group_id) is not None:
            raise ValidationError(f"Group {group_id} already exists")
        group = Group(id=group_id, name=name, year=year, current_unit=current_unit)
        self.db.add(group)
        self.db.commit()
        logger.info(f"Group {group_id} ({name}, year {year}) added by {session.user_id}")
        return group

    def add_student(self, session: SessionContext, data: Dict[str, Any]) -> Student:
        """Add one student; duplicates raise ValidationError."""
        self._require_admin(session, "add students")
        student = self._build(data)
        self._reject_duplicate(student, pending=[])
        self.db.add(student)
        self.db.commit()
        logger.info(f"Student {student.id} added to {student.group_id}/{student.year} by {session.user_id}")
        return student

    def add_students(self, session: SessionContext, rows: List[Dict[str, Any]]) -> StudentImportResult:
        """
        Bulk add, skipping duplicates.

        A row is skipped when a student with the same normalized name already
        exists in the same group and year (in the roster or earlier in this
        batch), or when its student number is already taken. Every skip is
        reported with a reason.
        """
        self._require_admin(session, "import students")
        result = StudentImportResult()
        pending: List[Student] = []

        for index, row in enumerate(rows, start=1):
            try:
                student = self._build(row)
                self._reject_duplicate(student, pending)
            except ValidationError as e:
                result.skipped += 1
                result.errors.append(f"Row {index}: {e.message}")
                continue
            pending.append(student)

        self.db.add_all(pending)
        self.db.commit()
        result.added = len(pending)

        logger.info(
            f"Student import by {session.user_id}: {result.added} added, {result.skipped} skipped"
        )
        return result

    def get(self, session: SessionContext, student_id: str) -> Student:
        student = self.db.get(Student, student_id)
        if student is None or not session.in_scope(student.group_id, student.year):
            raise NotFound(f"Student {student_id} not found")
        return student

    def list(self, session: SessionContext, group_id: Optional[str] = None, year: Optional[int] = None) -> List[Student]:
        """Students visible to the session, ordered by name."""
        if not session.is_active:
            return []
        stmt = select(Student)
        if group_id is not None:
            stmt = stmt.where(Student.group_id == group_id)
        if year is not None:
            stmt = stmt.where(Student.year == year)
        stmt = stmt.order_by(Student.name)
        students = self.db.execute(stmt).scalars().all()
        return [s for s in students if session.in_scope(s.group_id, s.year)]

    def _build(self, data: Dict[str, Any]) -> Student:
        try:
            parsed = StudentCreate(**data)
        except SchemaValidationError as e:
            raise ValidationError(f"Invalid student: {e}", details={"errors": e.errors()})
        return Student(
            id=parsed.id or f"student-{uuid.uuid4().hex}",
            name=parsed.name,
            student_number=parsed.student_number,
            email=parsed.email,
            group_id=parsed.group_id,
            year=parsed.year,
            unit=parsed.unit
        )

    def _reject_duplicate(self, student: Student, pending: List[Student]) -> None:
        normalized = normalize_name(student.name)

        for other in pending:
            if (normalize_name(other.name) == normalized
                    and (other.group_id, other.year) == (student.group_id, student.year)):
                raise ValidationError(f'"{student.name}" appears twice in this import')
            if student.student_number and other.student_number == student.student_number:
                raise ValidationError(f'Student number "{student.student_number}" appears twice in this import')

        same_place = self.db.execute(
            select(Student.name).where(Student.group_id == student.group_id, Student.year == student.year)
        ).scalars().all()
        if any(normalize_name(name) == normalized for name in same_place):
            raise ValidationError(
                f'"{student.name}" already exists in year {student.year}, group {student.group_id}'
            )

        if student.student_number:
            taken = self.db.execute(
                select(func.count(Student.id)).where(Student.student_number == student.student_number)
            ).scalar_one()
            if taken:
                raise ValidationError(f'Student number "{student.student_number}" already exists')

        if self.db.get(Student, student.id) is not None:
            raise ValidationError(f"Student {student.id} already exists")

    @staticmethod
    def _require_admin(session: SessionContext, action: str) -> None:
        if not (session.is_admin and session.is_active):
            raise PermissionDenied(f"Only an active admin can {action}")
