"""
Shared fixtures: in-memory local caches, an in-memory remote store, fixed
sessions and a controllable clock.
"""

import pytest
from datetime import date, datetime, timedelta

from skilllab.core.database import create_local_engine, create_local_session_factory, init_local_db
from skilllab.models.student import Student, Group
from skilllab.models.user import UserRole
from skilllab.remote.document_store import RemoteDocumentStore
from skilllab.remote.models import create_remote_engine, init_remote_db
from skilllab.security.session import SessionContext
from skilllab.services.lifecycle_engine import LifecycleEngine


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_local_session():
    """Fresh in-memory local cache seeded with the student roster."""
    engine = create_local_engine("sqlite://")
    init_local_db(engine)
    session = create_local_session_factory(engine)()

    session.add_all([
        Group(id="group-a", name="Group A", year=1),
        Group(id="group-b", name="Group B", year=2),
        Student(id="student-a1", name="Amal Hassan", student_number="A-001", group_id="group-a", year=1),
        Student(id="student-a2", name="Omar Saleh", student_number="A-002", group_id="group-a", year=1),
        Student(id="student-b1", name="Sara Nasser", student_number="B-001", group_id="group-b", year=2),
    ])
    session.commit()
    return session


def attendance_input(student_id="student-a1", group_id="group-a", year=1, **extra):
    data = {
        "student_id": student_id,
        "group_id": group_id,
        "year": year,
        "date": date(2024, 9, 2),
        "status": "present",
    }
    data.update(extra)
    return data


def assessment_input(student_id="student-a1", group_id="group-a", year=1, **extra):
    data = {
        "student_id": student_id,
        "group_id": group_id,
        "year": year,
        "assessment_name": "Safety quiz",
        "assessment_type": "quiz",
        "score": 8,
        "max_score": 10,
        "date": date(2024, 9, 3),
        "week": 1,
    }
    data.update(extra)
    return data


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 9, 2, 8, 0, 0))


@pytest.fixture
def db_session():
    session = make_local_session()
    yield session
    session.close()


@pytest.fixture
def engine(db_session, clock):
    return LifecycleEngine(db_session, clock=clock)


@pytest.fixture
def admin():
    return SessionContext(user_id="admin-1", role=UserRole.ADMIN)


@pytest.fixture
def trainer():
    return SessionContext(user_id="trainer-1", role=UserRole.TRAINER, scope=frozenset({("group-a", 1)}))


@pytest.fixture
def colleague():
    """Trainer sharing the same group."""
    return SessionContext(user_id="trainer-2", role=UserRole.TRAINER, scope=frozenset({("group-a", 1)}))


@pytest.fixture
def outsider():
    """Trainer assigned elsewhere."""
    return SessionContext(user_id="trainer-3", role=UserRole.TRAINER, scope=frozenset({("group-b", 2)}))


@pytest.fixture
async def document_store():
    remote_engine = create_remote_engine("sqlite+aiosqlite://")
    await init_remote_db(remote_engine)
    yield RemoteDocumentStore(remote_engine)
    await remote_engine.dispose()
