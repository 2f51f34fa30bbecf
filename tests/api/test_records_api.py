"""
Tests for the records API and the HTTP remote store client.
"""

import pytest
import httpx

from main import app
from skilllab.core.security import session_token_manager
from skilllab.schemas.sync import RecordQuery, RejectionReason

pytestmark = pytest.mark.asyncio


def new_document(author="trainer-1", group="group-a", year=1, edit_count=0, **overrides):
    document = {
        "id": "attendance-api-1",
        "kind": "attendance",
        "student_id": "student-a1",
        "group_id": group,
        "year": year,
        "author_id": author,
        "lifecycle_state": "draft",
        "exported_at": None,
        "exported_by": None,
        "edit_count": edit_count,
        "last_edited_at": "2024-09-02T08:00:00",
        "last_edited_by": author,
        "reviewed_at": None,
        "reviewed_by": None,
        "payload": {"date": "2024-09-02", "status": "present", "unit": None, "notes": None},
    }
    document.update(overrides)
    return document


@pytest.fixture
async def client(document_store):
    app.state.document_store = document_store
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client


def auth(session):
    return {"Authorization": f"Bearer {session_token_manager.create_session_token(session)}"}


class TestRecordsAPI:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200

    async def test_put_create_and_query(self, client, trainer, colleague):
        response = await client.put(
            "/api/v1/records/attendance/attendance-api-1",
            json={"document": new_document(), "expected_edit_count": None},
            headers=auth(trainer)
        )
        assert response.status_code == 200
        assert response.json()["accepted"] is True
        assert response.json()["record"]["scope_key"] == "group-a:1"

        mine = await client.post("/api/v1/records/query", json={"kind": "attendance"}, headers=auth(trainer))
        assert mine.json()["count"] == 1

        # Same group, different author: filtered out by the read rule
        theirs = await client.post("/api/v1/records/query", json={"kind": "attendance"}, headers=auth(colleague))
        assert theirs.json()["count"] == 0

    async def test_stale_write_is_409(self, client, trainer):
        await client.put(
            "/api/v1/records/attendance/attendance-api-1",
            json={"document": new_document(), "expected_edit_count": None},
            headers=auth(trainer)
        )
        response = await client.put(
            "/api/v1/records/attendance/attendance-api-1",
            json={"document": new_document(edit_count=0), "expected_edit_count": None},
            headers=auth(trainer)
        )
        assert response.status_code == 409
        assert response.json()["reason"] == RejectionReason.STALE_WRITE.value

    async def test_out_of_scope_create_is_403(self, client, outsider):
        response = await client.put(
            "/api/v1/records/attendance/attendance-api-1",
            json={"document": new_document(author="trainer-3"), "expected_edit_count": None},
            headers=auth(outsider)
        )
        assert response.status_code == 403

    async def test_url_must_match_document(self, client, trainer):
        response = await client.put(
            "/api/v1/records/attendance/other-id",
            json={"document": new_document(), "expected_edit_count": None},
            headers=auth(trainer)
        )
        assert response.status_code == 422

    async def test_delete_missing_is_404(self, client, admin):
        response = await client.delete(
            "/api/v1/records/attendance/nothing-here",
            params={"expected_edit_count": 0},
            headers=auth(admin)
        )
        assert response.status_code == 404

    async def test_invalid_token(self, client):
        response = await client.post(
            "/api/v1/records/query", json={"kind": "attendance"},
            headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.status_code == 401


class TestHttpRemoteStore:
    """HttpRemoteStore maps HTTP outcomes onto write results and errors."""

    async def test_unreachable_server_is_transient(self, trainer):
        from skilllab.core.errors import TransientNetworkError
        from skilllab.services.sync.transport import HttpRemoteStore

        token = session_token_manager.create_session_token(trainer)
        async with HttpRemoteStore(token, base_url="http://127.0.0.1:9", timeout=1) as remote:
            with pytest.raises(TransientNetworkError):
                await remote.query(RecordQuery(kind="attendance"))
