"""Tests for the presentation-layer intent envelope."""

import pytest

from skilllab.models.records import RecordKind
from skilllab.models.user import UserRole
from skilllab.services.intents import IntentHandler

from conftest import attendance_input


@pytest.fixture
def handler(engine):
    return IntentHandler(engine)


class TestIntentHandler:
    def test_create_returns_record_view(self, handler, trainer):
        response = handler.dispatch(trainer, "create", {"kind": "attendance", "data": attendance_input()})

        assert response["success"] is True
        data = response["data"]
        assert data["lifecycle_state"] == "draft"
        assert data["is_editable"] is True
        assert data["is_locked"] is False
        assert data["status_label"] == "Draft"
        assert data["pending_sync"] is True

    def test_permission_error_envelope(self, handler, engine, trainer, colleague):
        record = engine.create(trainer, RecordKind.ATTENDANCE, attendance_input())
        response = handler.dispatch(colleague, "update", {
            "record_id": record.id, "patch": {"notes": "x"}, "expected_edit_count": 0
        })

        assert response == {
            "success": False,
            "errorKind": "PermissionDenied",
            "message": response["message"],
        }
        assert "another trainer" in response["message"]

    def test_stale_write_envelope(self, handler, engine, trainer):
        record = engine.create(trainer, RecordKind.ATTENDANCE, attendance_input())
        handler.dispatch(trainer, "update", {"record_id": record.id, "patch": {"notes": "a"}, "expected_edit_count": 0})
        response = handler.dispatch(
            trainer, "update", {"record_id": record.id, "patch": {"notes": "b"}, "expected_edit_count": 0}
        )
        assert response["errorKind"] == "StaleWrite"

    def test_export_batch_and_views(self, handler, engine, trainer):
        record = engine.create(trainer, RecordKind.ATTENDANCE, attendance_input())
        response = handler.dispatch(trainer, "exportBatch", {"record_ids": [record.id, "attendance-missing"]})

        assert response["success"] is True
        assert response["data"]["succeeded"] == [record.id]
        assert response["data"]["rejected"][0]["error_kind"] == "NotFound"

        exported = handler.dispatch(trainer, "list", {"kind": "attendance", "view": "exported"})["data"]
        assert [item["id"] for item in exported] == [record.id]
        assert exported[0]["is_editable"] is False
        assert exported[0]["status_label"] == "Exported to Admin"

    def test_admin_intents(self, handler, engine, trainer, admin):
        record = engine.create(trainer, RecordKind.ATTENDANCE, attendance_input())
        engine.export_batch(trainer, [record.id])

        assert handler.dispatch(admin, "markReviewed", {"record_id": record.id})["success"]
        locked = handler.dispatch(admin, "lock", {"record_id": record.id})["data"]
        assert locked["status_label"] == "Locked by Admin"
        unlocked = handler.dispatch(admin, "unlock", {"record_id": record.id})["data"]
        assert unlocked["lifecycle_state"] == "draft"

        response = handler.dispatch(trainer, "get", {"kind": "attendance", "record_id": record.id})
        assert response["data"]["is_editable"] is True

    def test_delete(self, handler, engine, trainer):
        record = engine.create(trainer, RecordKind.ATTENDANCE, attendance_input())
        response = handler.dispatch(trainer, "delete", {"record_id": record.id})
        assert response == {"success": True, "data": {"record_id": record.id}}

    def test_unknown_intent(self, handler, trainer):
        response = handler.dispatch(trainer, "approve", {})
        assert response["success"] is False
        assert response["errorKind"] == "ValidationError"

    def test_missing_field(self, handler, trainer):
        response = handler.dispatch(trainer, "unlock", {})
        assert response["errorKind"] == "ValidationError"
        assert "record_id" in response["message"]

    def test_sync_intents_need_coordinator(self, handler, trainer):
        response = handler.dispatch(trainer, "syncStatus")
        assert response["errorKind"] == "ValidationError"


class TestDirectoryIntents:
    def test_admin_manages_students(self, handler, admin, trainer):
        added = handler.dispatch(admin, "addStudent", {
            "data": {"name": "Layla Karim", "group_id": "group-a", "year": 1}
        })
        assert added["success"] is True
        assert added["data"]["group_id"] == "group-a"

        imported = handler.dispatch(admin, "importStudents", {"rows": [
            {"name": "Omar Saleh", "group_id": "group-a", "year": 1},
            {"name": "Yusuf Ali", "group_id": "group-a", "year": 1},
        ]})
        assert imported["data"]["added"] == 1
        assert imported["data"]["skipped"] == 1

        listed = handler.dispatch(trainer, "listStudents", {"group_id": "group-a", "year": 1})["data"]
        assert {s["name"] for s in listed} == {"Amal Hassan", "Omar Saleh", "Layla Karim", "Yusuf Ali"}

    def test_trainer_cannot_add_student(self, handler, trainer):
        response = handler.dispatch(trainer, "addStudent", {
            "data": {"name": "Layla Karim", "group_id": "group-a", "year": 1}
        })
        assert response["errorKind"] == "PermissionDenied"

    def test_user_intents(self, handler, admin):
        handler.users.create_user(None, "headoffice", UserRole.ADMIN, user_id="admin-1")
        created = handler.dispatch(admin, "createUser", {
            "username": "trainer_four", "role": "trainer", "user_id": "trainer-4"
        })
        assert created["success"] is True
        assert created["data"]["role"] == "trainer"

        scoped = handler.dispatch(admin, "setScope", {"user_id": "trainer-4", "scope": [["group-b", 2]]})
        assert scoped["data"]["scope"] == [["group-b", 2]]

        assert handler.dispatch(admin, "deactivateUser", {"user_id": "trainer-4"})["data"]["is_active"] is False

    def test_bad_scope_entry(self, handler, admin):
        response = handler.dispatch(admin, "setScope", {"user_id": "trainer-4", "scope": ["group-b"]})
        assert response["errorKind"] == "ValidationError"

    def test_unknown_role(self, handler, admin):
        response = handler.dispatch(admin, "createUser", {"username": "someone", "role": "owner"})
        assert response["errorKind"] == "ValidationError"
