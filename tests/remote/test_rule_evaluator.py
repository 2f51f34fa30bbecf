"""
Tests for the server-side rule evaluator, including parity with can_act_on.
"""

import itertools
import pytest

from skilllab.models.records import LifecycleState
from skilllab.models.user import UserRole
from skilllab.remote.rule_evaluator import RuleEvaluator
from skilllab.schemas.sync import RejectionReason
from skilllab.security.access_control import Operation, can_act_on, transition_target, REVIEWABLE_STATES
from skilllab.security.session import SessionContext

EXPORTED_AT = "2024-09-05T10:00:00"
NOW = "2024-09-06T09:00:00"


def stored_document(state=LifecycleState.DRAFT, author="trainer-1", group="group-a", year=1, edit_count=3):
    finalized = state != LifecycleState.DRAFT
    return {
        "id": "attendance-1",
        "kind": "attendance",
        "student_id": "student-a1",
        "group_id": group,
        "year": year,
        "author_id": author,
        "lifecycle_state": state.value,
        "exported_at": EXPORTED_AT if finalized else None,
        "exported_by": author if finalized else None,
        "edit_count": edit_count,
        "last_edited_at": EXPORTED_AT,
        "last_edited_by": author,
        "reviewed_at": None,
        "reviewed_by": None,
        "payload": {"date": "2024-09-02", "status": "present", "unit": None, "notes": None},
    }


def propose(stored, actor_id, operation):
    """What a well-behaved client sends for ``operation``."""
    if operation == Operation.DELETE:
        return None
    doc = dict(stored, payload=dict(stored["payload"]))
    doc["edit_count"] = stored["edit_count"] + 1
    doc["last_edited_at"] = NOW
    doc["last_edited_by"] = actor_id

    if operation == Operation.UPDATE:
        doc["payload"]["status"] = "late"
    elif operation == Operation.EXPORT:
        doc.update(lifecycle_state="exported", exported_at=NOW, exported_by=actor_id)
    elif operation == Operation.UNLOCK:
        doc.update(lifecycle_state="draft", exported_at=None, exported_by=None, reviewed_at=None, reviewed_by=None)
    elif operation == Operation.LOCK:
        doc["lifecycle_state"] = "locked"
    elif operation == Operation.REVIEW:
        doc.update(reviewed_at=NOW, reviewed_by=actor_id)
    return doc


def is_legal(operation, state):
    if operation in (Operation.EXPORT, Operation.UNLOCK, Operation.LOCK):
        return transition_target(operation, state) is not None
    if operation == Operation.REVIEW:
        return state in REVIEWABLE_STATES
    return True


COMBINATIONS = list(itertools.product(
    UserRole,                      # role
    (True, False),                 # active
    (True, False),                 # in scope
    (True, False),                 # author
    LifecycleState,                # state
))


@pytest.fixture
def evaluator():
    return RuleEvaluator()


def build_actor(role, active, in_scope):
    scope = frozenset({("group-a", 1)}) if in_scope else frozenset({("group-b", 2)})
    return SessionContext(user_id="trainer-1" if role == UserRole.TRAINER else "admin-1",
                          role=role, scope=scope, is_active=active)


class TestParityWithClient:
    """Every decision of the evaluator matches can_act_on."""

    @pytest.mark.parametrize("role,active,in_scope,is_author,state", COMBINATIONS)
    def test_permission_parity(self, evaluator, role, active, in_scope, is_author, state):
        actor = build_actor(role, active, in_scope)
        document = stored_document(state=state, author=actor.user_id if is_author else "someone-else")
        for operation in Operation:
            assert evaluator.permits(actor, document, operation) == can_act_on(actor, document, operation), operation

    @pytest.mark.parametrize("role,active,in_scope,is_author,state", COMBINATIONS)
    def test_write_parity(self, evaluator, role, active, in_scope, is_author, state):
        actor = build_actor(role, active, in_scope)
        stored = stored_document(state=state, author=actor.user_id if is_author else "someone-else")
        for operation in Operation:
            if operation in (Operation.READ, Operation.CREATE) or not is_legal(operation, state):
                continue
            proposed = propose(stored, actor.user_id, operation)
            verdict = evaluator.evaluate(actor, stored, proposed, stored["edit_count"])
            assert verdict.allowed == can_act_on(actor, stored, operation), (operation, verdict.message)
            if verdict.allowed:
                assert verdict.operation == operation

    @pytest.mark.parametrize("role,active,in_scope", list(itertools.product(UserRole, (True, False), (True, False))))
    def test_create_parity(self, evaluator, role, active, in_scope):
        actor = build_actor(role, active, in_scope)
        proposed = stored_document(author=actor.user_id, edit_count=0)
        proposed["last_edited_by"] = actor.user_id
        verdict = evaluator.evaluate(actor, None, proposed, None)
        assert verdict.allowed == can_act_on(actor, proposed, Operation.CREATE)


class TestConcurrency:
    def test_stale_edit_count_rejected(self, evaluator, trainer):
        stored = stored_document(edit_count=4)
        proposed = propose(stored_document(edit_count=3), "trainer-1", Operation.UPDATE)
        verdict = evaluator.evaluate(trainer, stored, proposed, 3)
        assert verdict.reason == RejectionReason.STALE_WRITE

    def test_create_over_existing_rejected(self, evaluator, trainer):
        stored = stored_document()
        verdict = evaluator.evaluate(trainer, stored, stored_document(edit_count=0), None)
        assert verdict.reason == RejectionReason.STALE_WRITE

    def test_update_of_missing_record(self, evaluator, trainer):
        verdict = evaluator.evaluate(trainer, None, stored_document(), 3)
        assert verdict.reason == RejectionReason.NOT_FOUND


class TestInvariants:
    """Well-permitted writes that break record invariants."""

    def test_edit_count_must_advance_by_one(self, evaluator, trainer):
        stored = stored_document()
        proposed = propose(stored, "trainer-1", Operation.UPDATE)
        proposed["edit_count"] += 1
        verdict = evaluator.evaluate(trainer, stored, proposed, 3)
        assert verdict.reason == RejectionReason.VALIDATION_FAILURE

    def test_identity_fields_immutable(self, evaluator, admin):
        stored = stored_document()
        proposed = propose(stored, "admin-1", Operation.UPDATE)
        proposed["author_id"] = "admin-1"
        verdict = evaluator.evaluate(admin, stored, proposed, 3)
        assert verdict.reason == RejectionReason.VALIDATION_FAILURE
        assert "author_id" in verdict.message

    def test_last_edited_by_must_be_actor(self, evaluator, trainer):
        stored = stored_document()
        proposed = propose(stored, "trainer-2", Operation.UPDATE)
        assert not evaluator.evaluate(trainer, stored, proposed, 3).allowed

    def test_export_cannot_change_contents(self, evaluator, trainer):
        stored = stored_document()
        proposed = propose(stored, "trainer-1", Operation.EXPORT)
        proposed["payload"]["status"] = "absent"
        verdict = evaluator.evaluate(trainer, stored, proposed, 3)
        assert verdict.reason == RejectionReason.VALIDATION_FAILURE

    def test_export_requires_stamp(self, evaluator, trainer):
        stored = stored_document()
        proposed = propose(stored, "trainer-1", Operation.EXPORT)
        proposed["exported_at"] = None
        assert not evaluator.evaluate(trainer, stored, proposed, 3).allowed

    def test_skipping_states_is_invalid(self, evaluator, admin):
        stored = stored_document()
        proposed = propose(stored, "admin-1", Operation.UPDATE)
        proposed.update(lifecycle_state="locked", exported_at=NOW, exported_by="admin-1")
        verdict = evaluator.evaluate(admin, stored, proposed, 3)
        assert verdict.reason == RejectionReason.INVALID_TRANSITION

    def test_trainer_cannot_create_for_someone_else(self, evaluator, trainer):
        proposed = stored_document(author="trainer-2", edit_count=0)
        proposed["last_edited_by"] = "trainer-1"
        verdict = evaluator.evaluate(trainer, None, proposed, None)
        assert verdict.reason == RejectionReason.VALIDATION_FAILURE

    def test_score_above_max_rejected(self, evaluator, trainer):
        stored = stored_document()
        stored.update(id="assessment-1", kind="assessment", payload={
            "assessment_name": "Quiz", "assessment_type": "quiz", "score": 5, "max_score": 10,
            "date": "2024-09-02", "week": 1, "unit": None, "notes": None, "is_excused": False,
        })
        proposed = propose(stored, "trainer-1", Operation.UPDATE)
        proposed["payload"] = dict(stored["payload"], score=11)
        assert evaluator.evaluate(trainer, stored, proposed, 3).reason == RejectionReason.VALIDATION_FAILURE

    def test_create_with_cleared_required_fields_rejected(self, evaluator, trainer):
        proposed = stored_document(edit_count=0)
        assert evaluator.evaluate(trainer, None, proposed, None).allowed

        proposed["payload"] = dict(proposed["payload"], status=None, date=None)
        verdict = evaluator.evaluate(trainer, None, proposed, None)
        assert not verdict.allowed
        assert verdict.reason == RejectionReason.VALIDATION_FAILURE
        assert "date" in verdict.message and "status" in verdict.message

    def test_update_dropping_required_field_rejected(self, evaluator, trainer):
        stored = stored_document()
        proposed = propose(stored, "trainer-1", Operation.UPDATE)
        del proposed["payload"]["status"]
        verdict = evaluator.evaluate(trainer, stored, proposed, 3)
        assert verdict.reason == RejectionReason.VALIDATION_FAILURE

    def test_assessment_without_score_rejected(self, evaluator, trainer):
        proposed = stored_document(edit_count=0)
        proposed.update(id="assessment-1", kind="assessment", payload={
            "assessment_name": "Quiz", "assessment_type": "quiz", "score": None, "max_score": 10,
            "date": "2024-09-02", "week": 1, "unit": None, "notes": None, "is_excused": False,
        })
        verdict = evaluator.evaluate(trainer, None, proposed, None)
        assert verdict.reason == RejectionReason.VALIDATION_FAILURE
        assert "score" in verdict.message
