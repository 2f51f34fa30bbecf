"""
Tests for the shared rule table and can_act_on.
"""

import itertools
import pytest

from skilllab.models.records import LifecycleState
from skilllab.models.user import UserRole
from skilllab.security.access_control import (
    Operation, RULE_TABLE, RecordFacts, can_act_on, deny_reason, is_editable, transition_target
)
from skilllab.security.session import SessionContext


def facts(state=LifecycleState.DRAFT, author="trainer-1", group="group-a", year=1):
    return RecordFacts(group_id=group, year=year, author_id=author, lifecycle_state=state)


class TestRuleTable:
    """The table covers every role/operation pair."""

    def test_every_pair_declared(self):
        for role, operation in itertools.product(UserRole, Operation):
            assert (role, operation) in RULE_TABLE

    def test_admin_never_exports(self, admin):
        for state in LifecycleState:
            assert can_act_on(admin, facts(state=state), Operation.EXPORT) is False

    def test_trainer_never_unlocks_locks_or_reviews(self, trainer):
        for operation in (Operation.UNLOCK, Operation.LOCK, Operation.REVIEW):
            for state in LifecycleState:
                assert can_act_on(trainer, facts(state=state), operation) is False


class TestCanActOn:
    """Test cases for individual permission decisions."""

    def test_trainer_reads_own_records_in_scope(self, trainer):
        assert can_act_on(trainer, facts(), Operation.READ)

    def test_trainer_cannot_read_colleague_records(self, trainer):
        assert not can_act_on(trainer, facts(author="trainer-2"), Operation.READ)

    def test_trainer_scope_isolation(self, trainer):
        # Own authorship does not help outside the assigned (group, year)
        assert not can_act_on(trainer, facts(group="group-b"), Operation.READ)
        assert not can_act_on(trainer, facts(year=2), Operation.READ)

    def test_trainer_create_depends_only_on_scope(self, trainer):
        assert can_act_on(trainer, facts(author=None), Operation.CREATE)
        assert not can_act_on(trainer, facts(group="group-b", year=2), Operation.CREATE)

    @pytest.mark.parametrize("operation", [Operation.UPDATE, Operation.DELETE, Operation.EXPORT])
    def test_trainer_loses_write_access_after_export(self, trainer, operation):
        assert can_act_on(trainer, facts(), operation)
        assert not can_act_on(trainer, facts(state=LifecycleState.EXPORTED), operation)
        assert not can_act_on(trainer, facts(state=LifecycleState.LOCKED), operation)

    def test_admin_may_edit_in_any_state(self, admin):
        for state in LifecycleState:
            assert can_act_on(admin, facts(state=state, author="trainer-9", group="group-z"), Operation.UPDATE)

    def test_inactive_session_denied_everything(self):
        inactive = SessionContext(user_id="admin-2", role=UserRole.ADMIN, is_active=False)
        for operation in Operation:
            assert deny_reason(inactive, facts(), operation) == "account is deactivated"

    def test_decision_is_deterministic(self, trainer, admin):
        for session, operation, state in itertools.product((trainer, admin), Operation, LifecycleState):
            target = facts(state=state)
            first = can_act_on(session, target, operation)
            assert all(can_act_on(session, target, operation) == first for _ in range(3))

    def test_accepts_documents(self, trainer):
        document = {"group_id": "group-a", "year": 1, "author_id": "trainer-1", "lifecycle_state": "exported"}
        assert can_act_on(trainer, document, Operation.READ)
        assert not is_editable(trainer, document)

    def test_deny_reason_names_failed_condition(self, trainer):
        reason = deny_reason(trainer, facts(author="trainer-2"), Operation.UPDATE)
        assert "another trainer" in reason


class TestTransitions:
    def test_legal_transitions(self):
        assert transition_target(Operation.EXPORT, LifecycleState.DRAFT) == LifecycleState.EXPORTED
        assert transition_target(Operation.LOCK, LifecycleState.EXPORTED) == LifecycleState.LOCKED
        assert transition_target(Operation.UNLOCK, LifecycleState.EXPORTED) == LifecycleState.DRAFT
        assert transition_target(Operation.UNLOCK, LifecycleState.LOCKED) == LifecycleState.DRAFT

    def test_illegal_transitions(self):
        assert transition_target(Operation.EXPORT, LifecycleState.EXPORTED) is None
        assert transition_target(Operation.LOCK, LifecycleState.DRAFT) is None
        assert transition_target(Operation.UNLOCK, LifecycleState.DRAFT) is None


class TestSessionContext:
    def test_claims_round_trip(self, trainer):
        assert SessionContext.from_claims(trainer.to_claims()) == trainer

    def test_session_is_frozen(self, trainer):
        with pytest.raises(Exception):
            trainer.role = UserRole.ADMIN
