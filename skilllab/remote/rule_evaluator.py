"""
Server-side write rules for the remote document store.

Clients can be modified, so every write is re-validated here against the
stored document before it is accepted. The evaluator works on plain documents
and checks the conditions of ``RULE_TABLE`` itself; it shares only the tables,
not the client's evaluation code.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import ValidationError as SchemaValidationError

from skilllab.models.records import IDENTITY_FIELDS, LifecycleState, RecordKind, RECORD_MODELS
from skilllab.schemas.records import PAYLOAD_SCHEMAS
from skilllab.schemas.sync import RejectionReason
from skilllab.security.access_control import (
    Condition, Operation, RULE_TABLE, TRANSITIONS, REVIEWABLE_STATES
)
from skilllab.security.session import SessionContext, scope_key

logger = logging.getLogger(__name__)

DRAFT = LifecycleState.DRAFT.value
STAMP_FIELDS = ("exported_at", "exported_by", "reviewed_at", "reviewed_by")


@dataclass(frozen=True)
class Verdict:
    allowed: bool
    operation: Optional[Operation] = None
    reason: Optional[RejectionReason] = None
    message: Optional[str] = None

    @classmethod
    def accept(cls, operation: Operation) -> "Verdict":
        return cls(allowed=True, operation=operation)

    @classmethod
    def reject(cls, reason: RejectionReason, message: str, operation: Optional[Operation] = None) -> "Verdict":
        return cls(allowed=False, operation=operation, reason=reason, message=message)


class RuleRejection(Exception):
    def __init__(self, reason: RejectionReason, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


class RuleEvaluator:
    """Pure predicate over (actor, stored document, proposed document)."""

    # ==================== PERMISSIONS ====================

    def permits(self, actor: SessionContext, document: Dict[str, Any], operation: Operation) -> bool:
        """Rule-table decision for ``operation`` on a stored (or proposed) document."""
        if not actor.is_active:
            return False
        required = RULE_TABLE.get((actor.role, operation))
        if required is None:
            return False
        return all(self._holds(condition, actor, document) for condition in required)

    @staticmethod
    def _holds(condition: Condition, actor: SessionContext, document: Dict[str, Any]) -> bool:
        if condition == Condition.IN_SCOPE:
            if actor.is_admin:
                return True
            return scope_key(document["group_id"], int(document["year"])) in actor.scope_keys()
        if condition == Condition.IS_AUTHOR:
            return document.get("author_id") == actor.user_id
        if condition == Condition.IS_DRAFT:
            return document.get("lifecycle_state", DRAFT) == DRAFT
        return False

    # ==================== WRITES ====================

    def classify(self, stored: Optional[Dict[str, Any]], proposed: Optional[Dict[str, Any]]) -> Operation:
        """Infer the operation a write performs from the document diff."""
        if stored is None:
            return Operation.CREATE
        if proposed is None:
            return Operation.DELETE

        before = LifecycleState(stored["lifecycle_state"])
        after = LifecycleState(proposed["lifecycle_state"])
        if before != after:
            for operation, (sources, target) in TRANSITIONS.items():
                if before in sources and after == target:
                    return operation
            raise RuleRejection(
                RejectionReason.INVALID_TRANSITION,
                f"{before.value} -> {after.value} is not a lifecycle transition"
            )

        if proposed.get("reviewed_at") and proposed.get("reviewed_at") != stored.get("reviewed_at"):
            return Operation.REVIEW
        return Operation.UPDATE

    def evaluate(
        self,
        actor: SessionContext,
        stored: Optional[Dict[str, Any]],
        proposed: Optional[Dict[str, Any]],
        expected_edit_count: Optional[int]
    ) -> Verdict:
        operation = None
        try:
            self._check_concurrency(stored, proposed, expected_edit_count)
            operation = self.classify(stored, proposed)

            target = proposed if operation == Operation.CREATE else stored
            if not self.permits(actor, target, operation):
                raise RuleRejection(
                    RejectionReason.PERMISSION_DENIED,
                    f"{actor.role.value} {actor.user_id} may not {operation.value} {target['id']}"
                )

            if operation != Operation.DELETE:
                self._check_invariants(actor, operation, stored, proposed)
        except RuleRejection as rejection:
            logger.warning(
                f"Rejected write by {actor.user_id} ({rejection.reason.value}): {rejection.message}"
            )
            return Verdict.reject(rejection.reason, rejection.message, operation)

        return Verdict.accept(operation)

    @staticmethod
    def _check_concurrency(
        stored: Optional[Dict[str, Any]],
        proposed: Optional[Dict[str, Any]],
        expected_edit_count: Optional[int]
    ) -> None:
        if stored is None:
            if expected_edit_count is not None or proposed is None:
                raise RuleRejection(RejectionReason.NOT_FOUND, "record does not exist")
            return
        if expected_edit_count is None:
            raise RuleRejection(RejectionReason.STALE_WRITE, f"record {stored['id']} already exists")
        if expected_edit_count != stored["edit_count"]:
            raise RuleRejection(
                RejectionReason.STALE_WRITE,
                f"record {stored['id']} is at edit {stored['edit_count']}, write was based on {expected_edit_count}"
            )

    def _check_invariants(
        self,
        actor: SessionContext,
        operation: Operation,
        stored: Optional[Dict[str, Any]],
        proposed: Dict[str, Any]
    ) -> None:
        def fail(message: str) -> None:
            raise RuleRejection(RejectionReason.VALIDATION_FAILURE, message)

        try:
            kind = RecordKind(proposed.get("kind"))
        except ValueError:
            fail(f"unknown record kind {proposed.get('kind')!r}")

        self._check_payload(kind, proposed.get("payload") or {}, fail)

        if proposed.get("last_edited_by") != actor.user_id:
            fail("last_edited_by must be the writing user")

        state = proposed.get("lifecycle_state")
        if state == DRAFT:
            if proposed.get("exported_at") or proposed.get("exported_by"):
                fail("draft records carry no export stamp")
        elif not (proposed.get("exported_at") and proposed.get("exported_by")):
            fail(f"{state} records need exported_at and exported_by")

        if operation == Operation.CREATE:
            if state != DRAFT:
                fail("records are created as drafts")
            if proposed.get("edit_count") != 0:
                fail("new records start at edit 0")
            if proposed.get("reviewed_at") or proposed.get("reviewed_by"):
                fail("new records cannot be reviewed")
            if not actor.is_admin and proposed.get("author_id") != actor.user_id:
                fail("trainers create records under their own id")
            return

        if proposed.get("edit_count") != stored["edit_count"] + 1:
            fail(f"edit_count must advance to {stored['edit_count'] + 1}")

        for name in IDENTITY_FIELDS:
            if proposed.get(name) != stored.get(name):
                fail(f"{name} cannot change")

        if operation == Operation.UPDATE:
            for name in STAMP_FIELDS:
                if proposed.get(name) != stored.get(name):
                    fail(f"{name} cannot change in an edit")
            return

        if proposed.get("payload") != stored.get("payload"):
            fail(f"{operation.value} cannot change the record contents")

        if operation == Operation.EXPORT:
            if proposed.get("exported_by") != actor.user_id:
                fail("exported_by must be the exporting user")
        elif operation == Operation.LOCK:
            for name in STAMP_FIELDS:
                if proposed.get(name) != stored.get(name):
                    fail(f"{name} cannot change when locking")
        elif operation == Operation.REVIEW:
            if LifecycleState(stored["lifecycle_state"]) not in REVIEWABLE_STATES:
                raise RuleRejection(RejectionReason.INVALID_TRANSITION, "only exported records can be reviewed")
            if proposed.get("reviewed_by") != actor.user_id:
                fail("reviewed_by must be the reviewing user")

    @staticmethod
    def _check_payload(kind: RecordKind, payload: Dict[str, Any], fail) -> None:
        unknown = set(payload) - set(RECORD_MODELS[kind].PAYLOAD_FIELDS)
        if unknown:
            fail(f"unknown payload fields: {sorted(unknown)}")
        try:
            PAYLOAD_SCHEMAS[kind](**payload)
        except SchemaValidationError as e:
            fields = sorted({str(error["loc"][0]) for error in e.errors() if error["loc"]})
            fail(f"invalid payload fields: {fields}")
