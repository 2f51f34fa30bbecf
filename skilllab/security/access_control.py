"""
Role-based access control for tracked records.

``RULE_TABLE`` is the single declarative statement of who may do what to a
record. ``can_act_on`` evaluates it for the client; the remote rule evaluator
evaluates the same table against stored documents. ``TRANSITIONS`` lists the
legal lifecycle moves and is shared the same way.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple

from skilllab.models.records import LifecycleState
from skilllab.models.user import UserRole
from skilllab.security.session import SessionContext


class Operation(str, Enum):
    """Operations a user can attempt on a record."""
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    EXPORT = "export"
    UNLOCK = "unlock"
    LOCK = "lock"
    REVIEW = "review"


class Condition(str, Enum):
    """Named predicates a rule may require."""
    IN_SCOPE = "in_scope"
    IS_AUTHOR = "is_author"
    IS_DRAFT = "is_draft"


# (role, operation) -> required conditions; None means the role may never do it.
# An empty tuple grants unconditionally.
RULE_TABLE: Dict[Tuple[UserRole, Operation], Optional[Tuple[Condition, ...]]] = {
    (UserRole.ADMIN, Operation.READ): (),
    (UserRole.TRAINER, Operation.READ): (Condition.IN_SCOPE, Condition.IS_AUTHOR),

    (UserRole.ADMIN, Operation.CREATE): (),
    (UserRole.TRAINER, Operation.CREATE): (Condition.IN_SCOPE,),

    (UserRole.ADMIN, Operation.UPDATE): (),
    (UserRole.TRAINER, Operation.UPDATE): (Condition.IN_SCOPE, Condition.IS_AUTHOR, Condition.IS_DRAFT),

    (UserRole.ADMIN, Operation.DELETE): (),
    (UserRole.TRAINER, Operation.DELETE): (Condition.IN_SCOPE, Condition.IS_AUTHOR, Condition.IS_DRAFT),

    (UserRole.ADMIN, Operation.EXPORT): None,
    (UserRole.TRAINER, Operation.EXPORT): (Condition.IN_SCOPE, Condition.IS_AUTHOR, Condition.IS_DRAFT),

    (UserRole.ADMIN, Operation.UNLOCK): (),
    (UserRole.TRAINER, Operation.UNLOCK): None,

    (UserRole.ADMIN, Operation.LOCK): (),
    (UserRole.TRAINER, Operation.LOCK): None,

    (UserRole.ADMIN, Operation.REVIEW): (),
    (UserRole.TRAINER, Operation.REVIEW): None,
}

# operation -> (states it may start from, state it ends in)
TRANSITIONS: Dict[Operation, Tuple[FrozenSet[LifecycleState], LifecycleState]] = {
    Operation.EXPORT: (frozenset({LifecycleState.DRAFT}), LifecycleState.EXPORTED),
    Operation.UNLOCK: (frozenset({LifecycleState.EXPORTED, LifecycleState.LOCKED}), LifecycleState.DRAFT),
    Operation.LOCK: (frozenset({LifecycleState.EXPORTED}), LifecycleState.LOCKED),
}

# Review stamps an exported or locked record without moving it
REVIEWABLE_STATES = frozenset({LifecycleState.EXPORTED, LifecycleState.LOCKED})

CONDITION_MESSAGES = {
    Condition.IN_SCOPE: "outside your assigned groups",
    Condition.IS_AUTHOR: "created by another trainer",
    Condition.IS_DRAFT: "no longer a draft",
}


@dataclass(frozen=True)
class RecordFacts:
    """The parts of a record the rules look at."""
    group_id: str
    year: int
    author_id: Optional[str] = None
    lifecycle_state: LifecycleState = LifecycleState.DRAFT

    @classmethod
    def of(cls, target: Any) -> "RecordFacts":
        """Build facts from a record, a student (creation target) or a document."""
        if isinstance(target, RecordFacts):
            return target
        if isinstance(target, dict):
            return cls(
                group_id=target["group_id"],
                year=int(target["year"]),
                author_id=target.get("author_id"),
                lifecycle_state=LifecycleState(target.get("lifecycle_state", LifecycleState.DRAFT)),
            )
        return cls(
            group_id=target.group_id,
            year=target.year,
            author_id=getattr(target, "author_id", None),
            lifecycle_state=LifecycleState(
                getattr(target, "lifecycle_state", None) or LifecycleState.DRAFT
            ),
        )


def _condition_holds(condition: Condition, session: SessionContext, facts: RecordFacts) -> bool:
    if condition == Condition.IN_SCOPE:
        return session.in_scope(facts.group_id, facts.year)
    if condition == Condition.IS_AUTHOR:
        return facts.author_id == session.user_id
    if condition == Condition.IS_DRAFT:
        return facts.lifecycle_state == LifecycleState.DRAFT
    raise ValueError(f"Unknown condition: {condition}")


def deny_reason(session: SessionContext, target: Any, operation: Operation) -> Optional[str]:
    """Explain why ``operation`` is refused, or return None when allowed."""
    if not session.is_active:
        return "account is deactivated"

    required = RULE_TABLE.get((session.role, operation))
    if required is None:
        return f"role '{session.role.value}' may not {operation.value} records"

    facts = RecordFacts.of(target)
    for condition in required:
        if not _condition_holds(condition, session, facts):
            return f"cannot {operation.value}: record is {CONDITION_MESSAGES[condition]}"
    return None


def can_act_on(session: SessionContext, target: Any, operation: Operation) -> bool:
    """
    Decide whether the session may perform ``operation`` on ``target``.

    Pure function of role, scope and record state. For ``create`` the target
    is the student (or anything with ``group_id`` and ``year``).
    """
    return deny_reason(session, target, operation) is None


def is_editable(session: SessionContext, record: Any) -> bool:
    return can_act_on(session, record, Operation.UPDATE)


def transition_target(operation: Operation, current: LifecycleState) -> Optional[LifecycleState]:
    """State reached by a lifecycle operation, or None when it is not legal from ``current``."""
    sources, target = TRANSITIONS[operation]
    if current not in sources:
        return None
    return target
