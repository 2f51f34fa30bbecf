"""
Session context handed to every lifecycle and permission call.

The identity provider supplies ``{userId, role, assignmentScope}`` once at
session start; the context is frozen for the rest of the session.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Tuple

from skilllab.models.user import User, UserRole


ScopePair = Tuple[str, int]


def scope_key(group_id: str, year: int) -> str:
    """Flatten a (group, year) pair into a single queryable key."""
    return f"{group_id}:{year}"


@dataclass(frozen=True)
class SessionContext:
    """Immutable identity of the acting user."""
    user_id: str
    role: UserRole
    scope: FrozenSet[ScopePair] = field(default_factory=frozenset)
    is_active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def in_scope(self, group_id: str, year: int) -> bool:
        if self.is_admin:
            return True
        return (group_id, year) in self.scope

    def scope_keys(self) -> List[str]:
        return sorted(scope_key(group_id, year) for group_id, year in self.scope)

    def to_claims(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "role": self.role.value,
            "assignmentScope": [
                {"groupId": group_id, "year": year}
                for group_id, year in sorted(self.scope)
            ],
            "isActive": self.is_active,
        }

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "SessionContext":
        return cls(
            user_id=claims["userId"],
            role=UserRole(claims["role"]),
            scope=_freeze_scope(
                (item["groupId"], int(item["year"]))
                for item in claims.get("assignmentScope", [])
            ),
            is_active=claims.get("isActive", True),
        )

    @classmethod
    def from_user(cls, user: User) -> "SessionContext":
        return cls(
            user_id=user.id,
            role=UserRole(user.role),
            scope=_freeze_scope((a.group_id, a.year) for a in user.assignments),
            is_active=bool(user.is_active),
        )


def _freeze_scope(pairs: Iterable[ScopePair]) -> FrozenSet[ScopePair]:
    return frozenset(pairs)
