"""
Identity and access control for tracked records.

- Session context handed out by the identity provider
- Shared rule table and the client-side permission check
"""

from .session import SessionContext, scope_key
from .access_control import (
    Operation,
    Condition,
    RULE_TABLE,
    TRANSITIONS,
    can_act_on,
    deny_reason,
    is_editable,
)

__all__ = [
    "SessionContext",
    "scope_key",
    "Operation",
    "Condition",
    "RULE_TABLE",
    "TRANSITIONS",
    "can_act_on",
    "deny_reason",
    "is_editable",
]
