"""
User directory acting as the identity provider.

Hands out immutable ``SessionContext`` objects; only admins create users or
change a trainer's assignment scope. Users are deactivated, never deleted.
"""
import logging
import uuid
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from skilllab.core.errors import PermissionDenied, ValidationError, NotFound
from skilllab.models.user import User, UserRole, TrainerAssignment
from skilllab.security.session import SessionContext

logger = logging.getLogger(__name__)


class UserDirectory:
    def __init__(self, db: Session):
        self.db = db

    def create_user(
        self,
        session: Optional[SessionContext],
        username: str,
        role: UserRole,
        email: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> User:
        """
        Create a user.

        The very first user may be created without a session (bootstrap) and
        must be an admin; after that an active admin session is required.
        """
        bootstrap = self._user_count() == 0
        if bootstrap:
            if UserRole(role) != UserRole.ADMIN:
                raise ValidationError("The first user must be an admin")
        else:
            self._require_admin(session, "create users")

        username = (username or "").strip()
        if not 3 <= len(username) <= 50:
            raise ValidationError("Username must be 3-50 characters")
        existing = self.db.execute(select(User).where(User.username == username)).scalar_one_or_none()
        if existing is not None:
            raise ValidationError(f"Username '{username}' is already taken")

        user = User(
            id=user_id or f"user-{uuid.uuid4().hex}",
            username=username,
            email=email,
            role=UserRole(role),
            is_active=True
        )
        self.db.add(user)
        self.db.commit()

        created_by = "bootstrap" if bootstrap else session.user_id
        logger.info(f"User {user.id} ({username}, {user.role.value}) created by {created_by}")
        return user

    def set_scope(self, session: SessionContext, user_id: str, scope: Iterable[Tuple[str, int]]) -> User:
        """Replace a trainer's (group, year) assignments."""
        self._require_admin(session, "change assignment scope")
        user = self._get(user_id)
        if user.role != UserRole.TRAINER:
            raise ValidationError(f"User {user_id} is not a trainer")

        pairs = sorted({(group_id, int(year)) for group_id, year in scope})
        user.assignments.clear()
        # Flush removals first so the unique constraint does not see old rows
        self.db.flush()
        for group_id, year in pairs:
            user.assignments.append(TrainerAssignment(group_id=group_id, year=year))
        self.db.commit()

        logger.info(f"Scope of {user_id} set to {pairs} by {session.user_id}")
        return user

    def deactivate(self, session: SessionContext, user_id: str) -> User:
        self._require_admin(session, "deactivate users")
        if user_id == session.user_id:
            raise ValidationError("Admins cannot deactivate themselves")
        user = self._get(user_id)
        user.is_active = False
        self.db.commit()
        logger.warning(f"User {user_id} deactivated by {session.user_id}")
        return user

    def open_session(self, user_id: str) -> SessionContext:
        """Start a session; the returned context is fixed until the next login."""
        user = self._get(user_id)
        if not user.is_active:
            raise PermissionDenied(f"User {user_id} is deactivated")
        user.last_login = datetime.utcnow()
        self.db.commit()
        return SessionContext.from_user(user)

    def list_users(self, session: SessionContext) -> List[User]:
        self._require_admin(session, "list users")
        return list(self.db.execute(select(User).order_by(User.username)).scalars().all())

    def _get(self, user_id: str) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    def _user_count(self) -> int:
        return self.db.execute(select(func.count(User.id))).scalar_one()

    @staticmethod
    def _require_admin(session: Optional[SessionContext], action: str) -> None:
        if session is None or not (session.is_admin and session.is_active):
            raise PermissionDenied(f"Only an active admin can {action}")
