"""
JWT session tokens carrying the identity provider's claims.
"""
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import jwt, JWTError
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from skilllab.core.config import settings
from skilllab.security.session import SessionContext


class SessionTokenManager:
    """Issues and verifies session tokens for the remote store API."""

    def __init__(self, secret_key: Optional[str] = None, algorithm: Optional[str] = None):
        self.secret_key = secret_key or settings.JWT_SECRET_KEY
        self.algorithm = algorithm or settings.JWT_ALGORITHM
        self.default_expiration_minutes = settings.SESSION_TOKEN_EXPIRE_MINUTES

    def create_session_token(
        self,
        session: SessionContext,
        expiration_minutes: Optional[int] = None
    ) -> str:
        expiration_minutes = expiration_minutes or self.default_expiration_minutes
        now = datetime.now(timezone.utc)

        payload = {
            **session.to_claims(),
            "iat": now,
            "exp": now + timedelta(minutes=expiration_minutes),
            "type": "session",
            "jti": secrets.token_urlsafe(16)
        }

        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_session_token(self, token: str) -> SessionContext:
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired session token"
            )

        if payload.get("type") != "session":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token type"
            )

        try:
            return SessionContext.from_claims(payload)
        except (KeyError, ValueError):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Malformed session claims"
            )


session_token_manager = SessionTokenManager()

bearer_scheme = HTTPBearer(auto_error=True)


def get_session_context(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)
) -> SessionContext:
    """FastAPI dependency resolving the caller's session."""
    return session_token_manager.verify_session_token(credentials.credentials)

