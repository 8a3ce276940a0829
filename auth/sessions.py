"""
auth/sessions.py -- Session token issuing, verification, and revocation.

A session token is an HS256 JWT (python-jose) signed with JWT_SECRET and
carrying sub, user_id, jti, iat, and exp. Every issued token also gets a row
in the sessions table keyed by jti, which is what makes revocation possible:
a signed, unexpired JWT is still rejected once its row is revoked.

Lifecycle:  issued -> valid -> expired
                           -> revoked

verify() and inspect() never raise for bad input. A missing, malformed,
expired, or revoked token is routine traffic, not an exceptional condition;
callers get None / a SessionState and decide what to do.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import Session
from auth.store import UserStore, to_iso

logger = logging.getLogger("authstarter.auth")

_ALGORITHM = "HS256"


class SessionState(str, Enum):
    VALID = "valid"
    EXPIRED = "expired"
    REVOKED = "revoked"
    INVALID = "invalid"


@dataclass(frozen=True)
class IssuedSession:
    token: str
    jti: str
    user_id: int
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Issue and check session tokens backed by UserStore session rows.

    Args:
        store:          Repository holding the sessions table.
        secret_key:     HS256 signing key (Settings.jwt_secret).
        expire_seconds: Validity window for new tokens.
        clock:          Returns the current UTC time. Injected by tests.
    """

    def __init__(
        self,
        store: UserStore,
        secret_key: str,
        expire_seconds: int = 3600,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds
        self._clock = clock

    def issue(self, user_id: int, ip: str | None = None, user_agent: str | None = None) -> IssuedSession:
        """Create a token bound to user_id, valid for expire_seconds from now."""
        now = self._clock()
        expires_at = now + timedelta(seconds=self.expire_seconds)
        jti = secrets.token_hex(16)
        payload = {
            "sub": str(user_id),
            "user_id": user_id,
            "jti": jti,
            "iat": now,
            "exp": expires_at,
        }
        token = jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        self._store.create_session(
            Session(
                jti=jti,
                user_id=user_id,
                created_at=to_iso(now),
                expires_at=to_iso(expires_at),
                ip=ip,
                user_agent=user_agent,
            )
        )
        return IssuedSession(token=token, jti=jti, user_id=user_id, expires_at=expires_at)

    def _claims(self, token: str, verify_exp: bool = True) -> dict | None:
        payload = jwt.decode(
            token,
            self._secret_key,
            algorithms=[_ALGORITHM],
            options={"verify_exp": verify_exp},
        )
        if not isinstance(payload.get("user_id"), int) or not payload.get("jti"):
            return None
        return payload

    def inspect(self, token: str | None) -> tuple[SessionState, int | None]:
        """Classify a token and return (state, user_id).

        user_id is only populated for VALID tokens.
        """
        if not token:
            return SessionState.INVALID, None
        try:
            claims = self._claims(token)
        except ExpiredSignatureError:
            return SessionState.EXPIRED, None
        except JWTError:
            return SessionState.INVALID, None
        if claims is None:
            return SessionState.INVALID, None

        session = self._store.get_session(claims["jti"])
        if session is None or session.user_id != claims["user_id"]:
            return SessionState.INVALID, None
        if session.revoked_at is not None:
            return SessionState.REVOKED, None
        if datetime.fromisoformat(session.expires_at) <= self._clock():
            return SessionState.EXPIRED, None
        return SessionState.VALID, session.user_id

    def verify(self, token: str | None) -> int | None:
        """Return the user id for a valid token, None otherwise."""
        state, user_id = self.inspect(token)
        return user_id if state is SessionState.VALID else None

    def revoke(self, token: str | None) -> bool:
        """Revoke the session behind token. Returns False if nothing was revoked.

        Expiry is not checked: logging out with an expired cookie still
        closes the server-side row.
        """
        if not token:
            return False
        try:
            claims = self._claims(token, verify_exp=False)
        except JWTError:
            return False
        if claims is None:
            return False
        revoked = self._store.revoke_session(claims["jti"])
        if revoked:
            logger.info("Session revoked (user_id=%s)", claims["user_id"])
        return revoked

    def revoke_all(self, user_id: int) -> int:
        count = self._store.revoke_user_sessions(user_id)
        logger.info("Revoked %d session(s) for user_id=%s", count, user_id)
        return count
