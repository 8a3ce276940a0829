"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work; these only carry shape.

Layer rule: no imports from api/, web/, core/, or security/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """An account that can sign in with email and password.

    email is always stored lowercased; the UNIQUE index on it therefore
    enforces case-insensitive uniqueness.

    hashed_password is a bcrypt digest. It never leaves the server: API
    responses are built from explicit response models that omit it.
    """

    email: str
    hashed_password: str
    role: str = "user"  # "user" or "admin"
    id: int | None = None
    created_at: str | None = None
    email_verified_at: str | None = None  # None until /email-verification succeeds

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass
class Session:
    """Server-side record for one issued session token.

    The JWT carries jti; verification looks this row up so a token can be
    revoked before its exp claim is reached.
    """

    jti: str
    user_id: int
    expires_at: str
    id: int | None = None
    created_at: str | None = None
    revoked_at: str | None = None
    ip: str | None = None
    user_agent: str | None = None


@dataclass
class OneTimeToken:
    """A password reset or email verification token.

    token_hash is HMAC-SHA256(AUTH_SECRET, raw_token). The raw value is sent
    to the user once (by email) and never persisted.
    """

    user_id: int
    token_hash: str
    expires_at: str
    id: int | None = None
    created_at: str | None = None
