"""
auth/tokens.py -- Password hashing, one-time tokens, and cookie helpers.

Security design decisions:
  Passwords: bcrypt, used directly (no passlib wrapper). Each hash carries
       its own random salt; the cost factor comes from BCRYPT_ROUNDS.
       bcrypt.checkpw does the comparison in constant time. Plaintext is
       never logged or stored.

  Timing equalization [C1]: authenticate_user() always runs one bcrypt
       check, against a dummy hash when the email is unknown, so response
       time does not reveal whether an account exists.

  One-time tokens (password reset, email verification): secrets.token_hex(32)
       gives 256 bits of entropy. Only HMAC-SHA256(AUTH_SECRET, raw) is stored,
       which keeps lookup O(1) and makes a leaked table useless without the
       secret. bcrypt's slowness buys nothing for high-entropy values.

Session tokens (JWTs) live in auth/sessions.py.

Layer rule: no imports from api/, web/, or security/.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime
from functools import lru_cache
from typing import TYPE_CHECKING

import bcrypt

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

AUTH_COOKIE = "access_token"

# bcrypt only looks at the first 72 bytes of its input. The request schemas
# reject longer passwords so two different passwords never share a hash.
MAX_PASSWORD_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed hash or an over-long password is a mismatch, not an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


@lru_cache(maxsize=4)
def _dummy_hash(rounds: int) -> str:
    # Cached per cost factor so the dummy check costs the same as a real one.
    return hash_password("authstarter_timing_dummy", rounds=rounds)


def authenticate_user(store: UserStore, email: str, password: str, rounds: int = 12) -> User | None:
    """Check an email/password pair with timing equalization [C1].

    - Unknown email: bcrypt runs against the dummy hash (same cost).
    - Wrong password: bcrypt runs against the real hash (same cost).

    Returns the User on success, None on any failure. Callers must report
    both failure kinds with the same message.
    """
    user = store.find_by_email(email)
    if user is None:
        verify_password(password, _dummy_hash(rounds))
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


# ---------------------------------------------------------------------------
# One-time tokens (password reset, email verification)
# ---------------------------------------------------------------------------


def generate_one_time_token() -> str:
    """Return a fresh URL-safe token with 256 bits of entropy."""
    return secrets.token_hex(32)


def hash_one_time_token(secret: str, raw_token: str) -> str:
    """Return HMAC-SHA256(secret, raw_token) as a hex string."""
    return hmac.new(secret.encode(), raw_token.encode(), hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expires_at: datetime, secure: bool = False) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POSTs (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    expires: matches the JWT exp claim so both expire together.
    """
    response.set_cookie(
        AUTH_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        expires=expires_at,
        path="/",
    )


def clear_auth_cookie(response) -> None:
    response.delete_cookie(AUTH_COOKIE, path="/")
