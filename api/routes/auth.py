"""
api/routes/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/auth/signup              -- create account; 201 user (no password)
  POST /api/auth/login               -- password login; sets session cookie
  POST /api/auth/logout              -- revokes the session, clears cookie
  GET  /api/auth/me                  -- current user (requires auth)
  POST /api/auth/forgot-password     -- request a reset link (always 200)
  POST /api/auth/reset-password      -- set a new password with a reset token
  POST /api/auth/email-verification  -- confirm an email address

Security:
  [H2] signup, login and forgot-password are rate-limited per IP (slowapi).
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on login responses.
  Login failures return one generic message whether the email is unknown or
  the password is wrong. forgot-password answers identically for known and
  unknown emails. Both avoid account enumeration.
  Repeated login failures lock the email (auth/lockout.py).

No `from __future__ import annotations` in this module: FastAPI resolves
string annotations against the endpoint's globals, and the slowapi wrapper
would hand it slowapi's globals instead.
"""

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import forgot_password_limit, limiter, login_limit, signup_limit
from api.models import (
    EmailVerificationRequest,
    ErrorDetail,
    ErrorResponse,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    ResetPasswordRequest,
    SignupRequest,
    UserResponse,
)
from auth.dependencies import get_current_user, get_request_token
from auth.lockout import LoginLockout
from auth.models import OneTimeToken, User
from auth.sessions import SessionManager
from auth.store import UserExistsError, UserStore, to_iso
from auth.tokens import (
    authenticate_user,
    clear_auth_cookie,
    generate_one_time_token,
    hash_one_time_token,
    hash_password,
    set_auth_cookie,
)
from core.config import Settings
from security.logger import SecurityEventType, SecurityLogger, Severity

logger = logging.getLogger("authstarter.auth")

# Auth policy:
# - POST /api/auth/signup, /login, /logout, /forgot-password,
#   /reset-password, /email-verification: public
# - GET  /api/auth/me: requires auth (get_current_user)
router = APIRouter()

_FORGOT_PASSWORD_MESSAGE = "If a user with that email exists, a password reset link has been sent."


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _client(request: Request) -> dict:
    """ip / user_agent keyword arguments for SecurityLogger.log()."""
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
    )


def _issue_one_time_token(settings: Settings, user_id: int, ttl_seconds: int) -> tuple[str, OneTimeToken]:
    raw = generate_one_time_token()
    record = OneTimeToken(
        user_id=user_id,
        token_hash=hash_one_time_token(settings.auth_secret, raw),
        expires_at=to_iso(datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)),
    )
    return raw, record


def _deliver_link(settings: Settings, user: User, path: str, raw_token: str) -> None:
    """Hand a one-time link to the user.

    No mail transport is wired in; outside production the link is logged so
    the flow can be completed by hand. In production only the fact that a
    link was generated is logged -- the token itself never reaches logs.
    """
    if settings.is_production:
        logger.info("One-time link generated for user_id=%s (%s); email delivery not configured", user.id, path)
        return
    logger.info("One-time link for %s: %s%s?token=%s", user.email, settings.app_url, path, raw_token)


# ---------------------------------------------------------------------------
# Signup / login / logout
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=UserResponse, status_code=201)
@limiter.limit(signup_limit)  # [H2]
def signup(request: Request, body: SignupRequest) -> UserResponse:
    """Create an account and send an email verification link.

    Addresses listed in ADMIN_EMAILS get the admin role; everyone else is a
    plain user. The password is hashed before the duplicate check in
    create(), so a taken email costs the same bcrypt work as a free one.
    """
    settings: Settings = request.app.state.settings
    user_store: UserStore = request.app.state.user_store
    security: SecurityLogger = request.app.state.security_logger

    role = "admin" if settings.is_admin_email(body.email) else "user"
    try:
        user = user_store.create(
            body.email,
            hash_password(body.password, rounds=settings.bcrypt_rounds),
            role=role,
        )
    except UserExistsError as exc:
        security.log(
            SecurityEventType.SIGNUP_CONFLICT,
            None,
            Severity.LOW,
            details={"email": body.email},
            **_client(request),
        )
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "User already exists"},
        ) from exc

    raw, record = _issue_one_time_token(settings, user.id, settings.verification_token_expire_seconds)
    user_store.create_verification_token(record)
    _deliver_link(settings, user, "/email-verification", raw)

    logger.info("User created (user_id=%s, role=%s)", user.id, user.role)
    return UserResponse.from_user(user)


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(login_limit)  # [H2] brute-force mitigation
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    Returns the same "bad_credentials" error for an unknown email and for a
    wrong password.
    """
    settings: Settings = request.app.state.settings
    user_store: UserStore = request.app.state.user_store
    sessions: SessionManager = request.app.state.sessions
    lockout: LoginLockout = request.app.state.lockout
    security: SecurityLogger = request.app.state.security_logger

    status = lockout.check(body.email)
    if status.locked:
        security.log(
            SecurityEventType.LOGIN_FAILED,
            None,
            Severity.MEDIUM,
            details={"email": body.email, "reason": "locked"},
            **_client(request),
        )
        resp = _error(429, "account_locked", "Too many failed login attempts. Try again later.")
        resp.headers["Retry-After"] = str(status.retry_after)
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    user = authenticate_user(user_store, body.email, body.password, rounds=settings.bcrypt_rounds)
    if user is None:
        status = lockout.record_failure(body.email)
        security.log(
            SecurityEventType.LOGIN_FAILED,
            None,
            Severity.MEDIUM,
            details={"email": body.email, "attempts": status.attempts},
            **_client(request),
        )
        if status.locked:
            security.log(
                SecurityEventType.ACCOUNT_LOCKED,
                None,
                Severity.HIGH,
                details={"email": body.email, "retry_after": status.retry_after},
                **_client(request),
            )
        resp = _error(401, "bad_credentials", "Invalid email or password.")
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    lockout.reset(body.email)
    issued = sessions.issue(user.id, **_client(request))
    security.log(SecurityEventType.LOGIN_SUCCESS, user.id, Severity.LOW, **_client(request))

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=issued.token,
            expires_in=sessions.expire_seconds,
            user=UserResponse.from_user(user),
        ).model_dump(),
    )
    set_auth_cookie(resp, issued.token, issued.expires_at, secure=settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Revoke the current session (if any) and clear the cookie."""
    sessions: SessionManager = request.app.state.sessions
    security: SecurityLogger = request.app.state.security_logger

    token = get_request_token(request)
    user_id = sessions.verify(token)
    if sessions.revoke(token):
        security.log(SecurityEventType.SESSION_REVOKED, user_id, Severity.LOW, **_client(request))

    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump(exclude_none=True))
    clear_auth_cookie(resp)
    return resp


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return the currently authenticated user."""
    return UserResponse.from_user(current_user)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=MessageResponse, response_model_exclude_none=True)
@limiter.limit(forgot_password_limit)  # [H2]
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Issue a password reset token if the account exists.

    The response is identical whether or not the email is registered. A user
    with an unexpired token does not get a second one.
    """
    settings: Settings = request.app.state.settings
    user_store: UserStore = request.app.state.user_store
    security: SecurityLogger = request.app.state.security_logger

    generic = MessageResponse(message=_FORGOT_PASSWORD_MESSAGE)
    user = user_store.find_by_email(body.email)
    if user is None or user_store.has_active_reset_token(user.id):
        return generic

    raw, record = _issue_one_time_token(settings, user.id, settings.reset_token_expire_seconds)
    user_store.create_reset_token(record)
    security.log(SecurityEventType.PASSWORD_RESET_REQUESTED, user.id, Severity.LOW, **_client(request))
    _deliver_link(settings, user, "/reset-password", raw)

    if not settings.is_production:
        return MessageResponse(message=_FORGOT_PASSWORD_MESSAGE, token=raw)
    return generic


@router.post("/auth/reset-password", response_model=MessageResponse, response_model_exclude_none=True)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Set a new password using a reset token.

    The token is single use. Every existing session for the account is
    revoked, so a stolen cookie stops working once the owner resets.
    """
    settings: Settings = request.app.state.settings
    user_store: UserStore = request.app.state.user_store
    sessions: SessionManager = request.app.state.sessions
    lockout: LoginLockout = request.app.state.lockout
    security: SecurityLogger = request.app.state.security_logger

    invalid = HTTPException(
        status_code=400,
        detail={"code": "invalid_token", "message": "Invalid or expired token."},
    )
    record = user_store.find_active_reset_token(hash_one_time_token(settings.auth_secret, body.token))
    if record is None:
        raise invalid

    hashed = hash_password(body.password, rounds=settings.bcrypt_rounds)
    if not user_store.reset_password(record.id, record.user_id, hashed):
        raise invalid

    sessions.revoke_all(record.user_id)
    user = user_store.get_by_id(record.user_id)
    if user is not None:
        lockout.reset(user.email)
    security.log(SecurityEventType.PASSWORD_RESET_COMPLETED, record.user_id, Severity.MEDIUM, **_client(request))
    return MessageResponse(message="Password reset successfully.")


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


@router.post("/auth/email-verification", response_model=MessageResponse, response_model_exclude_none=True)
def verify_email(request: Request, body: EmailVerificationRequest) -> MessageResponse:
    settings: Settings = request.app.state.settings
    user_store: UserStore = request.app.state.user_store
    security: SecurityLogger = request.app.state.security_logger

    invalid = HTTPException(
        status_code=400,
        detail={"code": "invalid_token", "message": "Invalid or expired verification token."},
    )
    record = user_store.find_active_verification_token(hash_one_time_token(settings.auth_secret, body.token))
    if record is None or not user_store.verify_email(record.id, record.user_id):
        raise invalid

    security.log(SecurityEventType.EMAIL_VERIFIED, record.user_id, Severity.LOW, **_client(request))
    return MessageResponse(message="Email verified successfully.")
