"""
API request and response models.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models double as the validation schemas for login, signup, and the
password-reset flows. parse_request() runs one against a raw mapping and
returns either the model or a list of FieldError, so callers outside FastAPI
(and tests) get the same field-level messages the HTTP layer returns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    ValidationError,
    ValidationInfo,
    WrapValidator,
    field_validator,
)
from pydantic_core import PydanticCustomError

from auth.models import User
from auth.tokens import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Shared field types
# ---------------------------------------------------------------------------

MIN_PASSWORD_LENGTH = 8


def _friendly_email(value: Any, handler) -> str:
    """Run EmailStr validation, replace its message, and lowercase the result."""
    if isinstance(value, str):
        value = value.strip()
    try:
        return handler(value).lower()
    except ValidationError:
        raise PydanticCustomError("invalid_email", "Please enter a valid email address.") from None


# Emails are compared case-insensitively everywhere, so normalize at the edge.
_Email = Annotated[EmailStr, WrapValidator(_friendly_email)]


def _check_new_password(value: str) -> str:
    if len(value) < MIN_PASSWORD_LENGTH:
        raise PydanticCustomError(
            "password_too_short",
            "Password must be at least {min_length} characters.",
            {"min_length": MIN_PASSWORD_LENGTH},
        )
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise PydanticCustomError(
            "password_too_long",
            "Password must be at most {max_bytes} bytes.",
            {"max_bytes": MAX_PASSWORD_BYTES},
        )
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login."""

    email: _Email
    password: str

    @field_validator("password")
    @classmethod
    def password_required(cls, value: str) -> str:
        if not value:
            raise PydanticCustomError("password_required", "Password is required.")
        return value


class SignupRequest(BaseModel):
    """Request body for POST /api/auth/signup.

    A password mismatch is reported on confirmPassword, not password, so
    the form shows the message under the second input. The check is skipped
    when password itself failed validation; that field already has an error.
    """

    model_config = ConfigDict(populate_by_name=True)

    email: _Email
    password: str
    confirm_password: str = Field(alias="confirmPassword")

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_new_password(value)

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, value: str, info: ValidationInfo) -> str:
        password = info.data.get("password")
        if password is not None and value != password:
            raise PydanticCustomError("password_mismatch", "Passwords do not match.")
        return value


class ForgotPasswordRequest(BaseModel):
    """Request body for POST /api/auth/forgot-password."""

    email: _Email


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/auth/reset-password."""

    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(min_length=1, max_length=128)
    password: str

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_new_password(value)


class EmailVerificationRequest(BaseModel):
    """Request body for POST /api/auth/email-verification."""

    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(min_length=1, max_length=128)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


@dataclass
class ValidationResult:
    value: Optional[BaseModel] = None
    errors: list[FieldError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def field_errors(errors: list[dict]) -> list[FieldError]:
    """Convert pydantic error dicts into (field, message) pairs.

    FastAPI prefixes body errors with "body"; that element is dropped so the
    field name matches what the client sent. Errors not tied to a field
    (e.g. a non-object body) are reported under "body".
    """
    result: list[FieldError] = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ())]
        if loc and loc[0] == "body":
            loc = loc[1:]
        name = ".".join(loc) if loc else "body"
        result.append(FieldError(field=name, message=err.get("msg", "Invalid value.")))
    return result


def parse_request(model: type[BaseModel], data: Any) -> ValidationResult:
    """Validate data against model. Never raises for invalid input."""
    try:
        return ValidationResult(value=model.model_validate(data))
    except ValidationError as exc:
        return ValidationResult(errors=field_errors(exc.errors()))


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. There is deliberately no password field."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    role: str
    created_at: str
    email_verified: bool

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            created_at=user.created_at or "",
            email_verified=user.email_verified_at is not None,
        )


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str = "Login successful"
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    # Only populated outside production so E2E tests can complete the flow
    # without reading email.
    token: Optional[str] = None


class SecurityEventResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    user_id: str
    timestamp: str
    severity: str
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    details: dict = Field(default_factory=dict)


class SecurityLogResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    events: list[SecurityEventResponse]
    total: int


class FieldErrorModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[list[FieldErrorModel]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    checks: dict[str, str] = Field(default_factory=dict)
