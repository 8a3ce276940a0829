"""
tests/test_validators.py -- Unit tests for the request validation schemas.

The schemas in api/models.py are used both by FastAPI (request bodies) and
directly through parse_request(). These tests go through parse_request() so
they check the exact (field, message) pairs the HTTP layer will return.
"""

from __future__ import annotations

from api.models import (
    EmailVerificationRequest,
    FieldError,
    ForgotPasswordRequest,
    LoginRequest,
    ResetPasswordRequest,
    SignupRequest,
    field_errors,
    parse_request,
)


def _fields(result) -> dict[str, str]:
    return {e.field: e.message for e in result.errors}


class TestLoginSchema:
    def test_valid_login(self) -> None:
        result = parse_request(LoginRequest, {"email": "a@b.com", "password": "x"})
        assert result.ok
        assert result.value.email == "a@b.com"

    def test_email_is_normalized(self) -> None:
        """Leading/trailing whitespace is dropped and case folded."""
        result = parse_request(LoginRequest, {"email": "  Alice@Acme.IO ", "password": "x"})
        assert result.ok
        assert result.value.email == "alice@acme.io"

    def test_invalid_email_message(self) -> None:
        result = parse_request(LoginRequest, {"email": "not-an-email", "password": "x"})
        assert not result.ok
        assert _fields(result) == {"email": "Please enter a valid email address."}

    def test_empty_password_is_required(self) -> None:
        result = parse_request(LoginRequest, {"email": "a@b.com", "password": ""})
        assert _fields(result) == {"password": "Password is required."}

    def test_login_does_not_enforce_password_length(self) -> None:
        """Existing accounts may predate the length rule; login only needs non-empty."""
        result = parse_request(LoginRequest, {"email": "a@b.com", "password": "short"})
        assert result.ok

    def test_missing_fields_reported_individually(self) -> None:
        result = parse_request(LoginRequest, {})
        assert set(_fields(result)) == {"email", "password"}


class TestSignupSchema:
    def test_valid_signup(self) -> None:
        result = parse_request(
            SignupRequest,
            {"email": "a@b.com", "password": "secret123", "confirmPassword": "secret123"},
        )
        assert result.ok
        assert result.value.confirm_password == "secret123"

    def test_short_password(self) -> None:
        result = parse_request(
            SignupRequest,
            {"email": "a@b.com", "password": "short", "confirmPassword": "short"},
        )
        assert _fields(result) == {"password": "Password must be at least 8 characters."}

    def test_mismatch_is_attributed_to_confirm_password(self) -> None:
        result = parse_request(
            SignupRequest,
            {"email": "a@b.com", "password": "secret123", "confirmPassword": "secret124"},
        )
        assert result.errors == [FieldError(field="confirmPassword", message="Passwords do not match.")]

    def test_mismatch_not_reported_when_password_already_invalid(self) -> None:
        result = parse_request(
            SignupRequest,
            {"email": "a@b.com", "password": "short", "confirmPassword": "other"},
        )
        assert set(_fields(result)) == {"password"}

    def test_password_over_72_bytes_rejected(self) -> None:
        """bcrypt ignores bytes past 72, so longer passwords are refused up front."""
        long_password = "é" * 40  # 80 bytes in UTF-8
        result = parse_request(
            SignupRequest,
            {"email": "a@b.com", "password": long_password, "confirmPassword": long_password},
        )
        assert "password" in _fields(result)

    def test_all_errors_reported_together(self) -> None:
        result = parse_request(
            SignupRequest,
            {"email": "bad", "password": "short", "confirmPassword": "short"},
        )
        assert set(_fields(result)) == {"email", "password"}

    def test_snake_case_name_also_accepted(self) -> None:
        result = parse_request(
            SignupRequest,
            {"email": "a@b.com", "password": "secret123", "confirm_password": "secret123"},
        )
        assert result.ok


class TestTokenSchemas:
    def test_forgot_password_requires_email(self) -> None:
        assert _fields(parse_request(ForgotPasswordRequest, {"email": "nope"})) == {
            "email": "Please enter a valid email address."
        }

    def test_reset_password_valid(self) -> None:
        result = parse_request(ResetPasswordRequest, {"token": " abc ", "password": "newpass123"})
        assert result.ok
        assert result.value.token == "abc"

    def test_reset_password_blank_token(self) -> None:
        result = parse_request(ResetPasswordRequest, {"token": "   ", "password": "newpass123"})
        assert "token" in _fields(result)

    def test_reset_password_enforces_length(self) -> None:
        result = parse_request(ResetPasswordRequest, {"token": "abc", "password": "short"})
        assert _fields(result) == {"password": "Password must be at least 8 characters."}

    def test_email_verification_token_too_long(self) -> None:
        result = parse_request(EmailVerificationRequest, {"token": "x" * 129})
        assert "token" in _fields(result)


class TestFieldErrors:
    def test_body_prefix_dropped(self) -> None:
        errors = [{"loc": ("body", "email"), "msg": "bad"}]
        assert field_errors(errors) == [FieldError(field="email", message="bad")]

    def test_nested_location_joined(self) -> None:
        errors = [{"loc": ("body", "items", 0, "name"), "msg": "bad"}]
        assert field_errors(errors)[0].field == "items.0.name"

    def test_whole_body_error(self) -> None:
        errors = [{"loc": ("body",), "msg": "Input should be a valid dictionary"}]
        assert field_errors(errors)[0].field == "body"
