"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly -- components receive the Settings object (or
the specific values they need) from the app lifespan.

Design patterns used:
  Single validation function: load_settings() is the only place Settings()
      is constructed. It either returns a fully validated Settings instance
      or prints every violated constraint and exits with status 1. A process
      that cannot sign tokens or reach its database must not start.

  Singleton via lru_cache: get_settings() calls load_settings() once and
      returns the cached instance afterwards.

  BaseSettings (pydantic-settings): reads environment variables and an
      optional .env file. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET).

Security notes:
  [M6] JWT_SECRET shorter than 32 chars is rejected. HS256 signing relies on
       key entropy -- a short key weakens every session token.

  [M7] In production, APP_URL must be https and the placeholder secrets that
       ship in .env.example are refused.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, or security/.
"""

import logging
import sys
from functools import lru_cache
from typing import Literal
from urllib.parse import urlparse

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authstarter.config")

# Values copied from .env.example. Running production with them is the same
# as running with no secret at all.
_PLACEHOLDER_SECRETS = frozenset(
    {
        "your-super-secret-jwt-key-min-32-chars-production",
        "your-auth-secret-key",
        "changeme",
    }
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    The four connection/secret fields have no defaults: a missing value is a
    startup failure, reported by load_settings().
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Required
    # ------------------------------------------------------------------

    database_url: str = Field(min_length=1)
    jwt_secret: str = Field(min_length=32)
    app_url: str
    auth_secret: str = Field(min_length=1)

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    environment: Literal["development", "production", "test"] = "development"
    app_name: str = "Auth Starter"

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    token_expire_seconds: int = Field(default=3600, gt=0)
    secure_cookies: bool = False
    reset_token_expire_seconds: int = Field(default=3600, gt=0)
    verification_token_expire_seconds: int = Field(default=24 * 3600, gt=0)

    # Comma-separated addresses that are given the admin role at signup.
    admin_emails: str = ""

    # ------------------------------------------------------------------
    # Rate limiting and lockout
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    signup_rate_limit: str = "5/minute"
    forgot_password_rate_limit: str = "3/minute"

    lockout_max_attempts: int = Field(default=5, gt=0)
    lockout_base_minutes: int = Field(default=15, gt=0)
    lockout_max_minutes: int = Field(default=24 * 60, gt=0)
    lockout_window_minutes: int = Field(default=60, gt=0)

    # ------------------------------------------------------------------
    # Security logging
    # ------------------------------------------------------------------

    security_log_max_events: int = Field(default=1000, gt=0)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("app_url")
    @classmethod
    def validate_app_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("APP_URL must be a valid http(s) URL")
        return value.rstrip("/")

    @model_validator(mode="after")
    def validate_production(self) -> "Settings":
        """Apply the stricter production rules [M7].

        Errors abort startup; weak-but-workable settings only log a warning.
        """
        if self.environment == "production":
            if not self.app_url.startswith("https://"):
                raise ValueError("APP_URL must use HTTPS in production")
            if self.jwt_secret in _PLACEHOLDER_SECRETS:
                raise ValueError("JWT_SECRET must be changed from the default value in production")
            if self.auth_secret in _PLACEHOLDER_SECRETS:
                raise ValueError("AUTH_SECRET must be changed from the default value in production")
            if self.bcrypt_rounds < 12:
                logger.warning("BCRYPT_ROUNDS should be at least 12 for production security")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def is_admin_email(self, email: str) -> bool:
        """True when email appears in ADMIN_EMAILS (case-insensitive)."""
        listed = {item.strip().lower() for item in self.admin_emails.split(",") if item.strip()}
        return email.strip().lower() in listed


def format_settings_errors(exc: ValidationError) -> list[str]:
    """Render each pydantic error as 'FIELD: message' using env var names."""
    lines: list[str] = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ())]
        field = loc[0].upper() if loc else "SETTINGS"
        message = err.get("msg", "invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, ") :]
        lines.append(f"{field}: {message}")
    return lines


def load_settings(**overrides) -> Settings:
    """Build and validate Settings, or exit the process.

    Keyword overrides take precedence over the environment (used by tests
    and by scripts that assemble configuration programmatically).

    Raises:
        SystemExit(1): after printing every violated constraint to stderr.
    """
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        print("Environment validation failed:", file=sys.stderr)
        for line in format_settings_errors(exc):
            print(f"  - {line}", file=sys.stderr)
        raise SystemExit(1) from exc


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() after changing the environment.
    """
    return load_settings()
