"""
tests/test_config.py -- Startup configuration validation.

load_settings() must either return a valid Settings or print every violated
constraint (named by env var) to stderr and exit with status 1.
"""

from __future__ import annotations

import pytest

from core.config import Settings, load_settings

GOOD_SECRET = "a-production-secret-with-plenty-of-entropy-123"


class TestLoadSettings:
    def test_valid_environment(self) -> None:
        settings = load_settings()
        assert isinstance(settings, Settings)
        assert len(settings.jwt_secret) >= 32
        assert settings.environment == "test"

    def test_missing_jwt_secret_exits(self, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
        monkeypatch.delenv("JWT_SECRET", raising=False)
        with pytest.raises(SystemExit) as exc_info:
            load_settings()
        assert exc_info.value.code == 1
        err = capsys.readouterr().err
        assert "Environment validation failed" in err
        assert "JWT_SECRET" in err

    def test_short_jwt_secret_exits(self, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            load_settings(jwt_secret="too-short")
        assert exc_info.value.code == 1
        assert "JWT_SECRET" in capsys.readouterr().err

    def test_every_violation_reported(self, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(SystemExit):
            load_settings(app_url="not a url")
        err = capsys.readouterr().err
        assert "DATABASE_URL" in err
        assert "APP_URL" in err

    def test_app_url_trailing_slash_trimmed(self) -> None:
        assert load_settings(app_url="http://localhost:8000/").app_url == "http://localhost:8000"


class TestProductionRules:
    def test_production_requires_https(self, capsys) -> None:
        with pytest.raises(SystemExit):
            load_settings(environment="production", app_url="http://example.com", jwt_secret=GOOD_SECRET)
        assert "APP_URL must use HTTPS in production" in capsys.readouterr().err

    def test_production_rejects_placeholder_secret(self, capsys) -> None:
        with pytest.raises(SystemExit):
            load_settings(
                environment="production",
                app_url="https://example.com",
                jwt_secret="your-super-secret-jwt-key-min-32-chars-production",
            )
        assert "JWT_SECRET must be changed" in capsys.readouterr().err

    def test_valid_production(self) -> None:
        settings = load_settings(
            environment="production",
            app_url="https://example.com",
            jwt_secret=GOOD_SECRET,
            auth_secret="another-real-secret",
            bcrypt_rounds=12,
        )
        assert settings.is_production

    def test_low_bcrypt_rounds_warns(self, caplog) -> None:
        load_settings(
            environment="production",
            app_url="https://example.com",
            jwt_secret=GOOD_SECRET,
            auth_secret="another-real-secret",
            bcrypt_rounds=10,
        )
        assert any("BCRYPT_ROUNDS" in r.getMessage() for r in caplog.records)


class TestAdminEmails:
    def test_empty_by_default(self) -> None:
        assert load_settings().is_admin_email("root@acme.io") is False

    def test_read_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ADMIN_EMAILS", " Root@Acme.io ,ops@acme.io,")
        settings = load_settings()
        assert settings.is_admin_email("root@acme.io")
        assert settings.is_admin_email("OPS@acme.io")
        assert not settings.is_admin_email("alice@acme.io")
