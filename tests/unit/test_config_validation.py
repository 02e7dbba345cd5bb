"""Unit tests for configuration validation."""

from __future__ import annotations

from unittest.mock import patch

from toollink.config import (
    BackendSettings,
    RedisSettings,
    SessionSettings,
    Settings,
    StorageSettings,
)


def _make_settings(**overrides: object) -> Settings:
    """Create Settings with sensible defaults for testing."""
    defaults = {
        "backend": BackendSettings(url="http://localhost:5001"),
        "session": SessionSettings(),
        "storage": StorageSettings(backend="file", path="/tmp/toollink-test.json"),
        "redis": RedisSettings(url="redis://localhost:6379/0"),
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def _fields(settings: Settings) -> set[str]:
    return {e.field for e in settings.validate_required().errors}


class TestValidateRequired:
    """Test Settings.validate_required() semantic checks."""

    def test_all_valid_passes(self) -> None:
        result = _make_settings().validate_required()
        assert result.ok
        assert len(result.errors) == 0

    def test_invalid_backend_url(self) -> None:
        settings = _make_settings(backend=BackendSettings(url="localhost:5001"))
        assert "TOOLLINK_API_URL" in _fields(settings)

    def test_https_backend_url(self) -> None:
        settings = _make_settings(backend=BackendSettings(url="https://api.toollink.example"))
        assert _fields(settings) == set()

    def test_unknown_storage_backend(self) -> None:
        settings = _make_settings(storage=StorageSettings(backend="sqlite"))
        result = settings.validate_required()
        assert not result.ok
        error = next(e for e in result.errors if e.field == "TOOLLINK_STORAGE_BACKEND")
        assert "memory" in error.hint

    def test_redis_url_checked_only_for_redis_backend(self) -> None:
        redis = RedisSettings(url="http://localhost:6379")
        assert "REDIS_URL" not in _fields(_make_settings(redis=redis))
        settings = _make_settings(redis=redis, storage=StorageSettings(backend="redis"))
        assert "REDIS_URL" in _fields(settings)

    def test_rediss_url_accepted(self) -> None:
        settings = _make_settings(
            redis=RedisSettings(url="rediss://cache:6380/0"),
            storage=StorageSettings(backend="redis"),
        )
        assert _fields(settings) == set()

    def test_non_positive_timeout(self) -> None:
        settings = _make_settings(session=SessionSettings(logout_timeout=0))
        assert "TOOLLINK_SESSION_LOGOUT_TIMEOUT" in _fields(settings)

    def test_negative_pending_timeout(self) -> None:
        settings = _make_settings(session=SessionSettings(pending_timeout=-1))
        assert "TOOLLINK_SESSION_PENDING_TIMEOUT" in _fields(settings)

    def test_refresh_timeout_must_fit_interval(self) -> None:
        settings = _make_settings(
            session=SessionSettings(token_refresh_timeout=60, token_refresh_interval=30)
        )
        assert "TOOLLINK_SESSION_TOKEN_REFRESH_TIMEOUT" in _fields(settings)

    def test_max_failures_at_least_one(self) -> None:
        settings = _make_settings(session=SessionSettings(token_refresh_max_failures=0))
        assert "TOOLLINK_SESSION_TOKEN_REFRESH_MAX_FAILURES" in _fields(settings)

    def test_multiple_errors_collected(self) -> None:
        settings = _make_settings(
            backend=BackendSettings(url="ftp://x"),
            storage=StorageSettings(backend="nope"),
        )
        assert len(settings.validate_required().errors) == 2


class TestSettingsDefaults:
    """Test defaults and environment overrides."""

    def test_session_defaults(self) -> None:
        session = SessionSettings()
        assert session.token_refresh_interval == 14 * 60
        assert session.token_refresh_max_failures == 1
        assert session.strict_admin_validation is False
        assert session.login_route == "/auth/login"
        assert session.fallback_route == "/dashboard"

    def test_env_override(self) -> None:
        env = {
            "TOOLLINK_SESSION_PENDING_TIMEOUT": "1.5",
            "TOOLLINK_SESSION_STRICT_ADMIN_VALIDATION": "true",
            "TOOLLINK_API_URL": "http://backend:5001",
        }
        with patch.dict("os.environ", env):
            session = SessionSettings()
            backend = BackendSettings()
        assert session.pending_timeout == 1.5
        assert session.strict_admin_validation is True
        assert backend.url == "http://backend:5001"
