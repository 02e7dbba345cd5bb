"""Application configuration loaded from environment variables."""

from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import urlparse

from pydantic_settings import BaseSettings

STORAGE_BACKENDS = ("memory", "file", "redis")


class BackendSettings(BaseSettings):
    url: str = "http://localhost:5001"
    timeout: int = 10

    model_config = {"env_prefix": "TOOLLINK_API_"}


class SessionSettings(BaseSettings):
    refresh_user_timeout: float = 3.0
    initial_refresh_timeout: float = 5.0
    token_refresh_timeout: float = 5.0
    logout_timeout: float = 5.0
    token_refresh_interval: float = 14 * 60
    reconcile_interval: float = 2.0
    token_refresh_max_failures: int = 1
    pending_timeout: float = 5.0
    strict_admin_validation: bool = False
    login_route: str = "/auth/login"
    fallback_route: str = "/dashboard"

    model_config = {"env_prefix": "TOOLLINK_SESSION_"}


class StorageSettings(BaseSettings):
    backend: str = "file"  # "memory", "file" or "redis"
    path: str = "~/.toollink/storage.json"
    namespace: str = "toollink"

    model_config = {"env_prefix": "TOOLLINK_STORAGE_"}


class RedisSettings(BaseSettings):
    url: str = "redis://localhost:6379/0"

    model_config = {"env_prefix": "REDIS_"}


class LoggingSettings(BaseSettings):
    level: str = "INFO"
    format: str = "json"

    model_config = {"env_prefix": "LOG_"}


@dataclass
class ValidationError:
    """A single config validation error."""

    field: str
    message: str
    hint: str


@dataclass
class ValidationResult:
    """Result of config validation."""

    errors: list[ValidationError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return len(self.errors) == 0

    def add(self, field_name: str, message: str, hint: str = "") -> None:
        self.errors.append(ValidationError(field=field_name, message=message, hint=hint))


class Settings(BaseSettings):
    """Root settings: aggregates all sub-settings."""

    backend: BackendSettings = BackendSettings()
    session: SessionSettings = SessionSettings()
    storage: StorageSettings = StorageSettings()
    redis: RedisSettings = RedisSettings()
    logging: LoggingSettings = LoggingSettings()

    model_config = {"env_prefix": ""}

    def validate_required(self) -> ValidationResult:
        """Validate semantic correctness of the configuration.

        Pydantic already validates types; this checks that values
        are meaningful (URL schemes, known backends, sane timeouts).
        """
        result = ValidationResult()

        api_url = self.backend.url
        parsed_api = urlparse(api_url)
        if parsed_api.scheme not in ("http", "https") or not parsed_api.netloc:
            result.add(
                "TOOLLINK_API_URL",
                f"invalid URL: {api_url!r}",
                "Expected http://host:port or https://...",
            )

        if self.storage.backend not in STORAGE_BACKENDS:
            result.add(
                "TOOLLINK_STORAGE_BACKEND",
                f"unknown backend: {self.storage.backend!r}",
                f"Use one of: {', '.join(STORAGE_BACKENDS)}",
            )

        if self.storage.backend == "redis":
            parsed_redis = urlparse(self.redis.url)
            if parsed_redis.scheme not in ("redis", "rediss"):
                result.add(
                    "REDIS_URL",
                    f"invalid format: {self.redis.url!r}",
                    "Expected redis:// or rediss://",
                )

        session = self.session
        for name in (
            "refresh_user_timeout",
            "initial_refresh_timeout",
            "token_refresh_timeout",
            "logout_timeout",
            "reconcile_interval",
            "pending_timeout",
        ):
            if getattr(session, name) <= 0:
                result.add(
                    f"TOOLLINK_SESSION_{name.upper()}",
                    "must be positive",
                    "Unbounded waits are not allowed",
                )

        if session.token_refresh_timeout >= session.token_refresh_interval:
            result.add(
                "TOOLLINK_SESSION_TOKEN_REFRESH_TIMEOUT",
                "must be shorter than TOOLLINK_SESSION_TOKEN_REFRESH_INTERVAL",
                "A renewal must finish before the next one starts",
            )

        if session.token_refresh_max_failures < 1:
            result.add(
                "TOOLLINK_SESSION_TOKEN_REFRESH_MAX_FAILURES",
                "must be at least 1",
            )

        return result


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
