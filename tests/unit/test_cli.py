"""Unit tests for the CLI tool."""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from tests.unit.mocks.fake_backend import ADMIN, CUSTOMER, WAREHOUSE
from toollink.api_client.client import ToolLinkClient
from toollink.cli.main import _mask_secret, app
from toollink.config import BackendSettings, RedisSettings, Settings, StorageSettings

runner = CliRunner()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(storage=StorageSettings(backend="file", path=str(tmp_path / "storage.json")))


@pytest.fixture
def auth_api() -> Iterator[dict[str, AsyncMock]]:
    """Replace ToolLinkClient's auth calls; no HTTP leaves the test."""
    mocks = {
        "login": AsyncMock(),
        "logout": AsyncMock(return_value={"success": True}),
        "me": AsyncMock(return_value=None),
        "forgot_password": AsyncMock(),
    }
    with (
        patch.object(ToolLinkClient, "login", mocks["login"]),
        patch.object(ToolLinkClient, "logout", mocks["logout"]),
        patch.object(ToolLinkClient, "me", mocks["me"]),
        patch.object(ToolLinkClient, "forgot_password", mocks["forgot_password"]),
    ):
        yield mocks


def _stored(settings: Settings) -> dict[str, str]:
    path = Path(settings.storage.path)
    return json.loads(path.read_text()) if path.exists() else {}


def _log_in(settings: Settings, auth_api: dict[str, AsyncMock], user: dict) -> None:
    auth_api["login"].return_value = {
        "success": True,
        "user": user,
        "accessToken": f"access-{user['id']}",
        "refreshToken": f"refresh-{user['id']}",
    }
    auth_api["me"].return_value = user
    with patch("toollink.cli.main.get_settings", return_value=settings):
        result = runner.invoke(app, ["login", user["email"], "--password", "secret"])
    assert result.exit_code == 0, result.output


class TestVersion:
    """Test 'version' command."""

    def test_shows_version(self) -> None:
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "ToolLink v" in result.output

    def test_verbose_sets_up_logging(self, settings: Settings) -> None:
        with (
            patch("toollink.cli.main.get_settings", return_value=settings),
            patch("toollink.cli.main.setup_logging") as setup,
        ):
            result = runner.invoke(app, ["--verbose", "version"])
        assert result.exit_code == 0
        setup.assert_called_once_with("DEBUG", "json")


class TestConfigCheck:
    """Test 'config check' command."""

    def test_valid_config_passes(self, settings: Settings) -> None:
        with patch("toollink.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["config", "check"])
        assert result.exit_code == 0
        assert "passed" in result.output.lower()

    def test_invalid_config_fails(self, settings: Settings) -> None:
        settings.backend = BackendSettings(url="not-a-url")
        with patch("toollink.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["config", "check"])
        assert result.exit_code == 1
        assert "TOOLLINK_API_URL" in result.output
        assert "1 error(s) found" in result.output


class TestConfigShow:
    """Test 'config show' command."""

    def test_redis_password_masked(self) -> None:
        settings = Settings(redis=RedisSettings(url="redis://:hunter2@cache:6379/0"))
        with patch("toollink.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "hunter2" not in result.output
        assert "redis://***" in result.output

    def test_shows_sections(self) -> None:
        with patch("toollink.cli.main.get_settings", return_value=Settings()):
            result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        for section in ("[backend]", "[session]", "[storage]", "[redis]", "[logging]"):
            assert section in result.output


class TestMaskSecret:
    """Test secret masking utility."""

    def test_mask_long_secret(self) -> None:
        assert _mask_secret("redis://user:pw@host") == "redis:***"

    def test_mask_short_secret(self) -> None:
        assert _mask_secret("abc") == "***"


class TestLogin:
    """Test 'login' and 'logout' commands."""

    def test_success_persists_session(
        self, settings: Settings, auth_api: dict[str, AsyncMock]
    ) -> None:
        _log_in(settings, auth_api, ADMIN)
        stored = _stored(settings)
        assert stored["accessToken"] == "access-1"
        assert json.loads(stored["user"])["email"] == "admin@toollink.com"

    def test_success_output(self, settings: Settings, auth_api: dict[str, AsyncMock]) -> None:
        auth_api["login"].return_value = {"success": True, "user": WAREHOUSE, "accessToken": "a"}
        with patch("toollink.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["login", "warehouse@toollink.com", "--password", "x"])
        assert "Logged in as Warehouse Manager (Warehouse Manager)" in result.output

    def test_remaining_attempts_shown(
        self, settings: Settings, auth_api: dict[str, AsyncMock]
    ) -> None:
        auth_api["login"].return_value = {
            "success": False,
            "message": "Invalid email or password",
            "errorType": "INVALID_CREDENTIALS",
            "remainingAttempts": 2,
        }
        with patch("toollink.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["login", "user@toollink.com", "--password", "bad"])
        assert result.exit_code == 1
        assert "Invalid email or password" in result.output
        assert "2 attempts remaining before account lock" in result.output
        assert "forgot-password" not in result.output
        assert _stored(settings) == {}

    def test_last_attempt_offers_reset(
        self, settings: Settings, auth_api: dict[str, AsyncMock]
    ) -> None:
        auth_api["login"].return_value = {
            "success": False,
            "message": "Invalid email or password",
            "errorType": "INVALID_CREDENTIALS",
            "remainingAttempts": 0,
        }
        with patch("toollink.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["login", "user@toollink.com", "--password", "bad"])
        assert result.exit_code == 1
        assert "toollink forgot-password user@toollink.com" in result.output

    def test_pending_approval(self, settings: Settings, auth_api: dict[str, AsyncMock]) -> None:
        auth_api["login"].return_value = {
            "success": False,
            "message": "Your account is pending approval",
            "errorType": "ACCOUNT_PENDING_APPROVAL",
        }
        with patch("toollink.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["login", "new@toollink.com", "--password", "x"])
        assert result.exit_code == 1
        assert "waiting for approval" in result.output

    def test_logout_clears_session(
        self, settings: Settings, auth_api: dict[str, AsyncMock]
    ) -> None:
        _log_in(settings, auth_api, ADMIN)
        with patch("toollink.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["logout"])
        assert result.exit_code == 0
        assert "Logged out" in result.output
        assert _stored(settings) == {}
        auth_api["logout"].assert_awaited_with("refresh-1", token="access-1")


class TestWhoami:
    """Test 'whoami' command."""

    def test_not_logged_in(self, settings: Settings, auth_api: dict[str, AsyncMock]) -> None:
        with patch("toollink.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["whoami"])
        assert result.exit_code == 1
        assert "Not logged in" in result.output

    def test_logged_in(self, settings: Settings, auth_api: dict[str, AsyncMock]) -> None:
        _log_in(settings, auth_api, WAREHOUSE)
        with patch("toollink.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["whoami"])
        assert result.exit_code == 0
        assert "Warehouse Manager <warehouse@toollink.com>" in result.output
        assert "warehouse = WH-01" in result.output

    def test_revoked_token_logs_out(
        self, settings: Settings, auth_api: dict[str, AsyncMock]
    ) -> None:
        _log_in(settings, auth_api, ADMIN)
        auth_api["me"].return_value = None
        with patch("toollink.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["whoami"])
        assert result.exit_code == 1
        assert _stored(settings) == {}


class TestAccessCommands:
    """Test 'can' and 'check-route' commands."""

    def test_can_granted(self, settings: Settings, auth_api: dict[str, AsyncMock]) -> None:
        _log_in(settings, auth_api, WAREHOUSE)
        with patch("toollink.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["can", "inventory.view"])
        assert result.exit_code == 0
        assert "warehouse may inventory.view" in result.output

    def test_can_denied(self, settings: Settings, auth_api: dict[str, AsyncMock]) -> None:
        _log_in(settings, auth_api, CUSTOMER)
        with patch("toollink.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["can", "inventory.view"])
        assert result.exit_code == 1
        assert "customer may not inventory.view" in result.output

    def test_can_not_logged_in(self, settings: Settings, auth_api: dict[str, AsyncMock]) -> None:
        with patch("toollink.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["can", "order.view"])
        assert result.exit_code == 1
        assert "Not logged in" in result.output

    def test_check_route_denied(self, settings: Settings, auth_api: dict[str, AsyncMock]) -> None:
        _log_in(settings, auth_api, CUSTOMER)
        with patch("toollink.cli.main.get_settings", return_value=settings):
            denied = runner.invoke(app, ["check-route", "/inventory"])
            granted = runner.invoke(app, ["check-route", "/orders"])
        assert denied.exit_code == 1
        assert "/inventory: access denied, redirect to /dashboard" in denied.output
        assert granted.exit_code == 0
        assert "/orders: granted" in granted.output

    def test_check_route_anonymous(
        self, settings: Settings, auth_api: dict[str, AsyncMock]
    ) -> None:
        with patch("toollink.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["check-route", "/orders"])
        assert result.exit_code == 1
        assert "login required, redirect to /auth/login" in result.output


class TestForgotPassword:
    """Test 'forgot-password' command."""

    def test_sent(self, settings: Settings, auth_api: dict[str, AsyncMock]) -> None:
        auth_api["forgot_password"].return_value = {
            "success": True,
            "message": "If the account exists, a reset link has been sent",
        }
        with patch("toollink.cli.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["forgot-password", "user@toollink.com"])
        assert result.exit_code == 0
        assert "reset link has been sent" in result.output
        auth_api["forgot_password"].assert_awaited_once_with("user@toollink.com")


class TestRoles:
    """Test 'roles' command."""

    def test_lists_table(self) -> None:
        result = runner.invoke(app, ["roles"])
        assert result.exit_code == 0
        assert "[admin] Administrator" in result.output
        assert "* (all " in result.output
        assert "[warehouse] Warehouse Manager" in result.output
        assert "inventory.stock_in" in result.output
