"""Shared pytest fixtures for all test types."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from tests.unit.mocks.fake_backend import FakeBackend
from toollink.auth.access_gate import AccessGate
from toollink.auth.session_manager import AuthSessionManager
from toollink.auth.session_store import SessionStore
from toollink.config import SessionSettings
from toollink.storage.memory import MemoryStorage

# Short timeouts so timeout paths finish quickly; the refresh loop stays idle.
_FAST_SESSION = {
    "refresh_user_timeout": 0.2,
    "initial_refresh_timeout": 0.2,
    "token_refresh_timeout": 0.2,
    "logout_timeout": 0.2,
    "token_refresh_interval": 3600.0,
    "reconcile_interval": 0.05,
    "pending_timeout": 0.2,
}


@pytest.fixture
def backend() -> FakeBackend:
    """Create a FakeBackend with the seeded accounts."""
    return FakeBackend()


@pytest.fixture
def storage() -> MemoryStorage:
    """Create an empty shared storage (one per test, shared by every "tab")."""
    return MemoryStorage()


@pytest.fixture
def session_settings() -> SessionSettings:
    return SessionSettings(**_FAST_SESSION)


@pytest.fixture
def make_manager(
    backend: FakeBackend, storage: MemoryStorage
) -> Callable[..., AuthSessionManager]:
    """Factory for managers ("tabs") sharing the test's backend and storage.

    Keyword arguments override SessionSettings fields.
    """

    def _make(store: SessionStore | None = None, **overrides: Any) -> AuthSessionManager:
        settings = SessionSettings(**{**_FAST_SESSION, **overrides})
        return AuthSessionManager(
            backend,  # type: ignore[arg-type]
            store or SessionStore(storage),
            storage,
            settings,
        )

    return _make


@pytest.fixture
def manager(make_manager: Callable[..., AuthSessionManager]) -> AuthSessionManager:
    return make_manager()


@pytest.fixture
def gate(manager: AuthSessionManager) -> AccessGate:
    return AccessGate(manager, pending_timeout=0.2)
