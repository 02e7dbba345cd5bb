"""Persistent key-value storage shared by every session manager ("tab").

Mirrors the browser storage contract: string values under string keys,
plus change notifications delivered to every subscriber. A value that is
written unchanged does not produce an event.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

ACCESS_TOKEN_KEY = "accessToken"
REFRESH_TOKEN_KEY = "refreshToken"
USER_KEY = "user"
THEME_KEY = "toollink-theme"

AUTH_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY)

FORCE_LOGOUT_SIGNAL = "auth:forceLogout"


@dataclass(frozen=True)
class StorageEvent:
    """A key change, or a broadcast signal when `is_signal` is set."""

    key: str
    old_value: str | None = None
    new_value: str | None = None
    is_signal: bool = False


StorageListener = Callable[[StorageEvent], None]


class KeyValueStorage(Protocol):
    async def get_item(self, key: str) -> str | None: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...

    async def broadcast(self, signal: str) -> None: ...

    def subscribe(self, listener: StorageListener) -> Callable[[], None]: ...

    async def close(self) -> None: ...


class ListenerRegistry:
    """Subscriber bookkeeping shared by the storage implementations."""

    def __init__(self) -> None:
        self._listeners: list[StorageListener] = []

    def subscribe(self, listener: StorageListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: StorageEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def __len__(self) -> int:
        return len(self._listeners)
