"""In-process storage; several managers sharing one instance behave like browser tabs."""

from __future__ import annotations

from collections.abc import Callable

from toollink.storage.base import ListenerRegistry, StorageEvent, StorageListener


class MemoryStorage:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._listeners = ListenerRegistry()

    async def get_item(self, key: str) -> str | None:
        return self._data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        old = self._data.get(key)
        self._data[key] = value
        if old != value:
            self._listeners.emit(StorageEvent(key, old, value))

    async def remove_item(self, key: str) -> None:
        old = self._data.pop(key, None)
        if old is not None:
            self._listeners.emit(StorageEvent(key, old, None))

    async def broadcast(self, signal: str) -> None:
        self._listeners.emit(StorageEvent(signal, is_signal=True))

    def subscribe(self, listener: StorageListener) -> Callable[[], None]:
        return self._listeners.subscribe(listener)

    async def close(self) -> None:
        return None

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)
