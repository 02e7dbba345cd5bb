"""JSON-file storage that survives process restarts.

Writes replace the file atomically. Change events reach listeners in
this process only; other processes see the change on their next
reconciliation poll.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Callable
from pathlib import Path

from toollink.storage.base import ListenerRegistry, StorageEvent, StorageListener

logger = logging.getLogger(__name__)


class FileStorage:
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()
        self._listeners = ListenerRegistry()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Storage file %s is not valid JSON, treating as empty", self._path)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _dump(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".storage-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False, indent=2)
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        # Tokens live here.
        os.chmod(self._path, 0o600)

    async def get_item(self, key: str) -> str | None:
        return self._load().get(key)

    async def set_item(self, key: str, value: str) -> None:
        data = self._load()
        old = data.get(key)
        if old == value:
            return
        data[key] = value
        self._dump(data)
        self._listeners.emit(StorageEvent(key, old, value))

    async def remove_item(self, key: str) -> None:
        data = self._load()
        if key not in data:
            return
        old = data.pop(key)
        self._dump(data)
        self._listeners.emit(StorageEvent(key, old, None))

    async def broadcast(self, signal: str) -> None:
        self._listeners.emit(StorageEvent(signal, is_signal=True))

    def subscribe(self, listener: StorageListener) -> Callable[[], None]:
        return self._listeners.subscribe(listener)

    async def close(self) -> None:
        return None
