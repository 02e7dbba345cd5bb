"""Build the configured storage backend."""

from __future__ import annotations

from toollink.config import Settings
from toollink.storage.base import KeyValueStorage
from toollink.storage.file import FileStorage
from toollink.storage.memory import MemoryStorage
from toollink.storage.redis_store import RedisStorage


def build_storage(settings: Settings) -> KeyValueStorage:
    backend = settings.storage.backend
    if backend == "memory":
        return MemoryStorage()
    if backend == "file":
        return FileStorage(settings.storage.path)
    if backend == "redis":
        return RedisStorage.from_url(settings.redis.url, settings.storage.namespace)
    msg = f"Unknown storage backend: {backend!r}"
    raise ValueError(msg)
