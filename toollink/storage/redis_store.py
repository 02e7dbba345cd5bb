"""Redis-backed storage with Pub/Sub change notifications.

Lets session managers in different processes (or on different hosts)
share one session the way browser tabs share localStorage.

Keys are namespaced as `<namespace>:<key>`. Every change is published
on `<namespace>:storage-events` as:
    {"key": "...", "old": "...", "new": "...", "signal": false, "origin": "<uuid>"}
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from collections.abc import Callable
from typing import Any

from toollink.storage.base import ListenerRegistry, StorageEvent, StorageListener

logger = logging.getLogger(__name__)

RESUBSCRIBE_MAX_DELAY = 30.0


class RedisStorage:
    def __init__(
        self, redis: Any, namespace: str = "toollink", resubscribe_delay: float = 1.0
    ) -> None:
        self._redis = redis
        self._namespace = namespace
        self._resubscribe_delay = resubscribe_delay
        self._origin = str(uuid.uuid4())
        self._listeners = ListenerRegistry()
        self._listen_task: asyncio.Task[None] | None = None

    @classmethod
    def from_url(cls, url: str, namespace: str = "toollink") -> RedisStorage:
        from redis.asyncio import Redis

        return cls(Redis.from_url(url, decode_responses=True), namespace)

    @property
    def channel(self) -> str:
        return f"{self._namespace}:storage-events"

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get_item(self, key: str) -> str | None:
        return await self._redis.get(self._key(key))

    async def set_item(self, key: str, value: str) -> None:
        old = await self._redis.set(self._key(key), value, get=True)
        if old != value:
            await self._notify(StorageEvent(key, old, value))

    async def remove_item(self, key: str) -> None:
        old = await self._redis.getdel(self._key(key))
        if old is not None:
            await self._notify(StorageEvent(key, old, None))

    async def broadcast(self, signal: str) -> None:
        await self._notify(StorageEvent(signal, is_signal=True))

    async def _notify(self, event: StorageEvent) -> None:
        self._listeners.emit(event)
        message = json.dumps({
            "key": event.key,
            "old": event.old_value,
            "new": event.new_value,
            "signal": event.is_signal,
            "origin": self._origin,
        })
        try:
            await self._redis.publish(self.channel, message)
        except Exception:
            # Other processes still converge through their reconciliation poll.
            logger.warning("Failed to publish storage event %s", event.key, exc_info=True)

    def subscribe(self, listener: StorageListener) -> Callable[[], None]:
        unsubscribe = self._listeners.subscribe(listener)
        if self._listen_task is None:
            self._listen_task = asyncio.get_running_loop().create_task(self._listen())
        return unsubscribe

    async def _listen(self) -> None:
        """Forward other processes' events; resubscribes with backoff when the connection drops."""
        failures = 0
        while True:
            pubsub = self._redis.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                failures = 0
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    event = self._decode(message.get("data"))
                    if event is not None:
                        self._listeners.emit(event)
                return
            except Exception:
                delay = min(self._resubscribe_delay * 2**failures, RESUBSCRIBE_MAX_DELAY)
                failures += 1
                logger.warning(
                    "Storage event subscription lost, resubscribing in %.1fs",
                    delay,
                    exc_info=True,
                )
            finally:
                with contextlib.suppress(Exception):
                    await pubsub.unsubscribe(self.channel)
                with contextlib.suppress(Exception):
                    await pubsub.aclose()
            await asyncio.sleep(delay)

    def _decode(self, data: Any) -> StorageEvent | None:
        try:
            payload = json.loads(data)
        except (TypeError, ValueError):
            logger.debug("Ignoring malformed storage event: %r", data)
            return None
        if not isinstance(payload, dict) or payload.get("origin") == self._origin:
            return None
        return StorageEvent(
            key=str(payload.get("key", "")),
            old_value=payload.get("old"),
            new_value=payload.get("new"),
            is_signal=bool(payload.get("signal", False)),
        )

    async def close(self) -> None:
        if self._listen_task is not None:
            self._listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listen_task
            self._listen_task = None
        await self._redis.aclose()
