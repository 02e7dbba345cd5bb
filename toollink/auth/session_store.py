"""Single in-memory slot for the current identity, mirrored to persistent storage.

Only AuthSessionManager writes to the store. Everything else reads.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from toollink.auth.models import ErrorType, Identity
from toollink.storage.base import USER_KEY, KeyValueStorage

logger = logging.getLogger(__name__)


class SessionStore:
    def __init__(self, storage: KeyValueStorage) -> None:
        self._storage = storage
        self._identity: Identity | None = None

    def peek(self) -> Identity | None:
        """In-memory slot only; never touches storage."""
        return self._identity

    async def set(self, identity: Identity | None) -> None:
        """Overwrite the slot; a non-null identity is also mirrored to storage.

        Clearing the slot leaves storage alone: removing persisted keys is
        the session manager's decision.
        """
        self._identity = identity
        if identity is not None:
            await self._storage.set_item(USER_KEY, identity.serialize())

    async def get(self) -> Identity | None:
        """Slot if set, otherwise a lazy restore from the persisted mirror.

        A malformed mirror yields None and is left in place for the
        session manager to clean up.
        """
        if self._identity is not None:
            return self._identity

        try:
            raw = await self._storage.get_item(USER_KEY)
        except Exception:
            logger.warning("Failed to read persisted user", exc_info=True)
            return None
        if not raw:
            return None

        try:
            identity = Identity.deserialize(raw)
        except ValidationError:
            logger.warning(
                "Persisted user is malformed, ignoring it",
                extra={"error_type": ErrorType.CORRUPT_PERSISTED_STATE.value},
            )
            return None

        self._identity = identity
        logger.debug("Restored identity from storage", extra={"user_id": identity.id, "role": identity.role})
        return identity
