"""Session lifecycle: restore, login, logout, refresh, cross-tab reconciliation.

AuthSessionManager is the only writer of SessionStore. Several managers
sharing one KeyValueStorage behave like browser tabs sharing localStorage:

  Unknown → Restoring → Authenticated ⇄ Anonymous

Every write to the store happens under one asyncio.Lock. A generation
counter is bumped whenever the principal changes (login, logout, forced
logout, reconciliation clear); a backend result that was requested under
an older generation is discarded instead of applied.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError

from toollink.api_client.client import BackendAPIError, BackendUnavailableError, ToolLinkClient
from toollink.auth import permissions
from toollink.auth.models import AuthResult, ErrorType, Identity, SessionSnapshot, SessionState
from toollink.auth.session_store import SessionStore
from toollink.auth.tokens import is_token_expired
from toollink.config import SessionSettings
from toollink.monitoring.metrics import (
    forced_logouts_total,
    logins_total,
    registrations_total,
    session_reconciliations_total,
    stale_results_discarded_total,
    token_refresh_total,
)
from toollink.storage.base import (
    ACCESS_TOKEN_KEY,
    AUTH_KEYS,
    FORCE_LOGOUT_SIGNAL,
    REFRESH_TOKEN_KEY,
    USER_KEY,
    KeyValueStorage,
    StorageEvent,
)

logger = logging.getLogger(__name__)

_UNREACHABLE_MESSAGE = "Could not connect to authentication server"


class AuthSessionManager:
    """Owns the session of one "tab".

    Usage:
        async with AuthSessionManager(client, store, storage) as manager:
            result = await manager.login(email, password)

    `async with` starts the background loops, runs initialize() and tears
    the loops down on exit.
    """

    def __init__(
        self,
        client: ToolLinkClient,
        store: SessionStore,
        storage: KeyValueStorage,
        settings: SessionSettings | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._storage = storage
        self._settings = settings or SessionSettings()

        self._state = SessionState.UNKNOWN
        self._generation = 0
        self._verified = False
        self._persisted_session = False
        self._lock = asyncio.Lock()
        self._ready = asyncio.Event()

        self._wake = asyncio.Event()
        self._storage_dirty = False
        self._force_logout_pending = False
        self._refresh_failures = 0

        self._tasks: list[asyncio.Task[None]] = []
        self._unsubscribe: Any = None

    # --- Read side ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def user(self) -> Identity | None:
        return self._store.peek()

    @property
    def is_ready(self) -> bool:
        """True once the initial session check has finished."""
        return self._ready.is_set()

    @property
    def is_authenticated(self) -> bool:
        """Identity present, or a persisted token and user were last seen in storage.

        Optimistic on purpose: a restored session counts as authenticated
        while it is being re-validated in the background.
        """
        return self._store.peek() is not None or self._persisted_session

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            identity=self._store.peek(),
            authenticated=self.is_authenticated,
            verified=self._verified,
            generation=self._generation,
        )

    def has_permission(self, permission: str) -> bool:
        identity = self._store.peek()
        return permissions.has_permission(identity.role if identity else None, permission)

    def has_role(self, role: permissions.Role | str) -> bool:
        return permissions.has_role(self._store.peek(), role)

    def has_any_role(self, roles: Iterable[permissions.Role | str]) -> bool:
        return permissions.has_any_role(self._store.peek(), roles)

    def can_access_route(self, route: str) -> bool:
        identity = self._store.peek()
        return permissions.can_access_route(identity.role if identity else None, route)

    async def access_token(self) -> str | None:
        """Current bearer token; usable as a ToolLinkClient token provider."""
        return await self._storage.get_item(ACCESS_TOKEN_KEY)

    async def wait_until_ready(self, timeout: float | None = None) -> bool:
        """Wait for initialize() to finish; False if `timeout` elapsed first."""
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    # --- Lifecycle ---

    async def start(self) -> None:
        """Subscribe to storage events and launch the background loops."""
        if self._tasks:
            return
        self._unsubscribe = self._storage.subscribe(self._on_storage_event)
        self._tasks = [
            asyncio.create_task(self._token_refresh_loop()),
            asyncio.create_task(self._reconcile_loop()),
        ]
        logger.debug("Session manager started")

    async def close(self) -> None:
        """Cancel the background loops and unsubscribe from storage."""
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                try:
                    await task
                except Exception:
                    logger.warning("Background task ended with an error", exc_info=True)
        self._tasks = []
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        logger.debug("Session manager closed")

    async def __aenter__(self) -> AuthSessionManager:
        await self.start()
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # --- Transitions ---

    async def initialize(self) -> None:
        """Restore the persisted session, then re-validate it against the backend.

        A network failure or timeout keeps the cached identity. Only an
        explicit rejection of the token ends the session.
        """
        self._state = SessionState.RESTORING
        generation = self._generation
        try:
            token = await self._storage.get_item(ACCESS_TOKEN_KEY)
            raw_user = await self._storage.get_item(USER_KEY)
            identity = None
            if token and raw_user and not is_token_expired(token):
                identity = await self._store.get()

            if identity is None:
                async with self._lock:
                    if generation == self._generation:
                        # Partial, expired or corrupt leftovers.
                        await self._end_session(purge=bool(token or raw_user))
                if token or raw_user:
                    logger.info("Persisted session is incomplete or expired, cleared")
                await self._backend_logout(None, None)
                return

            async with self._lock:
                if generation != self._generation:
                    return
                self._state = SessionState.AUTHENTICATED
                self._persisted_session = True
            logger.info(
                "Session restored from storage",
                extra={"user_id": identity.id, "role": identity.role},
            )

            await self._revalidate(token, generation)
        except Exception:
            logger.warning("Session restore failed", exc_info=True)
            async with self._lock:
                if self._state is SessionState.RESTORING:
                    self._state = SessionState.ANONYMOUS
        finally:
            self._ready.set()

    async def login(self, email: str, password: str) -> AuthResult:
        """Authenticate; backend rejection fields are returned verbatim."""
        try:
            data = await self._client.login(email, password)
        except BackendAPIError as exc:
            logins_total.labels(result="error").inc()
            return self._unreachable(exc, "Login")

        if not data.get("success"):
            logins_total.labels(result="rejected").inc()
            result = self._rejection(data, "Login failed. Please try again.")
            logger.info(
                "Login rejected: %s", result.error_type, extra={"error_type": result.error_type}
            )
            return result

        identity = await self._adopt_login(data)
        if identity is None:
            logins_total.labels(result="error").inc()
            return AuthResult(
                success=False,
                error="Unexpected response from authentication server",
                error_type=ErrorType.BACKEND_UNREACHABLE.value,
            )

        logins_total.labels(result="success").inc()
        logger.info(
            "Login succeeded",
            extra={"user_id": identity.id, "role": identity.role, "generation": self._generation},
        )
        return AuthResult(success=True, identity=identity, message=data.get("message"))

    async def register(self, user_data: dict[str, Any]) -> AuthResult:
        """Create an account; an account awaiting approval stays Anonymous."""
        try:
            data = await self._client.register(user_data)
        except BackendAPIError as exc:
            registrations_total.labels(result="error").inc()
            return self._unreachable(exc, "Registration")

        if not data.get("success"):
            registrations_total.labels(result="rejected").inc()
            return self._rejection(data, "Registration failed")

        requires_approval = bool(data.get("requiresApproval"))
        if requires_approval or not _token_of(data):
            registrations_total.labels(result="pending_approval").inc()
            logger.info("Registration accepted, awaiting approval")
            return AuthResult(
                success=True,
                requires_approval=requires_approval,
                message=data.get("message"),
            )

        identity = await self._adopt_login(data)
        if identity is None:
            registrations_total.labels(result="error").inc()
            return AuthResult(
                success=False,
                error="Unexpected response from authentication server",
                error_type=ErrorType.BACKEND_UNREACHABLE.value,
            )
        registrations_total.labels(result="success").inc()
        logger.info("Registration succeeded", extra={"user_id": identity.id, "role": identity.role})
        return AuthResult(success=True, identity=identity, message=data.get("message"))

    async def logout(self) -> None:
        """Clear the session locally, then tell the backend (best effort)."""
        # Bumped before any await so in-flight refreshes are already stale.
        self._generation += 1
        async with self._lock:
            try:
                access = await self._storage.get_item(ACCESS_TOKEN_KEY)
                refresh = await self._storage.get_item(REFRESH_TOKEN_KEY)
            except Exception:
                logger.warning("Failed to read tokens for backend logout", exc_info=True)
                access = refresh = None
            await self._end_session(purge=True)
        logger.info("Logged out", extra={"generation": self._generation})
        await self._backend_logout(access, refresh)

    async def force_logout(self, reason: str = "requested") -> None:
        """Log out here and signal every manager sharing the storage to follow."""
        self._generation += 1
        async with self._lock:
            await self._end_session(purge=True)
        forced_logouts_total.labels(reason=reason).inc()
        logger.warning("Forced logout: %s", reason, extra={"generation": self._generation})
        try:
            await self._storage.broadcast(FORCE_LOGOUT_SIGNAL)
        except Exception:
            logger.warning("Failed to broadcast forced logout", exc_info=True)

    async def refresh_user(self) -> None:
        """Re-fetch the identity from the backend; failures leave state untouched."""
        generation = self._generation
        try:
            token = await self._storage.get_item(ACCESS_TOKEN_KEY)
        except Exception:
            logger.warning("Failed to read access token for user refresh", exc_info=True)
            return
        if not token:
            logger.debug("No access token, skipping user refresh")
            return

        user = await self._fetch_user(token, self._settings.refresh_user_timeout)
        if user is None:
            return
        try:
            identity = Identity.model_validate(user)
        except ValidationError:
            logger.warning("Backend returned a malformed user, keeping current identity")
            return
        await self._apply_fresh(identity, generation)

    async def refresh_token(self) -> bool:
        """One silent token renewal. Never raises."""
        generation = self._generation
        try:
            credential = await self._storage.get_item(
                REFRESH_TOKEN_KEY
            ) or await self._storage.get_item(ACCESS_TOKEN_KEY)
        except Exception:
            logger.warning("Failed to read tokens for renewal", exc_info=True)
            token_refresh_total.labels(result="failure").inc()
            return False
        if not credential:
            token_refresh_total.labels(result="failure").inc()
            return False

        try:
            tokens = await asyncio.wait_for(
                self._client.refresh_token(credential),
                timeout=self._settings.token_refresh_timeout,
            )
        except TimeoutError:
            logger.warning(
                "Token refresh timed out",
                extra={"error_type": ErrorType.NETWORK_TIMEOUT.value},
            )
            tokens = None
        except BackendAPIError as exc:
            logger.warning(
                "Token refresh failed: %s",
                exc,
                extra={"error_type": _transport_error_type(exc).value},
            )
            tokens = None

        if tokens is None:
            token_refresh_total.labels(result="failure").inc()
            return False

        async with self._lock:
            if generation != self._generation:
                self._discard_stale("token refresh")
                return False
            await self._storage.set_item(ACCESS_TOKEN_KEY, tokens["accessToken"])
            if tokens.get("refreshToken"):
                await self._storage.set_item(REFRESH_TOKEN_KEY, tokens["refreshToken"])
        token_refresh_total.labels(result="success").inc()
        logger.debug("Access token renewed")
        return True

    async def reconcile(self) -> None:
        """Converge this manager's state onto what storage currently holds."""
        generation = self._generation
        token = await self._storage.get_item(ACCESS_TOKEN_KEY)
        raw_user = await self._storage.get_item(USER_KEY)

        async with self._lock:
            if generation != self._generation:
                # A transition ran while storage was being read; next pass sees it.
                return
            current = self._store.peek()

            if not token or not raw_user:
                self._persisted_session = False
                if current is None and self._state is SessionState.ANONYMOUS:
                    session_reconciliations_total.labels(outcome="unchanged").inc()
                    return
                # Another tab may be mid-login, so storage is left as is.
                self._generation += 1
                await self._end_session(purge=False)
                session_reconciliations_total.labels(outcome="cleared").inc()
                logger.info("Session cleared by another tab", extra={"generation": self._generation})
                return

            stored = None
            if not is_token_expired(token):
                try:
                    stored = Identity.deserialize(raw_user)
                except ValidationError:
                    logger.warning(
                        "Persisted user is malformed, clearing session",
                        extra={"error_type": ErrorType.CORRUPT_PERSISTED_STATE.value},
                    )
            if stored is None:
                self._generation += 1
                await self._end_session(purge=True)
                forced_logouts_total.labels(reason="invalid_token").inc()
                session_reconciliations_total.labels(outcome="purged").inc()
                logger.info("Persisted session invalid, purged", extra={"generation": self._generation})
                return

            self._persisted_session = True
            if stored == current:
                if self._state is not SessionState.AUTHENTICATED:
                    self._state = SessionState.AUTHENTICATED
                session_reconciliations_total.labels(outcome="unchanged").inc()
                return

            if not stored.same_principal(current):
                self._generation += 1
                self._verified = False
            await self._store.set(stored)
            self._state = SessionState.AUTHENTICATED
            session_reconciliations_total.labels(outcome="adopted").inc()
            logger.info(
                "Adopted session from storage",
                extra={"user_id": stored.id, "role": stored.role, "generation": self._generation},
            )

    async def forgot_password(self, email: str) -> AuthResult:
        try:
            data = await self._client.forgot_password(email)
        except BackendAPIError as exc:
            return self._unreachable(exc, "Password reset request")
        if not data.get("success"):
            return self._rejection(data, "Could not send password reset email")
        return AuthResult(success=True, message=data.get("message"))

    async def reset_password(self, token: str, new_password: str) -> AuthResult:
        try:
            data = await self._client.reset_password(token, new_password)
        except BackendAPIError as exc:
            return self._unreachable(exc, "Password reset")
        if not data.get("success"):
            return self._rejection(data, "Password reset failed")
        return AuthResult(success=True, message=data.get("message"))

    # --- Internals ---

    async def _adopt_login(self, data: dict[str, Any]) -> Identity | None:
        """Persist tokens + identity from a successful login/register body."""
        token = _token_of(data)
        try:
            identity = Identity.model_validate(data.get("user") or {})
        except ValidationError:
            logger.warning("Authentication response carried a malformed user")
            return None
        if not token:
            logger.warning("Authentication response carried no access token")
            return None

        async with self._lock:
            self._generation += 1
            await self._storage.set_item(ACCESS_TOKEN_KEY, token)
            await self._storage.set_item(REFRESH_TOKEN_KEY, data.get("refreshToken") or token)
            await self._store.set(identity)
            self._state = SessionState.AUTHENTICATED
            self._verified = True
            self._persisted_session = True
            self._refresh_failures = 0
        return identity

    async def _revalidate(self, token: str, generation: int) -> None:
        """Initial backend check of a restored session."""
        try:
            user = await asyncio.wait_for(
                self._client.me(token=token), timeout=self._settings.initial_refresh_timeout
            )
        except TimeoutError:
            logger.warning(
                "Session validation timed out, trusting cached user",
                extra={"error_type": ErrorType.NETWORK_TIMEOUT.value},
            )
            return
        except BackendAPIError as exc:
            logger.warning(
                "Session validation failed, trusting cached user: %s",
                exc,
                extra={"error_type": _transport_error_type(exc).value},
            )
            return

        if user is None:
            async with self._lock:
                if generation != self._generation:
                    self._discard_stale("session validation")
                    return
                self._generation += 1
                await self._end_session(purge=True)
            forced_logouts_total.labels(reason="invalid_token").inc()
            logger.info("Stored token rejected by backend, session cleared")
            return

        try:
            identity = Identity.model_validate(user)
        except ValidationError:
            logger.warning("Backend returned a malformed user, keeping cached identity")
            return
        await self._apply_fresh(identity, generation)

    async def _fetch_user(self, token: str, timeout: float) -> dict[str, Any] | None:
        try:
            user = await asyncio.wait_for(self._client.me(token=token), timeout=timeout)
        except TimeoutError:
            logger.warning(
                "User refresh timed out",
                extra={"error_type": ErrorType.NETWORK_TIMEOUT.value},
            )
            return None
        except BackendAPIError as exc:
            logger.warning(
                "User refresh failed: %s",
                exc,
                extra={"error_type": _transport_error_type(exc).value},
            )
            return None
        if user is None:
            logger.info("User refresh rejected by backend")
        return user

    async def _apply_fresh(self, identity: Identity, generation: int) -> bool:
        async with self._lock:
            if generation != self._generation:
                self._discard_stale("user refresh")
                return False
            await self._store.set(identity)
            self._state = SessionState.AUTHENTICATED
            self._verified = True
            self._persisted_session = True
        logger.debug(
            "Identity refreshed from backend",
            extra={"user_id": identity.id, "role": identity.role, "generation": generation},
        )
        return True

    async def _end_session(self, *, purge: bool) -> None:
        """Go Anonymous, then purge persisted keys. Caller holds the lock.

        Never raises: memory is cleared first, and a key that cannot be
        removed is logged and left for the next reconciliation.
        """
        await self._store.set(None)
        self._state = SessionState.ANONYMOUS
        self._verified = False
        self._persisted_session = False
        self._refresh_failures = 0
        if not purge:
            return
        for key in AUTH_KEYS:
            try:
                await self._storage.remove_item(key)
            except Exception:
                logger.warning("Failed to remove %s from storage", key, exc_info=True)

    async def _backend_logout(self, access: str | None, refresh: str | None) -> None:
        try:
            await asyncio.wait_for(
                self._client.logout(refresh, token=access),
                timeout=self._settings.logout_timeout,
            )
        except TimeoutError:
            logger.warning(
                "Backend logout timed out",
                extra={"error_type": ErrorType.NETWORK_TIMEOUT.value},
            )
        except BackendAPIError as exc:
            logger.info("Backend logout failed: %s", exc)

    def _discard_stale(self, what: str) -> None:
        stale_results_discarded_total.inc()
        logger.info(
            "Discarded stale %s result",
            what,
            extra={"error_type": ErrorType.STALE_SESSION.value, "generation": self._generation},
        )

    @staticmethod
    def _rejection(data: dict[str, Any], default_error: str) -> AuthResult:
        error_type = data.get("errorType")
        remaining = data.get("remainingAttempts")
        show_forgot = bool(data.get("showForgotPassword")) or (
            error_type == ErrorType.ACCOUNT_LOCKED.value
            or (error_type == ErrorType.INVALID_CREDENTIALS.value and remaining == 0)
        )
        return AuthResult(
            success=False,
            error=data.get("message") or data.get("error") or default_error,
            error_type=error_type,
            remaining_attempts=remaining,
            requires_approval=error_type == ErrorType.ACCOUNT_PENDING_APPROVAL.value,
            show_forgot_password=show_forgot,
        )

    @staticmethod
    def _unreachable(exc: BackendAPIError, action: str) -> AuthResult:
        error_type = _transport_error_type(exc)
        logger.warning("%s failed: %s", action, exc, extra={"error_type": error_type.value})
        return AuthResult(success=False, error=_UNREACHABLE_MESSAGE, error_type=error_type.value)

    # --- Background loops ---

    def _on_storage_event(self, event: StorageEvent) -> None:
        if event.is_signal:
            if event.key == FORCE_LOGOUT_SIGNAL:
                self._force_logout_pending = True
                self._wake.set()
            return
        if event.key in (ACCESS_TOKEN_KEY, USER_KEY):
            self._storage_dirty = True
            self._wake.set()

    async def _handle_forced_logout(self) -> None:
        async with self._lock:
            if self._store.peek() is None and self._state is SessionState.ANONYMOUS:
                return
            self._generation += 1
            await self._end_session(purge=True)
        forced_logouts_total.labels(reason="broadcast").inc()
        logger.info("Logged out by another tab", extra={"generation": self._generation})

    async def _token_refresh_loop(self) -> None:
        """Renew the access token on a fixed interval while Authenticated."""
        while True:
            await asyncio.sleep(self._settings.token_refresh_interval)
            if self._state is not SessionState.AUTHENTICATED:
                continue
            generation = self._generation
            try:
                renewed = await self.refresh_token()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Token refresh tick failed")
                renewed = False

            if renewed:
                self._refresh_failures = 0
                continue
            if generation != self._generation or self._state is not SessionState.AUTHENTICATED:
                continue
            self._refresh_failures += 1
            if self._refresh_failures >= self._settings.token_refresh_max_failures:
                forced_logouts_total.labels(reason="token_refresh_failed").inc()
                logger.warning("Token renewal keeps failing, logging out")
                try:
                    await self.logout()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Logout after failed renewal failed")

    async def _reconcile_loop(self) -> None:
        """Reconcile on every storage event and on a fixed poll interval."""
        await self._ready.wait()
        while True:
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(
                    self._wake.wait(), timeout=self._settings.reconcile_interval
                )
            self._wake.clear()
            forced, self._force_logout_pending = self._force_logout_pending, False
            dirty, self._storage_dirty = self._storage_dirty, False
            try:
                if forced:
                    await self._handle_forced_logout()
                elif dirty or self._state is not SessionState.ANONYMOUS:
                    await self.reconcile()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("Session reconciliation failed", exc_info=True)


def _token_of(data: dict[str, Any]) -> str | None:
    return data.get("accessToken") or data.get("token")


def _transport_error_type(exc: BackendAPIError) -> ErrorType:
    if isinstance(exc, BackendUnavailableError) and exc.timed_out:
        return ErrorType.NETWORK_TIMEOUT
    return ErrorType.BACKEND_UNREACHABLE
