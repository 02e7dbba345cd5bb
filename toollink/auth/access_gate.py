"""One authorization decision for every protected region.

`decide()` is pure: it reads a SessionSnapshot and the permission table,
nothing else. Freshness is the caller's concern; AccessGate.resolve() does
the bounded wait/refresh before calling it, never inside it.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from toollink.auth.models import SessionSnapshot
from toollink.auth.permissions import (
    Role,
    has_any_permission,
    is_admin,
    normalize_role,
    route_requires_any_of,
)
from toollink.monitoring.metrics import access_decisions_total

if TYPE_CHECKING:
    from toollink.auth.session_manager import AuthSessionManager
    from toollink.config import SessionSettings

logger = logging.getLogger(__name__)


class Decision(str, enum.Enum):
    GRANT = "grant"
    REDIRECT_TO_LOGIN = "redirect_to_login"
    REDIRECT_TO_FALLBACK = "redirect_to_fallback"
    PENDING = "pending"


def decide(
    snapshot: SessionSnapshot,
    required_roles: Iterable[Role | str] | None = None,
    required_permissions: Iterable[str] | None = None,
    *,
    strict_admin: bool = False,
) -> Decision:
    """Decide access for a protected region.

    Empty requirement lists count as "no requirement". With `strict_admin`
    the admin bypass needs a session confirmed by the backend; a cached
    admin identity alone is sent to the fallback.
    """
    if snapshot.identity is None and not snapshot.authenticated:
        return Decision.REDIRECT_TO_LOGIN

    role = normalize_role(snapshot.role)
    if is_admin(role):
        if strict_admin and not snapshot.verified:
            return Decision.REDIRECT_TO_FALLBACK
        return Decision.GRANT

    roles = {normalize_role(r) for r in required_roles or ()}
    if roles and role not in roles:
        return Decision.REDIRECT_TO_FALLBACK

    perms = list(required_permissions or ())
    if perms and not has_any_permission(role, perms):
        return Decision.REDIRECT_TO_FALLBACK

    return Decision.GRANT


@dataclass(frozen=True)
class GateResult:
    decision: Decision
    redirect_to: str | None = None
    reason: str = ""

    @property
    def granted(self) -> bool:
        return self.decision is Decision.GRANT


class AccessGate:
    """Guards protected regions on behalf of one session manager."""

    def __init__(
        self,
        manager: AuthSessionManager,
        *,
        login_route: str = "/auth/login",
        fallback_route: str = "/dashboard",
        pending_timeout: float = 5.0,
        strict_admin: bool = False,
    ) -> None:
        self._manager = manager
        self._login_route = login_route
        self._fallback_route = fallback_route
        self._pending_timeout = pending_timeout
        self._strict_admin = strict_admin

    @classmethod
    def from_settings(cls, manager: AuthSessionManager, settings: SessionSettings) -> AccessGate:
        return cls(
            manager,
            login_route=settings.login_route,
            fallback_route=settings.fallback_route,
            pending_timeout=settings.pending_timeout,
            strict_admin=settings.strict_admin_validation,
        )

    def evaluate(
        self,
        required_roles: Iterable[Role | str] | None = None,
        required_permissions: Iterable[str] | None = None,
    ) -> GateResult:
        """Decide now; Pending while the initial session check is outstanding."""
        if not self._manager.is_ready:
            return self._finish(Decision.PENDING)
        return self._decide(required_roles, required_permissions)

    async def resolve(
        self,
        required_roles: Iterable[Role | str] | None = None,
        required_permissions: Iterable[str] | None = None,
        *,
        refresh: bool = False,
    ) -> GateResult:
        """Decide after at most `pending_timeout` seconds of waiting. Never Pending.

        With `refresh`, the identity is re-fetched first (the manager bounds
        that call with its own timeout and keeps the cache on failure).
        """
        ready = await self._manager.wait_until_ready(self._pending_timeout)
        if not ready:
            logger.warning(
                "Session check still running after %.1fs, deciding from current state",
                self._pending_timeout,
            )
        elif refresh and self._manager.is_authenticated:
            await self._manager.refresh_user()
        return self._decide(required_roles, required_permissions)

    def evaluate_route(self, route: str) -> GateResult:
        return self.evaluate(required_permissions=route_requires_any_of(route))

    async def resolve_route(self, route: str, *, refresh: bool = False) -> GateResult:
        """Resolve using the route permission table (unlisted routes need login only)."""
        return await self.resolve(
            required_permissions=route_requires_any_of(route), refresh=refresh
        )

    def _decide(
        self,
        required_roles: Iterable[Role | str] | None,
        required_permissions: Iterable[str] | None,
    ) -> GateResult:
        decision = decide(
            self._manager.snapshot(),
            required_roles,
            required_permissions,
            strict_admin=self._strict_admin,
        )
        return self._finish(decision)

    def _finish(self, decision: Decision) -> GateResult:
        access_decisions_total.labels(decision=decision.value).inc()
        logger.debug("Access decision: %s", decision.value, extra={"decision": decision.value})
        if decision is Decision.REDIRECT_TO_LOGIN:
            return GateResult(decision, self._login_route, "Login required")
        if decision is Decision.REDIRECT_TO_FALLBACK:
            return GateResult(decision, self._fallback_route, "Access denied")
        if decision is Decision.PENDING:
            return GateResult(decision, None, "Checking access")
        return GateResult(decision)
