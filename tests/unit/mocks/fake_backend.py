"""In-memory stand-in for ToolLinkClient's auth surface."""

from __future__ import annotations

import asyncio
import base64
import json
import time
from collections.abc import Callable
from typing import Any

ADMIN = {
    "id": "1",
    "email": "admin@toollink.com",
    "name": "Admin User",
    "role": "admin",
    "isActive": True,
    "createdAt": "2024-01-01T00:00:00Z",
}
CUSTOMER = {
    "id": "2",
    "email": "user@toollink.com",
    "name": "Regular User",
    "role": "customer",
    "isActive": True,
    "createdAt": "2024-01-01T00:00:00Z",
}
WAREHOUSE = {
    "id": "3",
    "email": "warehouse@toollink.com",
    "name": "Warehouse Manager",
    "role": "warehouse",
    "isActive": True,
    "createdAt": "2024-01-01T00:00:00Z",
    "warehouseCode": "WH-01",
}

MAX_ATTEMPTS = 3


def make_jwt(claims: dict[str, Any]) -> str:
    """Unsigned JWT-shaped token carrying `claims`."""

    def _part(data: dict[str, Any]) -> str:
        return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()

    return f"{_part({'alg': 'HS256', 'typ': 'JWT'})}.{_part(claims)}.signature"


def expired_jwt() -> str:
    return make_jwt({"sub": "1", "exp": int(time.time()) - 60})


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    """Poll `predicate` until it holds or `timeout` elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


class FakeBackend:
    """Scriptable backend with the seeded development accounts.

    Usage:
        backend = FakeBackend()
        backend.me_gate = asyncio.Event()   # me() blocks until set
        backend.me_error = BackendUnavailableError("down")
    """

    def __init__(self) -> None:
        self.accounts: dict[str, tuple[str, dict[str, Any]]] = {
            ADMIN["email"]: ("admin123", ADMIN),
            CUSTOMER["email"]: ("user123", CUSTOMER),
            WAREHOUSE["email"]: ("warehouse123", WAREHOUSE),
        }
        self.failed_attempts: dict[str, int] = {}
        self.sessions: dict[str, dict[str, Any]] = {}
        self.refresh_tokens: dict[str, dict[str, Any]] = {}
        self.calls: list[str] = []

        self.me_gate: asyncio.Event | None = None
        self.me_error: Exception | None = None
        self.me_override: dict[str, Any] | None = None
        self.refresh_error: Exception | None = None
        self.logout_error: Exception | None = None
        self.logout_hangs = False
        self._counter = 0

    def issue(self, user: dict[str, Any]) -> tuple[str, str]:
        self._counter += 1
        access = f"access-{self._counter}"
        refresh = f"refresh-{self._counter}"
        self.sessions[access] = dict(user)
        self.refresh_tokens[refresh] = dict(user)
        return access, refresh

    async def login(self, email: str, password: str) -> dict[str, Any]:
        self.calls.append("login")
        failed = self.failed_attempts.get(email, 0)
        if failed >= MAX_ATTEMPTS:
            return {
                "success": False,
                "message": "Account locked",
                "errorType": "ACCOUNT_LOCKED",
                "status": 423,
            }
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            self.failed_attempts[email] = failed + 1
            return {
                "success": False,
                "message": "Invalid email or password",
                "errorType": "INVALID_CREDENTIALS",
                "remainingAttempts": MAX_ATTEMPTS - failed - 1,
                "status": 401,
            }
        self.failed_attempts.pop(email, None)
        user = dict(account[1])
        access, refresh = self.issue(user)
        return {"success": True, "user": user, "accessToken": access, "refreshToken": refresh}

    async def register(self, user_data: dict[str, Any]) -> dict[str, Any]:
        self.calls.append("register")
        user = {
            "id": "99",
            "email": user_data["email"],
            "name": user_data.get("fullName", ""),
            "role": user_data.get("role", "customer"),
            "isActive": True,
            "createdAt": "2024-06-01T00:00:00Z",
        }
        if user["role"] == "customer":
            return {
                "success": True,
                "requiresApproval": True,
                "message": "Awaiting approval",
                "user": user,
            }
        access, refresh = self.issue(user)
        return {"success": True, "user": user, "accessToken": access, "refreshToken": refresh}

    async def logout(
        self, refresh_token: str | None = None, token: str | None = None
    ) -> dict[str, Any]:
        self.calls.append("logout")
        if self.logout_hangs:
            await asyncio.Event().wait()
        if self.logout_error is not None:
            raise self.logout_error
        self.sessions.pop(token or "", None)
        self.refresh_tokens.pop(refresh_token or "", None)
        return {"success": True}

    async def me(self, token: str | None = None) -> dict[str, Any] | None:
        self.calls.append("me")
        if self.me_gate is not None:
            await self.me_gate.wait()
        if self.me_error is not None:
            raise self.me_error
        if self.me_override is not None:
            return dict(self.me_override)
        return self.sessions.get(token or "")

    async def refresh_token(self, refresh_token: str) -> dict[str, Any] | None:
        self.calls.append("refresh_token")
        if self.refresh_error is not None:
            raise self.refresh_error
        user = self.refresh_tokens.pop(refresh_token, None)
        if user is None:
            return None
        access, refresh = self.issue(user)
        return {"accessToken": access, "refreshToken": refresh}

    async def forgot_password(self, email: str) -> dict[str, Any]:
        self.calls.append("forgot_password")
        return {"success": True, "message": "If the account exists, a reset link has been sent"}

    async def reset_password(self, token: str, new_password: str) -> dict[str, Any]:
        self.calls.append("reset_password")
        if token != "valid-reset-token":
            return {"success": False, "message": "Invalid or expired reset token", "status": 400}
        self.failed_attempts.clear()
        return {"success": True, "message": "Password updated"}
