"""ToolLink backend HTTP client with circuit breaker and retry.

Covers the auth contract (login, register, logout, me, refresh-token,
password reset, account approval). Resource APIs built on top of it
live in `toollink.api_client.resources`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

import aiohttp
from aiobreaker import CircuitBreaker, CircuitBreakerError

logger = logging.getLogger(__name__)

# Retry config (idempotent requests only)
_MAX_RETRIES = 2
_RETRY_DELAYS = [1.0, 2.0]
_RETRYABLE_STATUSES = {429, 503}

AUTH_LOGIN = "/api/auth/login"
AUTH_REGISTER = "/api/auth/register"
AUTH_LOGOUT = "/api/auth/logout"
AUTH_REFRESH = "/api/auth/refresh-token"
AUTH_ME = "/api/auth/me"
AUTH_FORGOT_PASSWORD = "/api/auth/forgot-password"
AUTH_RESET_PASSWORD = "/api/auth/reset-password"
AUTH_PENDING_USERS = "/api/auth/pending-users"
AUTH_APPROVE_USER = "/api/auth/approve-user"
AUTH_REJECT_USER = "/api/auth/reject-user"

TokenProvider = Callable[[], Awaitable[str | None]]


class BackendAPIError(Exception):
    """Raised when a ToolLink API call fails."""

    def __init__(self, status: int, message: str, payload: dict[str, Any] | None = None) -> None:
        self.status = status
        self.message = message
        self.payload = payload or {}
        super().__init__(f"ToolLink API {status}: {message}")


class BackendClientError(BackendAPIError):
    """4xx response: the request was understood and rejected."""


class BackendUnavailableError(BackendAPIError):
    """Backend could not be reached, timed out, or the circuit is open."""

    def __init__(self, message: str, *, timed_out: bool = False) -> None:
        self.timed_out = timed_out
        super().__init__(503, message)


def _default_error_type(status: int, payload: dict[str, Any]) -> str | None:
    if payload.get("pendingApproval"):
        return "ACCOUNT_PENDING_APPROVAL"
    if status == 401:
        return "INVALID_CREDENTIALS"
    if status == 423:
        return "ACCOUNT_LOCKED"
    return None


class ToolLinkClient:
    """HTTP client for the ToolLink REST backend.

    Features:
      - Circuit breaker (aiobreaker: fail_max=5, timeout=30s); 4xx responses
        are not counted as failures
      - Retry with backoff (1s, 2s) for 429/503 on idempotent requests
      - Request timeout (default 10 seconds)
      - X-Request-Id header for tracing
      - Bearer token from `token_provider` on authenticated calls
    """

    def __init__(
        self,
        base_url: str,
        timeout: int = 10,
        token_provider: TokenProvider | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._token_provider = token_provider
        self._session: aiohttp.ClientSession | None = None
        self._breaker = CircuitBreaker(
            fail_max=5,
            timeout_duration=timedelta(seconds=30),
            exclude=[BackendClientError],
        )

    async def open(self) -> None:
        """Open the HTTP session."""
        self._session = aiohttp.ClientSession(
            timeout=self._timeout,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> ToolLinkClient:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # --- Auth ---

    async def login(self, email: str, password: str) -> dict[str, Any]:
        """Authenticate with email/password.

        Maps to: POST /api/auth/login
        Credential rejections are returned as the backend body with
        `success: false` rather than raised.
        """
        return await self._auth_post(AUTH_LOGIN, {"email": email, "password": password})

    async def register(self, user_data: dict[str, Any]) -> dict[str, Any]:
        """Create an account.

        Maps to: POST /api/auth/register
        """
        return await self._auth_post(AUTH_REGISTER, user_data)

    async def logout(
        self, refresh_token: str | None = None, token: str | None = None
    ) -> dict[str, Any]:
        """Revoke the session server-side (idempotent).

        Maps to: POST /api/auth/logout
        `token` overrides the token provider, for when local storage is
        already cleared.
        """
        body = {"refreshToken": refresh_token} if refresh_token else {}
        return await self._request(
            "POST", AUTH_LOGOUT, json_data=body, authenticated=True, token=token
        )

    async def me(self, token: str | None = None) -> dict[str, Any] | None:
        """Fetch the current user; None when the token is rejected.

        Maps to: GET /api/auth/me
        """
        try:
            data = await self._request("GET", AUTH_ME, authenticated=True, token=token)
        except BackendClientError as exc:
            if exc.status in (401, 403):
                return None
            raise
        user = data.get("user", data)
        if not isinstance(user, dict) or "role" not in user:
            return None
        return user

    async def refresh_token(self, refresh_token: str) -> dict[str, Any] | None:
        """Exchange a refresh token for a new access token.

        Maps to: POST /api/auth/refresh-token
        Returns {"accessToken": ..., "refreshToken": ...} or None if rejected.
        """
        try:
            data = await self._request(
                "POST", AUTH_REFRESH, json_data={"refreshToken": refresh_token}
            )
        except BackendClientError:
            return None
        access = data.get("accessToken") or data.get("token")
        if not data.get("success", True) or not access:
            return None
        return {"accessToken": access, "refreshToken": data.get("refreshToken")}

    async def forgot_password(self, email: str) -> dict[str, Any]:
        """Maps to: POST /api/auth/forgot-password"""
        return await self._auth_post(AUTH_FORGOT_PASSWORD, {"email": email})

    async def reset_password(self, token: str, new_password: str) -> dict[str, Any]:
        """Maps to: POST /api/auth/reset-password"""
        return await self._auth_post(
            AUTH_RESET_PASSWORD, {"token": token, "newPassword": new_password}
        )

    async def pending_users(self) -> list[dict[str, Any]]:
        """Accounts awaiting approval (admin/cashier).

        Maps to: GET /api/auth/pending-users
        """
        data = await self._request("GET", AUTH_PENDING_USERS, authenticated=True)
        users = data.get("users", data.get("data", []))
        return users if isinstance(users, list) else []

    async def approve_user(self, user_id: str) -> dict[str, Any]:
        """Maps to: POST /api/auth/approve-user"""
        return await self._request(
            "POST", AUTH_APPROVE_USER, json_data={"userId": user_id}, authenticated=True
        )

    async def reject_user(self, user_id: str, reason: str = "") -> dict[str, Any]:
        """Maps to: POST /api/auth/reject-user"""
        body: dict[str, Any] = {"userId": user_id}
        if reason:
            body["reason"] = reason
        return await self._request(
            "POST", AUTH_REJECT_USER, json_data=body, authenticated=True
        )

    # --- HTTP helpers ---

    async def _auth_post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """POST where a 4xx carries a displayable body instead of being an error."""
        try:
            data = await self._request("POST", path, json_data=body)
        except BackendClientError as exc:
            payload = dict(exc.payload)
            payload["success"] = False
            payload.setdefault("message", exc.message)
            error_type = payload.get("errorType") or _default_error_type(exc.status, payload)
            if error_type:
                payload["errorType"] = error_type
            payload["status"] = exc.status
            return payload
        return data

    async def get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Authenticated GET (retried on 429/503)."""
        return await self._request("GET", path, params=params, authenticated=True)

    async def send(
        self, method: str, path: str, json_data: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Authenticated write request (never retried)."""
        return await self._request(method, path, json_data=json_data, authenticated=True)

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        *,
        authenticated: bool = False,
        token: str | None = None,
    ) -> dict[str, Any]:
        """Make an HTTP request with circuit breaker, retry, and error handling."""
        if self._session is None:
            raise RuntimeError("ToolLinkClient not opened, call open() first")

        url = f"{self._base_url}{path}"
        headers = {"X-Request-Id": str(uuid.uuid4())}
        if authenticated:
            bearer = token
            if bearer is None and self._token_provider is not None:
                bearer = await self._token_provider()
            if bearer:
                headers["Authorization"] = f"Bearer {bearer}"

        retries = _MAX_RETRIES if method == "GET" else 0

        try:
            return await self._breaker.call_async(
                self._request_with_retry,
                method,
                url,
                headers,
                retries,
                params=params,
                json_data=json_data,
            )
        except CircuitBreakerError as exc:
            logger.error("Circuit breaker OPEN for ToolLink API")
            raise BackendUnavailableError("Service temporarily unavailable") from exc

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        retries: int,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute request with retry for 429/503."""
        last_exc: BackendAPIError | None = None

        for attempt in range(retries + 1):
            try:
                return await self._do_request(
                    method, url, headers, params=params, json_data=json_data
                )
            except BackendAPIError as exc:
                last_exc = exc
                if exc.status not in _RETRYABLE_STATUSES or isinstance(
                    exc, BackendUnavailableError
                ):
                    raise
                if attempt < retries:
                    delay = _RETRY_DELAYS[attempt]
                    logger.warning(
                        "ToolLink API %d, retry %d/%d in %.1fs: %s",
                        exc.status,
                        attempt + 1,
                        retries,
                        delay,
                        url,
                    )
                    await asyncio.sleep(delay)

        assert last_exc is not None
        raise last_exc

    async def _do_request(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute a single HTTP request."""
        assert self._session is not None

        try:
            async with self._session.request(
                method, url, params=params, json=json_data, headers=headers
            ) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    payload = _parse_json_object(body)
                    message = str(payload.get("message") or payload.get("error") or body[:200])
                    if resp.status < 500 and resp.status != 429:
                        raise BackendClientError(resp.status, message, payload)
                    raise BackendAPIError(resp.status, message, payload)

                body = await resp.text()
                if not body.strip():
                    return {}
                try:
                    data = json.loads(body)
                except ValueError as exc:
                    raise BackendAPIError(resp.status, "Response is not JSON") from exc
        except asyncio.TimeoutError as exc:
            raise BackendUnavailableError(f"Timed out: {method} {url}", timed_out=True) from exc
        except aiohttp.ClientError as exc:
            raise BackendUnavailableError(f"Connection failed: {exc}") from exc

        if isinstance(data, dict):
            return data
        return {"data": data}


def _parse_json_object(body: str) -> dict[str, Any]:
    try:
        data = json.loads(body)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
