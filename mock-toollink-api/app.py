"""Mock ToolLink API for local development and testing.

Implements the /api/auth contract with the seeded development accounts:
    admin@toollink.com / admin123        (admin)
    user@toollink.com / user123          (customer)
    warehouse@toollink.com / warehouse123 (warehouse)
    cashier@toollink.com / cashier123    (cashier)

Run: uvicorn app:app --port 5001 --app-dir mock-toollink-api
"""

import base64
import hashlib
import hmac
import json
import time
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse

app = FastAPI(title="Mock ToolLink API", version="0.1.0")

JWT_SECRET = "mock-toollink-secret"
ACCESS_TOKEN_TTL = 15 * 60
MAX_LOGIN_ATTEMPTS = 3
APPROVER_ROLES = {"admin", "cashier"}

SEED_USERS = [
    {"id": "1", "email": "admin@toollink.com", "password": "admin123", "name": "Admin User", "role": "admin"},
    {"id": "2", "email": "user@toollink.com", "password": "user123", "name": "Regular User", "role": "customer"},
    {"id": "3", "email": "warehouse@toollink.com", "password": "warehouse123", "name": "Warehouse Manager", "role": "warehouse", "warehouseCode": "WH-01"},
    {"id": "4", "email": "cashier@toollink.com", "password": "cashier123", "name": "Cashier User", "role": "cashier"},
]

USERS: dict[str, dict[str, Any]] = {}
FAILED_ATTEMPTS: dict[str, int] = {}
REFRESH_TOKENS: dict[str, str] = {}  # refresh token -> user id
REVOKED_JTIS: set[str] = set()
RESET_TOKENS: dict[str, str] = {}  # reset token -> user id


def reset_state() -> None:
    """Restore the seeded accounts and forget every token."""
    created = datetime.now(timezone.utc).isoformat()
    USERS.clear()
    for seed in SEED_USERS:
        USERS[seed["id"]] = {**seed, "isActive": True, "createdAt": created, "status": "approved"}
    FAILED_ATTEMPTS.clear()
    REFRESH_TOKENS.clear()
    REVOKED_JTIS.clear()
    RESET_TOKENS.clear()


reset_state()


# --- Tokens ---


def _b64_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64_decode(s: str) -> bytes:
    return base64.urlsafe_b64decode(s + "=" * (-len(s) % 4))


def create_jwt(payload: dict[str, Any], expires_in: int = ACCESS_TOKEN_TTL) -> str:
    """HS256 access token."""
    now = int(time.time())
    header = {"alg": "HS256", "typ": "JWT"}
    claims = {**payload, "iat": now, "exp": now + expires_in, "jti": str(uuid.uuid4())}
    message = f"{_b64_encode(json.dumps(header).encode())}.{_b64_encode(json.dumps(claims).encode())}"
    signature = hmac.new(JWT_SECRET.encode(), message.encode(), hashlib.sha256).digest()
    return f"{message}.{_b64_encode(signature)}"


def verify_jwt(token: str) -> dict[str, Any] | None:
    parts = token.split(".")
    if len(parts) != 3:
        return None
    message = f"{parts[0]}.{parts[1]}"
    expected = hmac.new(JWT_SECRET.encode(), message.encode(), hashlib.sha256).digest()
    try:
        if not hmac.compare_digest(expected, _b64_decode(parts[2])):
            return None
        claims = json.loads(_b64_decode(parts[1]))
    except ValueError:
        return None
    if claims.get("exp", 0) < time.time() or claims.get("jti") in REVOKED_JTIS:
        return None
    return claims


def _issue_tokens(user: dict[str, Any]) -> dict[str, str]:
    access = create_jwt({"sub": user["id"], "email": user["email"], "role": user["role"]})
    refresh = uuid.uuid4().hex
    REFRESH_TOKENS[refresh] = user["id"]
    return {"accessToken": access, "refreshToken": refresh}


# --- Helpers ---


def public_user(user: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in user.items() if k not in ("password", "status")}


def find_by_email(email: str) -> dict[str, Any] | None:
    email = email.strip().lower()
    return next((u for u in USERS.values() if u["email"] == email), None)


def error(status: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status, content={"success": False, "message": message, **extra})


def current_claims(authorization: str = Header(default="")) -> dict[str, Any] | None:
    if not authorization.startswith("Bearer "):
        return None
    return verify_jwt(authorization.removeprefix("Bearer "))


# --- Health ---


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok", "service": "mock-toollink-api"}


# --- Auth ---


@app.post("/api/auth/login", response_model=None)
async def login(request: Request) -> dict | JSONResponse:
    body = await request.json()
    email = str(body.get("email", "")).strip().lower()
    user = find_by_email(email)

    if FAILED_ATTEMPTS.get(email, 0) >= MAX_LOGIN_ATTEMPTS:
        return error(
            423,
            "Account locked after too many failed attempts. Reset your password to unlock it.",
            errorType="ACCOUNT_LOCKED",
        )

    if user is None or user["password"] != body.get("password"):
        FAILED_ATTEMPTS[email] = FAILED_ATTEMPTS.get(email, 0) + 1
        return error(
            401,
            "Invalid email or password",
            errorType="INVALID_CREDENTIALS",
            remainingAttempts=MAX_LOGIN_ATTEMPTS - FAILED_ATTEMPTS[email],
        )

    if user["status"] != "approved":
        return error(
            403,
            "Your account is pending approval",
            errorType="ACCOUNT_PENDING_APPROVAL",
            pendingApproval=True,
        )

    FAILED_ATTEMPTS.pop(email, None)
    return {"success": True, "user": public_user(user), **_issue_tokens(user)}


@app.post("/api/auth/register", response_model=None)
async def register(request: Request) -> dict | JSONResponse:
    body = await request.json()
    email = str(body.get("email", "")).strip().lower()
    password = str(body.get("password", ""))
    role = str(body.get("role") or "customer").lower()

    if not email or len(password) < 6:
        return error(400, "Email and a password of at least 6 characters are required")
    if find_by_email(email) is not None:
        return error(409, "An account with this email already exists")
    if role not in ("customer", "user"):
        return error(400, f"Role '{role}' cannot be self-assigned")

    user = {
        "id": uuid.uuid4().hex[:8],
        "email": email,
        "password": password,
        "name": body.get("fullName") or body.get("name") or body.get("username") or email,
        "role": role,
        "isActive": role != "customer",
        "createdAt": datetime.now(timezone.utc).isoformat(),
        "status": "pending" if role == "customer" else "approved",
    }
    USERS[user["id"]] = user

    if user["status"] == "pending":
        return {
            "success": True,
            "requiresApproval": True,
            "message": "Registration received. An administrator will review your account.",
            "user": public_user(user),
        }
    return {"success": True, "user": public_user(user), **_issue_tokens(user)}


@app.post("/api/auth/logout")
async def logout(request: Request, claims: dict | None = Depends(current_claims)) -> dict:
    body = await request.json() if await request.body() else {}
    REFRESH_TOKENS.pop(str(body.get("refreshToken", "")), None)
    if claims and claims.get("jti"):
        REVOKED_JTIS.add(claims["jti"])
    return {"success": True}


@app.get("/api/auth/me", response_model=None)
async def me(claims: dict | None = Depends(current_claims)) -> dict | JSONResponse:
    if claims is None:
        return error(401, "Invalid or expired token")
    user = USERS.get(claims.get("sub", ""))
    if user is None or user["status"] != "approved":
        return error(401, "Invalid or expired token")
    return {"success": True, "user": public_user(user)}


@app.post("/api/auth/refresh-token", response_model=None)
async def refresh_token(request: Request) -> dict | JSONResponse:
    body = await request.json()
    user_id = REFRESH_TOKENS.pop(str(body.get("refreshToken", "")), None)
    user = USERS.get(user_id or "")
    if user is None:
        return error(401, "Invalid refresh token")
    return {"success": True, **_issue_tokens(user)}


@app.post("/api/auth/forgot-password")
async def forgot_password(request: Request) -> dict:
    body = await request.json()
    user = find_by_email(str(body.get("email", "")))
    if user is not None:
        RESET_TOKENS[uuid.uuid4().hex] = user["id"]
    return {"success": True, "message": "If the account exists, a reset link has been sent"}


@app.post("/api/auth/reset-password", response_model=None)
async def reset_password(request: Request) -> dict | JSONResponse:
    body = await request.json()
    user = USERS.get(RESET_TOKENS.pop(str(body.get("token", "")), ""))
    new_password = str(body.get("newPassword", ""))
    if user is None:
        return error(400, "Invalid or expired reset token")
    if len(new_password) < 6:
        return error(400, "Password must be at least 6 characters")
    user["password"] = new_password
    FAILED_ATTEMPTS.pop(user["email"], None)
    return {"success": True, "message": "Password updated"}


# --- Account approval ---


def _approver(claims: dict | None) -> JSONResponse | None:
    if claims is None:
        return error(401, "Authentication required")
    if claims.get("role") not in APPROVER_ROLES:
        return error(403, "Insufficient permissions")
    return None


@app.get("/api/auth/pending-users", response_model=None)
async def pending_users(claims: dict | None = Depends(current_claims)) -> dict | JSONResponse:
    denied = _approver(claims)
    if denied is not None:
        return denied
    users = [public_user(u) for u in USERS.values() if u["status"] == "pending"]
    return {"success": True, "users": users}


@app.post("/api/auth/approve-user", response_model=None)
async def approve_user(
    request: Request, claims: dict | None = Depends(current_claims)
) -> dict | JSONResponse:
    denied = _approver(claims)
    if denied is not None:
        return denied
    body = await request.json()
    user = USERS.get(str(body.get("userId", "")))
    if user is None or user["status"] != "pending":
        return error(404, "Pending user not found")
    user["status"] = "approved"
    user["isActive"] = True
    return {"success": True, "user": public_user(user)}


@app.post("/api/auth/reject-user", response_model=None)
async def reject_user(
    request: Request, claims: dict | None = Depends(current_claims)
) -> dict | JSONResponse:
    denied = _approver(claims)
    if denied is not None:
        return denied
    body = await request.json()
    user = USERS.get(str(body.get("userId", "")))
    if user is None or user["status"] != "pending":
        return error(404, "Pending user not found")
    del USERS[user["id"]]
    return {"success": True, "message": body.get("reason") or "Registration rejected"}
