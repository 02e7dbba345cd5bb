"""Session data model: identity, auth results, error taxonomy."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from toollink.auth.permissions import normalize_role


class ErrorType(str, enum.Enum):
    """Failure categories surfaced by the session manager."""

    NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
    BACKEND_UNREACHABLE = "BACKEND_UNREACHABLE"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_PENDING_APPROVAL = "ACCOUNT_PENDING_APPROVAL"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    CORRUPT_PERSISTED_STATE = "CORRUPT_PERSISTED_STATE"
    STALE_SESSION = "STALE_SESSION"


class SessionState(str, enum.Enum):
    """Conceptual states of the session lifecycle."""

    UNKNOWN = "unknown"
    RESTORING = "restoring"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"


class Identity(BaseModel):
    """The authenticated user's profile as issued by the backend.

    Stored under the `user` key in camelCase; backend fields this model
    does not know about are kept and written back unchanged.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    id: str
    email: str
    name: str = ""
    role: str
    is_active: bool = Field(default=True, alias="isActive")
    created_at: str = Field(default="", alias="createdAt")
    warehouse_code: str | None = Field(default=None, alias="warehouseCode")

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("id", "email", "role")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            msg = "must not be blank"
            raise ValueError(msg)
        return value

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def serialize(self) -> str:
        """JSON string for persistent storage."""
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def deserialize(cls, raw: str) -> Identity:
        """Parse a stored payload; raises pydantic.ValidationError if malformed."""
        return cls.model_validate_json(raw)

    def same_principal(self, other: Identity | None) -> bool:
        """True if `other` is the same user with the same role (case-insensitive)."""
        return (
            other is not None
            and other.id == self.id
            and normalize_role(other.role) == normalize_role(self.role)
        )


@dataclass
class AuthResult:
    """Outcome of login/register/password operations, shaped for display."""

    success: bool
    error: str | None = None
    error_type: str | None = None
    remaining_attempts: int | None = None
    requires_approval: bool = False
    show_forgot_password: bool = False
    identity: Identity | None = None
    message: str | None = None


@dataclass(frozen=True)
class SessionSnapshot:
    """Point-in-time view of the session used by pure access decisions."""

    state: SessionState
    identity: Identity | None
    authenticated: bool
    verified: bool = False
    generation: int = 0

    @property
    def role(self) -> str | None:
        return self.identity.role if self.identity else None
