"""Secret sanitizer: masks credentials and personal data in log output.

Masks bearer tokens, JWTs, password/token fields in JSON-ish payloads
and email addresses before records reach stdout/file handlers.
"""

from __future__ import annotations

import re

# Authorization: Bearer <token>
_BEARER_RE = re.compile(r"(Bearer\s+)([A-Za-z0-9._~+/=-]+)", re.IGNORECASE)

# Three base64url segments, header starts with "eyJ" ({" base64-encoded)
_JWT_RE = re.compile(r"\beyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*")

# "password": "...", 'refreshToken': '...', accessToken=...
_SECRET_FIELD_RE = re.compile(
    r"""(["']?(?:password|newPassword|accessToken|refreshToken|token)["']?\s*[:=]\s*)"""
    r"""(["']?)([^"',\s}]+)(["']?)""",
    re.IGNORECASE,
)

_EMAIL_RE = re.compile(
    r"\b([a-zA-Z0-9._%+-])([a-zA-Z0-9._%+-]*)@([a-zA-Z0-9.-]+)\.([a-zA-Z]{2,})\b"
)


def sanitize_bearer(text: str) -> str:
    """Mask bearer credentials: Bearer abc.def → Bearer ***."""
    return _BEARER_RE.sub(lambda m: f"{m.group(1)}***", text)


def sanitize_jwt(text: str) -> str:
    """Mask bare JWTs: eyJhbGciOi... → eyJ***."""
    return _JWT_RE.sub("eyJ***", text)


def sanitize_secret_fields(text: str) -> str:
    """Mask values of password/token fields: "password": "x" → "password": "***"."""

    def _mask(m: re.Match[str]) -> str:
        return f"{m.group(1)}{m.group(2)}***{m.group(4)}"

    return _SECRET_FIELD_RE.sub(_mask, text)


def sanitize_email(text: str) -> str:
    """Mask emails: user@example.com → u***@***.com."""

    def _mask(m: re.Match[str]) -> str:
        return f"{m.group(1)}***@***.{m.group(4)}"

    return _EMAIL_RE.sub(_mask, text)


def sanitize_secrets(text: str) -> str:
    """Sanitize all credentials and emails in text for logging."""
    text = sanitize_bearer(text)
    text = sanitize_secret_fields(text)
    text = sanitize_jwt(text)
    text = sanitize_email(text)
    return text
