"""Client-side inspection of session tokens.

Tokens are opaque to the client; when one happens to be a JWT its `exp`
claim is read (without signature verification) so that an expired
credential can be dropped before it is sent anywhere.
"""

from __future__ import annotations

import json
import time
from base64 import urlsafe_b64decode
from typing import Any


def _b64_decode(s: str) -> bytes:
    padding = -len(s) % 4
    return urlsafe_b64decode(s + "=" * padding)


def decode_claims(token: str) -> dict[str, Any] | None:
    """Return the JWT payload, or None if the token is not a JWT."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    try:
        payload = json.loads(_b64_decode(parts[1]))
    except (ValueError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


def is_token_expired(token: str | None, now: float | None = None) -> bool:
    """True if the token is missing/blank or is a JWT whose `exp` has passed.

    Non-JWT tokens carry no expiry the client can see and are treated as live.
    """
    if not token or not token.strip():
        return True
    claims = decode_claims(token)
    if claims is None or "exp" not in claims:
        return False
    try:
        exp = float(claims["exp"])
    except (TypeError, ValueError):
        return True
    return exp < (time.time() if now is None else now)


def token_age_minutes(token: str, now: float | None = None) -> int:
    """Minutes since the JWT `iat` claim; 0 when unknown."""
    claims = decode_claims(token)
    if not claims or "iat" not in claims:
        return 0
    try:
        issued_at = float(claims["iat"])
    except (TypeError, ValueError):
        return 0
    return int(((time.time() if now is None else now) - issued_at) // 60)
