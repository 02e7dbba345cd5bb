"""Unit tests for client-side token inspection."""

from __future__ import annotations

from tests.unit.mocks.fake_backend import expired_jwt, make_jwt
from toollink.auth.tokens import decode_claims, is_token_expired, token_age_minutes


class TestDecodeClaims:
    """Test decode_claims()."""

    def test_jwt(self) -> None:
        assert decode_claims(make_jwt({"sub": "1", "role": "admin"})) == {"sub": "1", "role": "admin"}

    def test_opaque_token(self) -> None:
        assert decode_claims("access-1") is None

    def test_garbage_payload(self) -> None:
        assert decode_claims("a.%%%.c") is None
        assert decode_claims("a.bnVsbA.c") is None  # "null"


class TestIsTokenExpired:
    """Test is_token_expired()."""

    def test_missing_or_blank(self) -> None:
        assert is_token_expired(None)
        assert is_token_expired("")
        assert is_token_expired("   ")

    def test_opaque_token_is_live(self) -> None:
        assert not is_token_expired("access-1")

    def test_expired_jwt(self) -> None:
        assert is_token_expired(expired_jwt())

    def test_live_jwt(self) -> None:
        assert not is_token_expired(make_jwt({"exp": 2_000}), now=1_000)

    def test_jwt_without_exp_is_live(self) -> None:
        assert not is_token_expired(make_jwt({"sub": "1"}))

    def test_unreadable_exp_is_expired(self) -> None:
        assert is_token_expired(make_jwt({"exp": "soon"}))


class TestTokenAge:
    """Test token_age_minutes()."""

    def test_age(self) -> None:
        assert token_age_minutes(make_jwt({"iat": 1_000}), now=1_000 + 61 * 60) == 61

    def test_unknown(self) -> None:
        assert token_age_minutes("access-1") == 0
        assert token_age_minutes(make_jwt({"iat": None})) == 0
