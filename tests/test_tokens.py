"""Unit tests for JWT issuance/verification and refresh-token minting."""

import base64
import json
from datetime import datetime, timedelta, timezone

import pytest

from jwtauth.service.tokens import TokenIssuer
from jwtauth.storage.models import User

NOW = datetime(2026, 3, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)
HS256_HEADER = "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9"


def _segment(token: str, index: int) -> dict:
    part = token.split(".")[index]
    return json.loads(base64.urlsafe_b64decode(part + "=" * (-len(part) % 4)))


def _encode(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


@pytest.fixture
def issuer(settings):
    return TokenIssuer(settings)


@pytest.fixture
def user():
    return User(
        id="3b1c8f5e-2a4d-4f7e-9c1a-6d2e8b0f4a11",
        username="alice",
        password_hash=b"digest",
        password_salt=b"salt",
    )


class TestJwtIssuance:
    """Tests for the identity JWT."""

    def test_claims_carry_identity(self, issuer, user, settings):
        issued = issuer.issue_jwt(user, now=NOW)
        claims = _segment(issued.token, 1)

        assert claims["sub"] == user.id
        assert claims["name"] == "alice"
        assert claims["role"] == "Basic User"
        assert claims["iss"] == settings.jwt_issuer
        assert claims["aud"] == settings.jwt_audience

    def test_header_pins_hs256(self, issuer, user):
        issued = issuer.issue_jwt(user, now=NOW)

        assert _segment(issued.token, 0) == {"alg": "HS256", "typ": "JWT"}

    def test_expiry_is_ttl_after_issue(self, issuer, user):
        """exp is jwt_ttl_minutes after iat, both whole seconds."""
        issued = issuer.issue_jwt(user, now=NOW)
        claims = _segment(issued.token, 1)

        assert issued.issued_at == NOW.replace(microsecond=0)
        assert issued.expires_at == issued.issued_at + timedelta(minutes=15)
        assert claims["exp"] - claims["iat"] == 15 * 60

    def test_same_clock_gives_same_token(self, issuer, user):
        first = issuer.issue_jwt(user, now=NOW)
        second = issuer.issue_jwt(user, now=NOW)

        assert first.token == second.token

    def test_segments_are_unpadded_base64url(self, issuer, user):
        token = issuer.issue_jwt(user, now=NOW).token

        assert token.count(".") == 2
        assert "=" not in token
        assert "+" not in token and "/" not in token


class TestJwtVerification:
    """Tests for decode_jwt acceptance rules."""

    def test_round_trip_within_lifetime(self, issuer, user):
        token = issuer.issue_jwt(user, now=NOW).token

        claims = issuer.decode_jwt(token, now=NOW + timedelta(minutes=5))

        assert claims is not None
        assert claims["sub"] == user.id

    def test_rejects_expired_token(self, issuer, user):
        token = issuer.issue_jwt(user, now=NOW).token

        assert issuer.decode_jwt(token, now=NOW + timedelta(minutes=15)) is None

    def test_rejects_tampered_payload(self, issuer, user):
        token = issuer.issue_jwt(user, now=NOW).token
        header, payload, signature = token.split(".")
        claims = _segment(token, 1)
        claims["role"] = "Admin"

        forged = ".".join([header, _encode(claims), signature])

        assert issuer.decode_jwt(forged, now=NOW) is None

    def test_rejects_token_signed_with_other_secret(self, issuer, user, settings):
        other = TokenIssuer(
            settings.model_copy(update={"jwt_secret": "another-secret-that-is-long-enough-123"})
        )
        token = other.issue_jwt(user, now=NOW).token

        assert issuer.decode_jwt(token, now=NOW) is None

    def test_rejects_alg_none(self, issuer, user):
        token = issuer.issue_jwt(user, now=NOW).token
        _, payload, _ = token.split(".")
        unsigned = ".".join([_encode({"alg": "none", "typ": "JWT"}), payload, ""])

        assert issuer.decode_jwt(unsigned, now=NOW) is None

    def test_rejects_wrong_audience(self, issuer, user, settings):
        other = TokenIssuer(settings.model_copy(update={"jwt_audience": "someone-else"}))
        token = other.issue_jwt(user, now=NOW).token

        assert issuer.decode_jwt(token, now=NOW) is None

    def test_rejects_wrong_issuer(self, issuer, user, settings):
        other = TokenIssuer(settings.model_copy(update={"jwt_issuer": "someone-else"}))
        token = other.issue_jwt(user, now=NOW).token

        assert issuer.decode_jwt(token, now=NOW) is None

    @pytest.mark.parametrize(
        "garbage",
        ["", "abc", "a.b", "a.b.c.d", "!!!.???.***", f"{HS256_HEADER}.e30.é"],
    )
    def test_rejects_malformed_tokens(self, issuer, garbage):
        assert issuer.decode_jwt(garbage, now=NOW) is None

    def test_rejects_non_ascii_signature(self, issuer, user):
        header, payload, _ = issuer.issue_jwt(user, now=NOW).token.split(".")

        assert issuer.decode_jwt(f"{header}.{payload}.ééé", now=NOW) is None


class TestRefreshTokenMinting:
    """Tests for opaque refresh-token values."""

    def test_expiry_is_ttl_days_after_creation(self, issuer):
        issued = issuer.issue_refresh_token("owner", now=NOW)

        assert issued.created_at == NOW
        assert issued.expires_at == NOW + timedelta(days=7)

    def test_values_are_long_and_unique(self, issuer):
        values = {issuer.issue_refresh_token("owner", now=NOW).value for _ in range(50)}

        assert len(values) == 50
        # 64 random bytes encode to 86 url-safe characters
        assert all(len(value) == 86 for value in values)

    def test_value_is_cookie_safe(self, issuer):
        value = issuer.issue_refresh_token("owner", now=NOW).value

        assert all(c.isalnum() or c in "-_" for c in value)
