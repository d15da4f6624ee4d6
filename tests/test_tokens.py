"""Tests for session token issuance and verification."""

import time

import jwt
import pytest

from src.auth.tokens import TokenExpired, TokenIssuer, TokenMalformed, TokenSettings

SECRET = "unit-test-secret-unit-test-secret-0001"


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(
        TokenSettings(
            secret=SECRET,
            default_ttl=3600,
            role_ttls={"platform_admin": 7 * 24 * 3600, "university_admin": 24 * 3600},
            refresh_threshold=1800,
        )
    )


def test_round_trip_keeps_claims(issuer):
    token = issuer.issue("acc-1", "a@b.co", "university_admin", "prof-1")
    claims = issuer.verify(token)
    assert claims.account_id == "acc-1"
    assert claims.email == "a@b.co"
    assert claims.role == "university_admin"
    assert claims.profile_id == "prof-1"
    assert claims.expires_at - claims.issued_at == 24 * 3600


def test_ttl_depends_on_role(issuer):
    assert issuer.ttl_for("platform_admin") == 7 * 24 * 3600
    assert issuer.ttl_for("student") == 3600


def test_expired_after_ttl(issuer):
    issued = time.time() - 24 * 3600 - 5
    token = issuer.issue("acc-1", "a@b.co", "university_admin", "prof-1", now=issued)
    with pytest.raises(TokenExpired):
        issuer.verify(token)


def test_tampered_token_is_malformed(issuer):
    token = issuer.issue("acc-1", "a@b.co", "student")
    with pytest.raises(TokenMalformed):
        issuer.verify(token[:-2] + ("AA" if token[-2:] != "AA" else "BB"))


def test_other_secret_is_malformed(issuer):
    token = jwt.encode(
        {"sub": "x", "email": "x@y.z", "role": "student", "iat": int(time.time()), "exp": int(time.time()) + 60},
        "another-secret-another-secret-another",
        algorithm="HS256",
    )
    with pytest.raises(TokenMalformed):
        issuer.verify(token)


def test_missing_role_claim_is_malformed(issuer):
    now = int(time.time())
    token = jwt.encode({"sub": "x", "iat": now, "exp": now + 60}, SECRET, algorithm="HS256")
    with pytest.raises(TokenMalformed):
        issuer.verify(token)


def test_refresh_only_near_expiry(issuer):
    fresh = issuer.verify(issuer.issue("acc-1", "a@b.co", "student"))
    assert not issuer.should_refresh(fresh)

    old = issuer.verify(issuer.issue("acc-1", "a@b.co", "student", now=time.time() - 3600 + 60))
    assert issuer.should_refresh(old)

    renewed = issuer.verify(issuer.refresh(old))
    assert renewed.account_id == old.account_id
    assert renewed.expires_at > old.expires_at


def test_empty_secret_rejected():
    with pytest.raises(ValueError):
        TokenIssuer(TokenSettings(secret=""))
