from dataclasses import replace

import pytest
from fastapi import HTTPException

from auth import TokenService, extract_token, hash_password, verify_password


def test_token_lookup_prefers_cookie_then_auth_payload_then_header():
    assert extract_token({"token": "c"}, "a", "Bearer h") == "c"
    assert extract_token({}, "a", "Bearer h") == "a"
    assert extract_token(None, None, "Bearer h") == "h"
    assert extract_token(None, None, "Basic abc") is None
    assert extract_token(None, None, "Bearer ") is None
    assert extract_token({"other": "x"}, None, None) is None


def test_password_hashing():
    hashed = hash_password("s3cret")

    assert hashed != "s3cret"
    assert verify_password("s3cret", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("s3cret", "not-a-bcrypt-hash")


@pytest.mark.asyncio
async def test_authenticate_returns_claims(tokens):
    token = tokens.create_token({"email": "alice@x.io", "id": "u1"})

    claims = await tokens.authenticate(token)

    assert claims["email"] == "alice@x.io"
    assert claims["id"] == "u1"


@pytest.mark.asyncio
async def test_expired_token_is_rejected(fake_redis, settings):
    expired = TokenService(fake_redis, replace(settings, jwt_expires_hours=-1))
    token = expired.create_token({"email": "alice@x.io", "id": "u1"})

    with pytest.raises(HTTPException) as exc:
        await expired.authenticate(token)
    assert exc.value.status_code == 401
    assert exc.value.detail == "Token expired"


@pytest.mark.asyncio
async def test_token_signed_with_other_secret_is_rejected(fake_redis, settings, tokens):
    other = TokenService(fake_redis, replace(settings, jwt_secret="another-secret"))
    token = other.create_token({"email": "alice@x.io", "id": "u1"})

    with pytest.raises(HTTPException) as exc:
        await tokens.authenticate(token)
    assert exc.value.detail == "Invalid token"


@pytest.mark.asyncio
async def test_revoked_token_is_rejected(tokens, fake_redis):
    token = tokens.create_token({"email": "alice@x.io", "id": "u1"})

    await tokens.revoke(token)

    with pytest.raises(HTTPException) as exc:
        await tokens.authenticate(token)
    assert exc.value.detail == "Token revoked"
    assert fake_redis.ttls[f"revoked:{token}"] == tokens.ttl_seconds


@pytest.mark.asyncio
async def test_revocation_check_tolerates_redis_outage(tokens, fake_redis):
    token = tokens.create_token({"email": "alice@x.io", "id": "u1"})
    fake_redis.down = True

    claims = await tokens.authenticate(token)

    assert claims["email"] == "alice@x.io"


@pytest.mark.asyncio
async def test_missing_token_and_missing_secret(fake_redis, settings):
    with pytest.raises(HTTPException) as exc:
        await TokenService(fake_redis, settings).authenticate(None)
    assert exc.value.detail == "No token provided"

    unconfigured = TokenService(fake_redis, replace(settings, jwt_secret=None))
    with pytest.raises(HTTPException) as exc:
        await unconfigured.authenticate("anything")
    assert exc.value.status_code == 401
