"""Tests for the identity provider adapter and its error translation."""

import json

import httpx
import pytest

from src.services.identity import (
    IdentityConflict,
    IdentityNotFound,
    IdentityProvider,
    IdentityProviderError,
    InvalidCredentials,
    RateLimited,
    WeakPassword,
)


def make_provider(handler) -> IdentityProvider:
    return IdentityProvider(
        base_url="http://identity.test",
        anon_key="anon-key",
        service_key="service-key",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_create_user_uses_admin_api():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["apikey"] = request.headers["apikey"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "user-1", "email": "a@b.test"})

    provider = make_provider(handler)
    user = await provider.create_user("a@b.test", "longenough1", metadata={"role": "student"})
    await provider.aclose()

    assert user.id == "user-1"
    assert seen["path"] == "/admin/users"
    assert seen["apikey"] == "service-key"
    assert seen["body"]["email_confirm"] is True
    assert seen["body"]["user_metadata"] == {"role": "student"}


@pytest.mark.asyncio
async def test_existing_email_is_a_conflict():
    def handler(request):
        return httpx.Response(
            422,
            json={"code": 422, "error_code": "email_exists", "msg": "A user with this email already exists"},
        )

    provider = make_provider(handler)
    with pytest.raises(IdentityConflict) as exc_info:
        await provider.create_user("a@b.test", "longenough1")
    assert exc_info.value.status_code == 422
    assert exc_info.value.code == "email_exists"


@pytest.mark.asyncio
async def test_bad_password_grant_is_invalid_credentials():
    def handler(request):
        assert request.url.params["grant_type"] == "password"
        return httpx.Response(
            400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"}
        )

    provider = make_provider(handler)
    with pytest.raises(InvalidCredentials):
        await provider.sign_in_with_password("a@b.test", "wrong")


@pytest.mark.parametrize(
    "status_code, body, expected",
    [
        (429, {"msg": "Too many requests"}, RateLimited),
        (404, {}, IdentityNotFound),
        (422, {"error_code": "weak_password", "msg": "Password should be longer"}, WeakPassword),
        (400, {"error_code": "over_email_send_rate_limit"}, RateLimited),
    ],
)
@pytest.mark.asyncio
async def test_status_and_code_mapping(status_code, body, expected):
    provider = make_provider(lambda request: httpx.Response(status_code, json=body))
    with pytest.raises(expected):
        await provider.delete_user("user-1")


@pytest.mark.asyncio
async def test_unknown_failure_is_generic_error():
    provider = make_provider(lambda request: httpx.Response(502, text="Bad Gateway"))
    with pytest.raises(IdentityProviderError) as exc_info:
        await provider.delete_user("user-1")
    assert type(exc_info.value) is IdentityProviderError
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_unreachable_provider():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    provider = make_provider(handler)
    with pytest.raises(IdentityProviderError) as exc_info:
        await provider.sign_out("token")
    assert exc_info.value.status_code is None
