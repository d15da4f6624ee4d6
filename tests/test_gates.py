"""Tests for the authorization gates and sliding token refresh."""

import pytest
from httpx import AsyncClient
from sqlalchemy import delete, update

from src.db.models import Account, AccountRole, PlatformAdminProfile, UniversityAdminProfile
from tests.helpers import bearer, token_for


@pytest.mark.asyncio
async def test_valid_token_passes(client: AsyncClient, admin_headers: dict):
    response = await client.get("/api/auth/verify-token", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["user"]["role"] == "platform_admin"
    assert data["refreshed_token"] is None
    assert "X-Refreshed-Token" not in response.headers


@pytest.mark.asyncio
async def test_malformed_token(client: AsyncClient):
    response = await client.get("/api/auth/verify-token", headers=bearer("not-a-jwt"))
    assert response.status_code == 401
    assert response.json()["error"] == "INVALID_TOKEN"


@pytest.mark.parametrize("scheme", ["bearer", "BEARER", "Bearer"])
@pytest.mark.asyncio
async def test_scheme_is_case_insensitive(client: AsyncClient, platform_admin, scheme):
    token = token_for(platform_admin, AccountRole.PLATFORM_ADMIN)
    response = await client.get("/api/auth/verify-token", headers={"Authorization": f"{scheme} {token}"})
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_other_scheme_has_no_token(client: AsyncClient, platform_admin):
    token = token_for(platform_admin, AccountRole.PLATFORM_ADMIN)
    response = await client.get("/api/auth/verify-token", headers={"Authorization": f"Basic {token}"})
    assert response.status_code == 401
    assert response.json()["error"] == "NO_TOKEN"


@pytest.mark.asyncio
async def test_expired_token(client: AsyncClient, platform_admin):
    token = token_for(platform_admin, AccountRole.PLATFORM_ADMIN, now=0)
    response = await client.get("/api/auth/verify-token", headers=bearer(token))
    assert response.status_code == 401
    assert response.json()["error"] == "TOKEN_EXPIRED"


@pytest.mark.asyncio
async def test_deleted_account_is_rejected(
    client: AsyncClient, admin_headers: dict, platform_admin, session_maker
):
    """A still-valid token stops working once its account is gone."""
    async with session_maker() as db:
        await db.execute(
            delete(PlatformAdminProfile).where(PlatformAdminProfile.account_id == platform_admin.account.id)
        )
        await db.execute(delete(Account).where(Account.id == platform_admin.account.id))
        await db.commit()

    response = await client.get("/api/auth/verify-token", headers=admin_headers)
    assert response.status_code == 401
    assert response.json()["error"] == "ACCOUNT_NOT_FOUND"


@pytest.mark.asyncio
async def test_wrong_role(client: AsyncClient, ua_headers: dict):
    response = await client.get("/api/admin/universities", headers=ua_headers)
    assert response.status_code == 403
    assert response.json()["error"] == "WRONG_ROLE"


@pytest.mark.asyncio
async def test_inactive_profile(client: AsyncClient, ua_headers: dict, university_admin, session_maker):
    async with session_maker() as db:
        await db.execute(
            update(UniversityAdminProfile)
            .where(UniversityAdminProfile.id == university_admin.profile.id)
            .values(is_active=False)
        )
        await db.commit()

    response = await client.get("/api/university-admin/programs", headers=ua_headers)
    assert response.status_code == 403
    assert response.json()["error"] == "PROFILE_INACTIVE_OR_MISSING"


@pytest.mark.asyncio
async def test_missing_permission(client: AsyncClient, ua_headers: dict, university_admin, session_maker):
    async with session_maker() as db:
        await db.execute(
            update(UniversityAdminProfile)
            .where(UniversityAdminProfile.id == university_admin.profile.id)
            .values(permissions=["university:read"])
        )
        await db.commit()

    response = await client.get("/api/university-admin/programs", headers=ua_headers)
    assert response.status_code == 403
    assert response.json()["error"] == "INSUFFICIENT_PERMISSION"

    response = await client.get("/api/university-admin/settings", headers=ua_headers)
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_near_expiry_token_is_refreshed(client: AsyncClient, platform_admin, near_expiry):
    token = token_for(platform_admin, AccountRole.PLATFORM_ADMIN, now=near_expiry(AccountRole.PLATFORM_ADMIN))
    response = await client.get("/api/auth/verify-token", headers=bearer(token))
    assert response.status_code == 200

    refreshed = response.headers.get("X-Refreshed-Token")
    assert refreshed
    assert response.json()["data"]["refreshed_token"] == refreshed

    again = await client.get("/api/auth/verify-token", headers=bearer(refreshed))
    assert again.status_code == 200
    assert "X-Refreshed-Token" not in again.headers
