"""Tests for the admin dashboard, profile edits and self-service account routes."""

import pytest
from httpx import AsyncClient

from src.db.models import AccountRole
from tests.helpers import PASSWORD, bearer, token_for


async def _register(client: AsyncClient, **fields) -> dict:
    response = await client.post("/api/auth/register", json={"password": PASSWORD, **fields})
    assert response.status_code == 201
    return response.json()["data"]


async def _student(client: AsyncClient) -> dict:
    return await _register(
        client,
        email="jane@student.test",
        role="student",
        first_name="Jane",
        last_name="Doe",
    )


@pytest.mark.asyncio
async def test_dashboard(client: AsyncClient, admin_headers, university_admin):
    response = await client.get("/api/admin/dashboard", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()["data"]

    assert data["stats"] == {
        "total_users": 2,
        "total_students": 0,
        "total_employers": 0,
        "total_universities": 1,
        "active_universities": 1,
    }
    created = [a for a in data["recent_activity"] if a["action"] == "CREATE_UNIVERSITY"]
    assert created and created[0]["admin_name"] == "Root Admin"
    assert created[0]["resource_type"] == "university"
    assert [u["name"] for u in data["recent_universities"]] == ["Test University"]


@pytest.mark.asyncio
async def test_dashboard_is_platform_admin_only(client: AsyncClient, ua_headers):
    response = await client.get("/api/admin/dashboard", headers=ua_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_updates_employer_profile(client: AsyncClient, admin_headers):
    employer = await _register(
        client, email="hr@acme.test", role="employer", company_name="Acme"
    )
    account_id = employer["user"]["id"]

    response = await client.put(
        f"/api/admin/accounts/{account_id}",
        headers=admin_headers,
        json={"industry": "Logistics", "first_name": "ignored"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "User updated successfully"
    assert body["data"]["profile"]["industry"] == "Logistics"
    assert body["data"]["profile"]["company_name"] == "Acme"

    response = await client.put(
        f"/api/admin/accounts/{account_id}", headers=admin_headers, json={"company_name": " "}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "MISSING_REQUIRED_FIELDS"

    response = await client.put(
        f"/api/admin/accounts/{account_id}", headers=admin_headers, json={"first_name": "Only"}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "NO_FIELDS_TO_UPDATE"


@pytest.mark.asyncio
async def test_admin_update_rejects_university_admin(
    client: AsyncClient, admin_headers, university_admin
):
    response = await client.put(
        f"/api/admin/accounts/{university_admin.account.id}",
        headers=admin_headers,
        json={"first_name": "New"},
    )
    assert response.status_code == 403
    assert response.json()["error"] == "UNIVERSITY_ADMIN_UPDATE_FORBIDDEN"


@pytest.mark.asyncio
async def test_admin_update_unknown_account(client: AsyncClient, admin_headers):
    response = await client.put(
        "/api/admin/accounts/00000000-0000-0000-0000-000000000000",
        headers=admin_headers,
        json={"first_name": "New"},
    )
    assert response.status_code == 404
    assert response.json()["error"] == "USER_NOT_FOUND"


@pytest.mark.asyncio
async def test_student_reads_and_updates_profile(client: AsyncClient):
    student = await _student(client)
    headers = bearer(student["token"])

    response = await client.get("/api/auth/profile", headers=headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["account"]["email"] == "jane@student.test"
    assert data["display_name"] == "Jane Doe"

    response = await client.post(
        "/api/auth/update-profile", headers=headers, json={"phone": "+1 555 0100"}
    )
    assert response.status_code == 200
    assert response.json()["data"]["profile"]["phone"] == "+1 555 0100"

    response = await client.post("/api/auth/update-profile", headers=headers, json={"last_name": ""})
    assert response.status_code == 400
    assert response.json()["data"]["fields"] == ["last_name"]


@pytest.mark.asyncio
async def test_admins_have_no_self_service_profile(client: AsyncClient, admin_headers):
    response = await client.get("/api/auth/profile", headers=admin_headers)
    assert response.status_code == 403
    assert response.json()["error"] == "INSUFFICIENT_ROLE"

    response = await client.delete("/api/auth/delete-account", headers=admin_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_change_password(client: AsyncClient):
    student = await _student(client)
    headers = bearer(student["token"])

    response = await client.post(
        "/api/auth/change-password",
        headers=headers,
        json={"old_password": "not-my-password", "new_password": "evenlonger22"},
    )
    assert response.status_code == 401
    assert response.json()["error"] == "INVALID_CURRENT_PASSWORD"

    response = await client.post(
        "/api/auth/change-password", headers=headers, json={"old_password": PASSWORD}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "MISSING_PASSWORDS"

    response = await client.post(
        "/api/auth/change-password",
        headers=headers,
        json={"old_password": PASSWORD, "new_password": "evenlonger22"},
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Password changed successfully"

    old = await client.post("/api/auth/login", json={"email": "jane@student.test", "password": PASSWORD})
    assert old.status_code == 401
    new = await client.post(
        "/api/auth/login", json={"email": "jane@student.test", "password": "evenlonger22"}
    )
    assert new.status_code == 200


@pytest.mark.asyncio
async def test_admin_can_change_own_password(client: AsyncClient, platform_admin, identity):
    headers = bearer(token_for(platform_admin, AccountRole.PLATFORM_ADMIN))
    response = await client.post(
        "/api/auth/change-password",
        headers=headers,
        json={"old_password": PASSWORD, "new_password": "evenlonger22"},
    )
    assert response.status_code == 200
    assert identity.users[platform_admin.account.id]["password"] == "evenlonger22"


@pytest.mark.asyncio
async def test_student_closes_account(client: AsyncClient, identity):
    student = await _student(client)
    headers = bearer(student["token"])
    account_id = student["user"]["id"]

    response = await client.delete("/api/auth/delete-account", headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Account deleted successfully"
    assert body["data"]["deletion_results"]["user_deleted"] is True
    assert account_id not in identity.users

    response = await client.get("/api/auth/profile", headers=headers)
    assert response.status_code == 401
    assert response.json()["error"] == "ACCOUNT_NOT_FOUND"
