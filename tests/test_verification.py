"""Tests for public credential verification."""

import pytest
import pytest_asyncio
from httpx import AsyncClient

from src.db.models import AcademicProgram, GraduateRecord
from src.errors import ValidationError
from src.services.verification_service import verification_service
from tests.helpers import PASSWORD, bearer

PDF = b"%PDF-1.4 test document"


@pytest_asyncio.fixture
async def record(db_session, university):
    program = AcademicProgram(
        university_id=university.id,
        program_name="Computer Science",
        faculty="Engineering",
        duration="4 years",
    )
    db_session.add(program)
    await db_session.flush()
    record = GraduateRecord(
        university_id=university.id,
        program_id=program.id,
        student_full_name="Jane Doe",
        registration_number="REG-2024-001",
        graduation_year=2024,
        transcript_url="http://storage.test/graduate-record/test_u/1_transcript_t.pdf",
    )
    db_session.add(record)
    await db_session.commit()
    return record


@pytest.mark.asyncio
async def test_exact_registration_number_match(db_session, record):
    result = await verification_service.verify(db_session, "REG-2024-001")
    assert result.found is True
    assert result.student.id == record.id
    assert result.student.name == "Jane Doe"
    assert result.student.program.name == "Computer Science"
    assert result.student.status == "Verified"

    miss = await verification_service.verify(db_session, "reg-2024-001")
    assert miss.found is False
    assert miss.student is None


@pytest.mark.asyncio
async def test_name_is_case_insensitive_substring(db_session, record):
    assert (await verification_service.verify(db_session, "REG-2024-001", student_name="jane")).found
    assert not (await verification_service.verify(db_session, "REG-2024-001", student_name="john")).found


@pytest.mark.asyncio
async def test_filters_narrow_the_match(db_session, record, university):
    found = await verification_service.verify(
        db_session, "REG-2024-001", university_id=university.id, graduation_year=2024
    )
    assert found.found
    assert not (await verification_service.verify(db_session, "REG-2024-001", graduation_year=2023)).found


@pytest.mark.asyncio
async def test_attachments_reported_independently(db_session, record):
    result = await verification_service.verify(db_session, "REG-2024-001")
    assert result.certificate.available is False
    assert result.certificate.message == "Certificate not uploaded"
    assert result.transcript.available is True
    assert result.transcript.url == record.transcript_url

    only_cert = await verification_service.verify(
        db_session, "REG-2024-001", verification_type="certificate"
    )
    assert only_cert.certificate is not None
    assert only_cert.transcript is None


@pytest.mark.asyncio
async def test_registration_number_required(db_session):
    with pytest.raises(ValidationError) as exc_info:
        await verification_service.verify(db_session, "  ")
    assert exc_info.value.error_code == "REGISTRATION_NUMBER_REQUIRED"


@pytest.mark.asyncio
async def test_verify_endpoint_uses_camel_case(client: AsyncClient, record):
    response = await client.post(
        "/api/verification/verify", json={"registrationNumber": "REG-2024-001"}
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["found"] is True
    assert data["student"]["registrationNumber"] == "REG-2024-001"
    assert data["student"]["graduationYear"] == 2024
    assert data["certificate"] == {"available": False, "message": "Certificate not uploaded"}
    assert data["transcript"]["available"] is True


@pytest.mark.asyncio
async def test_verify_miss_is_not_an_error(client: AsyncClient):
    response = await client.post("/api/verification/verify", json={"registrationNumber": "NOPE"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"] == {"found": False}


@pytest.mark.asyncio
async def test_public_lookups(client: AsyncClient, record, university):
    universities = await client.get("/api/verification/universities")
    assert [u["id"] for u in universities.json()["data"]] == [university.id]

    programs = await client.get(f"/api/verification/universities/{university.id}/programs")
    assert [p["program_name"] for p in programs.json()["data"]] == ["Computer Science"]

    years = await client.get(f"/api/verification/universities/{university.id}/years")
    assert years.json()["data"] == [2024]


@pytest.mark.asyncio
async def test_end_to_end_scenario(client: AsyncClient, admin_headers):
    """University onboarding through to a public verification."""
    response = await client.post(
        "/api/admin/universities",
        headers=admin_headers,
        json={"name": "Test U", "email": "admin@testu.edu", "country": "X", "city": "Y"},
    )
    assert response.status_code == 201
    university_id = response.json()["data"]["id"]

    response = await client.post(
        "/api/admin/university-admins",
        headers=admin_headers,
        json={
            "email": "ua@testu.edu",
            "password": PASSWORD,
            "university_id": university_id,
            "first_name": "Una",
            "last_name": "Admin",
        },
    )
    assert response.status_code == 201

    response = await client.post(
        "/api/auth/login", json={"email": "ua@testu.edu", "password": PASSWORD}
    )
    assert response.status_code == 200
    headers = bearer(response.json()["data"]["token"])

    response = await client.post(
        "/api/university-admin/programs",
        headers=headers,
        json={"program_name": "Physics", "faculty": "Science", "duration": "3 years"},
    )
    assert response.status_code == 201
    program_id = response.json()["data"]["id"]

    response = await client.post(
        "/api/university-admin/credential-records",
        headers=headers,
        data={
            "student_full_name": "Jane Doe",
            "registration_number": "T-001",
            "graduation_year": "2024",
            "program": program_id,
        },
        files={"certificate": ("diploma.pdf", PDF, "application/pdf")},
    )
    assert response.status_code == 201

    response = await client.post("/api/verification/verify", json={"registrationNumber": "T-001"})
    data = response.json()["data"]
    assert data["found"] is True
    assert data["student"]["university"]["id"] == university_id
    assert data["certificate"]["available"] is True
    assert data["transcript"]["available"] is False
