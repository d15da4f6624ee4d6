"""Tests for graduate records, their files and previews."""

import io
import zipfile

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from src.db.models import AcademicProgram, AccountRole, GraduateRecord
from src.errors import ConflictError, DependencyError
from src.services.account_service import account_service
from src.services.record_service import (
    RecordService,
    UploadedFile,
    archive_filename,
    record_service,
    storage_folder,
    storage_path,
)
from src.services.university_service import university_service
from tests.helpers import PASSWORD, bearer, principal_for, token_for

PDF = b"%PDF-1.4 test document"


@pytest_asyncio.fixture
async def program(db_session, university):
    program = AcademicProgram(
        university_id=university.id,
        program_name="Computer Science",
        faculty="Engineering",
        duration="4 years",
    )
    db_session.add(program)
    await db_session.commit()
    return program


def _record_form(program_id: str, **overrides) -> dict:
    form = {
        "student_full_name": "Jane Doe",
        "registration_number": "T-001",
        "graduation_year": "2024",
        "program": program_id,
    }
    form.update(overrides)
    return form


async def _record_count(session_maker) -> int:
    async with session_maker() as db:
        return (await db.execute(select(func.count()).select_from(GraduateRecord))).scalar_one()


def test_storage_folder_sanitizes_short_name():
    assert storage_folder("Test U", "uni-id") == "test_u"
    assert storage_folder("  ", "uni-id") == "uni-id"
    assert storage_folder(None, "uni-id") == "uni-id"
    assert storage_folder("É/€", "uni-id") == "uni-id"


def test_storage_path_replaces_whitespace():
    path = storage_path("test_u", "certificate", "my cert.pdf", 1700000000000)
    assert path == "test_u/1700000000000_certificate_my_cert.pdf"
    assert storage_path("f", "transcript", "../../etc/x.pdf", 1) == "f/1_transcript_x.pdf"


def test_archive_filename():
    assert archive_filename("Jane Doe", "T/001") == "Jane_Doe_T_001_records.zip"


@pytest.mark.asyncio
async def test_create_record_with_certificate(client: AsyncClient, ua_headers, program, storage):
    response = await client.post(
        "/api/university-admin/credential-records",
        headers=ua_headers,
        data=_record_form(program.id),
        files={"certificate": ("cert.pdf", PDF, "application/pdf")},
    )
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["graduation_year"] == 2024
    assert data["is_verified"] is True
    assert data["transcript_url"] is None
    assert data["certificate_url"].startswith("http://storage.test/graduate-record/test_u/")

    [path] = storage.objects
    assert path.startswith("test_u/") and path.endswith("_certificate_cert.pdf")


@pytest.mark.asyncio
async def test_create_record_validation(client: AsyncClient, ua_headers, program):
    response = await client.post(
        "/api/university-admin/credential-records",
        headers=ua_headers,
        data=_record_form(program.id, registration_number=""),
    )
    assert response.status_code == 400
    assert response.json()["error"] == "MISSING_REQUIRED_FIELDS"

    response = await client.post(
        "/api/university-admin/credential-records",
        headers=ua_headers,
        data=_record_form(program.id, graduation_year="soon"),
    )
    assert response.json()["error"] == "INVALID_GRADUATION_YEAR"

    response = await client.post(
        "/api/university-admin/credential-records",
        headers=ua_headers,
        data=_record_form(program.id),
        files={"certificate": ("cert.exe", b"MZ", "application/x-msdownload")},
    )
    assert response.json()["error"] == "INVALID_FILE_TYPE"


@pytest.mark.asyncio
async def test_failed_transcript_upload_removes_certificate(
    client: AsyncClient, ua_headers, program, storage, session_maker
):
    storage.fail_upload_on = "_transcript_"
    response = await client.post(
        "/api/university-admin/credential-records",
        headers=ua_headers,
        data=_record_form(program.id),
        files={
            "certificate": ("cert.pdf", PDF, "application/pdf"),
            "transcript": ("transcript.pdf", PDF, "application/pdf"),
        },
    )
    assert response.status_code == 500
    assert response.json()["error"] == "TRANSCRIPT_UPLOAD_FAILED"
    assert storage.objects == {}
    assert [kind for kind, _ in storage.calls] == ["upload", "upload", "remove"]
    assert await _record_count(session_maker) == 0


@pytest.mark.asyncio
async def test_existing_blob_is_never_overwritten(db_session, storage, ua_principal, program, session_maker):
    service = RecordService(clock=lambda: 1700000000000)
    cert = UploadedFile("cert.pdf", PDF, "application/pdf")
    fields = {
        "student_full_name": "Jane Doe",
        "registration_number": "T-001",
        "graduation_year": 2024,
        "program": program.id,
    }
    await service.create_record(db_session, storage, ua_principal, fields, certificate=cert)

    with pytest.raises(ConflictError) as exc_info:
        await service.create_record(
            db_session,
            storage,
            ua_principal,
            {**fields, "registration_number": "T-002"},
            certificate=UploadedFile("cert.pdf", b"%PDF other", "application/pdf"),
        )
    assert exc_info.value.error_code == "FILE_EXISTS"
    assert list(storage.objects.values()) == [PDF]
    assert await _record_count(session_maker) == 1


@pytest.mark.asyncio
async def test_program_of_other_university_is_rejected(
    client: AsyncClient, ua_headers, db_session, platform_admin
):
    other = await university_service.create_university(
        db_session,
        {"name": "Other U", "email": "office@other.edu", "country": "X", "city": "Z"},
        principal_for(platform_admin),
    )
    foreign = AcademicProgram(
        university_id=other.id, program_name="Law", faculty="Law", duration="3 years"
    )
    db_session.add(foreign)
    await db_session.commit()

    response = await client.post(
        "/api/university-admin/credential-records",
        headers=ua_headers,
        data=_record_form(foreign.id),
    )
    assert response.status_code == 404
    assert response.json()["error"] == "PROGRAM_NOT_FOUND"


@pytest.mark.asyncio
async def test_download_zip(client: AsyncClient, ua_headers, program):
    created = await client.post(
        "/api/university-admin/credential-records",
        headers=ua_headers,
        data=_record_form(program.id),
        files={
            "certificate": ("cert.pdf", PDF, "application/pdf"),
            "transcript": ("scan.png", b"\x89PNG data", "image/png"),
        },
    )
    record_id = created.json()["data"]["id"]

    response = await client.get(
        f"/api/university-admin/credential-records/{record_id}/download", headers=ua_headers
    )
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert 'filename="Jane_Doe_T_001_records.zip"' in response.headers["content-disposition"]

    with zipfile.ZipFile(io.BytesIO(response.content)) as archive:
        assert sorted(archive.namelist()) == ["certificate.pdf", "transcript.png"]
        assert archive.read("certificate.pdf") == PDF


@pytest.mark.asyncio
async def test_download_without_files(client: AsyncClient, ua_headers, program):
    created = await client.post(
        "/api/university-admin/credential-records",
        headers=ua_headers,
        data=_record_form(program.id),
    )
    record_id = created.json()["data"]["id"]
    response = await client.get(
        f"/api/university-admin/credential-records/{record_id}/download", headers=ua_headers
    )
    assert response.status_code == 404
    assert response.json()["error"] == "NO_FILES_AVAILABLE"


@pytest.mark.asyncio
async def test_other_tenant_sees_not_found(
    client: AsyncClient, ua_headers, program, db_session, identity, platform_admin
):
    created = await client.post(
        "/api/university-admin/credential-records",
        headers=ua_headers,
        data=_record_form(program.id),
        files={"certificate": ("cert.pdf", PDF, "application/pdf")},
    )
    record_id = created.json()["data"]["id"]

    other = await university_service.create_university(
        db_session,
        {"name": "Other U", "email": "office@other.edu", "country": "X", "city": "Z"},
        principal_for(platform_admin),
    )
    other_admin = await account_service.create_delegated_account(
        db_session,
        identity,
        AccountRole.UNIVERSITY_ADMIN,
        "ua@other.edu",
        PASSWORD,
        {"first_name": "Other", "last_name": "Admin", "university_id": other.id},
    )
    headers = bearer(token_for(other_admin, AccountRole.UNIVERSITY_ADMIN))

    for method, url in (
        ("GET", f"/api/university-admin/credential-records/{record_id}/download"),
        ("DELETE", f"/api/university-admin/credential-records/{record_id}"),
    ):
        response = await client.request(method, url, headers=headers)
        assert response.status_code == 404
        assert response.json()["error"] == "RECORD_NOT_FOUND"

    listing = await client.get("/api/university-admin/credential-records", headers=headers)
    assert listing.json()["data"]["items"] == []


@pytest.mark.asyncio
async def test_delete_twice(client: AsyncClient, ua_headers, program, storage, session_maker):
    created = await client.post(
        "/api/university-admin/credential-records",
        headers=ua_headers,
        data=_record_form(program.id),
        files={"certificate": ("cert.pdf", PDF, "application/pdf")},
    )
    record_id = created.json()["data"]["id"]

    first = await client.delete(f"/api/university-admin/credential-records/{record_id}", headers=ua_headers)
    assert first.status_code == 200
    results = first.json()["data"]["deletion_results"]
    assert results["record_deleted"] is True
    assert results["certificate_deleted"] is True
    assert storage.objects == {}

    calls_before = list(storage.calls)
    second = await client.delete(f"/api/university-admin/credential-records/{record_id}", headers=ua_headers)
    assert second.status_code == 404
    assert second.json()["error"] == "RECORD_NOT_FOUND"
    assert storage.calls == calls_before
    assert await _record_count(session_maker) == 0


@pytest.mark.asyncio
async def test_blob_failure_does_not_block_delete(client: AsyncClient, ua_headers, program, storage):
    created = await client.post(
        "/api/university-admin/credential-records",
        headers=ua_headers,
        data=_record_form(program.id),
        files={"certificate": ("cert.pdf", PDF, "application/pdf")},
    )
    record_id = created.json()["data"]["id"]
    storage.fail_remove = True

    response = await client.delete(f"/api/university-admin/credential-records/{record_id}", headers=ua_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Graduate record deleted with warnings"
    assert body["data"]["deletion_results"]["record_deleted"] is True
    assert body["data"]["deletion_results"]["certificate_deleted"] is False


@pytest.mark.asyncio
async def test_program_with_records_cannot_be_deleted(client: AsyncClient, ua_headers, program):
    await client.post(
        "/api/university-admin/credential-records",
        headers=ua_headers,
        data=_record_form(program.id),
    )
    response = await client.delete(f"/api/university-admin/programs/{program.id}", headers=ua_headers)
    assert response.status_code == 409
    assert response.json()["error"] == "PROGRAM_HAS_RECORDS"


@pytest.mark.asyncio
async def test_preview_url_prefers_signed(client: AsyncClient, storage):
    url = "http://storage.test/graduate-record/test_u/1_certificate_cert.pdf"
    response = await client.post("/api/verification/preview-url", json={"fileUrl": url})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["isPublic"] is False
    assert data["signedUrl"].startswith(url)
    assert "X-Amz-Expires=3600" in data["signedUrl"]


@pytest.mark.asyncio
async def test_preview_url_falls_back_to_public(client: AsyncClient, storage):
    storage.fail_sign = True
    url = "http://cdn.example/graduate-record/test_u/1_certificate_cert.pdf"
    response = await client.get("/api/verification/preview-url", params={"fileUrl": url})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["isPublic"] is True
    assert data["fallback"] is False
    assert data["signedUrl"] == "http://storage.test/graduate-record/test_u/1_certificate_cert.pdf"


@pytest.mark.asyncio
async def test_preview_url_requires_url(client: AsyncClient):
    response = await client.post("/api/verification/preview-url", json={})
    assert response.status_code == 400
    assert response.json()["error"] == "MISSING_FILE_URL"


@pytest.mark.asyncio
async def test_failed_record_row_delete_reports_results(
    db_session, storage, ua_principal, program, session_maker, monkeypatch
):
    record = await record_service.create_record(
        db_session,
        storage,
        ua_principal,
        {
            "student_full_name": "Jane Doe",
            "registration_number": "T-001",
            "graduation_year": 2024,
            "program": program.id,
        },
        certificate=UploadedFile("cert.pdf", PDF, "application/pdf"),
    )
    original_commit = db_session.commit

    async def commit():
        if any(isinstance(obj, GraduateRecord) for obj in db_session.deleted):
            raise SQLAlchemyError("database went away")
        await original_commit()

    monkeypatch.setattr(db_session, "commit", commit)

    with pytest.raises(DependencyError) as exc_info:
        await record_service.delete_record(db_session, storage, ua_principal, record.id)

    error = exc_info.value
    assert error.error_code == "RECORD_DELETE_FAILED"
    results = error.data["deletion_results"]
    assert results["certificate_deleted"] is True
    assert results["transcript_deleted"] is False
    assert results["record_deleted"] is False
    assert results["errors"][-1].startswith("Record deletion failed")
    # blob removal is not undone
    assert storage.objects == {}
    assert await _record_count(session_maker) == 1
