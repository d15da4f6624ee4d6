"""Graduate credential records and their certificate/transcript files."""

import io
import logging
import re
import time
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any, Callable, Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.security import Principal
from src.config import get_settings
from src.db.models import AcademicProgram, GraduateRecord, University, UniversityAdminProfile
from src.errors import (
    ConflictError,
    DependencyError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from src.services.account_service import ensure_uuid
from src.services.audit import RequestMeta, record_audit
from src.services.program_service import program_service
from src.services.saga import Saga
from src.services.storage import StorageConflict, StorageError, StorageService

logger = logging.getLogger(__name__)

settings = get_settings()

REQUIRED_RECORD_FIELDS = ("graduation_year", "student_full_name", "registration_number", "program")
FILE_KINDS = ("certificate", "transcript")
ALLOWED_CONTENT_TYPES = {"application/pdf", "image/jpeg", "image/png"}
PREVIEW_TTL_SECONDS = 3600


@dataclass
class UploadedFile:
    """A file received with a record submission."""

    filename: str
    content: bytes
    content_type: str


def storage_folder(short_name: Optional[str], university_id: str) -> str:
    """Folder for a university's blobs: sanitized short name, else the university id."""
    folder = re.sub(r"\s+", "_", (short_name or "").strip().lower())
    folder = re.sub(r"[^a-z0-9_.-]", "", folder)
    return folder or university_id


def storage_path(folder: str, kind: str, filename: str, timestamp_ms: int) -> str:
    """``{folder}/{millis}_{kind}_{filename}`` with whitespace in the filename replaced."""
    name = PurePosixPath(filename.replace("\\", "/")).name or "file"
    name = re.sub(r"\s+", "_", name)
    return f"{folder}/{timestamp_ms}_{kind}_{name}"


def archive_filename(student_name: str, registration_number: str) -> str:
    safe_name = re.sub(r"[^a-zA-Z0-9]", "_", student_name)
    safe_reg = re.sub(r"[^a-zA-Z0-9]", "_", registration_number)
    return f"{safe_name}_{safe_reg}_records.zip"


def _extension(path: str) -> str:
    return PurePosixPath(path).suffix.lstrip(".").lower() or "pdf"


def _millis() -> int:
    return int(time.time() * 1000)


class RecordService:
    """Service for creating, downloading, previewing and deleting graduate records."""

    def __init__(self, clock: Callable[[], int] = _millis):
        self._clock = clock

    async def _resolve_university_id(self, db: AsyncSession, principal: Principal) -> str:
        """University of the calling admin, looked up by account and then by email."""
        if principal.university_id:
            return principal.university_id

        result = await db.execute(
            select(UniversityAdminProfile.university_id).where(
                UniversityAdminProfile.account_id == principal.account_id
            )
        )
        university_id = result.scalar_one_or_none()
        if university_id is None:
            logger.warning(f"No admin profile by account for {principal.account_id}; trying email")
            result = await db.execute(
                select(UniversityAdminProfile.university_id).where(
                    UniversityAdminProfile.email == principal.email
                )
            )
            university_id = result.scalars().first()
        if university_id is None:
            raise NotFoundError("University admin profile not found", "ADMIN_PROFILE_NOT_FOUND")
        return university_id

    async def get_record(self, db: AsyncSession, university_id: str, record_id: str) -> GraduateRecord:
        """Fetch a record of this university; other tenants' records are NotFound."""
        ensure_uuid(record_id, "INVALID_RECORD_ID", "record id")
        result = await db.execute(
            select(GraduateRecord).where(
                GraduateRecord.id == record_id,
                GraduateRecord.university_id == university_id,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError("Graduate record not found", "RECORD_NOT_FOUND")
        return record

    async def list_records(
        self,
        db: AsyncSession,
        principal: Principal,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
    ) -> tuple[list[tuple[GraduateRecord, Optional[str]]], int]:
        university_id = await self._resolve_university_id(db, principal)
        query = (
            select(GraduateRecord, AcademicProgram.program_name)
            .outerjoin(AcademicProgram, AcademicProgram.id == GraduateRecord.program_id)
            .where(GraduateRecord.university_id == university_id)
        )
        if search:
            term = search.strip()
            query = query.where(
                or_(
                    GraduateRecord.student_full_name.icontains(term, autoescape=True),
                    GraduateRecord.registration_number.icontains(term, autoescape=True),
                )
            )

        total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
        query = query.order_by(GraduateRecord.created_at.desc()).offset((page - 1) * limit).limit(limit)
        rows = [(row[0], row[1]) for row in (await db.execute(query)).all()]
        return rows, total

    def _validate_fields(self, fields: dict[str, Any]) -> dict[str, Any]:
        cleaned = {k: (v.strip() if isinstance(v, str) else v) for k, v in fields.items()}
        missing = [f for f in REQUIRED_RECORD_FIELDS if cleaned.get(f) in (None, "")]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                "MISSING_REQUIRED_FIELDS",
                data={"fields": missing},
            )
        try:
            year = int(cleaned["graduation_year"])
        except (TypeError, ValueError):
            raise ValidationError("graduation_year must be a year", "INVALID_GRADUATION_YEAR")
        if not 1900 <= year <= 2100:
            raise ValidationError("graduation_year must be a year", "INVALID_GRADUATION_YEAR")
        cleaned["graduation_year"] = year
        return cleaned

    def _validate_file(self, kind: str, upload: UploadedFile):
        if not upload.content:
            raise ValidationError(f"The {kind} file is empty", "EMPTY_FILE")
        if len(upload.content) > settings.max_upload_bytes:
            raise ValidationError(f"The {kind} file is too large", "FILE_TOO_LARGE")
        if upload.content_type not in ALLOWED_CONTENT_TYPES:
            raise ValidationError(
                f"The {kind} file must be a PDF, JPEG or PNG", "INVALID_FILE_TYPE"
            )

    async def create_record(
        self,
        db: AsyncSession,
        storage: StorageService,
        principal: Principal,
        fields: dict[str, Any],
        certificate: Optional[UploadedFile] = None,
        transcript: Optional[UploadedFile] = None,
        meta: Optional[RequestMeta] = None,
    ) -> GraduateRecord:
        """
        Upload the attached files and insert the record.

        Uploads never overwrite. The uploads and the row insert form one
        compensating chain: if a later step fails, blobs already uploaded
        are removed before the error propagates.
        """
        university_id = await self._resolve_university_id(db, principal)
        data = self._validate_fields(fields)
        program = await program_service.get_program(db, university_id, str(data["program"]))

        university = (
            await db.execute(select(University).where(University.id == university_id))
        ).scalar_one_or_none()
        if university is None:
            raise NotFoundError("University not found", "UNIVERSITY_NOT_FOUND")

        files = {"certificate": certificate, "transcript": transcript}
        for kind, upload in files.items():
            if upload is not None:
                self._validate_file(kind, upload)

        folder = storage_folder(university.short_name, university.id)
        urls: dict[str, Optional[str]] = {kind: None for kind in FILE_KINDS}
        stage = "certificate"
        try:
            async with Saga("create_graduate_record") as saga:
                for kind in FILE_KINDS:
                    upload = files[kind]
                    if upload is None:
                        continue
                    stage = kind
                    path = storage_path(folder, kind, upload.filename, self._clock())
                    await saga.step(
                        kind,
                        run_in_threadpool(
                            storage.upload, path, upload.content, upload.content_type, False
                        ),
                        lambda uploaded: run_in_threadpool(storage.remove, [uploaded]),
                    )
                    urls[kind] = storage.public_url(path)

                stage = "record"
                now = datetime.now(timezone.utc)
                record = GraduateRecord(
                    university_id=university.id,
                    program_id=program.id,
                    student_full_name=data["student_full_name"],
                    registration_number=data["registration_number"],
                    graduation_year=data["graduation_year"],
                    certificate_url=urls["certificate"],
                    transcript_url=urls["transcript"],
                    is_verified=True,
                    verified_by=principal.account_id,
                    verified_at=now,
                    created_by=principal.account_id,
                )
                db.add(record)
                await saga.step("record", db.commit, db.rollback)
        except ServiceError:
            raise
        except StorageConflict as e:
            raise ConflictError(
                f"A {stage} file with this name already exists", "FILE_EXISTS"
            ) from e
        except StorageError as e:
            raise DependencyError(
                f"Failed to upload {stage}",
                f"{stage.upper()}_UPLOAD_FAILED",
                debug_detail=str(e),
            ) from e
        except SQLAlchemyError as e:
            await db.rollback()
            raise DependencyError(
                "Failed to save graduate record", "RECORD_CREATION_FAILED", debug_detail=str(e)
            ) from e

        logger.info(
            f"Graduate record {record.id} ({record.registration_number}) created for university {university.id}"
        )
        await record_audit(
            db,
            principal.account_id,
            "CREATE_GRADUATE_RECORD",
            "graduate_record",
            record.id,
            new_values={
                "registration_number": record.registration_number,
                "student_full_name": record.student_full_name,
                "certificate": record.certificate_url is not None,
                "transcript": record.transcript_url is not None,
            },
            meta=meta,
        )
        return record

    async def download_record_files(
        self,
        db: AsyncSession,
        storage: StorageService,
        principal: Principal,
        record_id: str,
    ) -> tuple[str, bytes]:
        """Zip the record's files. Returns (archive filename, archive bytes)."""
        university_id = await self._resolve_university_id(db, principal)
        record = await self.get_record(db, university_id, record_id)

        buffer = io.BytesIO()
        added = 0
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            for kind, url in (("certificate", record.certificate_url), ("transcript", record.transcript_url)):
                if not url:
                    continue
                path = storage.path_from_url(url)
                try:
                    content = await run_in_threadpool(storage.download, path)
                except StorageError as e:
                    logger.warning(f"Could not fetch {kind} for record {record.id}: {e}")
                    continue
                archive.writestr(f"{kind}.{_extension(path)}", content)
                added += 1

        if not added:
            raise NotFoundError("No files available for download", "NO_FILES_AVAILABLE")

        return archive_filename(record.student_full_name, record.registration_number), buffer.getvalue()

    async def delete_record(
        self,
        db: AsyncSession,
        storage: StorageService,
        principal: Principal,
        record_id: str,
        meta: Optional[RequestMeta] = None,
    ) -> dict[str, Any]:
        """
        Remove the record's blobs, then the row.

        Blob failures are recorded and the deletion continues. Removing the
        row is the step that decides success; blob removal is not undone if
        it fails.
        """
        university_id = await self._resolve_university_id(db, principal)
        record = await self.get_record(db, university_id, record_id)

        results: dict[str, Any] = {
            "record_deleted": False,
            "certificate_deleted": False,
            "transcript_deleted": False,
            "errors": [],
        }
        for kind, url in (("certificate", record.certificate_url), ("transcript", record.transcript_url)):
            if not url:
                continue
            try:
                await run_in_threadpool(storage.remove, [storage.path_from_url(url)])
                results[f"{kind}_deleted"] = True
            except StorageError as e:
                logger.warning(f"Failed to delete {kind} for record {record.id}: {e}")
                results["errors"].append(f"{kind.capitalize()} deletion failed: {e}")

        snapshot = {
            "id": record.id,
            "registration_number": record.registration_number,
            "student_full_name": record.student_full_name,
        }
        try:
            await db.delete(record)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            results["errors"].append(f"Record deletion failed: {e}")
            raise DependencyError(
                "Failed to delete graduate record",
                "RECORD_DELETE_FAILED",
                data={"deletion_results": results},
                debug_detail=str(e),
            ) from e
        results["record_deleted"] = True

        await record_audit(
            db,
            principal.account_id,
            "DELETE_GRADUATE_RECORD",
            "graduate_record",
            snapshot["id"],
            old_values=snapshot,
            new_values={"deletion_results": results},
            meta=meta,
        )
        return {"deletion_results": results, "warnings": list(results["errors"])}

    async def preview_url(self, storage: StorageService, file_url: Optional[str]) -> dict[str, Any]:
        """
        Signed URL for previewing a file; never fails once a URL is given.

        Falls back to the public URL, then to the URL that was passed in.
        """
        if not file_url or not file_url.strip():
            raise ValidationError("File URL is required", "MISSING_FILE_URL")
        file_url = file_url.strip()

        path = storage.path_from_url(file_url)
        try:
            signed = await run_in_threadpool(storage.signed_url, path, PREVIEW_TTL_SECONDS)
            return {"signed_url": signed, "is_public": False, "fallback": False}
        except StorageError as e:
            logger.warning(f"Signed URL failed for {path}, using public URL: {e}")

        try:
            return {"signed_url": storage.public_url(path), "is_public": True, "fallback": False}
        except Exception as e:
            logger.warning(f"Public URL failed for {path}, returning original: {e}")
            return {"signed_url": file_url, "is_public": True, "fallback": True}


# Singleton instance
record_service = RecordService()
