"""University admin routes: settings, academic programs and graduate records.

Every route is scoped to the caller's own university.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.security import Principal, require_permission, require_university_admin
from src.config import get_settings
from src.db.session import get_db
from src.errors import ValidationError
from src.schemas.schemas import (
    ApiResponse,
    GraduateRecordInfo,
    Page,
    PageInfo,
    PreviewRequest,
    PreviewResponse,
    ProgramBulkCreate,
    ProgramCreate,
    ProgramInfo,
    ProgramOption,
    ProgramUpdate,
    SettingsResponse,
    SettingsUpdate,
    UniversityInfo,
)
from src.services.audit import RequestMeta
from src.services.program_service import program_service
from src.services.record_service import UploadedFile, record_service
from src.services.storage import StorageService, get_storage

router = APIRouter(prefix="/api/university-admin", tags=["University Admin"])

settings = get_settings()

can_read_university = require_permission("university:read", require_university_admin)
can_write_university = require_permission("university:write", require_university_admin)
can_read_courses = require_permission("courses:read", require_university_admin)
can_write_courses = require_permission("courses:write", require_university_admin)
can_read_certificates = require_permission("certificates:read", require_university_admin)
can_write_certificates = require_permission("certificates:write", require_university_admin)


async def _read_upload(kind: str, upload: Optional[UploadFile]) -> Optional[UploadedFile]:
    """Read a multipart file; an empty form field counts as no file."""
    if upload is None or not upload.filename:
        return None
    content = await upload.read(settings.max_upload_bytes + 1)
    if len(content) > settings.max_upload_bytes:
        raise ValidationError(f"The {kind} file is too large", "FILE_TOO_LARGE")
    return UploadedFile(
        filename=upload.filename,
        content=content,
        content_type=upload.content_type or "application/octet-stream",
    )


def _settings_response(university, programs) -> SettingsResponse:
    return SettingsResponse(
        university=UniversityInfo.model_validate(university),
        programs=[ProgramInfo.model_validate(p) for p in programs],
    )


# ============== Settings ==============


@router.get(
    "/settings",
    response_model=ApiResponse[SettingsResponse],
    summary="University profile and programs",
)
async def get_settings_page(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(can_read_university),
):
    university, programs = await program_service.get_settings(db, principal.university_id)
    return ApiResponse(data=_settings_response(university, programs))


@router.put(
    "/settings",
    response_model=ApiResponse[SettingsResponse],
    summary="Update university profile and replace programs",
    description="When `academic.programs` is given, it becomes the complete program list.",
)
async def update_settings_page(
    request: Request,
    body: SettingsUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(can_write_university),
):
    profile_updates = body.university.model_dump(exclude_none=True) if body.university else {}
    programs = (
        [p.model_dump() for p in body.academic.programs] if body.academic is not None else None
    )
    university, program_rows = await program_service.update_settings(
        db, principal, profile_updates, programs, meta=RequestMeta.from_request(request)
    )
    return ApiResponse(
        message="Settings updated successfully",
        data=_settings_response(university, program_rows),
    )


# ============== Academic Programs ==============


@router.get(
    "/programs",
    response_model=ApiResponse[Page[ProgramInfo]],
    summary="List programs",
)
async def list_programs(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(can_read_courses),
):
    programs, total = await program_service.list_programs(
        db, principal.university_id, page=page, limit=limit
    )
    return ApiResponse(
        data=Page(
            items=[ProgramInfo.model_validate(p) for p in programs],
            pagination=PageInfo.build(page, limit, total),
        )
    )


@router.get(
    "/programs/dropdown",
    response_model=ApiResponse[list[ProgramOption]],
    summary="Active programs for selection lists",
)
async def programs_dropdown(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(can_read_courses),
):
    programs = await program_service.active_programs(db, principal.university_id)
    return ApiResponse(data=[ProgramOption(id=p.id, program=p.program_name) for p in programs])


@router.post(
    "/programs",
    response_model=ApiResponse[ProgramInfo],
    status_code=status.HTTP_201_CREATED,
    summary="Add a program",
)
async def add_program(
    request: Request,
    body: ProgramCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(can_write_courses),
):
    program = await program_service.add_program(
        db, principal, body.model_dump(), meta=RequestMeta.from_request(request)
    )
    return ApiResponse(message="Program added successfully", data=ProgramInfo.model_validate(program))


@router.post(
    "/programs/bulk",
    response_model=ApiResponse[dict[str, Any]],
    status_code=status.HTTP_201_CREATED,
    summary="Add many programs",
)
async def bulk_add_programs(
    request: Request,
    body: ProgramBulkCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(can_write_courses),
):
    result = await program_service.bulk_add_programs(
        db, principal, [p.model_dump() for p in body.programs], meta=RequestMeta.from_request(request)
    )
    return ApiResponse(
        message=f"{len(result['created'])} program(s) added",
        data={
            "created": [ProgramInfo.model_validate(p).model_dump() for p in result["created"]],
            "skipped": result["skipped"],
        },
    )


@router.put(
    "/programs/{program_id}",
    response_model=ApiResponse[ProgramInfo],
    summary="Update a program",
)
async def update_program(
    request: Request,
    program_id: str,
    body: ProgramUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(can_write_courses),
):
    program = await program_service.update_program(
        db,
        principal,
        program_id,
        body.model_dump(exclude_unset=True),
        meta=RequestMeta.from_request(request),
    )
    return ApiResponse(message="Program updated successfully", data=ProgramInfo.model_validate(program))


@router.delete(
    "/programs/{program_id}",
    response_model=ApiResponse[None],
    summary="Delete a program",
)
async def delete_program(
    request: Request,
    program_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(can_write_courses),
):
    await program_service.delete_program(
        db, principal, program_id, meta=RequestMeta.from_request(request)
    )
    return ApiResponse(message="Program deleted successfully")


# ============== Graduate Records ==============


@router.get(
    "/credential-records",
    response_model=ApiResponse[Page[GraduateRecordInfo]],
    summary="List graduate records",
)
async def list_records(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, description="Student name or registration number"),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(can_read_certificates),
):
    rows, total = await record_service.list_records(
        db, principal, page=page, limit=limit, search=search
    )
    items = []
    for record, program_name in rows:
        info = GraduateRecordInfo.model_validate(record)
        info.program_name = program_name
        items.append(info)
    return ApiResponse(data=Page(items=items, pagination=PageInfo.build(page, limit, total)))


@router.post(
    "/credential-records",
    response_model=ApiResponse[GraduateRecordInfo],
    status_code=status.HTTP_201_CREATED,
    summary="Create a graduate record",
    description="Multipart form with the record fields and up to one certificate and one transcript file.",
)
async def create_record(
    request: Request,
    student_full_name: Optional[str] = Form(None),
    registration_number: Optional[str] = Form(None),
    graduation_year: Optional[str] = Form(None),
    program: Optional[str] = Form(None, description="Program id"),
    certificate: Optional[UploadFile] = File(None),
    transcript: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    principal: Principal = Depends(can_write_certificates),
):
    fields = {
        "student_full_name": student_full_name,
        "registration_number": registration_number,
        "graduation_year": graduation_year,
        "program": program,
    }
    record = await record_service.create_record(
        db,
        storage,
        principal,
        fields,
        certificate=await _read_upload("certificate", certificate),
        transcript=await _read_upload("transcript", transcript),
        meta=RequestMeta.from_request(request),
    )
    return ApiResponse(
        message="Graduate record created successfully",
        data=GraduateRecordInfo.model_validate(record),
    )


@router.get(
    "/credential-records/{record_id}/download",
    response_class=Response,
    summary="Download a record's files as a zip archive",
)
async def download_record_files(
    record_id: str,
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    principal: Principal = Depends(can_read_certificates),
):
    filename, content = await record_service.download_record_files(db, storage, principal, record_id)
    return Response(
        content=content,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.delete(
    "/credential-records/{record_id}",
    response_model=ApiResponse[dict[str, Any]],
    summary="Delete a graduate record and its files",
)
async def delete_record(
    request: Request,
    record_id: str,
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    principal: Principal = Depends(can_write_certificates),
):
    result = await record_service.delete_record(
        db, storage, principal, record_id, meta=RequestMeta.from_request(request)
    )
    message = "Graduate record deleted successfully"
    if result["warnings"]:
        message = "Graduate record deleted with warnings"
    return ApiResponse(message=message, data=result)


@router.post(
    "/preview-url",
    response_model=ApiResponse[PreviewResponse],
    summary="Time-limited preview link for a stored file",
)
async def preview_url(
    body: PreviewRequest,
    storage: StorageService = Depends(get_storage),
    _: Principal = Depends(can_read_certificates),
):
    result = await record_service.preview_url(storage, body.file_url)
    return ApiResponse(data=PreviewResponse(**result))
