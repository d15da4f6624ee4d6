"""Public verification routes (no authentication)."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.session import get_db
from src.middleware.rate_limit import rate_limit_verification
from src.schemas.schemas import (
    ApiResponse,
    PreviewRequest,
    PreviewResponse,
    PublicProgram,
    UniversityOption,
    VerificationResult,
    VerifyRequest,
)
from src.services.program_service import program_service
from src.services.record_service import record_service
from src.services.storage import StorageService, get_storage
from src.services.university_service import university_service
from src.services.verification_service import verification_service

router = APIRouter(prefix="/api/verification", tags=["Verification"])


@router.get(
    "/universities",
    response_model=ApiResponse[list[UniversityOption]],
    summary="Active universities",
)
@rate_limit_verification()
async def list_universities(request: Request, db: AsyncSession = Depends(get_db)):
    universities = await university_service.active_universities(db)
    return ApiResponse(data=[UniversityOption.model_validate(u) for u in universities])


@router.get(
    "/universities/{university_id}/programs",
    response_model=ApiResponse[list[PublicProgram]],
    summary="Active programs of a university",
)
@rate_limit_verification()
async def list_programs(request: Request, university_id: str, db: AsyncSession = Depends(get_db)):
    await university_service.get_university(db, university_id)
    programs = await program_service.active_programs(db, university_id)
    return ApiResponse(data=[PublicProgram.model_validate(p) for p in programs])


@router.get(
    "/universities/{university_id}/years",
    response_model=ApiResponse[list[int]],
    summary="Graduation years with records, newest first",
)
@rate_limit_verification()
async def list_graduation_years(request: Request, university_id: str, db: AsyncSession = Depends(get_db)):
    years = await verification_service.graduation_years(db, university_id)
    return ApiResponse(data=years)


@router.post(
    "/verify",
    response_model=ApiResponse[VerificationResult],
    response_model_exclude_none=True,
    summary="Verify a graduate's credentials",
    description="Registration number must match exactly; the student name is a case-insensitive substring match.",
)
@rate_limit_verification()
async def verify(request: Request, body: VerifyRequest, db: AsyncSession = Depends(get_db)):
    result = await verification_service.verify(
        db,
        body.registration_number,
        student_name=body.student_name,
        university_id=body.university_id,
        program_id=body.program_id,
        graduation_year=body.graduation_year,
        verification_type=body.verification_type,
    )
    message = "Record found" if result.found else "No matching record found"
    return ApiResponse(message=message, data=result)


@router.post(
    "/preview-url",
    response_model=ApiResponse[PreviewResponse],
    summary="Time-limited preview link for a certificate or transcript",
)
@rate_limit_verification()
async def preview_url_post(
    request: Request,
    body: PreviewRequest,
    storage: StorageService = Depends(get_storage),
):
    result = await record_service.preview_url(storage, body.file_url)
    return ApiResponse(data=PreviewResponse(**result))


@router.get(
    "/preview-url",
    response_model=ApiResponse[PreviewResponse],
    summary="Time-limited preview link (query form)",
)
@rate_limit_verification()
async def preview_url_get(
    request: Request,
    file_url: Optional[str] = Query(None, alias="fileUrl"),
    storage: StorageService = Depends(get_storage),
):
    result = await record_service.preview_url(storage, file_url)
    return ApiResponse(data=PreviewResponse(**result))
