"""Public credential verification."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import AcademicProgram, GraduateRecord, University
from src.errors import ValidationError
from src.schemas.schemas import (
    FileAvailability,
    ProgramRef,
    UniversityRef,
    VerificationResult,
    VerifiedStudent,
)
from src.services.account_service import ensure_uuid

logger = logging.getLogger(__name__)

VERIFICATION_TYPES = ("certificate", "transcript", "both")


def status_label(is_verified: bool) -> str:
    return "Verified" if is_verified else "Pending Verification"


def file_availability(kind: str, url: Optional[str], record: GraduateRecord) -> FileAvailability:
    """Availability block for one attachment; a missing file is not an error."""
    if not url:
        return FileAvailability(available=False, message=f"{kind.capitalize()} not uploaded")
    return FileAvailability(
        available=True,
        url=url,
        verified=record.is_verified,
        upload_date=record.created_at,
    )


class VerificationService:
    """Resolves a registration number (plus optional filters) to one record."""

    async def verify(
        self,
        db: AsyncSession,
        registration_number: Optional[str],
        student_name: Optional[str] = None,
        university_id: Optional[str] = None,
        program_id: Optional[str] = None,
        graduation_year: Optional[int] = None,
        verification_type: str = "both",
    ) -> VerificationResult:
        """
        Match on exact registration number; name is a case-insensitive
        substring; university, program and year are exact filters.

        Records whose university or program is missing never match. When
        several records match, the first row returned wins.
        """
        registration_number = (registration_number or "").strip()
        if not registration_number:
            raise ValidationError("Registration number is required", "REGISTRATION_NUMBER_REQUIRED")
        if verification_type not in VERIFICATION_TYPES:
            raise ValidationError(
                "verification_type must be certificate, transcript or both",
                "INVALID_VERIFICATION_TYPE",
            )

        query = (
            select(GraduateRecord, University, AcademicProgram)
            .join(University, University.id == GraduateRecord.university_id)
            .join(AcademicProgram, AcademicProgram.id == GraduateRecord.program_id)
            .where(GraduateRecord.registration_number == registration_number)
        )
        if student_name and student_name.strip():
            query = query.where(
                GraduateRecord.student_full_name.icontains(student_name.strip(), autoescape=True)
            )
        if university_id:
            ensure_uuid(university_id, "INVALID_UNIVERSITY_ID", "university id")
            query = query.where(GraduateRecord.university_id == university_id)
        if program_id:
            ensure_uuid(program_id, "INVALID_PROGRAM_ID", "program id")
            query = query.where(GraduateRecord.program_id == program_id)
        if graduation_year is not None:
            query = query.where(GraduateRecord.graduation_year == graduation_year)

        rows = (await db.execute(query.order_by(GraduateRecord.created_at).limit(2))).all()
        if not rows:
            logger.info(f"Verification miss for registration number {registration_number!r}")
            return VerificationResult(found=False)
        if len(rows) > 1:
            # TODO: decide whether ambiguous matches should require a university filter
            logger.warning(
                f"Registration number {registration_number!r} matches several records; using the first"
            )

        record, university, program = rows[0]
        result = VerificationResult(
            found=True,
            student=VerifiedStudent(
                id=record.id,
                name=record.student_full_name,
                registration_number=record.registration_number,
                university=UniversityRef(
                    id=university.id, name=university.name, short_name=university.short_name
                ),
                program=ProgramRef(id=program.id, name=program.program_name),
                graduation_year=record.graduation_year,
                is_verified=record.is_verified,
                status=status_label(record.is_verified),
            ),
        )
        if verification_type in ("certificate", "both"):
            result.certificate = file_availability("certificate", record.certificate_url, record)
        if verification_type in ("transcript", "both"):
            result.transcript = file_availability("transcript", record.transcript_url, record)
        return result

    async def graduation_years(self, db: AsyncSession, university_id: str) -> list[int]:
        ensure_uuid(university_id, "INVALID_UNIVERSITY_ID", "university id")
        result = await db.execute(
            select(GraduateRecord.graduation_year)
            .where(GraduateRecord.university_id == university_id)
            .distinct()
            .order_by(GraduateRecord.graduation_year.desc())
        )
        return list(result.scalars().all())


# Singleton instance
verification_service = VerificationService()
