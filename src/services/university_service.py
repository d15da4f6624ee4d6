"""University (tenant) management."""

import logging
from typing import Any, Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.security import Principal
from src.db.models import AcademicProgram, GraduateRecord, University, UniversityAdminProfile
from src.errors import ConflictError, DependencyError, NotFoundError, ValidationError
from src.services.account_service import ensure_uuid, validate_email
from src.services.audit import RequestMeta, record_audit
from src.services.storage import StorageError, StorageService

logger = logging.getLogger(__name__)

REQUIRED_UNIVERSITY_FIELDS = ("name", "email", "country", "city")

# Fields a university admin may change through settings
PROFILE_FIELDS = (
    "name",
    "short_name",
    "country",
    "city",
    "address",
    "phone",
    "website",
    "registration_number",
    "accreditation_body",
)


def university_snapshot(university: University) -> dict[str, Any]:
    return {
        "id": university.id,
        "name": university.name,
        "short_name": university.short_name,
        "email": university.email,
        "country": university.country,
        "city": university.city,
        "is_active": university.is_active,
    }


def _trimmed(updates: dict[str, Any]) -> dict[str, Any]:
    return {k: (v.strip() if isinstance(v, str) else v) for k, v in updates.items() if v is not None}


def check_required_not_blank(changes: dict[str, Any]) -> None:
    """Required fields may be left out of an update but never blanked."""
    blank = [f for f in REQUIRED_UNIVERSITY_FIELDS if f in changes and not changes[f]]
    if blank:
        raise ValidationError(
            f"Required fields cannot be empty: {', '.join(blank)}",
            "MISSING_REQUIRED_FIELDS",
            data={"fields": blank},
        )


class UniversityService:
    """Service for creating, updating and deleting universities."""

    async def get_university(self, db: AsyncSession, university_id: str) -> University:
        ensure_uuid(university_id, "INVALID_UNIVERSITY_ID", "university id")
        result = await db.execute(select(University).where(University.id == university_id))
        university = result.scalar_one_or_none()
        if university is None:
            raise NotFoundError("University not found", "UNIVERSITY_NOT_FOUND")
        return university

    async def create_university(
        self,
        db: AsyncSession,
        data: dict[str, Any],
        actor: Principal,
        meta: Optional[RequestMeta] = None,
    ) -> University:
        fields = _trimmed(data)
        missing = [f for f in REQUIRED_UNIVERSITY_FIELDS if not fields.get(f)]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                "MISSING_REQUIRED_FIELDS",
                data={"fields": missing},
            )
        fields["email"] = validate_email(fields["email"])

        existing = await db.execute(select(University.id).where(University.email == fields["email"]))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError("A university with this email already exists", "UNIVERSITY_EXISTS")

        university = University(
            **{k: v for k, v in fields.items() if k in PROFILE_FIELDS or k == "email"},
            is_active=True,
            is_verified=False,
            created_by=actor.account_id,
        )
        db.add(university)
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            raise ConflictError(
                "A university with these details already exists", "DUPLICATE_UNIVERSITY"
            ) from e

        logger.info(f"University {university.id} ({university.name}) created by {actor.account_id}")
        await record_audit(
            db,
            actor.account_id,
            "CREATE_UNIVERSITY",
            "university",
            university.id,
            new_values=university_snapshot(university),
            meta=meta,
        )
        return university

    async def list_universities(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 20,
        country: Optional[str] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> tuple[list[University], int]:
        query = select(University)
        if country:
            query = query.where(University.country == country)
        if is_active is not None:
            query = query.where(University.is_active == is_active)
        if search:
            term = search.strip()
            query = query.where(
                or_(
                    University.name.icontains(term, autoescape=True),
                    University.short_name.icontains(term, autoescape=True),
                    University.email.icontains(term, autoescape=True),
                )
            )

        total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
        query = query.order_by(University.created_at.desc()).offset((page - 1) * limit).limit(limit)
        return list((await db.execute(query)).scalars().all()), total

    async def active_universities(self, db: AsyncSession) -> list[University]:
        result = await db.execute(
            select(University).where(University.is_active == True).order_by(University.name)  # noqa: E712
        )
        return list(result.scalars().all())

    async def update_university(
        self,
        db: AsyncSession,
        university_id: str,
        updates: dict[str, Any],
        actor: Principal,
        meta: Optional[RequestMeta] = None,
        action: str = "UPDATE_UNIVERSITY",
    ) -> University:
        university = await self.get_university(db, university_id)
        changes = _trimmed(updates)
        check_required_not_blank(changes)
        if "email" in changes:
            changes["email"] = validate_email(changes["email"])

        old_values = {k: getattr(university, k) for k in changes}
        for key, value in changes.items():
            setattr(university, key, value)
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            raise ConflictError(
                "A university with this email already exists", "DUPLICATE_UNIVERSITY"
            ) from e

        await record_audit(
            db,
            actor.account_id,
            action,
            "university",
            university.id,
            old_values=old_values,
            new_values=changes,
            meta=meta,
        )
        return university

    async def set_status(
        self,
        db: AsyncSession,
        university_id: str,
        is_active: Any,
        actor: Principal,
        meta: Optional[RequestMeta] = None,
    ) -> University:
        if not isinstance(is_active, bool):
            raise ValidationError("is_active must be a boolean", "INVALID_STATUS")
        return await self.update_university(
            db,
            university_id,
            {"is_active": is_active},
            actor,
            meta,
            action="UPDATE_UNIVERSITY_STATUS",
        )

    async def delete_university(
        self,
        db: AsyncSession,
        storage: StorageService,
        university_id: str,
        actor: Principal,
        meta: Optional[RequestMeta] = None,
    ) -> dict[str, Any]:
        """
        Delete a university with its programs and records.

        Refused while any university admin profile references it. Record
        blobs are removed after the rows; blob failures become warnings.
        """
        university = await self.get_university(db, university_id)

        admin_count = (
            await db.execute(
                select(func.count())
                .select_from(UniversityAdminProfile)
                .where(UniversityAdminProfile.university_id == university.id)
            )
        ).scalar_one()
        if admin_count:
            raise ConflictError(
                f"University still has {admin_count} admin(s); remove them first",
                "UNIVERSITY_HAS_ADMINS",
                data={"admin_count": admin_count},
            )

        snapshot = university_snapshot(university)
        records = (
            await db.execute(
                select(GraduateRecord.certificate_url, GraduateRecord.transcript_url).where(
                    GraduateRecord.university_id == university.id
                )
            )
        ).all()
        blob_paths = [storage.path_from_url(url) for row in records for url in row if url]

        try:
            await db.execute(delete(GraduateRecord).where(GraduateRecord.university_id == university.id))
            programs = await db.execute(
                delete(AcademicProgram).where(AcademicProgram.university_id == university.id)
            )
            await db.execute(delete(University).where(University.id == university.id))
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise DependencyError(
                "Failed to delete university", "UNIVERSITY_DELETE_FAILED", debug_detail=str(e)
            ) from e

        warnings = []
        if blob_paths:
            try:
                await run_in_threadpool(storage.remove, blob_paths)
            except StorageError as e:
                logger.warning(f"Blob cleanup failed for university {university.id}: {e}")
                warnings.append(f"File cleanup failed: {e}")

        await record_audit(
            db,
            actor.account_id,
            "DELETE_UNIVERSITY",
            "university",
            snapshot["id"],
            old_values=snapshot,
            meta=meta,
        )
        return {
            "deleted_university": snapshot,
            "records_deleted": len(records),
            "programs_deleted": programs.rowcount or 0,
            "warnings": warnings,
        }


# Singleton instance
university_service = UniversityService()
