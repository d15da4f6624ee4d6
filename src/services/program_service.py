"""Academic programs and university settings (tenant-scoped)."""

import logging
from typing import Any, Optional

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.security import Principal
from src.db.models import AcademicProgram, GraduateRecord, University
from src.errors import ConflictError, NotFoundError, ValidationError
from src.services.account_service import ensure_uuid
from src.services.audit import RequestMeta, record_audit
from src.services.university_service import (
    PROFILE_FIELDS,
    check_required_not_blank,
    university_service,
)

logger = logging.getLogger(__name__)

REQUIRED_PROGRAM_FIELDS = ("program_name", "faculty", "duration")


def _validated_program(data: dict[str, Any]) -> dict[str, Any]:
    fields = {k: (v.strip() if isinstance(v, str) else v) for k, v in data.items()}
    missing = [f for f in REQUIRED_PROGRAM_FIELDS if not fields.get(f)]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            "MISSING_REQUIRED_FIELDS",
            data={"fields": missing},
        )
    return {
        "program_name": fields["program_name"],
        "faculty": fields["faculty"],
        "duration": str(fields["duration"]),
        "is_active": fields.get("is_active", True) is not False,
    }


class ProgramService:
    """Service for a university's academic programs and settings page."""

    async def list_programs(
        self, db: AsyncSession, university_id: str, page: int = 1, limit: int = 20
    ) -> tuple[list[AcademicProgram], int]:
        base = select(AcademicProgram).where(AcademicProgram.university_id == university_id)
        total = (await db.execute(select(func.count()).select_from(base.subquery()))).scalar_one()
        query = base.order_by(AcademicProgram.program_name).offset((page - 1) * limit).limit(limit)
        return list((await db.execute(query)).scalars().all()), total

    async def active_programs(self, db: AsyncSession, university_id: str) -> list[AcademicProgram]:
        result = await db.execute(
            select(AcademicProgram)
            .where(
                AcademicProgram.university_id == university_id,
                AcademicProgram.is_active == True,  # noqa: E712
            )
            .order_by(AcademicProgram.program_name)
        )
        return list(result.scalars().all())

    async def get_program(
        self, db: AsyncSession, university_id: str, program_id: str
    ) -> AcademicProgram:
        """Fetch a program of this university; anything else is NotFound."""
        ensure_uuid(program_id, "INVALID_PROGRAM_ID", "program id")
        result = await db.execute(
            select(AcademicProgram).where(
                AcademicProgram.id == program_id,
                AcademicProgram.university_id == university_id,
            )
        )
        program = result.scalar_one_or_none()
        if program is None:
            raise NotFoundError("Program not found or access denied", "PROGRAM_NOT_FOUND")
        return program

    async def _name_taken(
        self,
        db: AsyncSession,
        university_id: str,
        name: str,
        exclude_id: Optional[str] = None,
    ) -> bool:
        query = select(AcademicProgram.id).where(
            AcademicProgram.university_id == university_id,
            func.lower(AcademicProgram.program_name) == name.lower(),
        )
        if exclude_id:
            query = query.where(AcademicProgram.id != exclude_id)
        return (await db.execute(query)).first() is not None

    async def add_program(
        self,
        db: AsyncSession,
        principal: Principal,
        data: dict[str, Any],
        meta: Optional[RequestMeta] = None,
    ) -> AcademicProgram:
        fields = _validated_program(data)
        if await self._name_taken(db, principal.university_id, fields["program_name"]):
            raise ConflictError(
                "A program with this name already exists",
                "DUPLICATE_PROGRAM",
                status_code=status.HTTP_400_BAD_REQUEST,
            )

        program = AcademicProgram(university_id=principal.university_id, **fields)
        db.add(program)
        await db.commit()

        await record_audit(
            db,
            principal.account_id,
            "CREATE_PROGRAM",
            "academic_program",
            program.id,
            new_values=fields,
            meta=meta,
        )
        return program

    async def bulk_add_programs(
        self,
        db: AsyncSession,
        principal: Principal,
        programs: list[dict[str, Any]],
        meta: Optional[RequestMeta] = None,
    ) -> dict[str, Any]:
        """Insert many programs at once; names already present are skipped."""
        if not programs:
            raise ValidationError("No programs provided", "MISSING_REQUIRED_FIELDS")
        validated = [_validated_program(p) for p in programs]

        created, skipped, seen = [], [], set()
        for fields in validated:
            key = fields["program_name"].lower()
            if key in seen or await self._name_taken(db, principal.university_id, fields["program_name"]):
                skipped.append(fields["program_name"])
                continue
            seen.add(key)
            program = AcademicProgram(university_id=principal.university_id, **fields)
            db.add(program)
            created.append(program)
        await db.commit()

        await record_audit(
            db,
            principal.account_id,
            "BULK_CREATE_PROGRAMS",
            "academic_program",
            principal.university_id,
            new_values={"created": len(created), "skipped": skipped},
            meta=meta,
        )
        return {"created": created, "skipped": skipped}

    async def update_program(
        self,
        db: AsyncSession,
        principal: Principal,
        program_id: str,
        updates: dict[str, Any],
        meta: Optional[RequestMeta] = None,
    ) -> AcademicProgram:
        program = await self.get_program(db, principal.university_id, program_id)
        changes = {
            k: (v.strip() if isinstance(v, str) else v) for k, v in updates.items() if v is not None
        }
        for key in REQUIRED_PROGRAM_FIELDS:
            if key in changes and not changes[key]:
                raise ValidationError(f"{key} cannot be empty", "MISSING_REQUIRED_FIELDS")
        if "program_name" in changes and await self._name_taken(
            db, principal.university_id, changes["program_name"], exclude_id=program.id
        ):
            raise ConflictError(
                "A program with this name already exists",
                "DUPLICATE_PROGRAM",
                status_code=status.HTTP_400_BAD_REQUEST,
            )

        old_values = {k: getattr(program, k) for k in changes}
        for key, value in changes.items():
            setattr(program, key, value)
        await db.commit()

        await record_audit(
            db,
            principal.account_id,
            "UPDATE_PROGRAM",
            "academic_program",
            program.id,
            old_values=old_values,
            new_values=changes,
            meta=meta,
        )
        return program

    async def _record_count(self, db: AsyncSession, program_ids: list[str]) -> int:
        if not program_ids:
            return 0
        return (
            await db.execute(
                select(func.count())
                .select_from(GraduateRecord)
                .where(GraduateRecord.program_id.in_(program_ids))
            )
        ).scalar_one()

    async def delete_program(
        self,
        db: AsyncSession,
        principal: Principal,
        program_id: str,
        meta: Optional[RequestMeta] = None,
    ) -> None:
        program = await self.get_program(db, principal.university_id, program_id)
        if await self._record_count(db, [program.id]):
            raise ConflictError(
                "Program has graduate records and cannot be deleted",
                "PROGRAM_HAS_RECORDS",
            )
        snapshot = {"id": program.id, "program_name": program.program_name}
        await db.delete(program)
        await db.commit()

        await record_audit(
            db,
            principal.account_id,
            "DELETE_PROGRAM",
            "academic_program",
            snapshot["id"],
            old_values=snapshot,
            meta=meta,
        )

    # ---------- settings ----------

    async def get_settings(self, db: AsyncSession, university_id: str) -> tuple[University, list[AcademicProgram]]:
        university = await university_service.get_university(db, university_id)
        programs, _ = await self.list_programs(db, university_id, page=1, limit=1000)
        return university, programs

    async def replace_programs(
        self, db: AsyncSession, university_id: str, programs: list[dict[str, Any]]
    ) -> None:
        """
        Make the university's program list equal to ``programs``.

        Programs matched by name keep their id so existing records stay
        attached. A program that would be removed while records still
        reference it stops the whole update.
        """
        validated = [_validated_program(p) for p in programs]
        incoming = {}
        for fields in validated:
            incoming.setdefault(fields["program_name"].lower(), fields)

        existing = (
            await db.execute(
                select(AcademicProgram).where(AcademicProgram.university_id == university_id)
            )
        ).scalars().all()
        by_name = {p.program_name.lower(): p for p in existing}

        removed = [p for name, p in by_name.items() if name not in incoming]
        if await self._record_count(db, [p.id for p in removed]):
            raise ConflictError(
                "Programs with graduate records cannot be removed",
                "PROGRAMS_IN_USE",
                data={"programs": [p.program_name for p in removed]},
            )

        for program in removed:
            await db.delete(program)
        for name, fields in incoming.items():
            current = by_name.get(name)
            if current is None:
                db.add(AcademicProgram(university_id=university_id, **fields))
            else:
                current.program_name = fields["program_name"]
                current.faculty = fields["faculty"]
                current.duration = fields["duration"]
                current.is_active = fields["is_active"]

    async def update_settings(
        self,
        db: AsyncSession,
        principal: Principal,
        profile_updates: dict[str, Any],
        programs: Optional[list[dict[str, Any]]] = None,
        meta: Optional[RequestMeta] = None,
    ) -> tuple[University, list[AcademicProgram]]:
        """Update the caller's university profile and optionally replace its programs."""
        university = await university_service.get_university(db, principal.university_id)

        changes = {
            k: (v.strip() if isinstance(v, str) else v)
            for k, v in profile_updates.items()
            if v is not None and k in PROFILE_FIELDS
        }
        check_required_not_blank(changes)

        old_values = {k: getattr(university, k) for k in changes}
        for key, value in changes.items():
            setattr(university, key, value)
        if programs is not None:
            await self.replace_programs(db, university.id, programs)
        await db.commit()

        await record_audit(
            db,
            principal.account_id,
            "UPDATE_UNIVERSITY_SETTINGS",
            "university",
            university.id,
            old_values=old_values,
            new_values={**changes, "programs_replaced": programs is not None},
            meta=meta,
        )
        return await self.get_settings(db, university.id)


# Singleton instance
program_service = ProgramService()
