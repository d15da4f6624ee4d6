"""Platform admin dashboard figures."""

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import Account, AccountRole, AuditLog, PlatformAdminProfile, University

RECENT_ACTIVITY_LIMIT = 10
RECENT_UNIVERSITIES_LIMIT = 5


class DashboardService:
    """Counts and recent activity for the platform admin landing page."""

    async def _count(self, db: AsyncSession, model, *conditions) -> int:
        query = select(func.count()).select_from(model)
        if conditions:
            query = query.where(*conditions)
        return (await db.execute(query)).scalar_one()

    async def get_dashboard(self, db: AsyncSession) -> dict[str, Any]:
        stats = {
            "total_users": await self._count(db, Account),
            "total_students": await self._count(db, Account, Account.role == AccountRole.STUDENT),
            "total_employers": await self._count(db, Account, Account.role == AccountRole.EMPLOYER),
            "total_universities": await self._count(db, University),
            "active_universities": await self._count(
                db, University, University.is_active == True  # noqa: E712
            ),
        }

        activity = await db.execute(
            select(
                AuditLog.action,
                AuditLog.resource_type,
                AuditLog.created_at,
                PlatformAdminProfile.first_name,
                PlatformAdminProfile.last_name,
            )
            .outerjoin(
                PlatformAdminProfile,
                PlatformAdminProfile.account_id == AuditLog.admin_account_id,
            )
            .order_by(AuditLog.created_at.desc())
            .limit(RECENT_ACTIVITY_LIMIT)
        )
        recent_activity = [
            {
                "action": row.action,
                "resource_type": row.resource_type,
                "created_at": row.created_at,
                "admin_name": " ".join(p for p in (row.first_name, row.last_name) if p) or None,
            }
            for row in activity.all()
        ]

        universities = await db.execute(
            select(University.name, University.country, University.city, University.created_at)
            .order_by(University.created_at.desc())
            .limit(RECENT_UNIVERSITIES_LIMIT)
        )
        recent_universities = [dict(row._mapping) for row in universities.all()]

        return {
            "stats": stats,
            "recent_activity": recent_activity,
            "recent_universities": recent_universities,
        }


# Singleton instance
dashboard_service = DashboardService()
