"""Best-effort audit trail writer."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Request
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import AuditLog

logger = logging.getLogger(__name__)


@dataclass
class RequestMeta:
    """Caller details copied into audit entries."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request: Optional[Request]) -> "RequestMeta":
        if request is None:
            return cls()
        return cls(
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )


async def record_audit(
    db: AsyncSession,
    admin_account_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    old_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
    meta: Optional[RequestMeta] = None,
) -> bool:
    """
    Append an audit entry and commit it.

    Must be called after the primary operation has committed. Failures are
    logged and swallowed; the return value says whether the entry was written.
    """
    meta = meta or RequestMeta()
    try:
        db.add(
            AuditLog(
                admin_account_id=admin_account_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                old_values=old_values,
                new_values=new_values,
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
            )
        )
        await db.commit()
        return True
    except Exception as e:
        await db.rollback()
        logger.warning(f"Audit log write failed for {action} {resource_type}/{resource_id}: {e}")
        return False


async def purge_audit_for_resource(db: AsyncSession, resource_id: str) -> int:
    """Delete audit rows that reference ``resource_id``. Returns the row count."""
    result = await db.execute(delete(AuditLog).where(AuditLog.resource_id == resource_id))
    await db.commit()
    return result.rowcount or 0
