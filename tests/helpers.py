"""Token and principal helpers shared by the tests."""

from typing import Optional

from src.auth.security import Principal, get_token_issuer
from src.db.models import AccountRole

PASSWORD = "longenough1"


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def token_for(created, role: AccountRole, now: Optional[float] = None) -> str:
    return get_token_issuer().issue(
        created.account.id, created.account.email, role.value, created.profile.id, now=now
    )


def principal_for(created, university_id: Optional[str] = None) -> Principal:
    permissions = getattr(created.profile, "permissions", None) or []
    return Principal(
        account_id=created.account.id,
        email=created.account.email,
        role=AccountRole(created.account.role).value,
        profile_id=created.profile.id,
        permissions=frozenset(permissions),
        university_id=university_id,
    )
