"""Authentication and authorization dependencies."""

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Iterable, Optional

from fastapi import Depends, Header, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.tokens import TokenExpired, TokenIssuer, TokenMalformed, TokenSettings
from src.config import get_settings
from src.db.models import PROFILE_MODELS, Account, AccountRole
from src.db.session import get_db
from src.errors import AuthError

logger = logging.getLogger(__name__)


@lru_cache
def get_token_issuer() -> TokenIssuer:
    """Build the process-wide token issuer from settings (once)."""
    settings = get_settings()
    return TokenIssuer(
        TokenSettings(
            secret=settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            default_ttl=settings.token_ttl_default,
            role_ttls=settings.token_ttls,
            refresh_threshold=settings.token_refresh_threshold,
        )
    )


@dataclass(frozen=True)
class Principal:
    """The authenticated caller attached to a request by a gate."""

    account_id: str
    email: str
    role: str
    profile_id: Optional[str] = None
    permissions: frozenset[str] = field(default_factory=frozenset)
    university_id: Optional[str] = None

    @property
    def is_platform_admin(self) -> bool:
        return self.role == AccountRole.PLATFORM_ADMIN.value

    def has_permission(self, permission: str) -> bool:
        # Platform admins hold every permission
        return self.is_platform_admin or permission in self.permissions


def _forbidden(message: str, code: str) -> AuthError:
    return AuthError(message, code, status_code=status.HTTP_403_FORBIDDEN)


class RoleGate:
    """
    Dependency resolving a bearer token to a Principal.

    Every request re-checks that the account still exists and that its
    profile is active, so deleting or deactivating an account takes effect
    before the token expires.
    """

    def __init__(self, role: Optional[AccountRole] = None):
        self.role = role

    async def __call__(
        self,
        request: Request,
        authorization: Optional[str] = Header(None),
        db: AsyncSession = Depends(get_db),
        issuer: TokenIssuer = Depends(get_token_issuer),
    ) -> Principal:
        """Extract and validate the session token from the request."""
        scheme, _, token = (authorization or "").partition(" ")
        token = token.strip()
        if scheme.lower() != "bearer" or not token:
            raise AuthError("Access token required", "NO_TOKEN")

        try:
            claims = issuer.verify(token)
        except TokenExpired:
            raise AuthError("Token has expired", "TOKEN_EXPIRED")
        except TokenMalformed:
            raise AuthError("Invalid token", "INVALID_TOKEN")

        result = await db.execute(select(Account).where(Account.id == claims.account_id))
        account = result.scalar_one_or_none()
        if account is None:
            raise AuthError("Account not found", "ACCOUNT_NOT_FOUND")

        role = AccountRole(account.role)
        if self.role is not None and role != self.role:
            raise _forbidden("Insufficient role for this resource", "WRONG_ROLE")

        model = PROFILE_MODELS[role]
        result = await db.execute(select(model).where(model.account_id == account.id))
        profile = result.scalar_one_or_none()
        if profile is None or not profile.is_active:
            raise _forbidden("Profile is inactive or missing", "PROFILE_INACTIVE_OR_MISSING")

        principal = Principal(
            account_id=account.id,
            email=account.email,
            role=role.value,
            profile_id=profile.id,
            permissions=frozenset(getattr(profile, "permissions", None) or []),
            university_id=getattr(profile, "university_id", None),
        )

        # Store in request state for later use
        request.state.principal = principal
        if issuer.should_refresh(claims):
            request.state.refreshed_token = issuer.issue(
                account.id, account.email, role.value, profile.id
            )
            logger.debug(f"Issued refreshed token for account {account.id}")

        return principal


def require_permission(permission: str, gate: Optional[RoleGate] = None):
    """Dependency factory: gate, then require ``permission`` (platform admins bypass)."""
    gate = gate or require_account

    async def dependency(principal: Principal = Depends(gate)) -> Principal:
        if not principal.has_permission(permission):
            raise _forbidden(f"Missing permission: {permission}", "INSUFFICIENT_PERMISSION")
        return principal

    return dependency


def require_role(roles: Iterable[AccountRole], gate: Optional[RoleGate] = None):
    """Dependency factory: gate, then require the principal's role to be one of ``roles``."""
    allowed = {AccountRole(r).value for r in roles}
    gate = gate or require_account

    async def dependency(principal: Principal = Depends(gate)) -> Principal:
        if principal.role not in allowed:
            raise _forbidden("Insufficient role for this resource", "INSUFFICIENT_ROLE")
        return principal

    return dependency


# Convenience dependency instances
require_account = RoleGate()
require_platform_admin = RoleGate(AccountRole.PLATFORM_ADMIN)
require_university_admin = RoleGate(AccountRole.UNIVERSITY_ADMIN)
