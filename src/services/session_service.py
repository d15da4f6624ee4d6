"""Sign-in, self-registration and password recovery."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.security import Principal
from src.auth.tokens import TokenIssuer
from src.db.models import Account, AccountRole
from src.errors import AuthError, DependencyError, ValidationError
from src.services.account_service import account_service, validate_email, validate_password
from src.services.audit import RequestMeta, record_audit
from src.services.identity import (
    IdentityNotFound,
    IdentityProvider,
    IdentityProviderError,
    InvalidCredentials,
    RateLimited,
    WeakPassword,
)

logger = logging.getLogger(__name__)

REDIRECT_PATHS = {
    AccountRole.PLATFORM_ADMIN: "/admin/dashboard",
    AccountRole.UNIVERSITY_ADMIN: "/university-admin/dashboard",
    AccountRole.STUDENT: "/student/dashboard",
    AccountRole.EMPLOYER: "/employer/dashboard",
}

SELF_REGISTRATION_ROLES = (AccountRole.STUDENT, AccountRole.EMPLOYER)

RESET_EMAIL_SENT = "If an account exists for this email, a password reset link has been sent"


def _rate_limited() -> DependencyError:
    return DependencyError(
        "Too many requests. Please try again later",
        "RATE_LIMITED",
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
    )


def _invalid_credentials() -> AuthError:
    return AuthError("Invalid email or password", "INVALID_CREDENTIALS")


@dataclass
class SessionInfo:
    """A freshly issued session."""

    token: str
    account: Account
    profile: Any
    redirect_path: str


class SessionService:
    """Service issuing session tokens on top of the identity provider."""

    async def login(
        self,
        db: AsyncSession,
        identity: IdentityProvider,
        issuer: TokenIssuer,
        email: str,
        password: str,
    ) -> SessionInfo:
        """
        Check credentials with the identity provider and issue our own token.

        The provider session is only used to prove the password and is
        signed out straight away.
        """
        if not email or not password:
            raise ValidationError("Email and password are required", "MISSING_CREDENTIALS")
        email = validate_email(email)

        account = await account_service.get_account_by_email(db, email)
        if account is None or not account.auth_managed:
            raise _invalid_credentials()

        try:
            provider_session = await identity.sign_in_with_password(email, password)
        except InvalidCredentials:
            raise _invalid_credentials()
        except RateLimited:
            raise _rate_limited()
        except IdentityProviderError as e:
            raise DependencyError(
                "Authentication service error", "AUTH_SERVICE_ERROR", debug_detail=str(e)
            ) from e

        try:
            await identity.sign_out(provider_session.access_token)
        except IdentityProviderError as e:
            logger.warning(f"Provider sign-out failed for {email}: {e}")

        role = AccountRole(account.role)
        profile = await account_service.get_profile(db, account)
        if profile is None or not profile.is_active:
            raise AuthError(
                "Profile is inactive or missing",
                "PROFILE_INACTIVE_OR_MISSING",
                status_code=status.HTTP_403_FORBIDDEN,
            )

        try:
            profile.last_login = datetime.now(timezone.utc)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.warning(f"last_login update failed for {account.id}: {e}")

        token = issuer.issue(account.id, account.email, role.value, profile.id)
        logger.info(f"{role.value} {account.id} signed in")
        return SessionInfo(
            token=token,
            account=account,
            profile=profile,
            redirect_path=REDIRECT_PATHS[role],
        )

    async def register(
        self,
        db: AsyncSession,
        identity: IdentityProvider,
        issuer: TokenIssuer,
        role: str,
        email: str,
        password: str,
        profile_fields: dict[str, Any],
        meta: Optional[RequestMeta] = None,
    ) -> SessionInfo:
        """Self-registration for students and employers."""
        try:
            role = AccountRole(role)
        except ValueError:
            role = None
        if role not in SELF_REGISTRATION_ROLES:
            raise ValidationError("Role must be student or employer", "INVALID_ROLE")

        created = await account_service.create_delegated_account(
            db, identity, role, email, password, profile_fields, meta=meta
        )
        token = issuer.issue(created.account.id, created.account.email, role.value, created.profile.id)
        return SessionInfo(
            token=token,
            account=created.account,
            profile=created.profile,
            redirect_path=REDIRECT_PATHS[role],
        )

    async def forgot_password(self, identity: IdentityProvider, email: str, redirect_to: str) -> str:
        """Ask the provider to email a reset link. Unknown emails look like successes."""
        email = validate_email(email)
        try:
            await identity.reset_password_for_email(email, redirect_to)
        except IdentityNotFound:
            logger.info(f"Password reset requested for unknown email {email}")
        except RateLimited:
            raise _rate_limited()
        except IdentityProviderError as e:
            raise DependencyError(
                "Failed to send password reset email", "PASSWORD_RESET_FAILED", debug_detail=str(e)
            ) from e
        return RESET_EMAIL_SENT

    async def reset_password(
        self, identity: IdentityProvider, access_token: Optional[str], new_password: str
    ) -> None:
        """Set a new password using the recovery access token from the reset email."""
        if not access_token:
            raise ValidationError("Recovery token is required", "MISSING_TOKEN")
        validate_password(new_password)
        try:
            await identity.update_user_password(access_token, new_password)
        except (InvalidCredentials, IdentityNotFound):
            raise AuthError("Reset link is invalid or has expired", "INVALID_RESET_TOKEN")
        except WeakPassword:
            raise ValidationError("Password does not meet requirements", "WEAK_PASSWORD")
        except RateLimited:
            raise _rate_limited()
        except IdentityProviderError as e:
            if e.status_code in (401, 403):
                raise AuthError("Reset link is invalid or has expired", "INVALID_RESET_TOKEN")
            raise DependencyError(
                "Failed to update password", "PASSWORD_UPDATE_FAILED", debug_detail=str(e)
            ) from e

    async def change_password(
        self,
        db: AsyncSession,
        identity: IdentityProvider,
        principal: Principal,
        old_password: Optional[str],
        new_password: Optional[str],
        meta: Optional[RequestMeta] = None,
    ) -> None:
        """
        Re-check the current password with the provider, then set the new one.

        The provider session opened for the check carries the update and is
        signed out afterwards.
        """
        if not old_password or not new_password:
            raise ValidationError("Old and new passwords are required", "MISSING_PASSWORDS")
        validate_password(new_password)

        try:
            provider_session = await identity.sign_in_with_password(principal.email, old_password)
        except InvalidCredentials:
            raise AuthError("Current password is incorrect", "INVALID_CURRENT_PASSWORD")
        except RateLimited:
            raise _rate_limited()
        except IdentityProviderError as e:
            raise DependencyError(
                "Authentication service error", "AUTH_SERVICE_ERROR", debug_detail=str(e)
            ) from e

        try:
            await identity.update_user_password(provider_session.access_token, new_password)
        except WeakPassword:
            raise ValidationError("Password does not meet requirements", "WEAK_PASSWORD")
        except RateLimited:
            raise _rate_limited()
        except IdentityProviderError as e:
            raise DependencyError(
                "Failed to update password", "PASSWORD_UPDATE_FAILED", debug_detail=str(e)
            ) from e
        finally:
            try:
                await identity.sign_out(provider_session.access_token)
            except IdentityProviderError as e:
                logger.warning(f"Provider sign-out failed for {principal.email}: {e}")

        logger.info(f"Password changed for account {principal.account_id}")
        await record_audit(
            db,
            principal.account_id,
            "CHANGE_PASSWORD",
            "user",
            principal.account_id,
            meta=meta,
        )

    async def logout(self, db: AsyncSession, principal: Principal, meta: Optional[RequestMeta] = None):
        await record_audit(
            db, principal.account_id, "LOGOUT", "session", principal.account_id, meta=meta
        )


# Singleton instance
session_service = SessionService()
