"""Account lifecycle: delegated creation with compensation, ordered teardown."""

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from fastapi import status
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.security import Principal
from src.db.models import (
    PROFILE_MODELS,
    Account,
    AccountRole,
    EmployerProfile,
    PlatformAdminProfile,
    StudentProfile,
    University,
    UniversityAdminProfile,
)
from src.errors import (
    AuthError,
    ConflictError,
    DependencyError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from src.services.audit import RequestMeta, purge_audit_for_resource, record_audit
from src.services.identity import (
    IdentityConflict,
    IdentityNotFound,
    IdentityProvider,
    IdentityProviderError,
    RateLimited,
    WeakPassword,
)
from src.services.saga import Saga

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 8

DEFAULT_UNIVERSITY_ADMIN_PERMISSIONS = [
    "university:read",
    "university:write",
    "students:read",
    "students:write",
    "courses:read",
    "courses:write",
    "transcripts:read",
    "transcripts:write",
    "certificates:read",
    "certificates:write",
]

REQUIRED_PROFILE_FIELDS = {
    AccountRole.PLATFORM_ADMIN: ("first_name", "last_name"),
    AccountRole.UNIVERSITY_ADMIN: ("first_name", "last_name", "university_id"),
    AccountRole.STUDENT: ("first_name", "last_name"),
    AccountRole.EMPLOYER: ("company_name",),
}

# University admin profiles have their own update path
EDITABLE_PROFILE_FIELDS = {
    AccountRole.PLATFORM_ADMIN: ("first_name", "last_name"),
    AccountRole.STUDENT: ("first_name", "last_name", "phone", "date_of_birth"),
    AccountRole.EMPLOYER: ("company_name", "contact_name", "industry", "website", "phone"),
}

# Roles that manage their own account
SELF_SERVICE_ROLES = (AccountRole.STUDENT, AccountRole.EMPLOYER)

# Failure codes per creation stage
_STAGE_ERRORS = {
    "identity": ("Failed to create authentication user", "AUTH_USER_CREATION_FAILED"),
    "account": ("Failed to create user record", "USER_RECORD_CREATION_FAILED"),
    "profile": ("Failed to create profile", "PROFILE_CREATION_FAILED"),
    "commit": ("Failed to save account", "PROFILE_CREATION_FAILED"),
}


def _clean(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def validate_email(email: Optional[str]) -> str:
    email = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Please provide a valid email address", "INVALID_EMAIL")
    return email


def validate_password(password: Optional[str]) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long",
            "WEAK_PASSWORD",
        )
    return password


def ensure_uuid(value: str, error_code: str, label: str = "id") -> str:
    try:
        uuid.UUID(str(value))
    except ValueError:
        raise ValidationError(f"Invalid {label} format", error_code)
    return str(value)


def display_name(account: Account, profile: Any) -> str:
    """Human-readable name for audit entries and responses."""
    if isinstance(profile, EmployerProfile) and profile.company_name:
        return profile.company_name
    first = getattr(profile, "first_name", None)
    last = getattr(profile, "last_name", None)
    if first or last:
        return " ".join(part for part in (first, last) if part)
    return account.email


def provider_error_to_service(exc: IdentityProviderError) -> ServiceError:
    """Map adapter errors raised during account creation onto the taxonomy."""
    if isinstance(exc, IdentityConflict):
        return ConflictError("An account with this email already exists", "EMAIL_EXISTS")
    if isinstance(exc, WeakPassword):
        return ValidationError("Password does not meet requirements", "WEAK_PASSWORD")
    if isinstance(exc, RateLimited):
        return DependencyError(
            "Too many requests. Please try again later",
            "RATE_LIMITED",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        )
    message, code = _STAGE_ERRORS["identity"]
    return DependencyError(message, code, debug_detail=str(exc))


@dataclass
class CreatedAccount:
    """Everything produced by a delegated account creation."""

    account: Account
    profile: Any
    provider_identity_id: str
    university: Optional[University] = None


@dataclass
class DeletionResults:
    """Per-step outcome of an account teardown."""

    auth_deleted: bool = False
    profile_deleted: bool = False
    audit_logs_deleted: bool = False
    user_deleted: bool = False
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "auth_deleted": self.auth_deleted,
            "profile_deleted": self.profile_deleted,
            "audit_logs_deleted": self.audit_logs_deleted,
            "user_deleted": self.user_deleted,
            "errors": list(self.errors),
        }


class AccountService:
    """Service for creating, reading and deleting accounts and their profiles."""

    # ---------- lookups ----------

    async def get_account(self, db: AsyncSession, account_id: str) -> Optional[Account]:
        result = await db.execute(select(Account).where(Account.id == account_id))
        return result.scalar_one_or_none()

    async def get_account_by_email(self, db: AsyncSession, email: str) -> Optional[Account]:
        result = await db.execute(select(Account).where(Account.email == email.strip().lower()))
        return result.scalar_one_or_none()

    async def get_profile(self, db: AsyncSession, account: Account) -> Any:
        """Return the role-specific profile row, or None."""
        model = PROFILE_MODELS[AccountRole(account.role)]
        result = await db.execute(select(model).where(model.account_id == account.id))
        return result.scalar_one_or_none()

    # ---------- creation ----------

    def _validate_profile_fields(self, role: AccountRole, fields: dict[str, Any]) -> dict[str, Any]:
        cleaned = {k: _clean(v) for k, v in fields.items()}
        missing = [f for f in REQUIRED_PROFILE_FIELDS[role] if not cleaned.get(f)]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                "MISSING_REQUIRED_FIELDS",
                data={"fields": missing},
            )
        return cleaned

    async def _insert_account(
        self, db: AsyncSession, account_id: str, email: str, role: AccountRole
    ) -> Account:
        account = Account(
            id=account_id,
            email=email,
            role=role,
            email_verified=True,
            auth_managed=True,
        )
        db.add(account)
        await db.flush()
        return account

    async def _insert_profile(
        self,
        db: AsyncSession,
        role: AccountRole,
        account_id: str,
        email: str,
        fields: dict[str, Any],
    ) -> Any:
        if role == AccountRole.PLATFORM_ADMIN:
            profile = PlatformAdminProfile(
                account_id=account_id,
                first_name=fields["first_name"],
                last_name=fields["last_name"],
                permissions=fields.get("permissions") or [],
                is_active=True,
            )
        elif role == AccountRole.UNIVERSITY_ADMIN:
            profile = UniversityAdminProfile(
                account_id=account_id,
                university_id=fields["university_id"],
                email=email,
                first_name=fields["first_name"],
                last_name=fields["last_name"],
                title=fields.get("title"),
                phone=fields.get("phone"),
                permissions=fields.get("permissions") or list(DEFAULT_UNIVERSITY_ADMIN_PERMISSIONS),
                is_active=True,
            )
        elif role == AccountRole.STUDENT:
            profile = StudentProfile(
                account_id=account_id,
                first_name=fields["first_name"],
                last_name=fields["last_name"],
                phone=fields.get("phone"),
                date_of_birth=fields.get("date_of_birth"),
            )
        else:
            profile = EmployerProfile(
                account_id=account_id,
                company_name=fields["company_name"],
                contact_name=fields.get("contact_name"),
                industry=fields.get("industry"),
                website=fields.get("website"),
                phone=fields.get("phone"),
            )
        db.add(profile)
        await db.flush()
        return profile

    async def create_delegated_account(
        self,
        db: AsyncSession,
        identity: IdentityProvider,
        role: AccountRole,
        email: str,
        password: str,
        profile_fields: dict[str, Any],
        created_by: Optional[str] = None,
        meta: Optional[RequestMeta] = None,
    ) -> CreatedAccount:
        """
        Create a provider identity, its Account row and its Profile row.

        Steps run in order; if a later step fails, earlier ones are undone
        (database rows by rollback, the provider identity by deletion) and
        the error propagates. The audit entry is written after commit and
        never fails the operation.
        """
        role = AccountRole(role)
        email = validate_email(email)
        validate_password(password)
        fields = self._validate_profile_fields(role, profile_fields)

        university = None
        if role == AccountRole.UNIVERSITY_ADMIN:
            ensure_uuid(fields["university_id"], "INVALID_UNIVERSITY_ID", "university id")
            result = await db.execute(
                select(University).where(University.id == fields["university_id"])
            )
            university = result.scalar_one_or_none()
            if university is None:
                raise NotFoundError("University not found", "UNIVERSITY_NOT_FOUND")

        if await self.get_account_by_email(db, email) is not None:
            raise ConflictError("An account with this email already exists", "EMAIL_EXISTS")

        metadata = {
            "role": role.value,
            "first_name": fields.get("first_name"),
            "last_name": fields.get("last_name"),
        }
        if university is not None:
            metadata["university_id"] = university.id

        stage = "identity"
        try:
            async with Saga(f"create_{role.value}") as saga:
                provider_user = await saga.step(
                    "identity",
                    identity.create_user(email, password, email_confirm=True, metadata=metadata),
                    lambda created: identity.delete_user(created.id),
                )
                stage = "account"
                account = await saga.step(
                    "account",
                    lambda: self._insert_account(db, provider_user.id, email, role),
                    db.rollback,
                )
                stage = "profile"
                profile = await saga.step(
                    "profile",
                    lambda: self._insert_profile(db, role, account.id, email, fields),
                )
                stage = "commit"
                await saga.step("commit", db.commit)
        except ServiceError:
            raise
        except IdentityProviderError as e:
            logger.warning(f"Identity provider rejected {role.value} creation for {email}: {e}")
            raise provider_error_to_service(e) from e
        except Exception as e:
            logger.exception(f"Account creation failed at stage '{stage}' for {email}")
            message, code = _STAGE_ERRORS[stage]
            raise DependencyError(message, code, debug_detail=str(e)) from e

        logger.info(f"Created {role.value} account {account.id} ({email})")

        await record_audit(
            db,
            created_by,
            f"CREATE_{role.value.upper()}",
            "university_admin" if role == AccountRole.UNIVERSITY_ADMIN else "user",
            account.id,
            new_values={
                "email": email,
                "role": role.value,
                "name": display_name(account, profile),
                "university_id": university.id if university else None,
            },
            meta=meta,
        )

        return CreatedAccount(
            account=account,
            profile=profile,
            provider_identity_id=provider_user.id,
            university=university,
        )

    # ---------- deletion ----------

    async def _teardown_account(
        self,
        db: AsyncSession,
        identity: IdentityProvider,
        account: Account,
        profile: Any,
    ) -> DeletionResults:
        """
        Remove provider identity, profile, audit rows and finally the account.

        Only the last step is fatal. Earlier failures are recorded in
        ``errors`` and the teardown continues.
        """
        results = DeletionResults()

        if account.auth_managed:
            try:
                await identity.delete_user(account.id)
                results.auth_deleted = True
            except IdentityNotFound:
                logger.warning(f"Provider identity {account.id} already absent")
                results.auth_deleted = True
            except IdentityProviderError as e:
                logger.warning(f"Provider identity {account.id} orphaned: {e}")
                results.errors.append(f"Auth deletion failed: {e}")

        if profile is not None:
            try:
                await db.delete(profile)
                await db.commit()
                results.profile_deleted = True
            except SQLAlchemyError as e:
                await db.rollback()
                logger.warning(f"Profile deletion failed for account {account.id}: {e}")
                results.errors.append(f"Profile deletion failed: {e}")

        try:
            await purge_audit_for_resource(db, account.id)
            results.audit_logs_deleted = True
        except SQLAlchemyError as e:
            await db.rollback()
            logger.warning(f"Audit log cleanup failed for account {account.id}: {e}")
            results.errors.append(f"Audit log cleanup failed: {e}")

        try:
            await db.delete(account)
            await db.commit()
            results.user_deleted = True
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Account row deletion failed for {account.id}: {e}")
            results.errors.append(f"User deletion failed: {e}")
            raise DependencyError(
                "Failed to delete user record",
                "USER_DELETE_FAILED",
                data={"partial_results": results.as_dict()},
                debug_detail=str(e),
            ) from e

        return results

    async def delete_account(
        self,
        db: AsyncSession,
        identity: IdentityProvider,
        account_id: str,
        actor: Principal,
        meta: Optional[RequestMeta] = None,
    ) -> dict[str, Any]:
        """Generic account deletion. University admins use ``delete_university_admin``."""
        ensure_uuid(account_id, "INVALID_USER_ID", "user id")

        account = await self.get_account(db, account_id)
        if account is None:
            raise NotFoundError("User not found", "USER_NOT_FOUND")

        if account.role == AccountRole.UNIVERSITY_ADMIN:
            raise AuthError(
                "University admins must be deleted through the university admin endpoint",
                "UNIVERSITY_ADMIN_DELETE_FORBIDDEN",
                status_code=status.HTTP_403_FORBIDDEN,
            )
        if account.id == actor.account_id:
            raise AuthError(
                "You cannot delete your own account",
                "SELF_DELETE_FORBIDDEN",
                status_code=status.HTTP_403_FORBIDDEN,
            )

        profile = await self.get_profile(db, account)
        snapshot = {
            "id": account.id,
            "email": account.email,
            "role": AccountRole(account.role).value,
            "name": display_name(account, profile),
        }

        results = await self._teardown_account(db, identity, account, profile)

        await record_audit(
            db,
            actor.account_id,
            "DELETE_USER_COMPLETE",
            "user",
            snapshot["id"],
            old_values=snapshot,
            new_values={"deletion_results": results.as_dict()},
            meta=meta,
        )
        return {
            "deleted_user": snapshot,
            "deletion_results": results.as_dict(),
            "warnings": list(results.errors),
        }

    async def delete_university_admin(
        self,
        db: AsyncSession,
        identity: IdentityProvider,
        admin_id: str,
        actor: Principal,
        meta: Optional[RequestMeta] = None,
    ) -> dict[str, Any]:
        """Delete a university admin by profile id."""
        ensure_uuid(admin_id, "INVALID_ADMIN_ID", "admin id")
        result = await db.execute(
            select(UniversityAdminProfile).where(UniversityAdminProfile.id == admin_id)
        )
        profile = result.scalar_one_or_none()
        if profile is None:
            raise NotFoundError("University admin not found", "ADMIN_NOT_FOUND")

        account = await self.get_account(db, profile.account_id)
        if account is None:
            raise NotFoundError("University admin not found", "ADMIN_NOT_FOUND")

        snapshot = {
            "id": profile.id,
            "account_id": account.id,
            "email": account.email,
            "name": display_name(account, profile),
            "university_id": profile.university_id,
        }
        results = await self._teardown_account(db, identity, account, profile)

        await record_audit(
            db,
            actor.account_id,
            "DELETE_UNIVERSITY_ADMIN",
            "university_admin",
            snapshot["id"],
            old_values=snapshot,
            meta=meta,
        )
        return {
            "deleted_admin": snapshot,
            "deletion_results": results.as_dict(),
            "warnings": list(results.errors),
        }

    # ---------- listing / updates ----------

    async def list_accounts(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 20,
        role: Optional[str] = None,
        search: Optional[str] = None,
    ) -> tuple[list[Account], int]:
        """List accounts other than university admins."""
        if role == AccountRole.UNIVERSITY_ADMIN.value:
            raise ValidationError(
                "University admins are listed through the university admin endpoint",
                "INVALID_ROLE_FILTER",
            )

        query = select(Account).where(Account.role != AccountRole.UNIVERSITY_ADMIN)
        if role:
            try:
                query = query.where(Account.role == AccountRole(role))
            except ValueError:
                raise ValidationError(f"Unknown role: {role}", "INVALID_ROLE_FILTER")
        if search:
            query = query.where(Account.email.icontains(search.strip(), autoescape=True))

        total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
        query = query.order_by(Account.created_at.desc()).offset((page - 1) * limit).limit(limit)
        accounts = list((await db.execute(query)).scalars().all())
        return accounts, total

    async def list_university_admins(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 20,
        university_id: Optional[str] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> tuple[list[tuple[UniversityAdminProfile, University]], int]:
        query = select(UniversityAdminProfile, University).join(
            University, University.id == UniversityAdminProfile.university_id
        )
        if university_id:
            query = query.where(UniversityAdminProfile.university_id == university_id)
        if is_active is not None:
            query = query.where(UniversityAdminProfile.is_active == is_active)
        if search:
            term = search.strip()
            query = query.where(
                or_(
                    UniversityAdminProfile.first_name.icontains(term, autoescape=True),
                    UniversityAdminProfile.last_name.icontains(term, autoescape=True),
                    UniversityAdminProfile.email.icontains(term, autoescape=True),
                )
            )

        total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
        query = (
            query.order_by(UniversityAdminProfile.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        rows = [(row[0], row[1]) for row in (await db.execute(query)).all()]
        return rows, total

    async def get_university_admin(
        self, db: AsyncSession, admin_id: str
    ) -> tuple[UniversityAdminProfile, University]:
        ensure_uuid(admin_id, "INVALID_ADMIN_ID", "admin id")
        result = await db.execute(
            select(UniversityAdminProfile, University)
            .join(University, University.id == UniversityAdminProfile.university_id)
            .where(UniversityAdminProfile.id == admin_id)
        )
        row = result.first()
        if row is None:
            raise NotFoundError("University admin not found", "ADMIN_NOT_FOUND")
        return row[0], row[1]

    async def update_university_admin(
        self,
        db: AsyncSession,
        admin_id: str,
        updates: dict[str, Any],
        actor: Principal,
        meta: Optional[RequestMeta] = None,
    ) -> UniversityAdminProfile:
        """Apply the given fields; names may not be blanked."""
        profile, _ = await self.get_university_admin(db, admin_id)

        changes = {k: _clean(v) for k, v in updates.items()}
        for name_field in ("first_name", "last_name"):
            if name_field in changes and not changes[name_field]:
                raise ValidationError(f"{name_field} cannot be empty", "INVALID_NAME")

        old_values = {k: getattr(profile, k) for k in changes}
        for key, value in changes.items():
            setattr(profile, key, value)
        await db.commit()

        await record_audit(
            db,
            actor.account_id,
            "UPDATE_UNIVERSITY_ADMIN",
            "university_admin",
            profile.id,
            old_values=old_values,
            new_values=changes,
            meta=meta,
        )
        return profile

    # ---------- profiles ----------

    async def update_profile(
        self, db: AsyncSession, account: Account, updates: dict[str, Any]
    ) -> tuple[Any, dict[str, Any], dict[str, Any]]:
        """
        Apply profile fields editable for the account's role.

        Fields other roles use are ignored; required fields may not be
        blanked. Returns (profile, old values, changes).
        """
        role = AccountRole(account.role)
        allowed = EDITABLE_PROFILE_FIELDS.get(role)
        if allowed is None:
            raise ValidationError(
                "Profiles of this role are edited through their own endpoint", "INVALID_USER_TYPE"
            )

        changes = {k: _clean(v) for k, v in updates.items() if k in allowed and v is not None}
        if not changes:
            raise ValidationError("No profile fields to update", "NO_FIELDS_TO_UPDATE")
        blank = [f for f in REQUIRED_PROFILE_FIELDS[role] if f in changes and not changes[f]]
        if blank:
            raise ValidationError(
                f"Required fields cannot be empty: {', '.join(blank)}",
                "MISSING_REQUIRED_FIELDS",
                data={"fields": blank},
            )

        profile = await self.get_profile(db, account)
        if profile is None:
            raise NotFoundError("Profile not found", "PROFILE_NOT_FOUND")

        old_values = {k: getattr(profile, k) for k in changes}
        for key, value in changes.items():
            setattr(profile, key, value)
        await db.commit()
        return profile, old_values, changes

    async def update_account(
        self,
        db: AsyncSession,
        account_id: str,
        updates: dict[str, Any],
        actor: Principal,
        meta: Optional[RequestMeta] = None,
    ) -> tuple[Account, Any]:
        """Platform-admin edit of another account's profile."""
        ensure_uuid(account_id, "INVALID_USER_ID", "user id")
        account = await self.get_account(db, account_id)
        if account is None:
            raise NotFoundError("User not found", "USER_NOT_FOUND")
        if account.role == AccountRole.UNIVERSITY_ADMIN:
            raise AuthError(
                "University admins must be updated through the university admin endpoint",
                "UNIVERSITY_ADMIN_UPDATE_FORBIDDEN",
                status_code=status.HTTP_403_FORBIDDEN,
            )

        profile, old_values, changes = await self.update_profile(db, account, updates)
        logger.info(f"Account {account.id} profile updated by {actor.account_id}")

        await record_audit(
            db,
            actor.account_id,
            "UPDATE_USER",
            "user",
            account.id,
            old_values=old_values,
            new_values=changes,
            meta=meta,
        )
        return account, profile

    async def delete_own_account(
        self, db: AsyncSession, identity: IdentityProvider, principal: Principal
    ) -> dict[str, Any]:
        """Close the caller's own student or employer account."""
        account = await self.get_account(db, principal.account_id)
        if account is None:
            raise NotFoundError("User not found", "USER_NOT_FOUND")
        if AccountRole(account.role) not in SELF_SERVICE_ROLES:
            raise AuthError(
                "Administrator accounts are removed by a platform admin",
                "SELF_DELETE_FORBIDDEN",
                status_code=status.HTTP_403_FORBIDDEN,
            )

        profile = await self.get_profile(db, account)
        results = await self._teardown_account(db, identity, account, profile)
        logger.info(f"Account {account.id} closed by its owner")
        return {"deletion_results": results.as_dict(), "warnings": list(results.errors)}


# Singleton instance
account_service = AccountService()
