"""Session routes: login, registration, token check, password recovery and self-service."""

from typing import Any

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.security import Principal, get_token_issuer, require_account, require_role
from src.auth.tokens import TokenIssuer
from src.config import get_settings
from src.db.models import PROFILE_MODELS, Account, AccountRole
from src.db.session import get_db
from src.errors import AuthError
from src.middleware.rate_limit import rate_limit_auth, rate_limit_general
from src.schemas.schemas import (
    AccountDetail,
    AccountInfo,
    ApiResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    ProfileUpdate,
    RegisterRequest,
    ResetPasswordRequest,
    SessionResponse,
    TokenStatus,
    row_to_dict,
)
from src.services.account_service import SELF_SERVICE_ROLES, account_service, display_name
from src.services.audit import RequestMeta
from src.services.identity import IdentityProvider, get_identity_provider
from src.services.session_service import SessionInfo, session_service

router = APIRouter(prefix="/api/auth", tags=["Auth"])

settings = get_settings()


def _session_response(session: SessionInfo) -> SessionResponse:
    return SessionResponse(
        token=session.token,
        user=AccountInfo.model_validate(session.account),
        profile=row_to_dict(session.profile),
        redirect_path=session.redirect_path,
    )


@router.post(
    "/login",
    response_model=ApiResponse[SessionResponse],
    summary="Sign in",
    description="Verify credentials with the identity provider and issue a session token.",
)
@rate_limit_auth()
async def login(
    request: Request,
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
    issuer: TokenIssuer = Depends(get_token_issuer),
):
    session = await session_service.login(db, identity, issuer, body.email, body.password)
    return ApiResponse(message="Login successful", data=_session_response(session))


@router.post(
    "/register",
    response_model=ApiResponse[SessionResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Register a student or employer account",
)
@rate_limit_auth()
async def register(
    request: Request,
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
    issuer: TokenIssuer = Depends(get_token_issuer),
):
    fields = body.model_dump(exclude={"email", "password", "role"}, exclude_none=True)
    session = await session_service.register(
        db,
        identity,
        issuer,
        body.role,
        body.email,
        body.password,
        fields,
        meta=RequestMeta.from_request(request),
    )
    return ApiResponse(message="Registration successful", data=_session_response(session))


@router.get(
    "/verify-token",
    response_model=ApiResponse[TokenStatus],
    summary="Check the current session token",
    description="Returns the signed-in user; a refreshed token is included when the current one is close to expiry.",
)
@rate_limit_general()
async def verify_token(
    request: Request,
    principal: Principal = Depends(require_account),
    db: AsyncSession = Depends(get_db),
):
    account = await db.get(Account, principal.account_id)
    if account is None:
        raise AuthError("Account not found", "ACCOUNT_NOT_FOUND")
    model = PROFILE_MODELS[AccountRole(account.role)]
    profile = await db.get(model, principal.profile_id)
    return ApiResponse(
        data=TokenStatus(
            user=AccountInfo.model_validate(account),
            profile=row_to_dict(profile),
            refreshed_token=getattr(request.state, "refreshed_token", None),
        )
    )


@router.post(
    "/forgot-password",
    response_model=ApiResponse[None],
    summary="Request a password reset email",
)
@rate_limit_auth()
async def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    identity: IdentityProvider = Depends(get_identity_provider),
):
    message = await session_service.forgot_password(
        identity, body.email, settings.password_reset_redirect_url
    )
    return ApiResponse(message=message)


@router.post(
    "/reset-password",
    response_model=ApiResponse[None],
    summary="Set a new password with a recovery token",
)
@rate_limit_auth()
async def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    identity: IdentityProvider = Depends(get_identity_provider),
):
    await session_service.reset_password(identity, body.access_token, body.password)
    return ApiResponse(message="Password updated successfully")


@router.post(
    "/logout",
    response_model=ApiResponse[None],
    summary="Sign out",
    description="Tokens are stateless; this records the sign-out in the audit log.",
)
@rate_limit_general()
async def logout(
    request: Request,
    principal: Principal = Depends(require_account),
    db: AsyncSession = Depends(get_db),
):
    await session_service.logout(db, principal, meta=RequestMeta.from_request(request))
    return ApiResponse(message="Logged out successfully")


# ============== Self-service ==============

require_self_service = require_role(SELF_SERVICE_ROLES)


async def _own_account(db: AsyncSession, principal: Principal) -> Account:
    account = await account_service.get_account(db, principal.account_id)
    if account is None:
        raise AuthError("Account not found", "ACCOUNT_NOT_FOUND")
    return account


@router.get(
    "/profile",
    response_model=ApiResponse[AccountDetail],
    summary="Get the signed-in user's profile",
)
@rate_limit_general()
async def get_profile(
    request: Request,
    principal: Principal = Depends(require_self_service),
    db: AsyncSession = Depends(get_db),
):
    account = await _own_account(db, principal)
    profile = await account_service.get_profile(db, account)
    return ApiResponse(
        data=AccountDetail(
            account=AccountInfo.model_validate(account),
            profile=row_to_dict(profile),
            display_name=display_name(account, profile),
        )
    )


@router.post(
    "/update-profile",
    response_model=ApiResponse[AccountDetail],
    summary="Update the signed-in user's profile",
)
@rate_limit_general()
async def update_profile(
    request: Request,
    body: ProfileUpdate,
    principal: Principal = Depends(require_self_service),
    db: AsyncSession = Depends(get_db),
):
    account = await _own_account(db, principal)
    profile, _, _ = await account_service.update_profile(
        db, account, body.model_dump(exclude_unset=True)
    )
    return ApiResponse(
        message="Profile updated successfully",
        data=AccountDetail(
            account=AccountInfo.model_validate(account),
            profile=row_to_dict(profile),
            display_name=display_name(account, profile),
        ),
    )


@router.post(
    "/change-password",
    response_model=ApiResponse[None],
    summary="Change the signed-in user's password",
    description="The current password is checked with the identity provider first.",
)
@rate_limit_auth()
async def change_password(
    request: Request,
    body: ChangePasswordRequest,
    principal: Principal = Depends(require_account),
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    await session_service.change_password(
        db,
        identity,
        principal,
        body.old_password,
        body.new_password,
        meta=RequestMeta.from_request(request),
    )
    return ApiResponse(message="Password changed successfully")


@router.delete(
    "/delete-account",
    response_model=ApiResponse[dict[str, Any]],
    summary="Close the signed-in user's account",
    description="Students and employers only. Removes the identity, profile, audit rows and account.",
)
@rate_limit_auth()
async def delete_own_account(
    request: Request,
    principal: Principal = Depends(require_self_service),
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    result = await account_service.delete_own_account(db, identity, principal)
    message = "Account deleted successfully"
    if result["warnings"]:
        message = "Account deleted with warnings"
    return ApiResponse(message=message, data=result)
