"""Platform administration routes (universities, admins, accounts)."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.security import Principal, require_platform_admin
from src.db.models import AccountRole
from src.db.session import get_db
from src.errors import NotFoundError
from src.schemas.schemas import (
    AccountCreate,
    AccountDetail,
    AccountInfo,
    ApiResponse,
    CreatedAccountResponse,
    DashboardData,
    Page,
    PageInfo,
    ProfileUpdate,
    UniversityAdminCreate,
    UniversityAdminInfo,
    UniversityAdminUpdate,
    UniversityCreate,
    UniversityInfo,
    UniversityOption,
    UniversityStatusUpdate,
    UniversityUpdate,
    row_to_dict,
)
from src.services.account_service import (
    CreatedAccount,
    account_service,
    display_name,
    ensure_uuid,
)
from src.services.audit import RequestMeta
from src.services.dashboard_service import dashboard_service
from src.services.identity import IdentityProvider, get_identity_provider
from src.services.storage import StorageService, get_storage
from src.services.university_service import university_service

router = APIRouter(prefix="/api/admin", tags=["Platform Admin"])


def _created_response(created: CreatedAccount) -> CreatedAccountResponse:
    return CreatedAccountResponse(
        account=AccountInfo.model_validate(created.account),
        profile=row_to_dict(created.profile),
        provider_identity_id=created.provider_identity_id,
        university=UniversityInfo.model_validate(created.university) if created.university else None,
    )


def _admin_info(profile, university) -> UniversityAdminInfo:
    info = UniversityAdminInfo.model_validate(profile)
    info.university_name = university.name if university else None
    return info


# ============== Dashboard ==============


@router.get(
    "/dashboard",
    response_model=ApiResponse[DashboardData],
    summary="Platform dashboard",
    description="Account and university counts with the latest audit activity and university registrations.",
)
async def get_dashboard(
    db: AsyncSession = Depends(get_db),
    _: Principal = Depends(require_platform_admin),
):
    data = await dashboard_service.get_dashboard(db)
    return ApiResponse(data=DashboardData.model_validate(data))


# ============== Universities ==============


@router.post(
    "/universities",
    response_model=ApiResponse[UniversityInfo],
    status_code=status.HTTP_201_CREATED,
    summary="Create a university",
)
async def create_university(
    request: Request,
    body: UniversityCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_platform_admin),
):
    university = await university_service.create_university(
        db, body.model_dump(), principal, meta=RequestMeta.from_request(request)
    )
    return ApiResponse(
        message="University created successfully",
        data=UniversityInfo.model_validate(university),
    )


@router.get(
    "/universities",
    response_model=ApiResponse[Page[UniversityInfo]],
    summary="List universities",
)
async def list_universities(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    country: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    _: Principal = Depends(require_platform_admin),
):
    universities, total = await university_service.list_universities(
        db, page=page, limit=limit, country=country, is_active=is_active, search=search
    )
    return ApiResponse(
        data=Page(
            items=[UniversityInfo.model_validate(u) for u in universities],
            pagination=PageInfo.build(page, limit, total),
        )
    )


@router.get(
    "/universities/dropdown",
    response_model=ApiResponse[list[UniversityOption]],
    summary="Active universities for selection lists",
)
async def universities_dropdown(
    db: AsyncSession = Depends(get_db),
    _: Principal = Depends(require_platform_admin),
):
    universities = await university_service.active_universities(db)
    return ApiResponse(data=[UniversityOption.model_validate(u) for u in universities])


@router.get(
    "/universities/{university_id}",
    response_model=ApiResponse[UniversityInfo],
    summary="Get a university",
)
async def get_university(
    university_id: str,
    db: AsyncSession = Depends(get_db),
    _: Principal = Depends(require_platform_admin),
):
    university = await university_service.get_university(db, university_id)
    return ApiResponse(data=UniversityInfo.model_validate(university))


@router.put(
    "/universities/{university_id}",
    response_model=ApiResponse[UniversityInfo],
    summary="Update a university",
)
async def update_university(
    request: Request,
    university_id: str,
    body: UniversityUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_platform_admin),
):
    university = await university_service.update_university(
        db,
        university_id,
        body.model_dump(exclude_unset=True),
        principal,
        meta=RequestMeta.from_request(request),
    )
    return ApiResponse(
        message="University updated successfully",
        data=UniversityInfo.model_validate(university),
    )


@router.patch(
    "/universities/{university_id}/status",
    response_model=ApiResponse[UniversityInfo],
    summary="Activate or deactivate a university",
)
async def update_university_status(
    request: Request,
    university_id: str,
    body: UniversityStatusUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_platform_admin),
):
    university = await university_service.set_status(
        db, university_id, body.is_active, principal, meta=RequestMeta.from_request(request)
    )
    state = "activated" if university.is_active else "deactivated"
    return ApiResponse(
        message=f"University {state} successfully",
        data=UniversityInfo.model_validate(university),
    )


@router.delete(
    "/universities/{university_id}",
    response_model=ApiResponse[dict[str, Any]],
    summary="Delete a university",
    description="Refused while university admins still reference the university.",
)
async def delete_university(
    request: Request,
    university_id: str,
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    principal: Principal = Depends(require_platform_admin),
):
    result = await university_service.delete_university(
        db, storage, university_id, principal, meta=RequestMeta.from_request(request)
    )
    return ApiResponse(message="University deleted successfully", data=result)


# ============== University Admins ==============


@router.post(
    "/university-admins",
    response_model=ApiResponse[CreatedAccountResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create a university admin",
)
async def create_university_admin(
    request: Request,
    body: UniversityAdminCreate,
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
    principal: Principal = Depends(require_platform_admin),
):
    created = await account_service.create_delegated_account(
        db,
        identity,
        AccountRole.UNIVERSITY_ADMIN,
        body.email,
        body.password,
        body.model_dump(exclude={"email", "password"}, exclude_none=True),
        created_by=principal.account_id,
        meta=RequestMeta.from_request(request),
    )
    return ApiResponse(
        message="University admin created successfully",
        data=_created_response(created),
    )


@router.get(
    "/university-admins",
    response_model=ApiResponse[Page[UniversityAdminInfo]],
    summary="List university admins",
)
async def list_university_admins(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    university_id: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    _: Principal = Depends(require_platform_admin),
):
    if university_id:
        ensure_uuid(university_id, "INVALID_UNIVERSITY_ID", "university id")
    rows, total = await account_service.list_university_admins(
        db,
        page=page,
        limit=limit,
        university_id=university_id,
        is_active=is_active,
        search=search,
    )
    return ApiResponse(
        data=Page(
            items=[_admin_info(profile, university) for profile, university in rows],
            pagination=PageInfo.build(page, limit, total),
        )
    )


@router.get(
    "/university-admins/{admin_id}",
    response_model=ApiResponse[UniversityAdminInfo],
    summary="Get a university admin",
)
async def get_university_admin(
    admin_id: str,
    db: AsyncSession = Depends(get_db),
    _: Principal = Depends(require_platform_admin),
):
    profile, university = await account_service.get_university_admin(db, admin_id)
    return ApiResponse(data=_admin_info(profile, university))


@router.put(
    "/university-admins/{admin_id}",
    response_model=ApiResponse[UniversityAdminInfo],
    summary="Update a university admin",
)
async def update_university_admin(
    request: Request,
    admin_id: str,
    body: UniversityAdminUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_platform_admin),
):
    await account_service.update_university_admin(
        db,
        admin_id,
        body.model_dump(exclude_unset=True, exclude_none=True),
        principal,
        meta=RequestMeta.from_request(request),
    )
    profile, university = await account_service.get_university_admin(db, admin_id)
    return ApiResponse(
        message="University admin updated successfully",
        data=_admin_info(profile, university),
    )


@router.delete(
    "/university-admins/{admin_id}",
    response_model=ApiResponse[dict[str, Any]],
    summary="Delete a university admin",
)
async def delete_university_admin(
    request: Request,
    admin_id: str,
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
    principal: Principal = Depends(require_platform_admin),
):
    result = await account_service.delete_university_admin(
        db, identity, admin_id, principal, meta=RequestMeta.from_request(request)
    )
    message = "University admin deleted successfully"
    if result["warnings"]:
        message = "University admin deleted with warnings"
    return ApiResponse(message=message, data=result)


# ============== Accounts ==============


@router.post(
    "/accounts",
    response_model=ApiResponse[CreatedAccountResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create an administrator account",
    description="Creates the identity, the account row and the role profile; partial failures are undone.",
)
async def create_account(
    request: Request,
    body: AccountCreate,
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
    principal: Principal = Depends(require_platform_admin),
):
    created = await account_service.create_delegated_account(
        db,
        identity,
        AccountRole(body.role),
        body.email,
        body.password,
        body.model_dump(exclude={"role", "email", "password"}, exclude_none=True),
        created_by=principal.account_id,
        meta=RequestMeta.from_request(request),
    )
    return ApiResponse(message="Account created successfully", data=_created_response(created))


@router.get(
    "/accounts",
    response_model=ApiResponse[Page[AccountInfo]],
    summary="List accounts",
    description="University admins are excluded; list them through /university-admins.",
)
async def list_accounts(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    role: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    _: Principal = Depends(require_platform_admin),
):
    accounts, total = await account_service.list_accounts(
        db, page=page, limit=limit, role=role, search=search
    )
    return ApiResponse(
        data=Page(
            items=[AccountInfo.model_validate(a) for a in accounts],
            pagination=PageInfo.build(page, limit, total),
        )
    )


@router.get(
    "/accounts/{account_id}",
    response_model=ApiResponse[AccountDetail],
    summary="Get an account with its profile",
)
async def get_account(
    account_id: str,
    db: AsyncSession = Depends(get_db),
    _: Principal = Depends(require_platform_admin),
):
    ensure_uuid(account_id, "INVALID_USER_ID", "user id")
    account = await account_service.get_account(db, account_id)
    if account is None:
        raise NotFoundError("User not found", "USER_NOT_FOUND")
    profile = await account_service.get_profile(db, account)
    return ApiResponse(
        data=AccountDetail(
            account=AccountInfo.model_validate(account),
            profile=row_to_dict(profile),
            display_name=display_name(account, profile),
        )
    )


@router.put(
    "/accounts/{account_id}",
    response_model=ApiResponse[AccountDetail],
    summary="Update an account's profile",
    description="Applies the profile fields used by the account's role. University admins are rejected here.",
)
async def update_account(
    request: Request,
    account_id: str,
    body: ProfileUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_platform_admin),
):
    account, profile = await account_service.update_account(
        db,
        account_id,
        body.model_dump(exclude_unset=True),
        principal,
        meta=RequestMeta.from_request(request),
    )
    return ApiResponse(
        message="User updated successfully",
        data=AccountDetail(
            account=AccountInfo.model_validate(account),
            profile=row_to_dict(profile),
            display_name=display_name(account, profile),
        ),
    )


@router.delete(
    "/accounts/{account_id}",
    response_model=ApiResponse[dict[str, Any]],
    summary="Delete an account",
    description="Removes the identity, profile, audit rows and account. University admins are rejected here.",
)
async def delete_account(
    request: Request,
    account_id: str,
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
    principal: Principal = Depends(require_platform_admin),
):
    result = await account_service.delete_account(
        db, identity, account_id, principal, meta=RequestMeta.from_request(request)
    )
    message = "User deleted successfully"
    if result["warnings"]:
        message = "User deleted with warnings"
    return ApiResponse(message=message, data=result)
