"""Pydantic schemas for request/response validation."""

import math
from datetime import datetime
from typing import Any, Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.db.models import AccountRole

T = TypeVar("T")


# ============== Envelope ==============


class ApiResponse(BaseModel, Generic[T]):
    """Uniform response envelope."""

    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None
    error: Optional[str] = None


class PageInfo(BaseModel):
    """Pagination block for list responses."""

    page: int
    limit: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PageInfo":
        return cls(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit) if limit else 0)


class Page(BaseModel, Generic[T]):
    """A page of items."""

    items: list[T]
    pagination: PageInfo


def row_to_dict(obj: Any, exclude: tuple[str, ...] = ()) -> dict[str, Any]:
    """Column values of an ORM row."""
    if obj is None:
        return {}
    return {c.name: getattr(obj, c.name) for c in obj.__table__.columns if c.name not in exclude}


# ============== Session Schemas ==============


class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    """Self-registration for students and employers."""

    email: str
    password: str
    role: Literal["student", "employer"]
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    date_of_birth: Optional[str] = None
    company_name: Optional[str] = None
    contact_name: Optional[str] = None
    industry: Optional[str] = None
    website: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: str


class ResetPasswordRequest(BaseModel):
    access_token: str = Field(..., description="Recovery token from the reset email link")
    password: str


class AccountInfo(BaseModel):
    """Account without credentials."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    role: AccountRole
    email_verified: bool
    auth_managed: bool
    created_at: Optional[datetime] = None


class SessionResponse(BaseModel):
    token: str
    user: AccountInfo
    profile: dict[str, Any]
    redirect_path: str


class TokenStatus(BaseModel):
    """Result of checking a session token."""

    valid: bool = True
    user: AccountInfo
    profile: dict[str, Any]
    refreshed_token: Optional[str] = None


# ============== University Schemas ==============


class UniversityCreate(BaseModel):
    """Required fields are checked by the service so errors carry a stable code."""

    name: Optional[str] = None
    email: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    short_name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    registration_number: Optional[str] = None
    accreditation_body: Optional[str] = None


class UniversityUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    short_name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    registration_number: Optional[str] = None
    accreditation_body: Optional[str] = None
    is_verified: Optional[bool] = None


class UniversityStatusUpdate(BaseModel):
    is_active: Any = None


class UniversityInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    short_name: Optional[str] = None
    email: str
    country: str
    city: str
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    registration_number: Optional[str] = None
    accreditation_body: Optional[str] = None
    is_active: bool
    is_verified: bool
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class UniversityOption(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    short_name: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None


# ============== Admin Account Schemas ==============


class AccountCreate(BaseModel):
    """Delegated creation of an administrator account."""

    role: Literal["platform_admin", "university_admin"]
    email: str
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    university_id: Optional[str] = None
    title: Optional[str] = None
    phone: Optional[str] = None
    permissions: Optional[list[str]] = None


class UniversityAdminCreate(BaseModel):
    email: str
    password: str
    university_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    title: Optional[str] = None
    phone: Optional[str] = None
    permissions: Optional[list[str]] = None


class UniversityAdminUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    title: Optional[str] = None
    phone: Optional[str] = None
    permissions: Optional[list[str]] = None
    is_active: Optional[bool] = None


class UniversityAdminInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    university_id: str
    university_name: Optional[str] = None
    email: str
    first_name: str
    last_name: str
    title: Optional[str] = None
    phone: Optional[str] = None
    permissions: list[str] = []
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None


class CreatedAccountResponse(BaseModel):
    account: AccountInfo
    profile: dict[str, Any]
    provider_identity_id: str
    university: Optional[UniversityInfo] = None


class AccountDetail(BaseModel):
    account: AccountInfo
    profile: dict[str, Any]
    display_name: str


class ProfileUpdate(BaseModel):
    """Profile fields; only those used by the account's role are applied."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    date_of_birth: Optional[str] = None
    company_name: Optional[str] = None
    contact_name: Optional[str] = None
    industry: Optional[str] = None
    website: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    old_password: Optional[str] = None
    new_password: Optional[str] = None


# ============== Dashboard Schemas ==============


class DashboardStats(BaseModel):
    total_users: int
    total_students: int
    total_employers: int
    total_universities: int
    active_universities: int


class ActivityEntry(BaseModel):
    action: str
    resource_type: str
    created_at: Optional[datetime] = None
    admin_name: Optional[str] = None


class RecentUniversity(BaseModel):
    name: str
    country: str
    city: str
    created_at: Optional[datetime] = None


class DashboardData(BaseModel):
    stats: DashboardStats
    recent_activity: list[ActivityEntry]
    recent_universities: list[RecentUniversity]


# ============== Program Schemas ==============


class ProgramCreate(BaseModel):
    program_name: Optional[str] = None
    faculty: Optional[str] = None
    duration: Optional[str] = None
    is_active: bool = True


class ProgramUpdate(BaseModel):
    program_name: Optional[str] = None
    faculty: Optional[str] = None
    duration: Optional[str] = None
    is_active: Optional[bool] = None


class ProgramBulkCreate(BaseModel):
    programs: list[ProgramCreate] = Field(..., max_length=500)


class ProgramInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    university_id: str
    program_name: str
    faculty: str
    duration: str
    is_active: bool
    created_at: Optional[datetime] = None


class ProgramOption(BaseModel):
    id: str
    program: str


class PublicProgram(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    program_name: str
    duration: Optional[str] = None


class UniversityProfileUpdate(BaseModel):
    name: Optional[str] = None
    short_name: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    registration_number: Optional[str] = None
    accreditation_body: Optional[str] = None


class AcademicSettings(BaseModel):
    programs: list[ProgramCreate]


class SettingsUpdate(BaseModel):
    university: Optional[UniversityProfileUpdate] = None
    academic: Optional[AcademicSettings] = None


class SettingsResponse(BaseModel):
    university: UniversityInfo
    programs: list[ProgramInfo]


# ============== Graduate Record Schemas ==============


class GraduateRecordInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    university_id: str
    program_id: str
    program_name: Optional[str] = None
    student_full_name: str
    registration_number: str
    graduation_year: int
    certificate_url: Optional[str] = None
    transcript_url: Optional[str] = None
    is_verified: bool
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


# ============== Verification Schemas (camelCase on the wire) ==============


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VerifyRequest(CamelModel):
    registration_number: Optional[str] = None
    student_name: Optional[str] = None
    university_id: Optional[str] = None
    program_id: Optional[str] = None
    graduation_year: Optional[int] = None
    verification_type: Literal["certificate", "transcript", "both"] = "both"


class UniversityRef(CamelModel):
    id: str
    name: str
    short_name: Optional[str] = None


class ProgramRef(CamelModel):
    id: str
    name: str


class VerifiedStudent(CamelModel):
    id: str
    name: str
    registration_number: str
    university: UniversityRef
    program: ProgramRef
    graduation_year: int
    is_verified: bool
    status: Literal["Verified", "Pending Verification"]


class FileAvailability(CamelModel):
    available: bool
    url: Optional[str] = None
    verified: Optional[bool] = None
    upload_date: Optional[datetime] = None
    message: Optional[str] = None


class VerificationResult(CamelModel):
    found: bool
    student: Optional[VerifiedStudent] = None
    certificate: Optional[FileAvailability] = None
    transcript: Optional[FileAvailability] = None


class PreviewRequest(CamelModel):
    file_url: Optional[str] = None


class PreviewResponse(CamelModel):
    signed_url: str
    is_public: bool
    fallback: bool = False


# ============== Health & Misc Schemas ==============


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    redis: str
    storage: str
