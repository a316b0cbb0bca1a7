"""
API request and response models for the Meetup REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
orgs/models.py, which own the internal domain representation. Route handlers
map between the two.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field

from auth.models import User
from orgs.models import Organization, Role

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"
DATE_OF_BIRTH_FORMAT = "%m/%d/%Y"


def _check_date_of_birth(value: str) -> str:
    if value == "":
        return value
    try:
        datetime.strptime(value, DATE_OF_BIRTH_FORMAT)
    except ValueError as exc:
        raise ValueError("date_of_birth must be mm/dd/yyyy") from exc
    return value


# Empty string means "not provided".
DateOfBirth = Annotated[str, Field(max_length=10), AfterValidator(_check_date_of_birth)]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: dict[str, str] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class ComponentHealth(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str  # "ok" | "error" | "disabled"
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health.

    status is "ok" only when every enabled component is healthy.
    """

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    environment: str
    components: dict[str, ComponentHealth]


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    username: str = Field(min_length=3, max_length=100, pattern=USERNAME_PATTERN)
    password: str = Field(min_length=8, max_length=255)
    date_of_birth: DateOfBirth = ""
    profile_pic: str = Field(default="", max_length=2048)


class ActivateRequest(BaseModel):
    token: str = Field(min_length=1, max_length=1024)


class EmailRequest(BaseModel):
    """Request body for resend-verification-email and password-reset-request."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    password: str = Field(min_length=1, max_length=255)


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    token_type: str = "bearer"
    expires_in: int


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=1024)
    password: str = Field(min_length=8, max_length=255)


# ---------------------------------------------------------------------------
# Users and profiles
# ---------------------------------------------------------------------------


class ProfileResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    profile_pic: str
    date_of_birth: str


class UserResponse(BaseModel):
    """Public view of a user. Never includes the password hash or tokens."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    role: str
    is_active: bool
    activated_at: Optional[str]
    created_at: Optional[str]
    profile: Optional[ProfileResponse] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        profile = None
        if user.profile is not None:
            profile = ProfileResponse(
                id=user.profile.id,
                username=user.profile.username,
                profile_pic=user.profile.profile_pic,
                date_of_birth=user.profile.date_of_birth,
            )
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            is_active=user.is_active,
            activated_at=user.activated_at,
            created_at=user.created_at,
            profile=profile,
        )


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/v1/profiles/me. Omitted fields are unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[EmailStr] = None
    username: Optional[str] = Field(default=None, min_length=3, max_length=100, pattern=USERNAME_PATTERN)
    date_of_birth: Optional[DateOfBirth] = None
    profile_pic: Optional[str] = Field(default=None, max_length=2048)


# ---------------------------------------------------------------------------
# Organizations
# ---------------------------------------------------------------------------


class OrganizationCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=2000)
    profile_pic: str = Field(default="", max_length=2048)


class OrganizationUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    profile_pic: Optional[str] = Field(default=None, max_length=2048)


class OrganizationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: str
    profile_pic: str
    is_active: bool
    version: int
    created_at: Optional[str]
    updated_at: Optional[str]

    @classmethod
    def from_org(cls, org: Organization) -> "OrganizationResponse":
        return cls(
            id=org.id,
            name=org.name,
            description=org.description,
            profile_pic=org.profile_pic,
            is_active=org.is_active,
            version=org.version,
            created_at=org.created_at,
            updated_at=org.updated_at,
        )


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class RoleCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=2000)
    permissions: list[str] = Field(min_length=1, max_length=64)


class RoleUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    permissions: Optional[list[str]] = Field(default=None, min_length=1, max_length=64)


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    organization_id: int
    name: str
    description: str
    permissions: list[str]
    version: int
    created_at: Optional[str]
    updated_at: Optional[str]

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(
            id=role.id,
            organization_id=role.organization_id,
            name=role.name,
            description=role.description,
            permissions=list(role.permissions),
            version=role.version,
            created_at=role.created_at,
            updated_at=role.updated_at,
        )


class PermissionCatalogResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    permissions: dict[str, list[str]]


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


class MemberInvite(BaseModel):
    """Request body for POST /api/v1/organizations/{org_id}/members."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    role_id: int = Field(gt=0)
