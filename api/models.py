"""
API request and response models for CourseHub REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Input fields accept both snake_case and the camelCase names the browser
client sends (dateOfBirth, profileImage).
"""

from datetime import date
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.roles import Role, role_badge

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
MAX_BULK_DELETE = 100

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RegisterRoleEnum(str, Enum):
    """Roles selectable on the public registration form (no admin)."""

    student = "student"
    instructor = "instructor"
    parent = "parent"


class GenderEnum(str, Enum):
    male = "male"
    female = "female"
    other = "other"
    prefer_not_to_say = "prefer_not_to_say"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    name: str = Field(min_length=2, max_length=100)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=6, max_length=255)
    role: RegisterRoleEnum = RegisterRoleEnum.student
    bio: Optional[str] = Field(default=None, max_length=500)
    phone: Optional[str] = Field(default=None, max_length=30)
    date_of_birth: Optional[date] = Field(default=None, alias="dateOfBirth")
    gender: Optional[GenderEnum] = None
    country: Optional[str] = Field(default=None, min_length=2, max_length=100)
    profile_image: Optional[str] = Field(default=None, max_length=500, alias="profileImage")


class LoginRequest(BaseModel):
    """Request body for POST /auth/login and /auth/admin-login.

    The email is not pattern-checked here: a malformed address simply matches
    no account and gets the same answer as any other unknown email.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class ProfileUpdate(BaseModel):
    """Request body for PATCH /api/v1/auth/profile.

    Unknown keys (role, email, is_active, ...) are ignored by pydantic; the
    service applies its own allow-list on top.
    """

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    bio: Optional[str] = Field(default=None, max_length=500)
    phone: Optional[str] = Field(default=None, max_length=30)
    date_of_birth: Optional[date] = Field(default=None, alias="dateOfBirth")
    gender: Optional[GenderEnum] = None
    country: Optional[str] = Field(default=None, min_length=2, max_length=100)
    profile_image: Optional[str] = Field(default=None, max_length=500, alias="profileImage")


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/change-password."""

    model_config = ConfigDict(populate_by_name=True)

    old_password: str = Field(min_length=1, max_length=255, alias="oldPassword")
    new_password: str = Field(min_length=6, max_length=255, alias="newPassword")


class AdminUserPatch(BaseModel):
    """Request body for PATCH /api/v1/admin/users/{id}."""

    role: Optional[Role] = None
    is_active: Optional[bool] = None


class BulkDeleteRequest(BaseModel):
    """Request body for POST /api/v1/admin/users/bulk-delete."""

    model_config = ConfigDict(populate_by_name=True)

    user_ids: list[Annotated[int, Field(ge=1)]] = Field(min_length=1, max_length=MAX_BULK_DELETE, alias="userIds")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserProfileResponse(BaseModel):
    """Sanitized user projection. Never includes the password hash."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: str
    bio: Optional[str] = None
    phone: Optional[str] = None
    date_of_birth: Optional[str] = None
    gender: Optional[str] = None
    country: Optional[str] = None
    profile_image: Optional[str] = None
    is_active: bool = True
    email_verified: bool = False
    created_at: Optional[str] = None
    last_login: Optional[str] = None


class AuthResponse(BaseModel):
    """Response for register, login and admin-login."""

    success: bool = True
    message: str
    token: str
    token_type: str = "bearer"
    expires_at: str
    user: UserProfileResponse


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me -- the verified identity only."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    role: str
    role_label: str
    role_color: str

    @classmethod
    def from_session_user(cls, user) -> "MeResponse":
        label, color = role_badge(user.role)
        return cls(id=user.id, name=user.name, email=user.email, role=user.role, role_label=label, role_color=color)


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class BulkDeleteResponse(BaseModel):
    success: bool = True
    message: str
    deleted_count: int


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int
    limit: int
    total: int
    total_pages: int


class UserListResponse(BaseModel):
    """Response for GET /api/v1/admin/users."""

    users: list[UserProfileResponse]
    pagination: Pagination


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
