"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond projections).
Dataclasses own domain shape; the store and service do the work.

Three views of a user exist on purpose:
  User         -- the full row, including hashed_password. Never leaves auth/.
  UserProfile  -- sanitized projection returned by register/login/profile ops.
  SessionUser  -- minimal identity returned by verify(): id, name, email, role.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class User:
    """Represents an account on the platform.

    email is the login key and is stored normalized (lower-cased, stripped).
    hashed_password is a bcrypt hash; the plaintext is never persisted.
    """

    name: str
    email: str
    role: str  # "student", "instructor", "admin", "parent"
    id: int | None = None
    hashed_password: str | None = None
    bio: str | None = None
    phone: str | None = None
    date_of_birth: str | None = None  # YYYY-MM-DD
    gender: str | None = None
    country: str | None = None
    profile_image: str | None = None  # storage reference, not the image bytes
    is_active: bool = True
    email_verified: bool = False
    email_verification_token: str | None = None  # pending; cleared once verified
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None

    def to_profile(self) -> UserProfile:
        return UserProfile(
            id=self.id,
            name=self.name,
            email=self.email,
            role=self.role,
            bio=self.bio,
            phone=self.phone,
            date_of_birth=self.date_of_birth,
            gender=self.gender,
            country=self.country,
            profile_image=self.profile_image,
            is_active=self.is_active,
            email_verified=self.email_verified,
            created_at=self.created_at,
            last_login=self.last_login,
        )


@dataclass
class UserProfile:
    """A User without its password hash or pending verification token."""

    id: int
    name: str
    email: str
    role: str
    bio: str | None = None
    phone: str | None = None
    date_of_birth: str | None = None
    gender: str | None = None
    country: str | None = None
    profile_image: str | None = None
    is_active: bool = True
    email_verified: bool = False
    created_at: str | None = None
    last_login: str | None = None


@dataclass
class SessionUser:
    """The identity a verified bearer token resolves to.

    Intentionally omits profile fields -- protected routes that need them call
    AuthService.get_profile().
    """

    id: int
    name: str
    email: str
    role: str


@dataclass
class Session:
    """One issued bearer token. Deleting the row revokes the token."""

    user_id: int
    token: str
    expires_at: str  # UTC ISO 8601
    id: int | None = None
    created_at: str | None = None


@dataclass
class AuthResult:
    """Returned by register(), login() and admin_login().

    verification_token is set only by register(). It is handed to the mail
    collaborator and never returned over HTTP.
    """

    token: str
    user: UserProfile
    expires_at: str
    verification_token: str | None = None


@dataclass
class UserPage:
    """One page of the admin user listing."""

    users: list[UserProfile] = field(default_factory=list)
    page: int = 1
    limit: int = 20
    total: int = 0

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0
