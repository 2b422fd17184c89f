"""
api/routes/v1/auth.py -- Account and session REST endpoints.

Routes:
  POST  /api/v1/auth/register         -- create account + first session; 201
  POST  /api/v1/auth/login            -- password login; sets JWT cookie
  POST  /api/v1/auth/admin-login      -- password login restricted to admins
  GET   /api/v1/auth/verify-email/{token} -- confirm the registered email address
  POST  /api/v1/auth/logout           -- revoke presented token; clears cookie
  GET   /api/v1/auth/me               -- verified identity (requires auth)
  GET   /api/v1/auth/profile          -- full profile (requires auth)
  PATCH /api/v1/auth/profile          -- allow-listed profile update (requires auth)
  POST  /api/v1/auth/change-password  -- new password, revokes all sessions (requires auth)

Security:
  [H2] Login endpoints are rate-limited per IP (Settings.login_rate_limit).
  [C1] AuthService.login() provides timing equalization -- never inline
       get_by_email() + verify_password() here.
  [M5] Cache-Control: no-store on every response that carries a token.

Service errors (AuthError subclasses) are not caught here; api/main.py turns
them into the standard error envelope with the error's own status code.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AuthResponse,
    ChangePasswordRequest,
    LoginRequest,
    MeResponse,
    MessageResponse,
    ProfileUpdate,
    RegisterRequest,
    UserProfileResponse,
)
from auth.dependencies import get_bearer_token, get_current_user
from auth.models import AuthResult, SessionUser
from auth.service import AuthService
from auth.tokens import set_auth_cookie
from core.config import get_settings


def _login_limit() -> str:
    """Per-IP limit for the password endpoints, read on every request."""
    return get_settings().login_rate_limit


# Auth policy:
# - POST  /auth/register, /auth/login, /auth/admin-login: public
# - GET   /auth/verify-email/{token}: public -- the token is the credential
# - POST  /auth/logout: public -- revokes whatever token is presented, if any
# - GET   /auth/me, GET/PATCH /auth/profile, POST /auth/change-password:
#         requires auth (get_current_user)
router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _auth_response(result: AuthResult, message: str, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(
            message=message,
            token=result.token,
            expires_at=result.expires_at,
            user=UserProfileResponse.model_validate(result.user),
        ).model_dump(),
    )
    set_auth_cookie(resp, result.token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a student, instructor or parent account and log it in.

    Admin accounts cannot be self-registered; use `python main.py create-admin`.
    """
    profile = body.model_dump(mode="json", exclude={"name", "email", "password", "role"})
    result = _service(request).register(body.name, body.email, body.password, body.role.value, **profile)
    return _auth_response(result, "User registered successfully", status_code=201)


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(_login_limit)  # [H2]
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set JWT cookie.

    Unknown email and wrong password return the same 401 body.
    """
    result = _service(request).login(body.email, body.password)
    return _auth_response(result, "Login successful")


@router.post("/auth/admin-login", response_model=AuthResponse)
@limiter.limit(_login_limit)  # [H2]
def admin_login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate an administrator. Non-admin accounts get the generic 401."""
    result = _service(request).admin_login(body.email, body.password)
    return _auth_response(result, "Admin login successful")


@router.get("/auth/verify-email/{token}", response_model=MessageResponse)
def verify_email(request: Request, token: str) -> MessageResponse:
    """Confirm an email address with the token issued at registration."""
    _service(request).verify_email(token)
    return MessageResponse(message="Email verified successfully")


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Revoke the presented token and clear the cookie.

    Idempotent: an unknown, already-revoked, or missing token still gets 200.
    """
    token = get_bearer_token(request)
    if token:
        _service(request).logout(token)
    resp = JSONResponse(content=MessageResponse(message="Logged out successfully").model_dump())
    resp.delete_cookie("access_token")
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
async def me(current_user: SessionUser = Depends(get_current_user)) -> MeResponse:
    """Return the identity the presented token resolves to."""
    return MeResponse.from_session_user(current_user)


@router.get("/auth/profile", response_model=UserProfileResponse)
def get_profile(request: Request, current_user: SessionUser = Depends(get_current_user)) -> UserProfileResponse:
    profile = _service(request).get_profile(current_user.id)
    return UserProfileResponse.model_validate(profile)


@router.patch("/auth/profile", response_model=UserProfileResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    current_user: SessionUser = Depends(get_current_user),
) -> UserProfileResponse:
    """Update the caller's own profile. Only fields present in the body change."""
    fields = body.model_dump(mode="json", exclude_unset=True)
    profile = _service(request).update_profile(current_user.id, fields)
    return UserProfileResponse.model_validate(profile)


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: SessionUser = Depends(get_current_user),
) -> JSONResponse:
    """Set a new password. Every session, including this one, is revoked."""
    _service(request).change_password(current_user.id, body.old_password, body.new_password)
    resp = JSONResponse(
        content=MessageResponse(message="Password changed successfully. Please log in again.").model_dump()
    )
    resp.delete_cookie("access_token")
    return resp
