"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token sources are checked in priority order:
  1. Authorization: Bearer <token> header -- API clients and the SPA.
  2. JWT cookie ("access_token") -- set on login/registration.

Whichever is found goes through AuthService.verify(), the single gate.
There is no module-level "current user" state: each request resolves its own
SessionUser and hands it to the route by dependency injection.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_role() / require_admin() add an HTTP 403 role check on top.

Layer rule: may import from fastapi (Depends/HTTPException/Request) because
this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import InvalidOrExpiredToken
from auth.models import SessionUser
from auth.roles import Role
from auth.service import AuthService


def get_bearer_token(request: Request) -> str | None:
    """Return the presented token from the Authorization header or cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get("access_token") or None


def try_get_current_user(request: Request) -> SessionUser | None:
    """Authenticate the request. Returns None on any failure; never raises."""
    token = get_bearer_token(request)
    if not token:
        return None
    service: AuthService = request.app.state.auth_service
    try:
        return service.verify(token)
    except InvalidOrExpiredToken:
        return None


def get_current_user(request: Request) -> SessionUser:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: SessionUser = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Invalid or expired token."},
        )
    return user


def require_role(*roles: Role):
    """Build a dependency that admits only users holding one of `roles`.

    Raises HTTP 401 if unauthenticated, HTTP 403 if the role does not match.
    """
    allowed = {r.value for r in roles}

    def dependency(request: Request) -> SessionUser:
        user = get_current_user(request)
        if user.role not in allowed:
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Access denied for this role."},
            )
        return user

    return dependency


require_admin = require_role(Role.admin)
