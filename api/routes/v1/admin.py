"""
api/routes/v1/admin.py -- User administration endpoints (admin only).

Routes:
  GET    /api/v1/admin/users              -- paginated, searchable user list
  GET    /api/v1/admin/users/export       -- every account as JSON or CSV
  PATCH  /api/v1/admin/users/{id}         -- change role and/or active flag
  DELETE /api/v1/admin/users/{id}         -- delete one non-admin account
  POST   /api/v1/admin/users/bulk-delete  -- delete several non-admin accounts

Admin accounts are never deleted here; demote them first.

[M4] PATCH refuses to lock the platform out of administration:
  - an admin cannot deactivate or demote themselves;
  - the last active admin cannot be deactivated or demoted.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from api.export import users_to_csv
from api.models import (
    AdminUserPatch,
    BulkDeleteRequest,
    BulkDeleteResponse,
    MessageResponse,
    Pagination,
    UserListResponse,
    UserProfileResponse,
)
from auth.dependencies import require_admin
from auth.models import SessionUser
from auth.roles import Role
from auth.service import MAX_PAGE_SIZE, AuthService

router = APIRouter()


@router.get("/admin/users", response_model=UserListResponse)
def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=MAX_PAGE_SIZE),
    search: str = Query(default="", max_length=100),
    current_user: SessionUser = Depends(require_admin),
) -> UserListResponse:
    service: AuthService = request.app.state.auth_service
    result = service.list_users(page=page, limit=limit, search=search)
    return UserListResponse(
        users=[UserProfileResponse.model_validate(u) for u in result.users],
        pagination=Pagination(
            page=result.page,
            limit=result.limit,
            total=result.total,
            total_pages=result.total_pages,
        ),
    )


@router.patch("/admin/users/{user_id}", response_model=UserProfileResponse)
def update_user(
    request: Request,
    user_id: int,
    body: AdminUserPatch,
    current_user: SessionUser = Depends(require_admin),
) -> UserProfileResponse:
    """Update a user's role or active status. Deactivation revokes their sessions."""
    service: AuthService = request.app.state.auth_service
    target = service.get_profile(user_id)

    removes_admin = target.role == Role.admin.value and (
        body.is_active is False or (body.role is not None and body.role != Role.admin)
    )
    if removes_admin:
        # [M4] Block self-lockout
        if target.id == current_user.id:
            raise HTTPException(
                status_code=400,
                detail={"code": "self_lockout", "message": "You cannot deactivate or demote your own account."},
            )
        # [M4] Block removing the last admin
        if target.is_active and service.store.count_active_admins() <= 1:
            raise HTTPException(
                status_code=400,
                detail={"code": "last_admin", "message": "Cannot deactivate or demote the last active admin."},
            )

    profile = service.admin_update_user(user_id, role=body.role, is_active=body.is_active)
    return UserProfileResponse.model_validate(profile)


@router.get("/admin/users/export", response_model=list[UserProfileResponse])
def export_users(
    request: Request,
    fmt: str = Query(default="json", alias="format", pattern="^(json|csv)$"),
    current_user: SessionUser = Depends(require_admin),
):
    """Export every account as JSON (default) or as a CSV attachment."""
    service: AuthService = request.app.state.auth_service
    users = service.export_users()
    if fmt == "csv":
        return Response(
            content=users_to_csv(users),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="users.csv"', "Cache-Control": "no-store"},
        )
    return [UserProfileResponse.model_validate(u) for u in users]


@router.post("/admin/users/bulk-delete", response_model=BulkDeleteResponse)
def bulk_delete_users(
    request: Request,
    body: BulkDeleteRequest,
    current_user: SessionUser = Depends(require_admin),
) -> BulkDeleteResponse:
    """Delete several non-admin accounts at once.

    All or nothing: one admin id in the list rejects the whole request with 403.
    Ids that do not exist are skipped.
    """
    service: AuthService = request.app.state.auth_service
    removed = service.delete_users(body.user_ids)
    return BulkDeleteResponse(message=f"{removed} user(s) deleted successfully.", deleted_count=removed)


@router.delete("/admin/users/{user_id}", response_model=MessageResponse)
def delete_user(
    request: Request,
    user_id: int,
    current_user: SessionUser = Depends(require_admin),
) -> MessageResponse:
    """Delete one non-admin account and revoke its sessions."""
    service: AuthService = request.app.state.auth_service
    service.delete_user(user_id)
    return MessageResponse(message="User deleted successfully")
