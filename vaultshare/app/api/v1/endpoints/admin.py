# vaultshare/app/api/v1/endpoints/admin.py
"""
Administrative endpoints. Every route requires the admin role; log and
user routes also pass through the resource table.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from vaultshare.app.api import deps
from vaultshare.app.core.context import RequestContext
from vaultshare.app.core.timeutils import as_utc, utcnow
from vaultshare.app.models.enums import AuditAction, AuditStatus, Role
from vaultshare.app.schemas.admin import AuditEventResponse, AuditLogPage
from vaultshare.app.schemas.common import ApiResponse, Pagination
from vaultshare.app.schemas.user import AdminUserResponse, RoleUpdate, UserList
from vaultshare.app.security.access import Action, Resource
from vaultshare.app.services.admin import AdminService

admin_only = deps.require_role(Role.ADMIN)

router = APIRouter(dependencies=[Depends(admin_only)])


def _user_response(user) -> AdminUserResponse:
    lock_until = as_utc(user.lock_until)
    response = AdminUserResponse.model_validate(user)
    response.is_locked = lock_until is not None and lock_until > utcnow()
    return response


@router.get("/stats", response_model=ApiResponse[dict])
async def read_stats(
        ctx: RequestContext = Depends(admin_only),
        admin: AdminService = Depends(deps.get_admin_service),
):
    return ApiResponse(data=await admin.system_stats())


@router.get("/logs", response_model=ApiResponse[AuditLogPage])
async def read_audit_log(
        action: Optional[AuditAction] = Query(None),
        status: Optional[AuditStatus] = Query(None),
        actor: Optional[str] = Query(None, max_length=255),
        start_date: Optional[datetime] = Query(None),
        end_date: Optional[datetime] = Query(None),
        page: int = Query(1, ge=1),
        limit: int = Query(50, ge=1, le=100),
        ctx: RequestContext = Depends(deps.require_resource_access(Resource.SYSTEM_LOGS, Action.READ)),
        admin: AdminService = Depends(deps.get_admin_service),
):
    events, total = await admin.query_audit_log(
        action=action,
        status=status,
        actor=actor,
        start=as_utc(start_date),
        end=as_utc(end_date),
        page=page,
        limit=limit,
    )
    return ApiResponse(
        data=AuditLogPage(
            logs=[AuditEventResponse.model_validate(event) for event in events],
            pagination=Pagination.build(page, limit, total),
        )
    )


@router.get("/users", response_model=ApiResponse[UserList])
async def read_users(
        role: Optional[Role] = Query(None),
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=100),
        ctx: RequestContext = Depends(deps.require_resource_access(Resource.USER_MANAGEMENT, Action.READ)),
        admin: AdminService = Depends(deps.get_admin_service),
):
    users, total = await admin.list_users(role=role, page=page, limit=limit)
    return ApiResponse(
        data=UserList(
            users=[_user_response(user) for user in users],
            pagination=Pagination.build(page, limit, total),
        )
    )


@router.put("/users/{user_id}/role", response_model=ApiResponse[AdminUserResponse])
async def update_user_role(
        user_id: int,
        body: RoleUpdate,
        ctx: RequestContext = Depends(deps.require_resource_access(Resource.USER_MANAGEMENT, Action.WRITE)),
        admin: AdminService = Depends(deps.get_admin_service),
):
    user = await admin.change_role(ctx, user_id, body.role)
    return ApiResponse(message="User role updated.", data=_user_response(user))


@router.post("/users/{user_id}/unlock", response_model=ApiResponse[AdminUserResponse])
async def unlock_user(
        user_id: int,
        ctx: RequestContext = Depends(deps.require_resource_access(Resource.USER_MANAGEMENT, Action.WRITE)),
        admin: AdminService = Depends(deps.get_admin_service),
):
    user = await admin.unlock_user(ctx, user_id)
    return ApiResponse(message="User account unlocked.", data=_user_response(user))
