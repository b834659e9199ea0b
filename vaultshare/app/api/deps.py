# vaultshare/app/api/deps.py
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from vaultshare.app.core.config import settings
from vaultshare.app.core.context import ClientInfo, RequestContext
from vaultshare.app.core.exceptions import PermissionDenied
from vaultshare.app.db.base import get_db
from vaultshare.app.models.enums import AuditAction, AuditStatus, Role, TargetType
from vaultshare.app.security import access
from vaultshare.app.services.admin import AdminService
from vaultshare.app.services.audit import AuditActor, AuditService
from vaultshare.app.services.auth import AuthService
from vaultshare.app.services.files import FileService
from vaultshare.app.services.storage import BlobStorage

ACCESS_COOKIE = "access_token"
MFA_COOKIE = "mfa_token"

# Browsers authenticate with the httpOnly cookie; API clients may send
# the same token as a bearer header.
reusable_oauth2 = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_V1_STR}/auth/login",
    auto_error=False,
)


def get_client_info(request: Request) -> ClientInfo:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return ClientInfo(ip_address=ip_address, user_agent=request.headers.get("user-agent"))


@lru_cache()
def get_audit_service() -> AuditService:
    return AuditService()


@lru_cache()
def get_storage() -> BlobStorage:
    return BlobStorage(settings.upload_path)


def get_auth_service(
        db: AsyncSession = Depends(get_db),
        audit: AuditService = Depends(get_audit_service),
) -> AuthService:
    return AuthService(db, audit)


def get_file_service(
        db: AsyncSession = Depends(get_db),
        storage: BlobStorage = Depends(get_storage),
        audit: AuditService = Depends(get_audit_service),
) -> FileService:
    return FileService(db, storage, audit)


def get_admin_service(
        db: AsyncSession = Depends(get_db),
        audit: AuditService = Depends(get_audit_service),
) -> AdminService:
    return AdminService(db, audit)


async def get_request_context(
        request: Request,
        bearer: Optional[str] = Depends(reusable_oauth2),
        client: ClientInfo = Depends(get_client_info),
        auth: AuthService = Depends(get_auth_service),
) -> RequestContext:
    token = request.cookies.get(ACCESS_COOKIE) or bearer
    return await auth.authenticate(token, client)


async def _audit_denial(audit: AuditService, ctx: RequestContext, request: Request, details: dict) -> None:
    await audit.log(
        AuditAction.ACCESS_DENIED,
        AuditStatus.DENIED,
        actor=AuditActor.from_context(ctx),
        target=request.url.path,
        target_type=TargetType.RESOURCE,
        details=details,
        client=ctx.client,
    )


def require_role(*roles: Role):
    allowed = frozenset(roles)

    async def role_gate(
            request: Request,
            ctx: RequestContext = Depends(get_request_context),
            audit: AuditService = Depends(get_audit_service),
    ) -> RequestContext:
        if ctx.role not in allowed:
            await _audit_denial(audit, ctx, request, {
                "gate": access.GATE_ROLE,
                "required_roles": sorted(role.value for role in allowed),
            })
            raise PermissionDenied(access.GATE_ROLE)
        return ctx

    return role_gate


def require_resource_access(resource: access.Resource, action: access.Action):
    async def resource_gate(
            request: Request,
            ctx: RequestContext = Depends(get_request_context),
            audit: AuditService = Depends(get_audit_service),
    ) -> RequestContext:
        if not ctx.can(resource.value, action.value):
            await _audit_denial(audit, ctx, request, {
                "gate": access.GATE_RESOURCE,
                "resource": resource.value,
                "action": action.value,
            })
            raise PermissionDenied(access.GATE_RESOURCE)
        return ctx

    return resource_gate
