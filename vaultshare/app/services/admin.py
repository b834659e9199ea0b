"""Administrative reporting and account management."""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vaultshare.app.core.context import RequestContext
from vaultshare.app.core.exceptions import Conflict, NotFound, ValidationFailed
from vaultshare.app.core.timeutils import utcnow
from vaultshare.app.models.audit_event import AuditEvent
from vaultshare.app.models.enums import AccessLevel, AuditAction, AuditStatus, Role, TargetType
from vaultshare.app.models.stored_file import StoredFile
from vaultshare.app.models.user import User
from vaultshare.app.services.audit import AuditActor, AuditService

logger = logging.getLogger(__name__)


def security_score(total_users: int, failed_logins: int, access_denials: int) -> int:
    """
    100, minus up to 30 for the failed-login ratio and up to 20 for
    access denials over the last day.
    """
    score = 100.0
    if total_users:
        score -= min(failed_logins / total_users * 100, 30)
    score -= min(access_denials * 2, 20)
    return max(0, round(score))


class AdminService:
    def __init__(self, db: AsyncSession, audit: AuditService):
        self.db = db
        self.audit = audit

    async def _count(self, model_id, *conditions) -> int:
        return (await self.db.scalar(select(func.count(model_id)).where(*conditions))) or 0

    async def system_stats(self) -> Dict:
        since = utcnow() - timedelta(hours=24)

        users_by_role = {role.value: 0 for role in Role}
        rows = await self.db.execute(select(User.role, func.count(User.id)).group_by(User.role))
        for role, count in rows:
            users_by_role[role.value] = count
        total_users = sum(users_by_role.values())
        mfa_verified = await self._count(User.id, User.mfa_verified.is_(True))

        live = StoredFile.is_deleted.is_(False)
        files_by_level = {level.value: 0 for level in AccessLevel}
        rows = await self.db.execute(
            select(StoredFile.access_level, func.count(StoredFile.id))
            .where(live)
            .group_by(StoredFile.access_level)
        )
        for level, count in rows:
            files_by_level[level.value] = count
        total_size = await self.db.scalar(select(func.coalesce(func.sum(StoredFile.size), 0)).where(live))
        total_downloads = await self.db.scalar(
            select(func.coalesce(func.sum(StoredFile.download_count), 0)).where(live)
        )

        recent = AuditEvent.timestamp >= since
        login_attempts = await self._count(
            AuditEvent.id,
            recent,
            AuditEvent.action.in_([AuditAction.LOGIN_SUCCESS, AuditAction.LOGIN_FAILED]),
        )
        failed_logins = await self._count(
            AuditEvent.id, recent, AuditEvent.action == AuditAction.LOGIN_FAILED
        )
        access_denials = await self._count(
            AuditEvent.id, recent, AuditEvent.action == AuditAction.ACCESS_DENIED
        )

        activity = {}
        rows = await self.db.execute(
            select(AuditEvent.action, func.count(AuditEvent.id))
            .where(recent)
            .group_by(AuditEvent.action)
            .order_by(func.count(AuditEvent.id).desc())
        )
        for action, count in rows:
            activity[action.value] = count

        return {
            "users": {
                "total": total_users,
                "by_role": users_by_role,
                "mfa_verified": mfa_verified,
                "mfa_pending": total_users - mfa_verified,
            },
            "files": {
                "total": sum(files_by_level.values()),
                "by_access_level": files_by_level,
                "total_size": int(total_size or 0),
                "total_downloads": int(total_downloads or 0),
            },
            "security": {
                "login_attempts_24h": login_attempts,
                "failed_logins_24h": failed_logins,
                "access_denials_24h": access_denials,
                "security_score": security_score(total_users, failed_logins, access_denials),
            },
            "activity_24h": activity,
        }

    async def query_audit_log(
        self,
        action: Optional[AuditAction] = None,
        status: Optional[AuditStatus] = None,
        actor: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[AuditEvent], int]:
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        return await self.audit.query(
            action=action, status=status, actor=actor, start=start, end=end, page=page, limit=limit
        )

    async def list_users(
        self, role: Optional[Role] = None, page: int = 1, limit: int = 20
    ) -> Tuple[List[User], int]:
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        conditions = []
        if role is not None:
            conditions.append(User.role == role)

        total = await self._count(User.id, *conditions)
        result = await self.db.execute(
            select(User)
            .where(*conditions)
            .order_by(User.created_at.desc(), User.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def change_role(self, ctx: RequestContext, user_id: int, new_role: Role) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFound("User not found.")
        if user.id == ctx.account_id and new_role is not Role.ADMIN:
            raise ValidationFailed("Administrators cannot demote themselves.")

        old_role = user.role
        if old_role is new_role:
            return user

        user.role = new_role
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise Conflict("An administrator already exists.") from None
        await self.db.refresh(user)
        logger.info("User %s role changed from %s to %s", user.id, old_role.value, new_role.value)

        await self.audit.log(
            AuditAction.ROLE_CHANGED,
            AuditStatus.SUCCESS,
            actor=AuditActor.from_context(ctx),
            target=user.id,
            target_type=TargetType.USER,
            details={"old_role": old_role.value, "new_role": new_role.value},
            client=ctx.client,
        )
        return user

    async def unlock_user(self, ctx: RequestContext, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFound("User not found.")

        user.failed_login_attempts = 0
        user.lock_until = None
        self.db.add(user)
        await self.db.commit()

        await self.audit.log(
            AuditAction.ACCOUNT_LOCKED,
            AuditStatus.SUCCESS,
            actor=AuditActor.from_context(ctx),
            target=user.id,
            target_type=TargetType.USER,
            details={"action": "unlocked"},
            client=ctx.client,
        )
        return user
