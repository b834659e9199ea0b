"""
Security audit trail.

Events are written through their own session so a failing audit insert
can never roll back, or be rolled back by, the operation being audited.
Callers commit their primary write first and audit afterwards.

Retention is bounded both by event count and by total serialized size;
the oldest events are evicted first.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vaultshare.app.core.config import settings
from vaultshare.app.core.context import ClientInfo, RequestContext
from vaultshare.app.core.timeutils import utcnow
from vaultshare.app.db.session import AsyncSessionLocal
from vaultshare.app.models.audit_event import AuditEvent
from vaultshare.app.models.enums import AuditAction, AuditStatus, TargetType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditActor:
    id: Optional[int]
    username: str
    role: str

    @classmethod
    def anonymous(cls) -> "AuditActor":
        return cls(id=None, username="anonymous", role="anonymous")

    @classmethod
    def system(cls) -> "AuditActor":
        return cls(id=None, username="system", role="system")

    @classmethod
    def from_user(cls, user) -> "AuditActor":
        return cls(id=user.id, username=user.username, role=user.role.value)

    @classmethod
    def from_context(cls, ctx: RequestContext) -> "AuditActor":
        return cls(id=ctx.account_id, username=ctx.username, role=ctx.role.value)


class AuditService:
    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        max_events: Optional[int] = None,
        max_bytes: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self._max_events = max_events or settings.AUDIT_MAX_EVENTS
        self._max_bytes = max_bytes or settings.AUDIT_MAX_BYTES

    async def log(
        self,
        action: AuditAction,
        status: AuditStatus,
        actor: Optional[AuditActor] = None,
        target: Optional[Any] = None,
        target_type: Optional[TargetType] = None,
        details: Optional[Dict[str, Any]] = None,
        client: Optional[ClientInfo] = None,
    ) -> None:
        """Record one event. Never raises: failures are logged and dropped."""
        actor = actor or AuditActor.anonymous()
        client = client or ClientInfo()
        details = details or {}
        target = str(target) if target is not None else None

        try:
            event = AuditEvent(
                actor_id=actor.id,
                actor_username=actor.username,
                actor_role=actor.role,
                action=action,
                status=status,
                target=target,
                target_type=target_type,
                details=details,
                ip_address=client.ip_address,
                user_agent=(client.user_agent or "")[:512] or None,
                timestamp=utcnow(),
            )
            event.size_bytes = _serialized_size(event)

            async with self._session_factory() as session:
                session.add(event)
                await session.flush()
                await self._enforce_retention(session)
                await session.commit()
        except Exception:
            logger.exception("Failed to write audit event %s/%s", action.value, status.value)

    async def _enforce_retention(self, session: AsyncSession) -> None:
        # everything older than the newest max_events rows
        cutoff = (
            select(AuditEvent.id)
            .order_by(AuditEvent.id.desc())
            .offset(self._max_events)
            .limit(1)
            .scalar_subquery()
        )
        await session.execute(
            delete(AuditEvent)
            .where(AuditEvent.id <= cutoff)
            .execution_options(synchronize_session=False)
        )

        # running byte total from the newest row backwards
        running = select(
            AuditEvent.id.label("id"),
            func.sum(func.coalesce(AuditEvent.size_bytes, 0))
            .over(order_by=AuditEvent.id.desc())
            .label("running_bytes"),
        ).subquery()
        await session.execute(
            delete(AuditEvent)
            .where(
                AuditEvent.id.in_(
                    select(running.c.id).where(running.c.running_bytes > self._max_bytes)
                )
            )
            .execution_options(synchronize_session=False)
        )

    async def query(
        self,
        action: Optional[AuditAction] = None,
        status: Optional[AuditStatus] = None,
        actor: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[AuditEvent], int]:
        """Newest first. ``actor`` is a case-insensitive username substring."""
        conditions = []
        if action is not None:
            conditions.append(AuditEvent.action == action)
        if status is not None:
            conditions.append(AuditEvent.status == status)
        if actor:
            conditions.append(func.lower(AuditEvent.actor_username).contains(actor.lower()))
        if start is not None:
            conditions.append(AuditEvent.timestamp >= start)
        if end is not None:
            conditions.append(AuditEvent.timestamp <= end)

        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count(AuditEvent.id)).where(*conditions)
            )
            result = await session.execute(
                select(AuditEvent)
                .where(*conditions)
                .order_by(AuditEvent.timestamp.desc(), AuditEvent.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            return list(result.scalars().all()), total or 0


def _serialized_size(event: AuditEvent) -> int:
    record = {
        "actor_id": event.actor_id,
        "actor_username": event.actor_username,
        "actor_role": event.actor_role,
        "action": event.action.value,
        "status": event.status.value,
        "target": event.target,
        "target_type": event.target_type.value if event.target_type else None,
        "details": event.details,
        "ip_address": event.ip_address,
        "user_agent": event.user_agent,
    }
    return len(json.dumps(record, default=str).encode("utf-8"))
