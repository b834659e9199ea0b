from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func

from vaultshare.app.db.base import Base
from vaultshare.app.models.enums import AuditAction, AuditStatus, TargetType, enum_column


class AuditEvent(Base):
    """Append-only security event. Rows are only ever inserted or evicted."""

    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, index=True)

    # NULL actor_id means an anonymous request (e.g. login for unknown email)
    actor_id = Column(Integer, nullable=True, index=True)
    actor_username = Column(String(255), nullable=False, default="anonymous")
    actor_role = Column(String(16), nullable=False, default="anonymous")

    action = Column(enum_column(AuditAction), nullable=False, index=True)
    status = Column(enum_column(AuditStatus, length=16), nullable=False, index=True)
    target = Column(String(255), nullable=True)
    target_type = Column(enum_column(TargetType, length=16), nullable=True)
    details = Column(JSON, nullable=False, default=dict)

    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)

    # serialized size, used for byte-bounded retention
    size_bytes = Column(Integer, nullable=False, default=0)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)
