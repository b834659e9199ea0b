from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from vaultshare.app.models.enums import AuditAction, AuditStatus, TargetType
from vaultshare.app.schemas.common import Pagination


class AuditEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    actor_id: Optional[int] = None
    actor_username: str
    actor_role: str
    action: AuditAction
    status: AuditStatus
    target: Optional[str] = None
    target_type: Optional[TargetType] = None
    details: Dict[str, Any] = {}
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: Optional[datetime] = None


class AuditLogPage(BaseModel):
    logs: List[AuditEventResponse]
    pagination: Pagination
