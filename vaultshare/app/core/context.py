"""
Request-scoped identity passed explicitly from the API layer to services.

Services never read identity from mutable request or model state; the
authentication dependency builds one ``RequestContext`` per request.
"""
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Tuple

from vaultshare.app.models.enums import Role


@dataclass(frozen=True)
class ClientInfo:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class RequestContext:
    account_id: int
    username: str
    role: Role
    client: ClientInfo = field(default_factory=ClientInfo)
    # (resource, action) pairs granted by the ACL table for this role
    permissions: FrozenSet[Tuple[str, str]] = frozenset()

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def can(self, resource: str, action: str) -> bool:
        return (resource, action) in self.permissions
