"""
Role / resource / action access table.

The table is the only source of permissions. Every (role, resource,
action) combination must be decided here; ``_check_exhaustive`` runs at
import.
"""
from enum import Enum
from typing import Dict, FrozenSet, Tuple

from vaultshare.app.models.enums import AccessLevel, Role


class Resource(str, Enum):
    SYSTEM_LOGS = "system-logs"
    ENCRYPTED_VAULT = "encrypted-vault"
    PUBLIC_REPOSITORY = "public-repository"
    USER_MANAGEMENT = "user-management"
    OWN_PROFILE = "own-profile"


class Action(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"


# Gate names reported in ACCESS_DENIED audit details
GATE_ROLE = "role"
GATE_RESOURCE = "resource"
GATE_OWNERSHIP = "ownership"

_ADMIN = frozenset({Role.ADMIN})
_ADMIN_PREMIUM = frozenset({Role.ADMIN, Role.PREMIUM})
_EVERYONE = frozenset(Role)
_NOBODY: FrozenSet[Role] = frozenset()

ACL_RULES: Dict[Resource, Dict[Action, FrozenSet[Role]]] = {
    Resource.SYSTEM_LOGS: {
        Action.READ: _ADMIN,
        Action.WRITE: _ADMIN,
        Action.DELETE: _ADMIN,
    },
    Resource.ENCRYPTED_VAULT: {
        Action.READ: _ADMIN_PREMIUM,
        Action.WRITE: _ADMIN_PREMIUM,
        Action.DELETE: _ADMIN_PREMIUM,
    },
    Resource.PUBLIC_REPOSITORY: {
        Action.READ: _EVERYONE,
        Action.WRITE: _ADMIN_PREMIUM,
        Action.DELETE: _ADMIN,
    },
    Resource.USER_MANAGEMENT: {
        Action.READ: _ADMIN,
        Action.WRITE: _ADMIN,
        Action.DELETE: _ADMIN,
    },
    Resource.OWN_PROFILE: {
        Action.READ: _EVERYONE,
        Action.WRITE: _EVERYONE,
        Action.DELETE: _NOBODY,
    },
}


def _check_exhaustive() -> None:
    for resource in Resource:
        rules = ACL_RULES.get(resource)
        if rules is None:
            raise RuntimeError(f"No access rules for resource {resource.value!r}")
        missing = [action.value for action in Action if action not in rules]
        if missing:
            raise RuntimeError(f"Resource {resource.value!r} has no rule for {missing}")


_check_exhaustive()


def is_allowed(role: Role, resource: Resource, action: Action) -> bool:
    return role in ACL_RULES[resource][action]


def permissions_for(role: Role) -> FrozenSet[Tuple[str, str]]:
    return frozenset(
        (resource.value, action.value)
        for resource, rules in ACL_RULES.items()
        for action, roles in rules.items()
        if role in roles
    )


def resource_for_access_level(access_level: AccessLevel) -> Resource:
    if access_level is AccessLevel.PUBLIC:
        return Resource.PUBLIC_REPOSITORY
    return Resource.ENCRYPTED_VAULT


def can_read_file(role: Role, account_id: int, owner_id: int, access_level: AccessLevel) -> bool:
    """
    Vault files: owner or admin only.
    Public files: any role allowed to read the public repository.
    """
    if access_level is AccessLevel.PUBLIC:
        return is_allowed(role, Resource.PUBLIC_REPOSITORY, Action.READ)
    if role is Role.ADMIN:
        return True
    return account_id == owner_id and is_allowed(role, Resource.ENCRYPTED_VAULT, Action.READ)


def can_manage_file(role: Role, account_id: int, owner_id: int) -> bool:
    """Share, unshare and delete: the owner, or an admin."""
    return role is Role.ADMIN or account_id == owner_id
