import pytest

from vaultshare.app.core.context import RequestContext
from vaultshare.app.core.exceptions import PermissionDenied
from vaultshare.app.models.enums import AccessLevel, Role
from vaultshare.app.security import access
from vaultshare.app.security.access import Action, Resource


def test_table_covers_every_resource_and_action():
    for resource in Resource:
        for action in Action:
            assert action in access.ACL_RULES[resource]


@pytest.mark.parametrize(
    "role,resource,action,expected",
    [
        (Role.ADMIN, Resource.SYSTEM_LOGS, Action.READ, True),
        (Role.PREMIUM, Resource.SYSTEM_LOGS, Action.READ, False),
        (Role.GUEST, Resource.ENCRYPTED_VAULT, Action.READ, False),
        (Role.PREMIUM, Resource.ENCRYPTED_VAULT, Action.WRITE, True),
        (Role.GUEST, Resource.PUBLIC_REPOSITORY, Action.READ, True),
        (Role.GUEST, Resource.PUBLIC_REPOSITORY, Action.WRITE, False),
        (Role.PREMIUM, Resource.PUBLIC_REPOSITORY, Action.DELETE, False),
        (Role.ADMIN, Resource.PUBLIC_REPOSITORY, Action.DELETE, True),
        (Role.PREMIUM, Resource.USER_MANAGEMENT, Action.WRITE, False),
        (Role.GUEST, Resource.OWN_PROFILE, Action.WRITE, True),
        (Role.ADMIN, Resource.OWN_PROFILE, Action.DELETE, False),
    ],
)
def test_rules(role, resource, action, expected):
    assert access.is_allowed(role, resource, action) is expected


def test_context_can_follows_the_table():
    for role in Role:
        ctx = RequestContext(
            account_id=1, username="u", role=role, permissions=access.permissions_for(role)
        )
        assert ctx.is_admin is (role is Role.ADMIN)
        for resource in Resource:
            for action in Action:
                assert ctx.can(resource.value, action.value) is access.is_allowed(role, resource, action)


def test_context_without_permissions_can_nothing():
    ctx = RequestContext(account_id=1, username="root", role=Role.ADMIN)
    assert ctx.is_admin
    assert not ctx.can(Resource.SYSTEM_LOGS.value, Action.READ.value)


def test_permission_denied_carries_gate():
    exc = PermissionDenied(access.GATE_RESOURCE)
    assert exc.gate == access.GATE_RESOURCE
    assert exc.status_code == 403
    assert exc.message == "You do not have permission to perform this action."


def test_permissions_for_guest():
    perms = access.permissions_for(Role.GUEST)
    assert ("public-repository", "read") in perms
    assert ("encrypted-vault", "read") not in perms


def test_vault_file_read_is_owner_or_admin():
    assert access.can_read_file(Role.PREMIUM, 1, 1, AccessLevel.VAULT)
    assert not access.can_read_file(Role.PREMIUM, 2, 1, AccessLevel.VAULT)
    assert access.can_read_file(Role.ADMIN, 9, 1, AccessLevel.VAULT)
    # a guest cannot read even a vault file it somehow owns
    assert not access.can_read_file(Role.GUEST, 1, 1, AccessLevel.VAULT)


def test_public_file_read_is_open_to_all_roles():
    for role in Role:
        assert access.can_read_file(role, 5, 1, AccessLevel.PUBLIC)


def test_manage_file():
    assert access.can_manage_file(Role.PREMIUM, 1, 1)
    assert not access.can_manage_file(Role.PREMIUM, 2, 1)
    assert access.can_manage_file(Role.ADMIN, 2, 1)
