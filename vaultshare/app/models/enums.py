"""Closed vocabularies shared by models, services and the API."""
from enum import Enum

from sqlalchemy import Enum as SAEnum


class Role(str, Enum):
    ADMIN = "admin"
    PREMIUM = "premium"
    GUEST = "guest"


class AccessLevel(str, Enum):
    VAULT = "vault"
    PUBLIC = "public"


class AuditAction(str, Enum):
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    MFA_SETUP = "MFA_SETUP"
    MFA_VERIFIED = "MFA_VERIFIED"
    MFA_FAILED = "MFA_FAILED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    FILE_UPLOAD = "FILE_UPLOAD"
    FILE_DOWNLOAD = "FILE_DOWNLOAD"
    FILE_DELETE = "FILE_DELETE"
    FILE_SHARE = "FILE_SHARE"
    FILE_UNSHARE = "FILE_UNSHARE"
    KEY_EXCHANGE_DOWNLOAD = "KEY_EXCHANGE_DOWNLOAD"
    INTEGRITY_CHECK_PASSED = "INTEGRITY_CHECK_PASSED"
    INTEGRITY_CHECK_FAILED = "INTEGRITY_CHECK_FAILED"
    ACCESS_GRANTED = "ACCESS_GRANTED"
    ACCESS_DENIED = "ACCESS_DENIED"
    USER_CREATED = "USER_CREATED"
    USER_DELETED = "USER_DELETED"
    ROLE_CHANGED = "ROLE_CHANGED"
    SYSTEM_CONFIG_CHANGED = "SYSTEM_CONFIG_CHANGED"


class AuditStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    DENIED = "DENIED"
    ERROR = "ERROR"


class TargetType(str, Enum):
    FILE = "file"
    USER = "user"
    SYSTEM = "system"
    RESOURCE = "resource"


def enum_column(enum_cls, length: int = 32) -> SAEnum:
    """
    Store an Enum by value in a plain VARCHAR column.

    Values (not member names) are persisted so that raw SQL such as the
    single-admin partial index can match on ``'admin'``.
    """
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
