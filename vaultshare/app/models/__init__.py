from vaultshare.app.models.user import User
from vaultshare.app.models.stored_file import StoredFile
from vaultshare.app.models.audit_event import AuditEvent

__all__ = ["User", "StoredFile", "AuditEvent"]
