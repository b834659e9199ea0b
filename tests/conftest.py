"""
Shared fixtures.

Settings are read once at import, so the test database, blob directory
and cheaper bcrypt cost are put in the environment before anything from
vaultshare is imported.
"""
import os
import tempfile

_TEST_ROOT = tempfile.mkdtemp(prefix="vaultshare-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_ROOT}/test.db"
os.environ["UPLOAD_DIR"] = os.path.join(_TEST_ROOT, "uploads")
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key"

import pyotp  # noqa: E402
import pytest  # noqa: E402

from vaultshare.app.core.context import ClientInfo, RequestContext  # noqa: E402
from vaultshare.app.db.base import Base  # noqa: E402
from vaultshare.app.db.session import AsyncSessionLocal, engine  # noqa: E402
from vaultshare.app.models.enums import Role  # noqa: E402
from vaultshare.app.security import access  # noqa: E402
from vaultshare.app.services.audit import AuditService  # noqa: E402
from vaultshare.app.services.auth import AuthService  # noqa: E402
from vaultshare.app.services.files import FileService  # noqa: E402
from vaultshare.app.services.storage import BlobStorage  # noqa: E402

import vaultshare.app.models  # noqa: E402,F401


async def reset_database() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


def make_context(user, ip_address: str = "127.0.0.1") -> RequestContext:
    return RequestContext(
        account_id=user.id,
        username=user.username,
        role=user.role,
        client=ClientInfo(ip_address=ip_address, user_agent="pytest"),
        permissions=access.permissions_for(user.role),
    )


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture
async def db():
    """Fresh schema and an open session."""
    await reset_database()
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def audit():
    return AuditService()


@pytest.fixture
def storage(tmp_path):
    return BlobStorage(tmp_path / "blobs")


@pytest.fixture
def auth_service(db, audit):
    return AuthService(db, audit)


@pytest.fixture
def file_service(db, storage, audit):
    return FileService(db, storage, audit)


@pytest.fixture
def register_user(auth_service):
    """Factory: register an account and return the stored user."""
    counter = {"n": 0}

    async def _register(role: Role = Role.PREMIUM, password: str = "correct-horse-1", name: str = None):
        counter["n"] += 1
        username = name or f"user{counter['n']}"
        result = await auth_service.register(
            username=username,
            email=f"{username}@example.com",
            password=password,
            requested_role=role,
        )
        return result.user

    return _register


@pytest.fixture
def totp_now():
    def _now(user) -> str:
        return pyotp.TOTP(user.mfa_secret).now()

    return _now
