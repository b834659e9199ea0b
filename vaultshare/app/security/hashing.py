"""bcrypt password hashing for login credentials."""
import bcrypt

from vaultshare.app.core.config import settings

# bcrypt only looks at the first 72 bytes
_BCRYPT_MAX_BYTES = 72


def _prepare(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def get_password_hash(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(_prepare(password), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(_prepare(plain_password), hashed_password.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


# Compared against for unknown emails so the response time matches a real check
DUMMY_HASH = get_password_hash("vaultshare-dummy-password")


def dummy_verify(plain_password: str) -> None:
    verify_password(plain_password, DUMMY_HASH)
