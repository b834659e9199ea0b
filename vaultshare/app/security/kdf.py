"""
Password-based key derivation.

PBKDF2-HMAC-SHA256 turns a user password plus a 32-byte salt into the
256-bit master key that wraps per-file keys. Work is fixed by the
iteration count, not by anything about the password.
"""
import secrets
from datetime import datetime, timedelta
from typing import Optional, Tuple, Union

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from vaultshare.app.core.config import settings
from vaultshare.app.core.timeutils import utcnow

KEY_LENGTH = 32
SALT_LENGTH = 32


def generate_salt(length: int = SALT_LENGTH) -> bytes:
    """Return a cryptographically secure random salt."""
    return secrets.token_bytes(length)


def derive_key(
    password: Union[str, bytes],
    salt: bytes,
    iterations: Optional[int] = None,
    key_len: int = KEY_LENGTH,
) -> bytes:
    """
    Derive a master key from a password using PBKDF2-HMAC-SHA256.
    Returns raw derived key bytes; equal inputs give equal output.
    """
    if isinstance(password, str):
        password = password.encode("utf-8")
    if not salt:
        raise ValueError("salt must not be empty")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=key_len,
        salt=salt,
        iterations=iterations or settings.KDF_ITERATIONS,
    )
    return kdf.derive(password)


def generate_secure_token(nbytes: int = 32) -> str:
    return secrets.token_hex(nbytes)


def generate_expiring_token(minutes: int = 60) -> Tuple[str, datetime]:
    """Random hex token and the UTC instant after which it stops working."""
    return generate_secure_token(32), utcnow() + timedelta(minutes=minutes)
