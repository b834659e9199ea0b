"""
AES-256-GCM envelope encryption.

Each file gets a random 256-bit key. The file is sealed under that key,
and the key itself is sealed (wrapped) under the password-derived master
key with the same primitive. The tag is kept separate from the
ciphertext so it can be stored in its own column.

IVs are always drawn here, never passed in: reusing an IV under the same
key breaks GCM.
"""
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from vaultshare.app.core.exceptions import DecryptionAuthError

KEY_LENGTH = 32
IV_LENGTH = 12
TAG_LENGTH = 16
ALGORITHM = "AES-256-GCM"


@dataclass(frozen=True)
class EncryptedPayload:
    ciphertext: bytes
    iv: bytes
    auth_tag: bytes

    def to_hex(self) -> dict:
        return {
            "data": self.ciphertext.hex(),
            "iv": self.iv.hex(),
            "auth_tag": self.auth_tag.hex(),
        }


# A wrapped key is just an encrypted 32-byte payload
WrappedKey = EncryptedPayload


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
        raise ValueError("AES-256 key must be exactly 32 bytes")


def generate_file_key() -> bytes:
    return AESGCM.generate_key(bit_length=256)


def encrypt(plaintext: bytes, key: bytes) -> EncryptedPayload:
    _check_key(key)
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(key).encrypt(iv, plaintext, None)
    return EncryptedPayload(
        ciphertext=sealed[:-TAG_LENGTH],
        iv=iv,
        auth_tag=sealed[-TAG_LENGTH:],
    )


def decrypt(ciphertext: bytes, iv: bytes, auth_tag: bytes, key: bytes) -> bytes:
    """
    Open an AES-256-GCM payload.

    Raises DecryptionAuthError if the key is wrong or any of
    ciphertext / iv / tag was altered. Malformed iv or tag lengths are
    reported the same way.
    """
    _check_key(key)
    if len(iv) != IV_LENGTH or len(auth_tag) != TAG_LENGTH:
        raise DecryptionAuthError()
    try:
        return AESGCM(key).decrypt(iv, ciphertext + auth_tag, None)
    except InvalidTag:
        raise DecryptionAuthError() from None


def wrap_key(file_key: bytes, master_key: bytes) -> WrappedKey:
    _check_key(file_key)
    return encrypt(file_key, master_key)


def unwrap_key(wrapped: WrappedKey, master_key: bytes) -> bytes:
    return decrypt(wrapped.ciphertext, wrapped.iv, wrapped.auth_tag, master_key)
