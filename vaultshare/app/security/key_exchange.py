"""
Asymmetric key exchange for the download-to-requester path.

A fresh AES key seals the payload and is itself wrapped with the
requester's RSA public key (OAEP, MGF1-SHA256, SHA-256). Only the holder
of the matching private key can recover it.
"""
import base64
from dataclasses import dataclass

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from vaultshare.app.core.exceptions import InvalidPublicKeyError
from vaultshare.app.security import envelope

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537


@dataclass(frozen=True)
class KeyPair:
    public_pem: str
    private_pem: str


@dataclass(frozen=True)
class ExchangePayload:
    encrypted: envelope.EncryptedPayload
    wrapped_key: str  # base64


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def generate_key_pair() -> KeyPair:
    private_key = rsa.generate_private_key(
        public_exponent=RSA_PUBLIC_EXPONENT,
        key_size=RSA_KEY_SIZE,
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return KeyPair(public_pem=public_pem.decode("ascii"), private_pem=private_pem.decode("ascii"))


def load_public_key(public_pem: str) -> rsa.RSAPublicKey:
    if not public_pem or not isinstance(public_pem, str):
        raise InvalidPublicKeyError()
    try:
        key = serialization.load_pem_public_key(public_pem.encode("utf-8"))
    except (ValueError, TypeError):
        raise InvalidPublicKeyError() from None
    if not isinstance(key, rsa.RSAPublicKey) or key.key_size < RSA_KEY_SIZE:
        raise InvalidPublicKeyError()
    return key


def wrap_symmetric_key(key: bytes, recipient_public_pem: str) -> str:
    public_key = load_public_key(recipient_public_pem)
    return base64.b64encode(public_key.encrypt(key, _oaep())).decode("ascii")


def unwrap_symmetric_key(wrapped_b64: str, private_pem: str) -> bytes:
    """Requester-side inverse of wrap_symmetric_key."""
    private_key = serialization.load_pem_private_key(private_pem.encode("utf-8"), password=None)
    return private_key.decrypt(base64.b64decode(wrapped_b64), _oaep())


def encrypt_for_exchange(data: bytes, recipient_public_pem: str) -> ExchangePayload:
    # validate before doing any symmetric work
    load_public_key(recipient_public_pem)
    transit_key = envelope.generate_file_key()
    encrypted = envelope.encrypt(data, transit_key)
    return ExchangePayload(
        encrypted=encrypted,
        wrapped_key=wrap_symmetric_key(transit_key, recipient_public_pem),
    )
