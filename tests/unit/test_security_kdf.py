"""
Unit tests for PBKDF2 key derivation and token helpers.
"""
from datetime import timedelta

import pytest

from vaultshare.app.core.config import settings
from vaultshare.app.core.timeutils import utcnow
from vaultshare.app.security import kdf


def test_default_iterations():
    assert settings.KDF_ITERATIONS == 100_000


def test_derive_key_is_deterministic():
    """Same password and salt always give the same 32-byte key."""
    salt = kdf.generate_salt()
    k1 = kdf.derive_key("HELLOWRLD", salt)
    k2 = kdf.derive_key("HELLOWRLD", salt)
    assert k1 == k2
    assert len(k1) == 32


def test_derive_key_depends_on_salt():
    assert kdf.derive_key("pw", b"a" * 32) != kdf.derive_key("pw", b"b" * 32)


def test_derive_key_depends_on_password():
    salt = kdf.generate_salt()
    assert kdf.derive_key("pw-one", salt) != kdf.derive_key("pw-two", salt)


def test_derive_key_accepts_bytes_password():
    salt = kdf.generate_salt()
    assert kdf.derive_key(b"secret", salt) == kdf.derive_key("secret", salt)


def test_derive_key_rejects_empty_salt():
    with pytest.raises(ValueError):
        kdf.derive_key("pw", b"")


def test_generate_salt_length_and_randomness():
    s1, s2 = kdf.generate_salt(), kdf.generate_salt()
    assert len(s1) == 32
    assert s1 != s2


def test_generate_secure_token_is_hex():
    token = kdf.generate_secure_token()
    assert len(token) == 64
    int(token, 16)


def test_generate_expiring_token_expiry():
    before = utcnow()
    token, expiry = kdf.generate_expiring_token(30)
    assert len(token) == 64
    assert before + timedelta(minutes=29) < expiry <= utcnow() + timedelta(minutes=30)
