import hashlib
import hmac


def compute_digest(data: bytes) -> str:
    """Hex SHA-256 of ``data``."""
    return hashlib.sha256(data).hexdigest()


def verify_digest(data: bytes, expected_hex: str) -> bool:
    """
    Constant-time comparison of the digest of ``data`` against a stored one.

    Malformed expected values (wrong length, non-hex) simply fail.
    """
    if not isinstance(expected_hex, str) or len(expected_hex) != 64:
        return False
    try:
        expected = bytes.fromhex(expected_hex)
    except ValueError:
        return False
    return hmac.compare_digest(hashlib.sha256(data).digest(), expected)
