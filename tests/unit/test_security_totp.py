import base64
import time

import pyotp

from vaultshare.app.security import totp


def test_secret_is_base32():
    secret = totp.generate_totp_secret()
    assert len(secret) == 32
    base64.b32decode(secret)


def test_uri_contains_issuer_and_account():
    uri = totp.get_totp_uri("JBSWY3DPEHPK3PXP", "alice@example.com", issuer="VaultShare")
    assert uri.startswith("otpauth://totp/VaultShare:alice")
    assert "secret=JBSWY3DPEHPK3PXP" in uri
    assert "issuer=VaultShare" in uri


def test_current_code_verifies():
    secret = totp.generate_totp_secret()
    assert totp.verify_totp(secret, totp.get_current_totp(secret))


def test_adjacent_window_is_accepted():
    """One 30-second step of clock drift is tolerated."""
    secret = totp.generate_totp_secret()
    previous = pyotp.TOTP(secret).at(time.time() - 30)
    assert totp.verify_totp(secret, previous)


def test_far_code_is_rejected():
    secret = totp.generate_totp_secret()
    old = pyotp.TOTP(secret).at(time.time() - 300)
    assert not totp.verify_totp(secret, old)


def test_malformed_codes_are_rejected():
    secret = totp.generate_totp_secret()
    assert not totp.verify_totp(secret, "")
    assert not totp.verify_totp(secret, "12345")
    assert not totp.verify_totp(secret, "abcdef")
    assert not totp.verify_totp("", "123456")


def test_code_with_spaces_is_normalized():
    secret = totp.generate_totp_secret()
    code = totp.get_current_totp(secret)
    assert totp.verify_totp(secret, f" {code[:3]} {code[3:]} ")


def test_qr_is_png_data_uri():
    qr = totp.generate_share_qr_code("http://localhost:3000/share/abc")
    assert qr.startswith("data:image/png;base64,")
    raw = base64.b64decode(qr.split(",", 1)[1])
    assert raw[:8] == b"\x89PNG\r\n\x1a\n"
