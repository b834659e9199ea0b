"""
TOTP (Time-based One-Time Password) second factor and QR rendering.

RFC 6238, compatible with Google Authenticator, Authy, Aegis:
- 6-digit codes
- 30-second time step, one step of drift accepted either way
- Base32 secret encoding
"""
import base64
import io

import pyotp
import qrcode

from vaultshare.app.core.config import settings


def generate_totp_secret() -> str:
    """New random Base32 TOTP secret (160 bits)."""
    return pyotp.random_base32(length=32)


def get_totp_uri(secret: str, account_name: str, issuer: str = None) -> str:
    """
    otpauth://totp/{issuer}:{account_name}?secret=...&issuer=...

    This is what gets encoded in the provisioning QR code.
    """
    totp = pyotp.TOTP(secret)
    return totp.provisioning_uri(name=account_name, issuer_name=issuer or settings.TOTP_ISSUER)


def render_qr_data_uri(payload: str) -> str:
    """
    PNG QR code for ``payload`` as a data URI.

    Frontend can display this directly using: <img src="{result}">
    """
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(payload)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def generate_mfa_qr_code(secret: str, account_name: str) -> str:
    return render_qr_data_uri(get_totp_uri(secret, account_name))


def generate_share_qr_code(share_url: str) -> str:
    return render_qr_data_uri(share_url)


def verify_totp(secret: str, code: str) -> bool:
    """Whitespace is ignored; anything but six digits is rejected outright."""
    if not secret or not code:
        return False

    code = code.strip().replace(" ", "")
    if len(code) != 6 or not code.isdigit():
        return False

    try:
        return pyotp.TOTP(secret).verify(code, valid_window=1)
    except (ValueError, TypeError):
        # secret is not valid base32
        return False


def get_current_totp(secret: str) -> str:
    """Current code for a secret. Test helper only."""
    return pyotp.TOTP(secret).now()
