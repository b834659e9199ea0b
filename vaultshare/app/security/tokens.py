"""
Signed session tokens.

Two kinds: a short-lived MFA-pending token issued after the password
check, and the full-access token issued after the TOTP check. The
``type`` claim keeps one from being accepted in place of the other.
"""
from datetime import timedelta
from typing import Optional

from jose import jwt, JWTError
from pydantic import BaseModel, ValidationError

from vaultshare.app.core.config import settings
from vaultshare.app.core.exceptions import InvalidSession
from vaultshare.app.core.timeutils import utcnow

MFA_PENDING = "mfa_pending"
ACCESS = "access"


class TokenPayload(BaseModel):
    sub: str
    type: str
    mfa_pending: bool = False
    role: Optional[str] = None


def _encode(claims: dict, expires_delta: timedelta) -> str:
    to_encode = dict(claims)
    to_encode["exp"] = utcnow() + expires_delta
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_mfa_token(account_id: int) -> str:
    return _encode(
        {"sub": str(account_id), "type": MFA_PENDING, "mfa_pending": True},
        timedelta(minutes=settings.MFA_TOKEN_EXPIRE_MINUTES),
    )


def create_access_token(account_id: int, role: str) -> str:
    return _encode(
        {"sub": str(account_id), "type": ACCESS, "role": role, "mfa_pending": False},
        timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def decode_token(token: Optional[str], expected_type: str) -> TokenPayload:
    """Verify signature, expiry and token type; raises InvalidSession."""
    if not token:
        raise InvalidSession()
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        token_data = TokenPayload(**payload)
    except (JWTError, ValidationError):
        raise InvalidSession() from None

    if token_data.type != expected_type:
        raise InvalidSession()
    if expected_type == ACCESS and token_data.mfa_pending:
        raise InvalidSession()
    return token_data


def account_id_from(payload: TokenPayload) -> int:
    try:
        return int(payload.sub)
    except ValueError:
        raise InvalidSession() from None
