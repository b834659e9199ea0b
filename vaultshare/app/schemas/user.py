from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from vaultshare.app.models.enums import Role
from vaultshare.app.schemas.common import Pagination


# Registration request. Password length is checked by the service so the
# message matches for every client.
class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=30, pattern=r"^[A-Za-z0-9_]+$")
    email: str = Field(..., max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., max_length=256)
    role: Role = Role.GUEST


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=256)


class MfaVerifyRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=8)


# Never includes password hash, MFA secret, KDF salt or private key
class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    role: Role
    mfa_enabled: bool
    mfa_verified: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None


class AdminUserResponse(UserResponse):
    failed_login_attempts: int
    lock_until: Optional[datetime] = None
    is_locked: bool = False


class MfaSetup(BaseModel):
    qr_code: str
    otpauth_uri: str
    secret: str


class RegisterResponse(BaseModel):
    user: UserResponse
    mfa_setup: MfaSetup
    role_downgraded: bool = False


class LoginResponse(BaseModel):
    mfa_required: bool = True
    state: str


class MfaVerifyResponse(BaseModel):
    user: UserResponse
    state: str
    first_setup: bool


class PublicKeyResponse(BaseModel):
    user_id: int
    username: str
    public_key: str


class UserList(BaseModel):
    users: List[AdminUserResponse]
    pagination: Pagination


class RoleUpdate(BaseModel):
    role: Role
