from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from vaultshare.app.models.enums import AccessLevel
from vaultshare.app.schemas.common import Pagination


# Display metadata only: iv, tag, salt and wrapped key never leave the server
class FileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    original_name: str
    mime_type: str
    size: int
    description: str
    access_level: AccessLevel
    owner_id: int
    download_count: int
    key_exchange_enabled: bool
    sha256_digest: str
    is_shared: bool = False
    created_at: Optional[datetime] = None


class EncryptionInfo(BaseModel):
    algorithm: str = "AES-256-GCM"
    key_derivation: str = "PBKDF2-HMAC-SHA256"
    integrity: str = "SHA-256"


class UploadResponse(BaseModel):
    file: FileResponse
    encryption: EncryptionInfo = EncryptionInfo()


class FileList(BaseModel):
    files: List[FileResponse]
    pagination: Pagination


class DownloadRequest(BaseModel):
    password: Optional[str] = Field(default=None, max_length=1024)


class KeyExchangeRequest(BaseModel):
    public_key: str = Field(..., min_length=1, max_length=8192)


class EncryptedBlob(BaseModel):
    data: str
    iv: str
    auth_tag: str


class KeyExchangeResponse(BaseModel):
    file_id: int
    original_name: str
    mime_type: str
    encrypted_file: EncryptedBlob
    encrypted_key: str
    original_iv: str
    original_auth_tag: str
    sha256_digest: str
    # owner key recorded at upload, for pinning the publisher
    owner_public_key: Optional[str] = None
    method: str = "RSA-OAEP-SHA256 + AES-256-GCM"


class ShareRequest(BaseModel):
    expiry_minutes: Optional[int] = Field(default=None, ge=1)


class ShareResponse(BaseModel):
    share_token: str
    share_url: str
    expires_at: datetime
    qr_code: str


class SharedFileResponse(BaseModel):
    original_name: str
    mime_type: str
    size: int
    description: str
    owner: Optional[str] = None
    expires_at: datetime
