from sqlalchemy import Column, Integer, BigInteger, String, Text, Boolean, ForeignKey, DateTime
from sqlalchemy.sql import func

from vaultshare.app.db.base import Base
from vaultshare.app.models.enums import AccessLevel, enum_column


class StoredFile(Base):
    __tablename__ = "stored_files"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # --- display metadata ---
    original_name = Column(String(255), nullable=False)
    mime_type = Column(String(127), nullable=False, default="application/octet-stream")
    size = Column(BigInteger, nullable=False)
    description = Column(String(500), nullable=False, default="")
    access_level = Column(
        enum_column(AccessLevel, length=16),
        nullable=False,
        default=AccessLevel.VAULT,
        index=True,
    )

    # opaque blob-store reference to the ciphertext
    storage_ref = Column(String(80), nullable=False, unique=True)

    # --- content encryption (hex) ---
    iv = Column(String(24), nullable=False)
    auth_tag = Column(String(32), nullable=False)

    # per-file PBKDF2 salt; NULL only on legacy records that use the owner's
    file_salt = Column(String(64), nullable=True)

    # file key wrapped under the password-derived master key (hex)
    wrapped_key_data = Column(String(128), nullable=False)
    wrapped_key_iv = Column(String(24), nullable=False)
    wrapped_key_tag = Column(String(32), nullable=False)

    # SHA-256 of the plaintext
    sha256_digest = Column(String(64), nullable=False)

    key_exchange_enabled = Column(Boolean, nullable=False, default=False)
    owner_public_key = Column(Text, nullable=True)

    share_token = Column(String(64), nullable=True, unique=True, index=True)
    share_expiry = Column(DateTime(timezone=True), nullable=True)

    download_count = Column(Integer, nullable=False, default=0)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )
