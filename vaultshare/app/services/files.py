"""
Encrypted file pipeline.

Upload:   digest(plain) → file key → AES-GCM(plain) → per-file salt →
          PBKDF2(password) → wrap(file key) → blob → record
Download: salt → PBKDF2(password) → unwrap → blob → AES-GCM open →
          digest check

The password and everything derived from it live only inside the
threadpool helpers below; none of it is logged, audited or stored.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple, Union

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from vaultshare.app.core.config import settings
from vaultshare.app.core.context import RequestContext
from vaultshare.app.core.exceptions import (
    BlobNotFound,
    DecryptionAuthError,
    EncryptionMetadataMissing,
    IntegrityFailure,
    NotFound,
    PayloadTooLarge,
    PermissionDenied,
    StorageUnavailable,
    ValidationFailed,
    WrongDecryptionPassword,
)
from vaultshare.app.core.timeutils import as_utc, utcnow
from vaultshare.app.models.enums import AccessLevel, AuditAction, AuditStatus, Role, TargetType
from vaultshare.app.models.stored_file import StoredFile
from vaultshare.app.models.user import User
from vaultshare.app.security import access, envelope, integrity, kdf, key_exchange, totp
from vaultshare.app.services.audit import AuditActor, AuditService
from vaultshare.app.services.storage import BlobStorage

logger = logging.getLogger(__name__)

TAMPERED_MESSAGE = "File integrity check failed. File has been tampered with."


# ─────────────────────────────────────────────────────────────────────────────
# Salt sources
#
# New files carry their own salt. Records written before per-file salts
# existed fall back to the owner's account salt; if that is missing too the
# file cannot be opened and the download fails closed.
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class FileSalt:
    salt: bytes


@dataclass(frozen=True)
class LegacyOwnerSalt:
    salt: bytes


SaltSource = Union[FileSalt, LegacyOwnerSalt]


@dataclass(frozen=True)
class SealedFile:
    digest: str
    content: envelope.EncryptedPayload
    salt: bytes
    wrapped_key: envelope.WrappedKey


@dataclass(frozen=True)
class DownloadResult:
    file: StoredFile
    data: bytes
    digest: str


@dataclass(frozen=True)
class ExchangeResult:
    file: StoredFile
    encrypted_file: dict
    encrypted_key: str
    original_iv: str
    original_auth_tag: str
    sha256_digest: str
    owner_public_key: Optional[str] = None


@dataclass(frozen=True)
class ShareResult:
    file: StoredFile
    token: str
    url: str
    expires_at: datetime
    qr_code: str


def _seal(data: bytes, password: str) -> SealedFile:
    digest = integrity.compute_digest(data)
    file_key = envelope.generate_file_key()
    content = envelope.encrypt(data, file_key)
    salt = kdf.generate_salt()
    master_key = kdf.derive_key(password, salt)
    return SealedFile(
        digest=digest,
        content=content,
        salt=salt,
        wrapped_key=envelope.wrap_key(file_key, master_key),
    )


def _unwrap_file_key(record: StoredFile, password: str, salt: bytes) -> bytes:
    master_key = kdf.derive_key(password, salt)
    wrapped = envelope.WrappedKey(
        ciphertext=bytes.fromhex(record.wrapped_key_data),
        iv=bytes.fromhex(record.wrapped_key_iv),
        auth_tag=bytes.fromhex(record.wrapped_key_tag),
    )
    return envelope.unwrap_key(wrapped, master_key)


def _open(record: StoredFile, ciphertext: bytes, file_key: bytes) -> bytes:
    return envelope.decrypt(
        ciphertext,
        bytes.fromhex(record.iv),
        bytes.fromhex(record.auth_tag),
        file_key,
    )


def truncated_digest(digest: str) -> str:
    return f"{digest[:16]}..."


class FileService:
    def __init__(self, db: AsyncSession, storage: BlobStorage, audit: AuditService):
        self.db = db
        self.storage = storage
        self.audit = audit

    # ─────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────
    async def _get_live_file(self, file_id: int) -> StoredFile:
        result = await self.db.execute(
            select(StoredFile)
            .where(StoredFile.id == file_id, StoredFile.is_deleted.is_(False))
            .execution_options(populate_existing=True)
        )
        record = result.scalars().first()
        if record is None:
            raise NotFound("File not found.")
        return record

    async def _deny(self, ctx: RequestContext, record: StoredFile, operation: str, gate: str) -> None:
        await self.audit.log(
            AuditAction.ACCESS_DENIED,
            AuditStatus.DENIED,
            actor=AuditActor.from_context(ctx),
            target=record.id,
            target_type=TargetType.FILE,
            details={"gate": gate, "operation": operation},
            client=ctx.client,
        )
        raise PermissionDenied(gate)

    async def _authorize_read(self, ctx: RequestContext, record: StoredFile, operation: str) -> None:
        if not access.can_read_file(ctx.role, ctx.account_id, record.owner_id, record.access_level):
            await self._deny(ctx, record, operation, access.GATE_OWNERSHIP)

    async def _authorize_manage(self, ctx: RequestContext, record: StoredFile, operation: str) -> None:
        if not access.can_manage_file(ctx.role, ctx.account_id, record.owner_id):
            await self._deny(ctx, record, operation, access.GATE_OWNERSHIP)

    async def resolve_salt(self, record: StoredFile) -> SaltSource:
        if record.file_salt:
            return FileSalt(bytes.fromhex(record.file_salt))
        owner = await self.db.get(User, record.owner_id)
        if owner is None or not owner.kdf_salt:
            logger.error("File %s has no per-file salt and no owner salt", record.id)
            raise EncryptionMetadataMissing()
        return LegacyOwnerSalt(bytes.fromhex(owner.kdf_salt))

    async def _increment_downloads(self, file_id: int) -> None:
        await self.db.execute(
            update(StoredFile)
            .where(StoredFile.id == file_id)
            .values(download_count=StoredFile.download_count + 1)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def _read_blob(self, record: StoredFile) -> bytes:
        try:
            return await run_in_threadpool(self.storage.read, record.storage_ref)
        except BlobNotFound:
            logger.warning("Blob missing for file %s", record.id)
            raise

    # ─────────────────────────────────────────────────────────────
    # Upload
    # ─────────────────────────────────────────────────────────────
    async def upload(
        self,
        ctx: RequestContext,
        filename: str,
        data: bytes,
        password: Optional[str],
        access_level: AccessLevel = AccessLevel.VAULT,
        mime_type: Optional[str] = None,
        description: str = "",
        key_exchange_enabled: bool = False,
    ) -> StoredFile:
        if not password:
            raise ValidationFailed("Encryption password is required.")
        if not data:
            raise ValidationFailed("No file uploaded.")
        if len(data) > settings.MAX_UPLOAD_BYTES:
            raise PayloadTooLarge()
        filename = (filename or "").strip()
        if not filename:
            raise ValidationFailed("File name is required.")
        if description and len(description) > 500:
            raise ValidationFailed("Description cannot exceed 500 characters.")

        resource = access.resource_for_access_level(access_level)
        if not ctx.can(resource.value, access.Action.WRITE.value):
            await self.audit.log(
                AuditAction.ACCESS_DENIED,
                AuditStatus.DENIED,
                actor=AuditActor.from_context(ctx),
                target=resource.value,
                target_type=TargetType.RESOURCE,
                details={"gate": access.GATE_RESOURCE, "operation": "upload"},
                client=ctx.client,
            )
            raise PermissionDenied(access.GATE_RESOURCE)

        sealed = await run_in_threadpool(_seal, data, password)
        storage_ref = await run_in_threadpool(self.storage.write, sealed.content.ciphertext)

        owner_public_key = None
        if key_exchange_enabled:
            owner = await self.db.get(User, ctx.account_id)
            owner_public_key = owner.public_key if owner is not None else None

        record = StoredFile(
            owner_id=ctx.account_id,
            original_name=filename[:255],
            mime_type=mime_type or "application/octet-stream",
            size=len(data),
            description=description or "",
            access_level=access_level,
            storage_ref=storage_ref,
            iv=sealed.content.iv.hex(),
            auth_tag=sealed.content.auth_tag.hex(),
            file_salt=sealed.salt.hex(),
            wrapped_key_data=sealed.wrapped_key.ciphertext.hex(),
            wrapped_key_iv=sealed.wrapped_key.iv.hex(),
            wrapped_key_tag=sealed.wrapped_key.auth_tag.hex(),
            sha256_digest=sealed.digest,
            key_exchange_enabled=key_exchange_enabled,
            owner_public_key=owner_public_key,
            download_count=0,
            is_deleted=False,
        )
        self.db.add(record)
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            # no record points at the blob; remove it
            try:
                await run_in_threadpool(self.storage.delete, storage_ref)
            except (BlobNotFound, StorageUnavailable):
                logger.warning("Could not remove orphan blob %s", storage_ref)
            raise
        await self.db.refresh(record)

        await self.audit.log(
            AuditAction.FILE_UPLOAD,
            AuditStatus.SUCCESS,
            actor=AuditActor.from_context(ctx),
            target=record.id,
            target_type=TargetType.FILE,
            details={
                "filename": record.original_name,
                "size": record.size,
                "access_level": access_level.value,
                "encryption": envelope.ALGORITHM,
            },
            client=ctx.client,
        )
        return record

    # ─────────────────────────────────────────────────────────────
    # Download: password path
    # ─────────────────────────────────────────────────────────────
    async def download_with_password(
        self, ctx: RequestContext, file_id: int, password: Optional[str]
    ) -> DownloadResult:
        if not password:
            raise ValidationFailed("Decryption password is required.")

        record = await self._get_live_file(file_id)
        await self._authorize_read(ctx, record, "download")
        salt_source = await self.resolve_salt(record)
        actor = AuditActor.from_context(ctx)

        try:
            file_key = await run_in_threadpool(_unwrap_file_key, record, password, salt_source.salt)
        except DecryptionAuthError:
            await self.audit.log(
                AuditAction.FILE_DOWNLOAD,
                AuditStatus.FAILED,
                actor=actor,
                target=record.id,
                target_type=TargetType.FILE,
                details={"stage": "key_unwrap", "reason": "invalid_password"},
                client=ctx.client,
            )
            raise WrongDecryptionPassword() from None

        ciphertext = await self._read_blob(record)

        try:
            plaintext = await run_in_threadpool(_open, record, ciphertext, file_key)
        except DecryptionAuthError:
            await self.audit.log(
                AuditAction.INTEGRITY_CHECK_FAILED,
                AuditStatus.FAILED,
                actor=actor,
                target=record.id,
                target_type=TargetType.FILE,
                details={"stage": "decrypt", "reason": "authentication_tag_mismatch"},
                client=ctx.client,
            )
            raise IntegrityFailure() from None

        if not await run_in_threadpool(integrity.verify_digest, plaintext, record.sha256_digest):
            await self.audit.log(
                AuditAction.INTEGRITY_CHECK_FAILED,
                AuditStatus.FAILED,
                actor=actor,
                target=record.id,
                target_type=TargetType.FILE,
                details={"stage": "digest", "reason": "digest_mismatch"},
                client=ctx.client,
            )
            raise IntegrityFailure(TAMPERED_MESSAGE)

        await self.audit.log(
            AuditAction.INTEGRITY_CHECK_PASSED,
            AuditStatus.SUCCESS,
            actor=actor,
            target=record.id,
            target_type=TargetType.FILE,
            details={"algorithm": "SHA-256"},
            client=ctx.client,
        )
        await self._increment_downloads(record.id)
        await self.audit.log(
            AuditAction.FILE_DOWNLOAD,
            AuditStatus.SUCCESS,
            actor=actor,
            target=record.id,
            target_type=TargetType.FILE,
            details={"filename": record.original_name, "integrity_verified": True},
            client=ctx.client,
        )
        return DownloadResult(file=record, data=plaintext, digest=record.sha256_digest)

    # ─────────────────────────────────────────────────────────────
    # Download: key-exchange path
    #
    # The stored ciphertext is never opened here. It is sealed again
    # under a transit key that only the requester's private key can
    # unwrap; the requester then needs the original iv/tag plus the file
    # key (obtained out of band) to reach the plaintext, and checks the
    # returned digest locally.
    # ─────────────────────────────────────────────────────────────
    async def download_with_key_exchange(
        self, ctx: RequestContext, file_id: int, requester_public_key: Optional[str]
    ) -> ExchangeResult:
        if not requester_public_key:
            raise ValidationFailed("Requester public key is required.")

        record = await self._get_live_file(file_id)
        await self._authorize_read(ctx, record, "key_exchange")
        if not record.key_exchange_enabled:
            raise ValidationFailed("Key exchange is not enabled for this file.")

        ciphertext = await self._read_blob(record)
        payload = await run_in_threadpool(
            key_exchange.encrypt_for_exchange, ciphertext, requester_public_key
        )

        await self._increment_downloads(record.id)
        await self.audit.log(
            AuditAction.KEY_EXCHANGE_DOWNLOAD,
            AuditStatus.SUCCESS,
            actor=AuditActor.from_context(ctx),
            target=record.id,
            target_type=TargetType.FILE,
            details={"filename": record.original_name, "method": "RSA-OAEP-SHA256"},
            client=ctx.client,
        )
        return ExchangeResult(
            file=record,
            encrypted_file=payload.encrypted.to_hex(),
            encrypted_key=payload.wrapped_key,
            original_iv=record.iv,
            original_auth_tag=record.auth_tag,
            sha256_digest=record.sha256_digest,
            owner_public_key=record.owner_public_key,
        )

    # ─────────────────────────────────────────────────────────────
    # Sharing
    # ─────────────────────────────────────────────────────────────
    async def share(self, ctx: RequestContext, file_id: int, expiry_minutes: Optional[int] = None) -> ShareResult:
        minutes = settings.SHARE_DEFAULT_EXPIRY_MINUTES if expiry_minutes is None else expiry_minutes
        if minutes < 1 or minutes > settings.SHARE_MAX_EXPIRY_MINUTES:
            raise ValidationFailed(
                f"Expiry must be between 1 and {settings.SHARE_MAX_EXPIRY_MINUTES} minutes."
            )

        record = await self._get_live_file(file_id)
        await self._authorize_manage(ctx, record, "share")

        token, expires_at = kdf.generate_expiring_token(minutes)
        record.share_token = token
        record.share_expiry = expires_at
        self.db.add(record)
        await self.db.commit()

        url = f"{settings.FRONTEND_URL.rstrip('/')}/share/{token}"
        qr_code = await run_in_threadpool(totp.generate_share_qr_code, url)

        await self.audit.log(
            AuditAction.FILE_SHARE,
            AuditStatus.SUCCESS,
            actor=AuditActor.from_context(ctx),
            target=record.id,
            target_type=TargetType.FILE,
            details={"expiry_minutes": minutes, "expires_at": expires_at.isoformat()},
            client=ctx.client,
        )
        return ShareResult(file=record, token=token, url=url, expires_at=expires_at, qr_code=qr_code)

    async def unshare(self, ctx: RequestContext, file_id: int) -> StoredFile:
        record = await self._get_live_file(file_id)
        await self._authorize_manage(ctx, record, "unshare")

        record.share_token = None
        record.share_expiry = None
        self.db.add(record)
        await self.db.commit()

        await self.audit.log(
            AuditAction.FILE_UNSHARE,
            AuditStatus.SUCCESS,
            actor=AuditActor.from_context(ctx),
            target=record.id,
            target_type=TargetType.FILE,
            client=ctx.client,
        )
        return record

    async def get_shared_file(self, token: str) -> Tuple[StoredFile, Optional[str]]:
        """Live, unexpired shared file and its owner's username."""
        if not token:
            raise NotFound("Shared file not found or link has expired.")
        result = await self.db.execute(
            select(StoredFile).where(
                StoredFile.share_token == token,
                StoredFile.is_deleted.is_(False),
            )
        )
        record = result.scalars().first()
        expiry = as_utc(record.share_expiry) if record is not None else None
        if record is None or expiry is None or expiry <= utcnow():
            raise NotFound("Shared file not found or link has expired.")
        owner = await self.db.get(User, record.owner_id)
        return record, owner.username if owner is not None else None

    # ─────────────────────────────────────────────────────────────
    # Delete (soft)
    # ─────────────────────────────────────────────────────────────
    async def delete(self, ctx: RequestContext, file_id: int) -> None:
        record = await self._get_live_file(file_id)
        await self._authorize_manage(ctx, record, "delete")

        result = await self.db.execute(
            update(StoredFile)
            .where(StoredFile.id == record.id, StoredFile.is_deleted.is_(False))
            .values(is_deleted=True, deleted_at=utcnow(), share_token=None, share_expiry=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount == 0:
            # lost a race with a concurrent delete
            raise NotFound("File not found.")

        try:
            await run_in_threadpool(self.storage.delete, record.storage_ref)
        except (BlobNotFound, StorageUnavailable):
            logger.warning("Could not remove blob for deleted file %s", record.id)

        await self.audit.log(
            AuditAction.FILE_DELETE,
            AuditStatus.SUCCESS,
            actor=AuditActor.from_context(ctx),
            target=record.id,
            target_type=TargetType.FILE,
            details={"filename": record.original_name},
            client=ctx.client,
        )

    # ─────────────────────────────────────────────────────────────
    # Listing
    # ─────────────────────────────────────────────────────────────
    async def list_files(
        self,
        ctx: RequestContext,
        page: int = 1,
        limit: int = 20,
        access_level: Optional[AccessLevel] = None,
    ) -> Tuple[List[StoredFile], int]:
        """
        admin   → everything (optionally filtered by access level)
        premium → own files plus every public file
        guest   → public files only
        """
        page = max(page, 1)
        limit = min(max(limit, 1), 100)

        conditions = [StoredFile.is_deleted.is_(False)]
        if ctx.is_admin:
            if access_level is not None:
                conditions.append(StoredFile.access_level == access_level)
        elif ctx.role is Role.PREMIUM:
            conditions.append(
                or_(
                    StoredFile.owner_id == ctx.account_id,
                    StoredFile.access_level == AccessLevel.PUBLIC,
                )
            )
        else:
            conditions.append(StoredFile.access_level == AccessLevel.PUBLIC)

        total = await self.db.scalar(select(func.count(StoredFile.id)).where(*conditions))
        result = await self.db.execute(
            select(StoredFile)
            .where(*conditions)
            .order_by(StoredFile.created_at.desc(), StoredFile.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0
