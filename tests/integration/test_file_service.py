"""
Integration tests for the encrypted upload/download pipeline.
"""
import threading
from datetime import timedelta

import pytest
from sqlalchemy import select

from vaultshare.app.core.config import settings
from vaultshare.app.core.exceptions import (
    EncryptionMetadataMissing,
    IntegrityFailure,
    NotFound,
    PayloadTooLarge,
    PermissionDenied,
    ValidationFailed,
    WrongDecryptionPassword,
)
from vaultshare.app.core.timeutils import utcnow
from vaultshare.app.models.enums import AccessLevel, AuditAction, AuditStatus, Role
from vaultshare.app.models.stored_file import StoredFile
from vaultshare.app.security import envelope, integrity, kdf, key_exchange
from vaultshare.app.services.files import FileSalt, LegacyOwnerSalt

from conftest import make_context

PASSWORD = "Sup3rSecret!"


@pytest.fixture
async def owner(register_user):
    return await register_user(Role.PREMIUM, name="owner")


@pytest.fixture
async def owner_ctx(owner):
    return make_context(owner)


async def _upload(file_service, ctx, data=b"HELLOWRLD", level=AccessLevel.PUBLIC, **kwargs):
    return await file_service.upload(
        ctx, filename="hello.txt", data=data, password=PASSWORD,
        access_level=level, mime_type="text/plain", **kwargs
    )


def _flip_first_byte(storage, ref):
    path = storage._path(ref)
    raw = bytearray(path.read_bytes())
    raw[0] ^= 0xFF
    path.write_bytes(bytes(raw))


# ==============================================================================
# End-to-end: upload, download, wrong password, tamper
# ==============================================================================

async def test_end_to_end_scenario(file_service, storage, owner_ctx, audit):
    record = await _upload(file_service, owner_ctx)

    assert record.iv and record.auth_tag and record.wrapped_key_data
    assert record.sha256_digest == integrity.compute_digest(b"HELLOWRLD")
    assert record.file_salt is not None
    assert storage.read(record.storage_ref) != b"HELLOWRLD"

    result = await file_service.download_with_password(owner_ctx, record.id, PASSWORD)
    assert result.data == b"HELLOWRLD"
    _, passed = await audit.query(action=AuditAction.INTEGRITY_CHECK_PASSED)
    assert passed == 1

    with pytest.raises(WrongDecryptionPassword):
        await file_service.download_with_password(owner_ctx, record.id, "wrongpass")
    failed, _ = await audit.query(action=AuditAction.FILE_DOWNLOAD, status=AuditStatus.FAILED)
    assert failed[0].details["stage"] == "key_unwrap"
    _, integrity_failures = await audit.query(action=AuditAction.INTEGRITY_CHECK_FAILED)
    assert integrity_failures == 0

    _flip_first_byte(storage, record.storage_ref)
    with pytest.raises(IntegrityFailure, match="integrity check failed"):
        await file_service.download_with_password(owner_ctx, record.id, PASSWORD)
    _, integrity_failures = await audit.query(action=AuditAction.INTEGRITY_CHECK_FAILED)
    assert integrity_failures == 1


async def test_download_increments_counter(file_service, owner_ctx, db):
    record = await _upload(file_service, owner_ctx)
    await file_service.download_with_password(owner_ctx, record.id, PASSWORD)
    await file_service.download_with_password(owner_ctx, record.id, PASSWORD)
    await db.refresh(record)
    assert record.download_count == 2


async def test_digest_mismatch_is_reported_as_tampering(file_service, owner_ctx, db):
    record = await _upload(file_service, owner_ctx)
    record.sha256_digest = integrity.compute_digest(b"something else")
    db.add(record)
    await db.commit()

    with pytest.raises(IntegrityFailure, match="tampered"):
        await file_service.download_with_password(owner_ctx, record.id, PASSWORD)


async def test_digest_check_runs_off_the_event_loop(file_service, owner_ctx, monkeypatch):
    record = await _upload(file_service, owner_ctx)
    loop_thread = threading.get_ident()
    seen = []
    real_verify = integrity.verify_digest

    def spy(data, expected):
        seen.append(threading.get_ident())
        return real_verify(data, expected)

    monkeypatch.setattr("vaultshare.app.services.files.integrity.verify_digest", spy)
    result = await file_service.download_with_password(owner_ctx, record.id, PASSWORD)

    assert result.data == b"HELLOWRLD"
    assert len(seen) == 1
    assert seen[0] != loop_thread


async def test_missing_blob_is_not_found(file_service, storage, owner_ctx):
    record = await _upload(file_service, owner_ctx)
    storage.delete(record.storage_ref)
    with pytest.raises(NotFound):
        await file_service.download_with_password(owner_ctx, record.id, PASSWORD)


# ==============================================================================
# Upload validation and gates
# ==============================================================================

async def test_upload_requires_password(file_service, owner_ctx):
    with pytest.raises(ValidationFailed, match="password"):
        await file_service.upload(owner_ctx, filename="a.txt", data=b"x", password="")


async def test_upload_rejects_empty_file(file_service, owner_ctx):
    with pytest.raises(ValidationFailed):
        await file_service.upload(owner_ctx, filename="a.txt", data=b"", password=PASSWORD)


async def test_upload_rejects_oversized_file(file_service, owner_ctx, monkeypatch):
    monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 4)
    with pytest.raises(PayloadTooLarge):
        await file_service.upload(owner_ctx, filename="a.txt", data=b"12345", password=PASSWORD)


async def test_guest_cannot_upload(file_service, register_user, audit):
    guest = make_context(await register_user(Role.GUEST))
    with pytest.raises(PermissionDenied):
        await _upload(file_service, guest)
    events, _ = await audit.query(action=AuditAction.ACCESS_DENIED)
    assert events[0].details["gate"] == "resource"


# ==============================================================================
# Access resolution
# ==============================================================================

async def test_vault_file_is_private_to_owner_and_admin(file_service, register_user, owner_ctx, audit):
    record = await _upload(file_service, owner_ctx, level=AccessLevel.VAULT)
    other = make_context(await register_user(Role.PREMIUM))
    admin = make_context(await register_user(Role.ADMIN))

    with pytest.raises(PermissionDenied):
        await file_service.download_with_password(other, record.id, PASSWORD)
    events, _ = await audit.query(action=AuditAction.ACCESS_DENIED)
    assert events[0].details["gate"] == "ownership"

    result = await file_service.download_with_password(admin, record.id, PASSWORD)
    assert result.data == b"HELLOWRLD"


async def test_public_file_readable_by_guest(file_service, register_user, owner_ctx):
    record = await _upload(file_service, owner_ctx, level=AccessLevel.PUBLIC)
    guest = make_context(await register_user(Role.GUEST))
    result = await file_service.download_with_password(guest, record.id, PASSWORD)
    assert result.data == b"HELLOWRLD"


# ==============================================================================
# Salt sources
# ==============================================================================

async def test_per_file_salt_is_independent_of_owner_salt(file_service, owner, owner_ctx, db):
    record = await _upload(file_service, owner_ctx)
    assert isinstance(await file_service.resolve_salt(record), FileSalt)

    owner.kdf_salt = None
    db.add(owner)
    await db.commit()

    result = await file_service.download_with_password(owner_ctx, record.id, PASSWORD)
    assert result.data == b"HELLOWRLD"


async def _legacy_record(db, storage, owner, data=b"legacy data"):
    owner_salt = bytes.fromhex(owner.kdf_salt)
    file_key = envelope.generate_file_key()
    content = envelope.encrypt(data, file_key)
    wrapped = envelope.wrap_key(file_key, kdf.derive_key(PASSWORD, owner_salt))
    record = StoredFile(
        owner_id=owner.id,
        original_name="old.txt",
        mime_type="text/plain",
        size=len(data),
        description="",
        access_level=AccessLevel.VAULT,
        storage_ref=storage.write(content.ciphertext),
        iv=content.iv.hex(),
        auth_tag=content.auth_tag.hex(),
        file_salt=None,
        wrapped_key_data=wrapped.ciphertext.hex(),
        wrapped_key_iv=wrapped.iv.hex(),
        wrapped_key_tag=wrapped.auth_tag.hex(),
        sha256_digest=integrity.compute_digest(data),
    )
    db.add(record)
    await db.commit()
    return record


async def test_legacy_record_uses_owner_salt(file_service, storage, owner, owner_ctx, db):
    record = await _legacy_record(db, storage, owner)
    assert isinstance(await file_service.resolve_salt(record), LegacyOwnerSalt)

    result = await file_service.download_with_password(owner_ctx, record.id, PASSWORD)
    assert result.data == b"legacy data"

    # a different owner salt makes the same password useless
    owner.kdf_salt = kdf.generate_salt().hex()
    db.add(owner)
    await db.commit()
    with pytest.raises(WrongDecryptionPassword):
        await file_service.download_with_password(owner_ctx, record.id, PASSWORD)


async def test_legacy_record_without_owner_salt_fails_closed(file_service, storage, owner, owner_ctx, db):
    record = await _legacy_record(db, storage, owner)
    owner.kdf_salt = None
    db.add(owner)
    await db.commit()

    with pytest.raises(EncryptionMetadataMissing):
        await file_service.download_with_password(owner_ctx, record.id, PASSWORD)


# ==============================================================================
# Key exchange
# ==============================================================================

async def test_key_exchange_download(file_service, register_user, owner, owner_ctx, db, audit):
    record = await _upload(file_service, owner_ctx, key_exchange_enabled=True)
    requester = key_exchange.generate_key_pair()
    guest = make_context(await register_user(Role.GUEST))

    result = await file_service.download_with_key_exchange(guest, record.id, requester.public_pem)

    transit_key = key_exchange.unwrap_symmetric_key(result.encrypted_key, requester.private_pem)
    stored_ciphertext = envelope.decrypt(
        bytes.fromhex(result.encrypted_file["data"]),
        bytes.fromhex(result.encrypted_file["iv"]),
        bytes.fromhex(result.encrypted_file["auth_tag"]),
        transit_key,
    )
    assert result.original_iv == record.iv
    assert result.sha256_digest == integrity.compute_digest(b"HELLOWRLD")
    assert result.owner_public_key == owner.public_key
    assert result.owner_public_key.startswith("-----BEGIN PUBLIC KEY-----")

    # with the file key, the requester reaches the plaintext and checks the digest
    master = kdf.derive_key(PASSWORD, bytes.fromhex(record.file_salt))
    file_key = envelope.unwrap_key(
        envelope.WrappedKey(
            bytes.fromhex(record.wrapped_key_data),
            bytes.fromhex(record.wrapped_key_iv),
            bytes.fromhex(record.wrapped_key_tag),
        ),
        master,
    )
    plaintext = envelope.decrypt(
        stored_ciphertext, bytes.fromhex(result.original_iv), bytes.fromhex(result.original_auth_tag), file_key
    )
    assert integrity.verify_digest(plaintext, result.sha256_digest)

    await db.refresh(record)
    assert record.download_count == 1
    _, total = await audit.query(action=AuditAction.KEY_EXCHANGE_DOWNLOAD)
    assert total == 1


async def test_key_exchange_requires_opt_in(file_service, owner_ctx):
    record = await _upload(file_service, owner_ctx)
    with pytest.raises(ValidationFailed, match="not enabled"):
        await file_service.download_with_key_exchange(
            owner_ctx, record.id, key_exchange.generate_key_pair().public_pem
        )


async def test_key_exchange_requires_public_key(file_service, owner_ctx):
    record = await _upload(file_service, owner_ctx, key_exchange_enabled=True)
    with pytest.raises(ValidationFailed):
        await file_service.download_with_key_exchange(owner_ctx, record.id, "")


# ==============================================================================
# Sharing
# ==============================================================================

async def test_share_and_lookup(file_service, owner_ctx):
    record = await _upload(file_service, owner_ctx)
    share = await file_service.share(owner_ctx, record.id, 30)

    assert len(share.token) == 64
    assert share.url == f"{settings.FRONTEND_URL.rstrip('/')}/share/{share.token}"
    assert share.qr_code.startswith("data:image/png;base64,")

    shared, owner_name = await file_service.get_shared_file(share.token)
    assert shared.id == record.id
    assert owner_name == "owner"


async def test_expired_share_is_not_found(file_service, owner_ctx, db):
    record = await _upload(file_service, owner_ctx)
    share = await file_service.share(owner_ctx, record.id)
    record.share_expiry = utcnow() - timedelta(seconds=1)
    db.add(record)
    await db.commit()

    with pytest.raises(NotFound):
        await file_service.get_shared_file(share.token)


async def test_unshare_revokes_link(file_service, owner_ctx):
    record = await _upload(file_service, owner_ctx)
    share = await file_service.share(owner_ctx, record.id)
    await file_service.unshare(owner_ctx, record.id)
    with pytest.raises(NotFound):
        await file_service.get_shared_file(share.token)


async def test_only_owner_or_admin_can_share(file_service, register_user, owner_ctx):
    record = await _upload(file_service, owner_ctx)
    other = make_context(await register_user(Role.PREMIUM))
    with pytest.raises(PermissionDenied):
        await file_service.share(other, record.id)


async def test_share_expiry_bounds(file_service, owner_ctx):
    record = await _upload(file_service, owner_ctx)
    with pytest.raises(ValidationFailed):
        await file_service.share(owner_ctx, record.id, 0)
    with pytest.raises(ValidationFailed):
        await file_service.share(owner_ctx, record.id, settings.SHARE_MAX_EXPIRY_MINUTES + 1)


# ==============================================================================
# Delete and list
# ==============================================================================

async def test_soft_delete(file_service, storage, owner_ctx, db, audit):
    record = await _upload(file_service, owner_ctx)
    await file_service.delete(owner_ctx, record.id)

    result = await db.execute(
        select(StoredFile).where(StoredFile.id == record.id).execution_options(populate_existing=True)
    )
    deleted = result.scalars().one()
    assert deleted.is_deleted
    assert deleted.deleted_at is not None
    assert not storage.exists(record.storage_ref)

    with pytest.raises(NotFound):
        await file_service.download_with_password(owner_ctx, record.id, PASSWORD)
    with pytest.raises(NotFound):
        await file_service.delete(owner_ctx, record.id)
    _, total = await audit.query(action=AuditAction.FILE_DELETE)
    assert total == 1


async def test_delete_survives_missing_blob(file_service, storage, owner_ctx):
    record = await _upload(file_service, owner_ctx)
    storage.delete(record.storage_ref)
    await file_service.delete(owner_ctx, record.id)


async def test_non_owner_cannot_delete(file_service, register_user, owner_ctx):
    record = await _upload(file_service, owner_ctx)
    other = make_context(await register_user(Role.PREMIUM))
    with pytest.raises(PermissionDenied):
        await file_service.delete(other, record.id)


async def test_listing_is_role_scoped(file_service, register_user, owner_ctx):
    own_vault = await _upload(file_service, owner_ctx, level=AccessLevel.VAULT)
    own_public = await _upload(file_service, owner_ctx, level=AccessLevel.PUBLIC)

    other_ctx = make_context(await register_user(Role.PREMIUM))
    other_vault = await _upload(file_service, other_ctx, level=AccessLevel.VAULT)
    deleted = await _upload(file_service, other_ctx, level=AccessLevel.PUBLIC)
    await file_service.delete(other_ctx, deleted.id)

    guest_ctx = make_context(await register_user(Role.GUEST))
    admin_ctx = make_context(await register_user(Role.ADMIN))

    ids = lambda records: {r.id for r in records}  # noqa: E731

    files, total = await file_service.list_files(owner_ctx)
    assert ids(files) == {own_vault.id, own_public.id}
    assert total == 2

    files, _ = await file_service.list_files(guest_ctx)
    assert ids(files) == {own_public.id}

    files, total = await file_service.list_files(admin_ctx)
    assert ids(files) == {own_vault.id, own_public.id, other_vault.id}

    files, _ = await file_service.list_files(admin_ctx, access_level=AccessLevel.VAULT)
    assert ids(files) == {own_vault.id, other_vault.id}

    page, total = await file_service.list_files(admin_ctx, page=2, limit=2)
    assert total == 3
    assert len(page) == 1
