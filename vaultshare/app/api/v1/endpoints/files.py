# vaultshare/app/api/v1/endpoints/files.py
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Header, Query, Response, UploadFile, status

from vaultshare.app.api import deps
from vaultshare.app.core.config import settings
from vaultshare.app.core.context import RequestContext
from vaultshare.app.models.enums import AccessLevel, Role
from vaultshare.app.models.stored_file import StoredFile
from vaultshare.app.schemas.common import ApiResponse, Pagination
from vaultshare.app.schemas.file import (
    DownloadRequest,
    EncryptedBlob,
    FileList,
    FileResponse,
    KeyExchangeRequest,
    KeyExchangeResponse,
    ShareRequest,
    ShareResponse,
    SharedFileResponse,
    UploadResponse,
)
from vaultshare.app.security import envelope
from vaultshare.app.services.files import FileService, truncated_digest

router = APIRouter()

uploader = deps.require_role(Role.PREMIUM, Role.ADMIN)


def _to_response(record: StoredFile) -> FileResponse:
    response = FileResponse.model_validate(record)
    # full digest is only handed out with the content itself
    response.sha256_digest = truncated_digest(record.sha256_digest)
    response.is_shared = record.share_token is not None
    return response


# 1. LIST (role-scoped)
@router.get("", response_model=ApiResponse[FileList])
async def list_files(
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=100),
        access_level: Optional[AccessLevel] = Query(None),
        ctx: RequestContext = Depends(deps.get_request_context),
        files: FileService = Depends(deps.get_file_service),
):
    records, total = await files.list_files(ctx, page=page, limit=limit, access_level=access_level)
    return ApiResponse(
        data=FileList(
            files=[_to_response(record) for record in records],
            pagination=Pagination.build(page, limit, total),
        )
    )


# 2. UPLOAD
@router.post("/upload", response_model=ApiResponse[UploadResponse], status_code=status.HTTP_201_CREATED)
async def upload_file(
        file: UploadFile = File(...),
        access_level: AccessLevel = Form(AccessLevel.VAULT),
        description: str = Form(""),
        key_exchange_enabled: bool = Form(False),
        password: Optional[str] = Form(None),
        x_encryption_password: Optional[str] = Header(None),
        ctx: RequestContext = Depends(uploader),
        files: FileService = Depends(deps.get_file_service),
):
    # one byte past the limit is enough to reject
    data = await file.read(settings.MAX_UPLOAD_BYTES + 1)
    record = await files.upload(
        ctx,
        filename=file.filename or "",
        data=data,
        password=x_encryption_password or password,
        access_level=access_level,
        mime_type=file.content_type,
        description=description,
        key_exchange_enabled=key_exchange_enabled,
    )
    return ApiResponse(
        message="File uploaded and encrypted successfully.",
        data=UploadResponse(file=_to_response(record)),
    )


# 3. DOWNLOAD (password path)
@router.post("/{file_id}/download")
async def download_file(
        file_id: int,
        body: Optional[DownloadRequest] = None,
        x_encryption_password: Optional[str] = Header(None),
        ctx: RequestContext = Depends(deps.get_request_context),
        files: FileService = Depends(deps.get_file_service),
):
    password = x_encryption_password or (body.password if body else None)
    result = await files.download_with_password(ctx, file_id, password)
    return Response(
        content=result.data,
        media_type=result.file.mime_type,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(result.file.original_name)}",
            "X-Integrity-Status": "PASSED",
            "X-Encryption-Algorithm": envelope.ALGORITHM,
            "X-Content-SHA256": result.digest,
        },
    )


# 4. DOWNLOAD (key-exchange path)
@router.post("/{file_id}/key-exchange", response_model=ApiResponse[KeyExchangeResponse])
async def key_exchange_download(
        file_id: int,
        body: KeyExchangeRequest,
        ctx: RequestContext = Depends(deps.get_request_context),
        files: FileService = Depends(deps.get_file_service),
):
    result = await files.download_with_key_exchange(ctx, file_id, body.public_key)
    return ApiResponse(
        message="File encrypted for key exchange.",
        data=KeyExchangeResponse(
            file_id=result.file.id,
            original_name=result.file.original_name,
            mime_type=result.file.mime_type,
            encrypted_file=EncryptedBlob(**result.encrypted_file),
            encrypted_key=result.encrypted_key,
            original_iv=result.original_iv,
            original_auth_tag=result.original_auth_tag,
            sha256_digest=result.sha256_digest,
            owner_public_key=result.owner_public_key,
        ),
    )


# 5. SHARE / UNSHARE
@router.post("/{file_id}/share", response_model=ApiResponse[ShareResponse])
async def share_file(
        file_id: int,
        body: Optional[ShareRequest] = None,
        ctx: RequestContext = Depends(uploader),
        files: FileService = Depends(deps.get_file_service),
):
    result = await files.share(ctx, file_id, body.expiry_minutes if body else None)
    return ApiResponse(
        message="Share link created.",
        data=ShareResponse(
            share_token=result.token,
            share_url=result.url,
            expires_at=result.expires_at,
            qr_code=result.qr_code,
        ),
    )


@router.delete("/{file_id}/share", response_model=ApiResponse[None])
async def unshare_file(
        file_id: int,
        ctx: RequestContext = Depends(uploader),
        files: FileService = Depends(deps.get_file_service),
):
    await files.unshare(ctx, file_id)
    return ApiResponse(message="Share link revoked.")


@router.get("/share/{token}", response_model=ApiResponse[SharedFileResponse])
async def read_shared_file(
        token: str,
        files: FileService = Depends(deps.get_file_service),
):
    record, owner = await files.get_shared_file(token)
    return ApiResponse(
        data=SharedFileResponse(
            original_name=record.original_name,
            mime_type=record.mime_type,
            size=record.size,
            description=record.description,
            owner=owner,
            expires_at=record.share_expiry,
        )
    )


# 6. DELETE (soft)
@router.delete("/{file_id}", response_model=ApiResponse[None])
async def delete_file(
        file_id: int,
        ctx: RequestContext = Depends(uploader),
        files: FileService = Depends(deps.get_file_service),
):
    await files.delete(ctx, file_id)
    return ApiResponse(message="File deleted successfully.")
