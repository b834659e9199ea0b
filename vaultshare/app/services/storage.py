"""
Ciphertext blob store on the local filesystem.

Structure:
    <UPLOAD_DIR>/
        {ref[:2]}/
            {ref}.enc

A reference is an opaque random hex name; nothing about the owner or the
original filename leaks into the path. Writes go to a temp file and are
renamed into place, so readers see either the whole blob or none of it.
"""
import logging
import os
import re
import secrets
import tempfile
from pathlib import Path
from typing import Union

from vaultshare.app.core.exceptions import BlobNotFound, StorageUnavailable

logger = logging.getLogger(__name__)

_REF_PATTERN = re.compile(r"^[0-9a-f]{32}$")


class BlobStorage:
    def __init__(self, root_path: Union[str, Path]):
        self.root = Path(root_path).expanduser()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, ref: str) -> Path:
        if not isinstance(ref, str) or not _REF_PATTERN.match(ref):
            raise BlobNotFound()
        return self.root / ref[:2] / f"{ref}.enc"

    def write(self, data: bytes) -> str:
        ref = secrets.token_hex(16)
        target = self._path(ref)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_name, target)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            logger.error("Blob write failed: %s", exc)
            raise StorageUnavailable() from exc
        return ref

    def read(self, ref: str) -> bytes:
        path = self._path(ref)
        try:
            with open(path, "rb") as fh:
                return fh.read()
        except FileNotFoundError:
            raise BlobNotFound() from None
        except OSError as exc:
            logger.error("Blob read failed for %s: %s", ref, exc)
            raise StorageUnavailable() from exc

    def delete(self, ref: str) -> None:
        """Remove a blob. Missing blobs raise BlobNotFound."""
        path = self._path(ref)
        try:
            path.unlink()
        except FileNotFoundError:
            raise BlobNotFound() from None
        except OSError as exc:
            raise StorageUnavailable() from exc

    def exists(self, ref: str) -> bool:
        try:
            return self._path(ref).is_file()
        except BlobNotFound:
            return False
