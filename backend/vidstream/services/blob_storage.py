"""Blob storage abstraction rooted at a publicly served directory.

Paths handed to this service are storage-relative ("temp/v1/video.bin",
"videos/ab12.webm"); public URLs are APP_URL + PUBLIC_PATH_PREFIX + path.
"""
import logging
import os
from pathlib import Path, PurePosixPath
from urllib.parse import quote

import aiofiles

from vidstream.config import settings
from vidstream.errors import StorageError

logger = logging.getLogger(__name__)


class BlobStorageService:
    """Handles blob append/read/write/delete on local disk."""

    def __init__(
        self,
        root: str | None = None,
        app_url: str | None = None,
        public_prefix: str | None = None,
    ):
        self.base_path = Path(root or settings.STORAGE_ROOT).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.app_url = (app_url if app_url is not None else settings.APP_URL).rstrip("/")
        prefix = public_prefix if public_prefix is not None else settings.PUBLIC_PATH_PREFIX
        self.public_prefix = "/" + prefix.strip("/") if prefix.strip("/") else ""

    def absolute(self, path: str) -> Path:
        """Resolve a storage-relative path, refusing anything outside the root."""
        rel = PurePosixPath(path)
        if rel.is_absolute() or ".." in rel.parts or not rel.parts:
            raise StorageError(f"Invalid storage path: {path!r}")
        return self.base_path.joinpath(*rel.parts)

    def exists(self, path: str) -> bool:
        return self.absolute(path).is_file()

    async def write(self, path: str, data: bytes) -> None:
        """Create or overwrite the blob at `path`."""
        await self._put(path, data, "wb")

    async def append(self, path: str, data: bytes) -> None:
        """Append to the blob at `path`, creating it if needed."""
        await self._put(path, data, "ab")

    def size(self, path: str) -> int:
        """Size in bytes of the blob at `path`, 0 if it does not exist."""
        file_path = self.absolute(path)
        return file_path.stat().st_size if file_path.is_file() else 0

    async def truncate(self, path: str, size: int) -> None:
        """Cut the blob at `path` back to `size` bytes."""
        file_path = self.absolute(path)
        try:
            async with aiofiles.open(file_path, "r+b") as f:
                await f.truncate(size)
        except OSError as e:
            raise StorageError(f"Failed to truncate {path}: {e}") from e

    async def read(self, path: str) -> bytes:
        file_path = self.absolute(path)
        try:
            async with aiofiles.open(file_path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            raise StorageError(f"Blob not found: {path}")
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    async def delete(self, path: str) -> None:
        """Delete a blob. Missing blobs are ignored; empty parent dirs are pruned."""
        file_path = self.absolute(path)
        try:
            if file_path.exists():
                os.remove(file_path)
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}") from e
        self._prune_dirs(file_path.parent)

    def url(self, path: str) -> str:
        """Public URL for a storage-relative path."""
        return f"{self.app_url}{self.public_prefix}/{quote(str(PurePosixPath(path)))}"

    async def _put(self, path: str, data: bytes, mode: str) -> None:
        file_path = self.absolute(path)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(file_path, mode) as f:
                await f.write(data)
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e

    def _prune_dirs(self, directory: Path) -> None:
        while directory != self.base_path and self.base_path in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                # not empty
                return
            directory = directory.parent


blob_storage = BlobStorageService()
