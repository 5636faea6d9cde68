"""
Blob storage for card files and generated thumbnails.

Files are addressed by an opaque key (``file_ref`` / ``thumbnail_ref`` on
the card). ``LocalBlobStorage`` keeps them under ``settings.storage_path``
and serves them from ``settings.storage_public_url``.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from pathlib import Path

import structlog

from cardflow.core.config import settings

logger = structlog.get_logger()


class BlobNotFoundError(Exception):
    """No blob is stored under the requested key."""

    pass


class BlobStorage(ABC):
    """Storage collaborator for binary files."""

    @abstractmethod
    async def get_url(self, key: str) -> str | None:
        """Public URL for a stored blob, or None when it does not exist."""

    @abstractmethod
    async def read(self, key: str) -> bytes:
        """Blob contents.

        Raises:
            BlobNotFoundError: If nothing is stored under ``key``
        """

    @abstractmethod
    async def store(self, data: bytes, suffix: str = "") -> str:
        """Persist ``data`` and return its new key."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a blob; missing keys are ignored."""


class LocalBlobStorage(BlobStorage):
    """Filesystem-backed blob storage."""

    def __init__(self, base_path: str | None = None, public_url: str | None = None):
        self._base = Path(base_path or settings.storage_path)
        self._public_url = (public_url or settings.storage_public_url).rstrip("/")
        self._base.mkdir(parents=True, exist_ok=True)

    def _resolve(self, key: str) -> Path:
        path = (self._base / key).resolve()
        if self._base.resolve() not in path.parents:
            raise BlobNotFoundError(f"Invalid storage key: {key}")
        return path

    async def get_url(self, key: str) -> str | None:
        path = self._resolve(key)
        if not await asyncio.to_thread(path.is_file):
            return None
        return f"{self._public_url}/{key}"

    async def read(self, key: str) -> bytes:
        path = self._resolve(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as e:
            raise BlobNotFoundError(f"No blob stored under {key}") from e

    async def store(self, data: bytes, suffix: str = "") -> str:
        key = f"{uuid.uuid4().hex}{suffix}"
        path = self._resolve(key)
        await asyncio.to_thread(path.write_bytes, data)
        logger.debug("blob_stored", key=key, size=len(data))
        return key

    async def delete(self, key: str) -> None:
        path = self._resolve(key)
        await asyncio.to_thread(path.unlink, missing_ok=True)
        logger.debug("blob_deleted", key=key)
