"""Local filesystem object store."""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from collections.abc import AsyncIterable, AsyncIterator
from pathlib import Path
from typing import BinaryIO

from filecrab.errors import BlobNotFound, StorageError
from filecrab.lib.storage.base import READ_CHUNK_SIZE, BlobStream, validate_storage_id

logger = logging.getLogger(__name__)


class LocalObjectStore:
    """Store blobs on the local filesystem under two levels of fan-out directories.

    Writes land in a hidden temporary file next to their destination and are
    renamed into place once the stream completes, so readers never observe a
    partial blob.
    """

    def __init__(self, base_path: Path) -> None:
        self._base_path = base_path

    async def prepare(self) -> None:
        await asyncio.to_thread(self._base_path.mkdir, parents=True, exist_ok=True)

    async def put_stream(self, storage_id: str, chunks: AsyncIterable[bytes]) -> None:
        path = self._key_to_path(storage_id)
        temp_path = path.parent / f".{storage_id}.{uuid.uuid4().hex}.part"
        try:
            handle = await asyncio.to_thread(self._open_for_write, temp_path)
        except OSError as exc:
            raise StorageError(f"Could not create blob {storage_id}") from exc

        try:
            try:
                async for chunk in chunks:
                    await asyncio.to_thread(handle.write, chunk)
            finally:
                await asyncio.to_thread(handle.close)
            await asyncio.to_thread(os.replace, temp_path, path)
            logger.debug("Stored blob %s", storage_id)
        except BaseException as exc:
            await asyncio.to_thread(temp_path.unlink, missing_ok=True)
            if isinstance(exc, OSError):
                raise StorageError(f"Could not write blob {storage_id}") from exc
            raise

    async def get_stream(self, storage_id: str) -> BlobStream:
        path = self._key_to_path(storage_id)
        try:
            handle, size = await asyncio.to_thread(self._open_for_read, path)
        except FileNotFoundError as exc:
            raise BlobNotFound(storage_id) from exc
        except OSError as exc:
            raise StorageError(f"Could not open blob {storage_id}") from exc
        return BlobStream(chunks=self._read_chunks(handle), content_length=size)

    async def delete(self, storage_id: str) -> None:
        path = self._key_to_path(storage_id)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not delete blob {storage_id}") from exc

    async def exists(self, storage_id: str) -> bool:
        return await asyncio.to_thread(self._key_to_path(storage_id).is_file)

    async def close(self) -> None:
        """No persistent resources to clean up."""

    # -- internal helpers --

    def _key_to_path(self, storage_id: str) -> Path:
        validate_storage_id(storage_id)
        if len(storage_id) >= 4:
            return self._base_path / storage_id[:2] / storage_id[2:4] / storage_id
        return self._base_path / storage_id

    async def _read_chunks(self, handle: BinaryIO) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await asyncio.to_thread(handle.read, READ_CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk
        finally:
            await asyncio.to_thread(handle.close)

    @staticmethod
    def _open_for_write(path: Path) -> BinaryIO:
        path.parent.mkdir(parents=True, exist_ok=True)
        return open(path, "wb")

    @staticmethod
    def _open_for_read(path: Path) -> tuple[BinaryIO, int]:
        handle = open(path, "rb")
        return handle, os.fstat(handle.fileno()).st_size
