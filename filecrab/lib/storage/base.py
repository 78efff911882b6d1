"""Object store protocol and common types."""

from __future__ import annotations

import re
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

READ_CHUNK_SIZE = 64 * 1024

_STORAGE_ID_PATTERN = re.compile(r"^[A-Za-z0-9]+$")


def validate_storage_id(storage_id: str) -> str:
    """Reject keys that could escape the store's namespace."""
    if not _STORAGE_ID_PATTERN.match(storage_id):
        raise ValueError(f"Invalid storage id: {storage_id!r}")
    return storage_id


@dataclass
class BlobStream:
    """A blob being read back: its byte chunks and total length."""

    chunks: AsyncIterator[bytes]
    content_length: int


@runtime_checkable
class ObjectStore(Protocol):
    """Interface for pluggable raw-bytes storage keyed by storage id."""

    async def prepare(self) -> None:
        """Create whatever the backend needs before the first request."""
        ...

    async def put_stream(self, storage_id: str, chunks: AsyncIterable[bytes]) -> None:
        """Store the concatenation of *chunks* under *storage_id*."""
        ...

    async def get_stream(self, storage_id: str) -> BlobStream:
        """Open a blob for reading. Raises BlobNotFound when absent."""
        ...

    async def delete(self, storage_id: str) -> None:
        """Remove a blob. Deleting a missing blob is not an error."""
        ...

    async def exists(self, storage_id: str) -> bool:
        """Check whether a blob exists."""
        ...

    async def close(self) -> None:
        """Release resources held by the backend."""
        ...
