"""Metadata index protocol, record types and identifier allocation."""

from __future__ import annotations

import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol, TypeVar, runtime_checkable

from filecrab.errors import DuplicateIdentifier
from filecrab.lib.memo import new_memo_id, new_storage_id

logger = logging.getLogger(__name__)

MAX_ID_ATTEMPTS = 5

T = TypeVar("T")


class RecordKind(enum.Enum):
    ASSET = "asset"
    TEXT = "text"


@dataclass(frozen=True)
class AssetRecord:
    storage_id: str
    memo_id: str
    file_name: str
    encrypted: bool
    expire_at: datetime
    created_at: datetime


@dataclass(frozen=True)
class TextRecord:
    storage_id: str
    memo_id: str
    content: str
    expire_at: datetime
    created_at: datetime


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def insert_with_fresh_ids(
    insert: Callable[[str, str], Awaitable[T]],
    attempts: int = MAX_ID_ATTEMPTS,
) -> T:
    """Call ``insert(storage_id, memo_id)`` with new random ids until one is free.

    ``insert`` signals a collision by raising :class:`DuplicateIdentifier`.
    """
    for attempt in range(1, attempts + 1):
        try:
            return await insert(new_storage_id(), new_memo_id())
        except DuplicateIdentifier:
            logger.info("Identifier collision (attempt %d of %d), regenerating", attempt, attempts)
    raise DuplicateIdentifier(f"No free identifier after {attempts} attempts")


@runtime_checkable
class MetadataIndex(Protocol):
    """Interface for the store of Asset and Text records.

    Records whose ``expire_at`` has passed are invisible to lookups even
    before the garbage collector removes them.
    """

    async def create_asset(
        self, file_name: str, encrypted: bool, expire_at: datetime | None = None
    ) -> AssetRecord:
        """Insert an Asset with fresh identifiers."""
        ...

    async def find_asset_by_memo(self, memo_id: str) -> AssetRecord:
        """Return the live Asset for *memo_id*. Raises NotFound."""
        ...

    async def delete_asset(self, storage_id: str) -> bool:
        """Remove an Asset row. Returns True when a row was removed."""
        ...

    async def create_text(self, content: str, expire_at: datetime | None = None) -> TextRecord:
        """Insert a Text with fresh identifiers."""
        ...

    async def find_text_by_memo(self, memo_id: str) -> TextRecord:
        """Return the live Text for *memo_id*. Raises NotFound."""
        ...

    async def delete_text(self, storage_id: str) -> bool:
        """Remove a Text row. Returns True only for the caller that removed it."""
        ...

    async def list_and_delete_expired(
        self, kind: RecordKind, now: datetime | None = None
    ) -> list[str]:
        """Remove every expired row of *kind* and return their storage ids."""
        ...

    async def close(self) -> None:
        """Release resources held by the index."""
        ...
