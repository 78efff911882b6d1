"""In-process metadata index for single-process deployments and tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Union

from filecrab.db.index.base import (
    AssetRecord,
    RecordKind,
    TextRecord,
    insert_with_fresh_ids,
    utcnow,
)
from filecrab.errors import DuplicateIdentifier, NotFound

_Record = Union[AssetRecord, TextRecord]


class _Table:
    """Rows keyed by storage id with a unique memo id lookup."""

    def __init__(self) -> None:
        self.rows: dict[str, _Record] = {}
        self.by_memo: dict[str, str] = {}

    def insert(self, record: _Record) -> None:
        if record.storage_id in self.rows or record.memo_id in self.by_memo:
            raise DuplicateIdentifier(record.memo_id)
        self.rows[record.storage_id] = record
        self.by_memo[record.memo_id] = record.storage_id

    def find_live(self, memo_id: str, now: datetime) -> _Record:
        storage_id = self.by_memo.get(memo_id)
        record = self.rows.get(storage_id) if storage_id else None
        if record is None or record.expire_at <= now:
            raise NotFound(memo_id)
        return record

    def remove(self, storage_id: str) -> bool:
        record = self.rows.pop(storage_id, None)
        if record is None:
            return False
        del self.by_memo[record.memo_id]
        return True


class InMemoryMetadataIndex:
    """Dict-backed index. Every operation completes without yielding to the loop,
    so each one is atomic with respect to other tasks."""

    def __init__(
        self,
        default_ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._default_ttl = default_ttl
        self._clock = clock
        self._tables = {RecordKind.ASSET: _Table(), RecordKind.TEXT: _Table()}

    async def create_asset(
        self, file_name: str, encrypted: bool, expire_at: datetime | None = None
    ) -> AssetRecord:
        now = self._clock()
        expire_at = expire_at or now + self._default_ttl

        async def insert(storage_id: str, memo_id: str) -> AssetRecord:
            record = AssetRecord(
                storage_id=storage_id,
                memo_id=memo_id,
                file_name=file_name,
                encrypted=encrypted,
                expire_at=expire_at,
                created_at=now,
            )
            self._tables[RecordKind.ASSET].insert(record)
            return record

        return await insert_with_fresh_ids(insert)

    async def find_asset_by_memo(self, memo_id: str) -> AssetRecord:
        return self._tables[RecordKind.ASSET].find_live(memo_id, self._clock())

    async def delete_asset(self, storage_id: str) -> bool:
        return self._tables[RecordKind.ASSET].remove(storage_id)

    async def create_text(self, content: str, expire_at: datetime | None = None) -> TextRecord:
        now = self._clock()
        expire_at = expire_at or now + self._default_ttl

        async def insert(storage_id: str, memo_id: str) -> TextRecord:
            record = TextRecord(
                storage_id=storage_id,
                memo_id=memo_id,
                content=content,
                expire_at=expire_at,
                created_at=now,
            )
            self._tables[RecordKind.TEXT].insert(record)
            return record

        return await insert_with_fresh_ids(insert)

    async def find_text_by_memo(self, memo_id: str) -> TextRecord:
        return self._tables[RecordKind.TEXT].find_live(memo_id, self._clock())

    async def delete_text(self, storage_id: str) -> bool:
        return self._tables[RecordKind.TEXT].remove(storage_id)

    async def list_and_delete_expired(
        self, kind: RecordKind, now: datetime | None = None
    ) -> list[str]:
        now = now or self._clock()
        table = self._tables[kind]
        expired = [sid for sid, record in table.rows.items() if record.expire_at <= now]
        for storage_id in expired:
            table.remove(storage_id)
        return expired

    async def close(self) -> None:
        """Nothing to release."""
