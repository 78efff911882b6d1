"""SQL metadata index on async SQLAlchemy (SQLite via aiosqlite, or PostgreSQL)."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import AbstractAsyncContextManager, contextmanager
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from filecrab.db.index.base import (
    AssetRecord,
    RecordKind,
    TextRecord,
    insert_with_fresh_ids,
    utcnow,
)
from filecrab.db.models import Asset, Text
from filecrab.errors import DuplicateIdentifier, NotFound, StorageError

SessionMaker = Callable[[], AbstractAsyncContextManager[AsyncSession]]

_MODELS: dict[RecordKind, Any] = {RecordKind.ASSET: Asset, RecordKind.TEXT: Text}

# Keeps IN (...) lists under every backend's bound parameter limit
_DELETE_BATCH_SIZE = 500


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise StorageError(f"Metadata index failed to {action}") from exc


def _asset_record(row: Asset) -> AssetRecord:
    return AssetRecord(
        storage_id=row.storage_id,
        memo_id=row.memo_id,
        file_name=row.file_name,
        encrypted=row.encrypted,
        expire_at=row.expire_at,
        created_at=row.created_at,
    )


def _text_record(row: Text) -> TextRecord:
    return TextRecord(
        storage_id=row.storage_id,
        memo_id=row.memo_id,
        content=row.content,
        expire_at=row.expire_at,
        created_at=row.created_at,
    )


class SQLAlchemyMetadataIndex:
    """Index backed by the ``assets`` and ``texts`` tables.

    Args:
        session_maker: Zero-argument callable returning an async context
            manager that yields an ``AsyncSession``; both an
            ``async_sessionmaker`` and ``SQLAlchemyAsyncConfig.get_session``
            fit.
        default_ttl: Lifetime applied when a record is created without an
            explicit ``expire_at``.
        clock: Source of the current UTC time.
    """

    def __init__(
        self,
        session_maker: SessionMaker,
        default_ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_maker = session_maker
        self._default_ttl = default_ttl
        self._clock = clock
        self._engine = engine

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> SQLAlchemyMetadataIndex:
        """Build an index that owns its engine; ``close`` disposes it."""
        engine = create_async_engine(url)
        session_maker = async_sessionmaker(engine, expire_on_commit=False)
        return cls(session_maker, engine=engine, **kwargs)

    async def _insert(self, row: Asset | Text) -> None:
        async with self._session_maker() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateIdentifier(row.memo_id) from exc
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StorageError("Metadata index failed to insert a record") from exc

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
            await self._insert(
                Asset(
                    storage_id=storage_id,
                    memo_id=memo_id,
                    file_name=file_name,
                    encrypted=encrypted,
                    expire_at=expire_at,
                    created_at=now,
                    updated_at=now,
                )
            )
            return record

        return await insert_with_fresh_ids(insert)

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
            await self._insert(
                Text(
                    storage_id=storage_id,
                    memo_id=memo_id,
                    content=content,
                    expire_at=expire_at,
                    created_at=now,
                    updated_at=now,
                )
            )
            return record

        return await insert_with_fresh_ids(insert)

    async def find_asset_by_memo(self, memo_id: str) -> AssetRecord:
        with _storage_errors("look up an asset"):
            async with self._session_maker() as session:
                row = await session.scalar(
                    select(Asset).where(Asset.memo_id == memo_id, Asset.expire_at > self._clock())
                )
                if row is None:
                    raise NotFound(memo_id)
                return _asset_record(row)

    async def find_text_by_memo(self, memo_id: str) -> TextRecord:
        with _storage_errors("look up a text"):
            async with self._session_maker() as session:
                row = await session.scalar(
                    select(Text).where(Text.memo_id == memo_id, Text.expire_at > self._clock())
                )
                if row is None:
                    raise NotFound(memo_id)
                return _text_record(row)

    async def _delete_one(self, model: Any, storage_id: str) -> bool:
        with _storage_errors("delete a record"):
            async with self._session_maker() as session:
                result = await session.execute(delete(model).where(model.storage_id == storage_id))
                await session.commit()
                return result.rowcount == 1

    async def delete_asset(self, storage_id: str) -> bool:
        return await self._delete_one(Asset, storage_id)

    async def delete_text(self, storage_id: str) -> bool:
        return await self._delete_one(Text, storage_id)

    async def list_and_delete_expired(
        self, kind: RecordKind, now: datetime | None = None
    ) -> list[str]:
        now = now or self._clock()
        model = _MODELS[kind]
        with _storage_errors(f"sweep expired {kind.value} records"):
            async with self._session_maker() as session:
                result = await session.scalars(
                    select(model.storage_id).where(model.expire_at <= now)
                )
                expired = list(result.all())
                for start in range(0, len(expired), _DELETE_BATCH_SIZE):
                    batch = expired[start : start + _DELETE_BATCH_SIZE]
                    await session.execute(delete(model).where(model.storage_id.in_(batch)))
                await session.commit()
        return expired

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
