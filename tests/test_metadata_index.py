"""Tests for the metadata index, run against both the SQL and in-memory backends."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from filecrab.config import DatabaseConfig, IndexConfig, Settings
from filecrab.db.base import Base
from filecrab.db.index import (
    InMemoryMetadataIndex,
    MetadataIndex,
    RecordKind,
    create_metadata_index,
)
from filecrab.db.index.sql import SQLAlchemyMetadataIndex
from filecrab.errors import DuplicateIdentifier, NotFound

import filecrab.db.models  # noqa: F401

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _clock():
    return NOW


@pytest.fixture(params=["memory", "sql"])
async def index(request, tmp_path):
    if request.param == "memory":
        yield InMemoryMetadataIndex(default_ttl=timedelta(hours=24), clock=_clock)
        return

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'index.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    sql_index = SQLAlchemyMetadataIndex(
        async_sessionmaker(engine, expire_on_commit=False),
        default_ttl=timedelta(hours=24),
        clock=_clock,
        engine=engine,
    )
    yield sql_index
    await sql_index.close()


class TestAssets:
    """Create, find and delete Asset records."""

    def test_backends_satisfy_protocol(self, index):
        assert isinstance(index, MetadataIndex)

    @pytest.mark.asyncio
    async def test_create_then_find(self, index):
        asset = await index.create_asset("report.pdf", encrypted=True)

        found = await index.find_asset_by_memo(asset.memo_id)

        assert found.storage_id == asset.storage_id
        assert found.file_name == "report.pdf"
        assert found.encrypted is True
        assert found.expire_at == NOW + timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_explicit_expiry(self, index):
        expire_at = NOW + timedelta(minutes=5)
        asset = await index.create_asset("a.txt", encrypted=False, expire_at=expire_at)
        assert (await index.find_asset_by_memo(asset.memo_id)).expire_at == expire_at

    @pytest.mark.asyncio
    async def test_unknown_memo(self, index):
        with pytest.raises(NotFound):
            await index.find_asset_by_memo("no_such_memo")

    @pytest.mark.asyncio
    async def test_expired_asset_is_invisible_before_sweep(self, index):
        asset = await index.create_asset("old.txt", encrypted=False, expire_at=NOW - timedelta(seconds=1))
        with pytest.raises(NotFound):
            await index.find_asset_by_memo(asset.memo_id)

    @pytest.mark.asyncio
    async def test_expiring_exactly_now_counts_as_expired(self, index):
        asset = await index.create_asset("edge.txt", encrypted=False, expire_at=NOW)
        with pytest.raises(NotFound):
            await index.find_asset_by_memo(asset.memo_id)

    @pytest.mark.asyncio
    async def test_delete_asset(self, index):
        asset = await index.create_asset("gone.txt", encrypted=False)

        assert await index.delete_asset(asset.storage_id) is True
        assert await index.delete_asset(asset.storage_id) is False
        with pytest.raises(NotFound):
            await index.find_asset_by_memo(asset.memo_id)

    @pytest.mark.asyncio
    async def test_memo_ids_are_unique(self, index):
        assets = [await index.create_asset(f"f{i}", encrypted=False) for i in range(50)]
        assert len({a.memo_id for a in assets}) == 50
        assert len({a.storage_id for a in assets}) == 50


class TestIdentifierCollisions:
    """A colliding memo id is regenerated rather than surfaced."""

    @pytest.mark.asyncio
    async def test_collision_is_retried(self, index):
        memos = iter(["taken_memo", "taken_memo", "fresh_memo"])
        with patch("filecrab.db.index.base.new_memo_id", side_effect=lambda: next(memos)):
            first = await index.create_asset("one", encrypted=False)
            second = await index.create_asset("two", encrypted=False)

        assert first.memo_id == "taken_memo"
        assert second.memo_id == "fresh_memo"
        assert (await index.find_asset_by_memo("taken_memo")).file_name == "one"

    @pytest.mark.asyncio
    async def test_gives_up_after_repeated_collisions(self, index):
        with patch("filecrab.db.index.base.new_memo_id", return_value="always_the_same"):
            await index.create_text("00")
            with pytest.raises(DuplicateIdentifier):
                await index.create_text("01")


class TestTexts:
    @pytest.mark.asyncio
    async def test_create_find_delete(self, index):
        text = await index.create_text("deadbeef")

        assert (await index.find_text_by_memo(text.memo_id)).content == "deadbeef"
        assert await index.delete_text(text.storage_id) is True
        assert await index.delete_text(text.storage_id) is False
        with pytest.raises(NotFound):
            await index.find_text_by_memo(text.memo_id)

    @pytest.mark.asyncio
    async def test_only_one_concurrent_delete_wins(self, index):
        text = await index.create_text("cafe")
        results = await asyncio.gather(*(index.delete_text(text.storage_id) for _ in range(5)))
        assert results.count(True) == 1


class TestSweepExpired:
    """list_and_delete_expired returns and removes exactly the expired rows."""

    @pytest.mark.asyncio
    async def test_assets(self, index):
        expired = await index.create_asset("old", encrypted=False, expire_at=NOW - timedelta(hours=1))
        live = await index.create_asset("new", encrypted=False, expire_at=NOW + timedelta(hours=1))

        removed = await index.list_and_delete_expired(RecordKind.ASSET, NOW)

        assert removed == [expired.storage_id]
        assert await index.list_and_delete_expired(RecordKind.ASSET, NOW) == []
        assert (await index.find_asset_by_memo(live.memo_id)).storage_id == live.storage_id

    @pytest.mark.asyncio
    async def test_texts_and_assets_are_independent(self, index):
        text = await index.create_text("ab", expire_at=NOW - timedelta(hours=1))
        asset = await index.create_asset("x", encrypted=False, expire_at=NOW - timedelta(hours=1))

        assert await index.list_and_delete_expired(RecordKind.TEXT, NOW) == [text.storage_id]
        assert await index.list_and_delete_expired(RecordKind.ASSET, NOW) == [asset.storage_id]

    @pytest.mark.asyncio
    async def test_defaults_to_clock(self, index):
        await index.create_asset("old", encrypted=False, expire_at=NOW - timedelta(seconds=1))
        assert len(await index.list_and_delete_expired(RecordKind.ASSET)) == 1

    @pytest.mark.asyncio
    async def test_large_sweep(self, index):
        for i in range(1200):
            await index.create_text(f"{i:04x}", expire_at=NOW - timedelta(minutes=1))
        removed = await index.list_and_delete_expired(RecordKind.TEXT, NOW)
        assert len(removed) == 1200
        assert await index.list_and_delete_expired(RecordKind.TEXT, NOW) == []


class TestCreateMetadataIndex:
    def test_memory(self):
        settings = Settings(index=IndexConfig(backend="memory"), default_expire_time=2)
        index = create_metadata_index(settings)
        assert isinstance(index, InMemoryMetadataIndex)

    @pytest.mark.asyncio
    async def test_sqlalchemy_owns_engine(self, tmp_path):
        settings = Settings(
            index=IndexConfig(backend="sqlalchemy"),
            db=DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'x.db'}"),
        )
        index = create_metadata_index(settings)
        assert isinstance(index, SQLAlchemyMetadataIndex)
        await index.close()

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown metadata index"):
            create_metadata_index(Settings(index=IndexConfig(backend="redis")))
