"""Tests for the background garbage collector."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from filecrab.db.index import InMemoryMetadataIndex, RecordKind
from filecrab.errors import NotFound, StorageError
from filecrab.lib.collector import CollectorState, GarbageCollector
from filecrab.lib.storage import LocalObjectStore

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


async def _chunks(data):
    yield data


@pytest.fixture
def index():
    return InMemoryMetadataIndex(clock=lambda: NOW)


@pytest.fixture
async def store(tmp_path):
    backend = LocalObjectStore(tmp_path / "blobs")
    await backend.prepare()
    return backend


@pytest.fixture
def collector(index, store):
    return GarbageCollector(index, store, interval=60, clock=lambda: NOW)


class TestSweep:
    @pytest.mark.asyncio
    async def test_removes_expired_rows_and_their_blobs(self, index, store, collector):
        old = await index.create_asset("old", encrypted=False, expire_at=NOW - timedelta(minutes=1))
        new = await index.create_asset("new", encrypted=False, expire_at=NOW + timedelta(minutes=1))
        await store.put_stream(old.storage_id, _chunks(b"old"))
        await store.put_stream(new.storage_id, _chunks(b"new"))
        text = await index.create_text("ab", expire_at=NOW - timedelta(minutes=1))

        report = await collector.sweep()

        assert report.assets_removed == [old.storage_id]
        assert report.texts_removed == [text.storage_id]
        assert report.blob_failures == []
        assert not await store.exists(old.storage_id)
        assert await store.exists(new.storage_id)
        assert (await index.find_asset_by_memo(new.memo_id)).file_name == "new"

    @pytest.mark.asyncio
    async def test_missing_blob_is_not_a_failure(self, index, collector):
        await index.create_asset("no-blob", encrypted=False, expire_at=NOW - timedelta(minutes=1))
        report = await collector.sweep()
        assert len(report.assets_removed) == 1
        assert report.blob_failures == []

    @pytest.mark.asyncio
    async def test_blob_failure_is_logged_and_sweep_continues(self, index, caplog):
        first = await index.create_asset("a", encrypted=False, expire_at=NOW - timedelta(minutes=1))
        second = await index.create_asset("b", encrypted=False, expire_at=NOW - timedelta(minutes=1))
        await index.create_text("ab", expire_at=NOW - timedelta(minutes=1))

        store = AsyncMock()
        store.delete.side_effect = lambda storage_id: (
            _raise(StorageError("disk gone")) if storage_id == first.storage_id else None
        )
        collector = GarbageCollector(index, store, clock=lambda: NOW)

        with caplog.at_level(logging.WARNING, logger="filecrab.lib.collector"):
            report = await collector.sweep()

        assert report.blob_failures == [first.storage_id]
        assert set(report.assets_removed) == {first.storage_id, second.storage_id}
        assert len(report.texts_removed) == 1
        assert not report.aborted
        assert "Could not delete blob" in caplog.text

    @pytest.mark.asyncio
    async def test_index_failure_aborts_current_sweep_only(self, store):
        index = AsyncMock()
        index.list_and_delete_expired.side_effect = [StorageError("db down"), [], []]
        collector = GarbageCollector(index, store, clock=lambda: NOW)

        first = await collector.sweep()
        second = await collector.sweep()

        assert first.aborted
        assert not second.aborted
        assert collector.state is CollectorState.IDLE

    @pytest.mark.asyncio
    async def test_sweeps_never_overlap(self, store):
        active = 0
        peak = 0

        async def slow_sweep(kind, now=None):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return []

        index = AsyncMock()
        index.list_and_delete_expired.side_effect = slow_sweep
        collector = GarbageCollector(index, store, clock=lambda: NOW)

        await asyncio.gather(*(collector.sweep() for _ in range(4)))

        assert peak == 1
        assert index.list_and_delete_expired.await_count == 8

    @pytest.mark.asyncio
    async def test_asset_rows_go_before_text_rows(self, store):
        index = AsyncMock()
        index.list_and_delete_expired.return_value = []
        await GarbageCollector(index, store, clock=lambda: NOW).sweep()

        kinds = [call.args[0] for call in index.list_and_delete_expired.await_args_list]
        assert kinds == [RecordKind.ASSET, RecordKind.TEXT]


def _raise(exc):
    raise exc


class TestLoop:
    @pytest.mark.asyncio
    async def test_runs_on_injected_sleep_and_stops(self, index, store):
        naps = []
        parked = asyncio.Event()

        async def fake_sleep(seconds):
            naps.append(seconds)
            if len(naps) >= 3:
                parked.set()
                await asyncio.Event().wait()
            await asyncio.sleep(0)

        await index.create_asset("old", encrypted=False, expire_at=NOW - timedelta(minutes=1))
        collector = GarbageCollector(index, store, interval=42, clock=lambda: NOW, sleep=fake_sleep)

        await collector.start()
        assert collector.running
        await asyncio.wait_for(parked.wait(), timeout=5)

        assert naps == [42, 42, 42]
        assert await index.list_and_delete_expired(RecordKind.ASSET, NOW) == []

        await collector.stop()
        assert not collector.running

    @pytest.mark.asyncio
    async def test_loop_survives_sweep_errors(self, store):
        index = AsyncMock()
        index.list_and_delete_expired.side_effect = RuntimeError("unexpected")
        ticks = asyncio.Event()
        count = 0

        async def fake_sleep(seconds):
            nonlocal count
            count += 1
            if count >= 3:
                ticks.set()
                await asyncio.Event().wait()
            await asyncio.sleep(0)

        collector = GarbageCollector(index, store, clock=lambda: NOW, sleep=fake_sleep)
        await collector.start()
        await asyncio.wait_for(ticks.wait(), timeout=5)
        assert collector.running
        await collector.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, collector):
        await collector.stop()
        assert collector.state is CollectorState.IDLE


class TestSweepAfterExpiry:
    @pytest.mark.asyncio
    async def test_expired_asset_is_gone_after_sweep(self, index, store, collector):
        asset = await index.create_asset("f", encrypted=False, expire_at=NOW - timedelta(seconds=1))
        await store.put_stream(asset.storage_id, _chunks(b"payload"))

        await collector.sweep()

        with pytest.raises(NotFound):
            await index.find_asset_by_memo(asset.memo_id)
        assert not await store.exists(asset.storage_id)
