"""Background garbage collector for expired assets and texts."""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

from filecrab.db.index.base import MetadataIndex, RecordKind, utcnow
from filecrab.lib import observability
from filecrab.lib.storage.base import ObjectStore

logger = logging.getLogger(__name__)


class CollectorState(enum.Enum):
    IDLE = "idle"
    SWEEPING = "sweeping"


@dataclass
class SweepReport:
    """Outcome of one sweep."""

    assets_removed: list[str] = field(default_factory=list)
    texts_removed: list[str] = field(default_factory=list)
    blob_failures: list[str] = field(default_factory=list)
    aborted: bool = False


class GarbageCollector:
    """Periodically removes expired metadata rows and then their blobs.

    Rows are deleted before blobs: a crash between the two leaves an orphan
    blob that is never served, never a row pointing at nothing. Blob
    failures are logged and the sweep carries on; an index failure ends the
    current sweep only.

    ``clock`` and ``sleep`` are injectable so tests can drive the loop
    without waiting.
    """

    def __init__(
        self,
        index: MetadataIndex,
        store: ObjectStore,
        interval: float = 60.0,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.index = index
        self.store = store
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self.state = CollectorState.IDLE

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self) -> SweepReport:
        """Run one collection pass. Concurrent callers wait for the pass in progress."""
        async with self._lock:
            self.state = CollectorState.SWEEPING
            try:
                with observability.span("filecrab.sweep"):
                    return await self._sweep()
            finally:
                self.state = CollectorState.IDLE

    async def _sweep(self) -> SweepReport:
        report = SweepReport()
        now = self._clock()
        try:
            report.assets_removed = await self.index.list_and_delete_expired(RecordKind.ASSET, now)
        except Exception:
            logger.warning("Sweep aborted: could not list expired assets", exc_info=True)
            report.aborted = True
            return report

        for storage_id in report.assets_removed:
            try:
                await self.store.delete(storage_id)
            except Exception:
                logger.warning("Could not delete blob %s", storage_id, exc_info=True)
                report.blob_failures.append(storage_id)

        try:
            report.texts_removed = await self.index.list_and_delete_expired(RecordKind.TEXT, now)
        except Exception:
            logger.warning("Sweep aborted: could not list expired texts", exc_info=True)
            report.aborted = True
            return report

        if report.assets_removed or report.texts_removed:
            logger.info(
                "Swept %d assets and %d texts (%d blob failures)",
                len(report.assets_removed),
                len(report.texts_removed),
                len(report.blob_failures),
            )
        return report

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self) -> None:
        while True:
            try:
                await self._sleep(self.interval)
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("Garbage collector error", exc_info=True)
