"""ASGI application factory for filecrab."""

from __future__ import annotations

import logging
from typing import Any

from advanced_alchemy.config import EngineConfig
from advanced_alchemy.extensions.litestar import (
    AsyncSessionConfig,
    SQLAlchemyAsyncConfig,
    SQLAlchemyPlugin,
)
from litestar import Litestar
from litestar.config.compression import CompressionConfig
from litestar.middleware import DefineMiddleware

from filecrab.config import Settings, get_settings
from filecrab.controllers.api import TransferController, health
from filecrab.db.base import Base
from filecrab.db.index import MetadataIndex, create_metadata_index
from filecrab.lib import observability
from filecrab.lib.collector import GarbageCollector
from filecrab.lib.exceptions import EXCEPTION_HANDLERS
from filecrab.lib.storage import ObjectStore, create_object_store
from filecrab.middleware.rate_limit import RateLimitMiddleware

# Register models on Base.metadata
import filecrab.db.models  # noqa: F401

logger = logging.getLogger(__name__)

# Room for multipart boundaries and form fields on top of the file itself
MULTIPART_OVERHEAD = 64 * 1024


def build_db_config(settings: Settings) -> SQLAlchemyAsyncConfig:
    """Build the SQLAlchemy async database configuration."""
    if "sqlite" in settings.db.url:
        engine_config = EngineConfig(echo=settings.db.echo)
    else:
        engine_config = EngineConfig(
            pool_size=settings.db.pool_size,
            max_overflow=settings.db.pool_overflow,
            pool_timeout=settings.db.pool_timeout,
            pool_pre_ping=settings.db.pool_pre_ping,
            echo=settings.db.echo,
        )

    return SQLAlchemyAsyncConfig(
        connection_string=settings.db.url,
        metadata=Base.metadata,
        create_all=settings.db.create_all,
        session_config=AsyncSessionConfig(expire_on_commit=False),
        engine_config=engine_config,
    )


def build_rate_limit_middleware(settings: Settings) -> list:
    """Build the rate limiting middleware list (empty if disabled)."""
    if not settings.rate_limit.enabled:
        return []

    return [
        DefineMiddleware(
            RateLimitMiddleware,
            requests_per_minute=settings.rate_limit.requests_per_minute,
            write_requests_per_minute=settings.rate_limit.write_requests_per_minute,
            paths=settings.rate_limit.paths,
        )
    ]


def create_app(
    settings: Settings | None = None,
    index: MetadataIndex | None = None,
    store: ObjectStore | None = None,
) -> Litestar:
    """Create and configure the Litestar application.

    ``index`` and ``store`` default to the backends named in configuration.
    The app owns the garbage collector: it starts after the object store is
    prepared and stops before the store is closed.
    """
    settings = settings or get_settings()
    observability.configure(settings)

    plugins: list[Any] = []
    db_config: SQLAlchemyAsyncConfig | None = None
    if index is None and settings.index.backend == "sqlalchemy":
        db_config = build_db_config(settings)
        plugins.append(SQLAlchemyPlugin(config=db_config))
        index = create_metadata_index(settings, session_maker=db_config.get_session)
    elif index is None:
        index = create_metadata_index(settings)

    if store is None:
        store = create_object_store(settings.storage)

    collector = GarbageCollector(index, store, interval=settings.cleanup_interval)

    async def on_startup(_app: Litestar) -> None:
        """Prepare storage and start the collector."""
        if db_config is not None:
            observability.instrument_sqlalchemy(db_config.get_engine())
        if not settings.api_key:
            logger.warning("No API key configured; upload, paste and copy will reject every request")
        await store.prepare()
        if settings.collector.enabled:
            await collector.start()

    async def on_shutdown(_app: Litestar) -> None:
        """Stop the collector, then release storage and index resources."""
        await collector.stop()
        await store.close()
        await index.close()

    app = Litestar(
        on_startup=[on_startup],
        on_shutdown=[on_shutdown],
        route_handlers=[TransferController, health],
        plugins=plugins,
        middleware=build_rate_limit_middleware(settings),
        compression_config=CompressionConfig(backend="gzip", exclude="/api/download"),
        exception_handlers=EXCEPTION_HANDLERS,
        request_max_body_size=settings.max_body_bytes + MULTIPART_OVERHEAD,
        debug=settings.debug,
    )
    app.state.api_key = settings.api_key
    app.state.index = index
    app.state.store = store
    app.state.collector = collector
    return app
