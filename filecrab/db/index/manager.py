"""Metadata index factory."""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING

from filecrab.db.index.memory import InMemoryMetadataIndex

if TYPE_CHECKING:
    from filecrab.config import Settings
    from filecrab.db.index.base import MetadataIndex
    from filecrab.db.index.sql import SessionMaker


def create_metadata_index(
    settings: Settings, session_maker: SessionMaker | None = None
) -> MetadataIndex:
    """Instantiate the configured metadata index.

    The SQL index uses *session_maker* when given (the app passes the
    SQLAlchemy plugin's session factory) and otherwise owns an engine built
    from ``settings.db.url``.
    """
    backend_type = settings.index.backend

    if backend_type == "memory":
        return InMemoryMetadataIndex(default_ttl=settings.default_ttl)

    if backend_type == "sqlalchemy":
        from filecrab.db.index.sql import SQLAlchemyMetadataIndex

        if session_maker is not None:
            return SQLAlchemyMetadataIndex(session_maker, default_ttl=settings.default_ttl)
        return SQLAlchemyMetadataIndex.from_url(settings.db.url, default_ttl=settings.default_ttl)

    # Dynamic import: "module:ClassName"
    if ":" in backend_type:
        parts = backend_type.split(":")
        if len(parts) != 2:
            raise ValueError(
                f"Invalid index spec '{backend_type}': must contain exactly one colon"
            )
        module_path, class_name = parts
        module = importlib.import_module(module_path)
        cls = getattr(module, class_name)
        return cls(settings)

    raise ValueError(
        f"Unknown metadata index '{backend_type}'. "
        "Use 'sqlalchemy', 'memory', or 'module:ClassName'."
    )
