"""Metadata index: Asset and Text records with memo id lookup and expiry."""

from filecrab.db.index.base import (
    AssetRecord,
    MetadataIndex,
    RecordKind,
    TextRecord,
    insert_with_fresh_ids,
)
from filecrab.db.index.manager import create_metadata_index
from filecrab.db.index.memory import InMemoryMetadataIndex

__all__ = [
    "AssetRecord",
    "InMemoryMetadataIndex",
    "MetadataIndex",
    "RecordKind",
    "TextRecord",
    "create_metadata_index",
    "insert_with_fresh_ids",
]
