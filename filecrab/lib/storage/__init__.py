"""Pluggable raw-bytes object storage keyed by storage id."""

from filecrab.lib.storage.base import BlobStream, ObjectStore
from filecrab.lib.storage.local import LocalObjectStore
from filecrab.lib.storage.manager import create_object_store

__all__ = ["BlobStream", "LocalObjectStore", "ObjectStore", "create_object_store"]
