"""Object store factory."""

from __future__ import annotations

import importlib
from pathlib import Path
from typing import TYPE_CHECKING

from filecrab.lib.storage.local import LocalObjectStore

if TYPE_CHECKING:
    from filecrab.config import StorageConfig
    from filecrab.lib.storage.base import ObjectStore


def create_object_store(config: StorageConfig) -> ObjectStore:
    """Instantiate an object store from configuration."""
    backend_type = config.backend

    if backend_type == "local":
        return LocalObjectStore(base_path=Path(config.local_path))

    if backend_type == "s3":
        from filecrab.lib.storage.s3 import S3ObjectStore

        return S3ObjectStore(config.s3)

    # Dynamic import: "module:ClassName"
    if ":" in backend_type:
        parts = backend_type.split(":")
        if len(parts) != 2:
            raise ValueError(
                f"Invalid backend spec '{backend_type}': must contain exactly one colon"
            )
        module_path, class_name = parts
        module = importlib.import_module(module_path)
        cls = getattr(module, class_name)
        return cls(config)

    raise ValueError(
        f"Unknown storage backend '{backend_type}'. "
        "Use 'local', 's3', or 'module:ClassName'."
    )
