"""Shared pytest fixtures."""

import pytest
from litestar.testing import TestClient

from filecrab.asgi import create_app
from filecrab.client import Instance, TransferClient
from filecrab.config import (
    CollectorConfig,
    IndexConfig,
    RateLimitConfig,
    Settings,
    StorageConfig,
)
from filecrab.lib.envelope import MIN_WORK_FACTOR

API_KEY = "test-key"


@pytest.fixture
def blob_dir(tmp_path):
    return tmp_path / "blobs"


@pytest.fixture
def settings(blob_dir):
    """Settings for an in-process server: memory index, local blobs, no background sweeps."""
    return Settings(
        api_key=API_KEY,
        index=IndexConfig(backend="memory"),
        storage=StorageConfig(backend="local", local_path=str(blob_dir)),
        collector=CollectorConfig(enabled=False),
        rate_limit=RateLimitConfig(enabled=False),
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app=app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    return {"filecrab-key": API_KEY}


@pytest.fixture
def transfer(client):
    """A TransferClient speaking to the in-process app through the Litestar test client."""
    instance = Instance(name="test", url=str(client.base_url), api_key=API_KEY)
    return TransferClient(instance, http=client, work_factor=MIN_WORK_FACTOR)


@pytest.fixture
def run_sweep(client):
    """Run one collector pass on the app's event loop."""

    def _run():
        collector = client.app.state.collector
        with client.portal() as portal:
            return portal.call(collector.sweep)

    return _run


@pytest.fixture
def stored_blobs(blob_dir):
    """List completed blob files under the local store (temporary .part files excluded)."""

    def _list():
        if not blob_dir.exists():
            return []
        return [p for p in blob_dir.rglob("*") if p.is_file() and not p.name.startswith(".")]

    return _list
