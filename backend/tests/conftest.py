"""Shared test fixtures and configuration for backend tests."""
import os
import tempfile

# Settings are read at import time; point them at throwaway locations first.
_TEST_ROOT = tempfile.mkdtemp(prefix="upload-catalog-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_ROOT}/catalog.db")
os.environ.setdefault("FILE_STORAGE_PATH", os.path.join(_TEST_ROOT, "uploads"))
os.environ.setdefault("RECONCILE_ON_STARTUP", "false")

import httpx
import pytest

from app.config import UploadPolicy
from app.database import build_engine, build_session_factory
from app.main import app
from app.models import Base
from app.routes.files import get_coordinator
from app.services.catalog import FileCatalog
from app.services.file_storage import BlobStore
from app.services.ingestion import IngestionCoordinator
from app.services.upload_gate import UploadGate


@pytest.fixture
async def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite catalog with tables created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def catalog(session_factory):
    return FileCatalog(session_factory)


@pytest.fixture
def blob_store(tmp_path):
    return BlobStore(tmp_path / "uploads")


@pytest.fixture
def policy():
    return UploadPolicy()


@pytest.fixture
def gate(policy):
    return UploadGate(policy)


@pytest.fixture
def coordinator(gate, blob_store, catalog):
    return IngestionCoordinator(gate=gate, blob_store=blob_store, catalog=catalog)


@pytest.fixture
async def api_client(coordinator):
    """httpx client talking to the app in-process with a per-test coordinator."""
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.clear()


async def _chunked(data: bytes, size: int = 1024):
    for i in range(0, len(data), size):
        yield data[i:i + size]


@pytest.fixture
def chunked():
    """Factory for async iterators over ``data`` in ``size``-byte chunks."""
    return _chunked
