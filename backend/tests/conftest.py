"""
DiaryFlow Backend — Test Configuration (conftest.py)
======================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── db_engine / db_session: SQLite database in the test's tmp_path
    ├── temp_storage: LocalObjectStorage rooted in tmp_path
    ├── make_file: factory writing local media files of a given size
    ├── fake_storage / fake_upload: FakeStorage and FakeUpload test doubles
    ├── mock_db_session: AsyncMock session for failure paths
    └── test_client: HTTPX AsyncClient talking to the FastAPI app
"""

import os
import tempfile
from pathlib import Path
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# ══════════════════════════════════════════════════════════════════════════
# Environment Setup
# ══════════════════════════════════════════════════════════════════════════

# Must run before anything imports diaryflow.config
_TEST_ROOT = tempfile.mkdtemp(prefix="diaryflow_test_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_ROOT}/app.db"
os.environ["STORAGE_ROOT"] = os.path.join(_TEST_ROOT, "media")
os.environ["STAGING_ROOT"] = os.path.join(_TEST_ROOT, "staging")
os.environ["PUBLIC_BASE_URL"] = "http://test"
os.environ["WEATHER_API_KEY"] = ""
os.environ["ASSEMBLYAI_API_KEY"] = ""
os.environ["RETRY_MIN_WAIT"] = "0"
os.environ["RETRY_MAX_WAIT"] = "0"
os.environ["LOG_LEVEL"] = "WARNING"
# The app's lifespan (which creates these) does not run under ASGITransport
os.makedirs(os.environ["STORAGE_ROOT"])
os.makedirs(os.environ["STAGING_ROOT"])

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from diaryflow.database import Base, get_db_session  # noqa: E402
from diaryflow.exceptions import StorageConnectionError  # noqa: E402
from diaryflow.models.entry import DiaryEntry  # noqa: E402,F401
from diaryflow.services.storage_service import LocalObjectStorage, ObjectStorage  # noqa: E402

USER = "user-alice"
OTHER_USER = "user-bob"


# ══════════════════════════════════════════════════════════════════════════
# Database
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """A fresh SQLite database with the schema created, per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/diary.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_sessionmaker(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(db_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with db_sessionmaker() as session:
        yield session


@pytest.fixture
def mock_db_session():
    """
    A MagicMock that simulates AsyncSession behavior.

    Usage:
        mock_db_session.commit.side_effect = OperationalError("x", {}, Exception())
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.delete = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    return session


# ══════════════════════════════════════════════════════════════════════════
# Files and storage
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def temp_storage(tmp_path):
    """LocalObjectStorage in an isolated directory; small chunks so progress ticks."""
    return LocalObjectStorage(
        storage_root=str(tmp_path / "media"),
        public_base_url="http://test",
        chunk_size=4096,
    )


@pytest.fixture
def make_file(tmp_path):
    """
    Factory for local files, e.g. make_file("beach.jpg", size=2048).

    Returns the absolute path as a string.
    """
    folder = tmp_path / "local"
    folder.mkdir(exist_ok=True)

    def _make(name: str, size: int = 1024, content: bytes = None) -> str:
        path = folder / name
        with open(path, "wb") as f:
            if content is not None:
                f.write(content)
            else:
                # Sparse: a "101 MB video" costs no disk
                f.truncate(size)
        return str(path)

    return _make


class FakeStorage(ObjectStorage):
    """
    In-memory ObjectStorage that records every call.

    Uploads of files whose name is in `fail_on` raise StorageConnectionError.
    """

    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.uploads = []
        self.deleted_urls = []
        self.deleted_entries = []

    async def initialize(self) -> None:
        return None

    async def upload_file(self, path, user_id, entry_id, on_progress=None) -> str:
        name = Path(path).name
        if name in self.fail_on:
            raise StorageConnectionError(message=f"Failed to upload {name}")
        size = Path(path).stat().st_size
        if on_progress:
            on_progress(size, size)
        self.uploads.append(path)
        return f"https://cdn.test/{user_id}/{entry_id}/{len(self.uploads)}_{name}"

    async def delete_file(self, url: str) -> bool:
        self.deleted_urls.append(url)
        return True

    async def delete_all_for_entry(self, user_id: str, entry_id: str) -> int:
        self.deleted_entries.append((user_id, entry_id))
        return 0

    async def test_connection(self) -> bool:
        return True


@pytest.fixture
def fake_storage():
    return FakeStorage()


class FakeUpload:
    """Stands in for starlette's UploadFile in service tests."""

    def __init__(self, data: bytes):
        self._data = data
        self._pos = 0

    async def read(self, size: int = -1) -> bytes:
        if size < 0:
            size = len(self._data) - self._pos
        chunk = self._data[self._pos:self._pos + size]
        self._pos += len(chunk)
        return chunk


@pytest.fixture
def fake_upload():
    return FakeUpload


# ══════════════════════════════════════════════════════════════════════════
# API client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client(db_sessionmaker):
    """
    HTTPX AsyncClient routed straight to the FastAPI app.

    Requests use the per-test database; send X-User-ID to be signed in.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    from diaryflow.main import app

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with db_sessionmaker() as session:
            yield session

    app.dependency_overrides[get_db_session] = _session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
