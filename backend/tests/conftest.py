"""Shared fixtures: throwaway SQLite database, temp storage root, fake transcoder."""
import os
import tempfile
from pathlib import Path

# Settings are read at import time; point them at throwaway locations first.
_STORAGE_ROOT = tempfile.mkdtemp(prefix="vidstream-storage-")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STORAGE_ROOT", _STORAGE_ROOT)
os.environ.setdefault("APP_URL", "http://testserver")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from vidstream.database import get_db
from vidstream.errors import TranscodeError
from vidstream.models import Base, UploadSession, Video
from vidstream.services.blob_storage import BlobStorageService
from vidstream.services.transcoder import Transcoder
from vidstream.services.video_uploads import VideoUploadService, get_upload_service


class FakeTranscoder(Transcoder):
    """Records calls and writes a marker file instead of running ffmpeg."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[tuple[Path, Path]] = []

    async def transcode(self, input_path: Path, output_path: Path) -> None:
        self.calls.append((input_path, output_path))
        if self.fail:
            raise TranscodeError("Encoder exited with code 1")
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(b"WEBM:" + input_path.read_bytes())


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage(tmp_path):
    return BlobStorageService(root=str(tmp_path / "public"), app_url="http://testserver", public_prefix="/storage")


@pytest.fixture
def fake_transcoder():
    return FakeTranscoder()


@pytest.fixture
def make_service(storage, fake_transcoder):
    def _make(**overrides):
        options = {
            "chunk_encoding": "raw",
            "finalize_strategy": "copy",
            "asset_naming": "random",
            "duplicate_title_policy": "reuse",
            "keep_temp_blobs": True,
        }
        options.update(overrides)
        transcoder = options.pop("transcoder", fake_transcoder)
        return VideoUploadService(storage, transcoder, **options)
    return _make


@pytest.fixture
def service(make_service):
    return make_service()


@pytest.fixture
async def client(session_factory, service):
    from vidstream.main import app

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_upload_service] = lambda: service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def read_videos(session_factory):
    """Read all videos through a fresh session so cached state is not reused."""
    async def _read() -> list[Video]:
        async with session_factory() as session:
            result = await session.execute(select(Video).order_by(Video.id))
            return list(result.scalars().all())
    return _read


@pytest.fixture
def read_sessions(session_factory):
    async def _read() -> list[UploadSession]:
        async with session_factory() as session:
            return list((await session.execute(select(UploadSession))).scalars().all())
    return _read
