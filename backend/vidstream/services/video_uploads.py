"""Chunked upload sessions and the finalize/transcode pipeline.

A streaming upload is keyed by its title. The first chunk creates a Video row
with a null `path` plus an UploadSession, and writes the chunk to
`temp/{title}/video.bin`. Later chunks are appended to that blob. The stop
call turns the blob into a final asset under `videos/` (copied or transcoded
to WebM) and sets `path` and `public_url` in a single conditional UPDATE.

All work for one title runs under a per-title asyncio.Lock, so appends never
interleave and finalize never reads a half-written blob. The lock is
per-process only.
"""
import asyncio
import base64
import binascii
import logging
import mimetypes
import uuid
import weakref
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from vidstream.config import settings
from vidstream.errors import (
    AlreadyCompletedError,
    ConflictError,
    NotFoundError,
    OutOfOrderChunkError,
    StorageError,
    ValidationError,
)
from vidstream.models.upload_session import UploadSession
from vidstream.models.video import Video
from vidstream.services.blob_storage import BlobStorageService, blob_storage
from vidstream.services.transcoder import Transcoder, transcoder

logger = logging.getLogger(__name__)

CHUNK_ENCODINGS = ("raw", "base64")
FINALIZE_STRATEGIES = ("copy", "transcode")
ASSET_NAMINGS = ("random", "title")
DUPLICATE_TITLE_POLICIES = ("reuse", "reject")

# mimetypes varies by platform for these
_VIDEO_EXTENSIONS = {
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/quicktime": ".mov",
    "video/x-matroska": ".mkv",
    "video/ogg": ".ogv",
}


class TitleLocks:
    """Registry of per-title asyncio locks.

    Entries are weakly held and vanish once no coroutine holds or waits on
    the lock.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, title: str) -> asyncio.Lock:
        lock = self._locks.get(title)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[title] = lock
        return lock

    @asynccontextmanager
    async def hold(self, title: str):
        lock = self.get(title)
        async with lock:
            yield


def temp_blob_path(title: str) -> str:
    return f"temp/{title}/video.bin"


def decoded_blob_path(title: str) -> str:
    return f"temp/{title}/video.decoded.bin"


def validate_title(title: Optional[str], max_length: Optional[int] = None) -> str:
    """Return the title if it can key a session and name a storage directory."""
    max_length = max_length or settings.MAX_TITLE_LENGTH
    if title is None or not title.strip():
        raise ValidationError("The title field is required.")
    if len(title) > max_length:
        raise ValidationError(f"The title may not be greater than {max_length} characters.")
    if title in (".", "..") or any(c in title for c in ("/", "\\", "\x00")):
        raise ValidationError("The title contains invalid characters.")
    return title


class VideoUploadService:
    """Upload session tracker and finalize pipeline over storage + transcoder."""

    def __init__(
        self,
        storage: BlobStorageService,
        transcoder: Transcoder,
        *,
        chunk_encoding: Optional[str] = None,
        finalize_strategy: Optional[str] = None,
        asset_naming: Optional[str] = None,
        duplicate_title_policy: Optional[str] = None,
        keep_temp_blobs: Optional[bool] = None,
        max_chunk_bytes: Optional[int] = None,
    ):
        self.storage = storage
        self.transcoder = transcoder
        self.chunk_encoding = _choice(
            "chunk_encoding", chunk_encoding or settings.CHUNK_STORAGE_ENCODING, CHUNK_ENCODINGS
        )
        self.finalize_strategy = _choice(
            "finalize_strategy", finalize_strategy or settings.FINALIZE_STRATEGY, FINALIZE_STRATEGIES
        )
        self.asset_naming = _choice(
            "asset_naming", asset_naming or settings.ASSET_NAMING, ASSET_NAMINGS
        )
        self.duplicate_title_policy = _choice(
            "duplicate_title_policy",
            duplicate_title_policy or settings.DUPLICATE_TITLE_POLICY,
            DUPLICATE_TITLE_POLICIES,
        )
        self.keep_temp_blobs = settings.KEEP_TEMP_BLOBS if keep_temp_blobs is None else keep_temp_blobs
        self.max_chunk_bytes = max_chunk_bytes or settings.MAX_CHUNK_BYTES
        self.locks = TitleLocks()

    # ── Lookups ───────────────────────────────────────────────────

    async def find_by_title(self, db: AsyncSession, title: str) -> Optional[Video]:
        """Most recent video with this exact title, if any."""
        result = await db.execute(
            select(Video)
            .where(Video.title == title)
            .order_by(Video.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_video(self, db: AsyncSession, video_id: int) -> Video:
        video = await db.get(Video, video_id, populate_existing=True)
        if video is None:
            raise NotFoundError()
        return video

    async def list_videos(self, db: AsyncSession) -> list[Video]:
        result = await db.execute(select(Video).order_by(Video.id))
        return list(result.scalars().all())

    async def _session_for_video(self, db: AsyncSession, video_id: int) -> Optional[UploadSession]:
        result = await db.execute(
            select(UploadSession)
            .where(UploadSession.video_id == video_id)
            .order_by(UploadSession.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # ── Ingest ────────────────────────────────────────────────────

    async def ingest_chunk(
        self,
        db: AsyncSession,
        title: str,
        chunk: bytes,
        *,
        session_id: Optional[str] = None,
        sequence: Optional[int] = None,
        mime_type: Optional[str] = None,
    ) -> UploadSession:
        """Append one chunk to the upload session for `title`.

        Creates the Video row and the temp blob on the first chunk. Returns
        the UploadSession so callers can hand its token back to the client.
        """
        validate_title(title)
        if not chunk:
            raise ValidationError("The blob field is required.")
        if len(chunk) > self.max_chunk_bytes:
            raise ValidationError(f"The blob may not be greater than {self.max_chunk_bytes} bytes.")
        if sequence is not None and sequence < 0:
            raise ValidationError("The sequence must be a non-negative integer.")

        async with self.locks.hold(title):
            session = None
            if session_id:
                session = await db.get(UploadSession, session_id, populate_existing=True)
                if session is None:
                    raise NotFoundError("Upload session not found.")
                video = await db.get(Video, session.video_id, populate_existing=True)
                if video is None or video.title != title:
                    raise ValidationError("The session does not belong to this title.")
            else:
                video = await self.find_by_title(db, title)

            if video is None:
                return await self._start_session(db, title, chunk, sequence, mime_type)

            if video.is_completed:
                raise AlreadyCompletedError()
            if session is None and self.duplicate_title_policy == "reject":
                raise ConflictError()
            if session is None:
                session = await self._session_for_video(db, video.id)
                if session is None:
                    raise StorageError(f"No upload session for video {video.id}.")
            if sequence is not None and sequence != session.chunk_count:
                raise OutOfOrderChunkError(session.chunk_count, sequence)

            temp_path = session.temp_path
            previous_size = self.storage.size(temp_path)
            await self.storage.append(temp_path, _frame(chunk, session.chunk_encoding))
            session.chunk_count += 1
            session.bytes_received += len(chunk)
            try:
                await db.commit()
            except Exception:
                # blob contents stay in step with chunk_count
                await db.rollback()
                logger.warning(f"Chunk commit failed for '{title}', truncating blob to {previous_size} bytes")
                await self.storage.truncate(temp_path, previous_size)
                raise
            logger.debug(
                f"Appended chunk {session.chunk_count} ({len(chunk)} bytes) to '{title}'"
            )
            return session

    async def _start_session(
        self,
        db: AsyncSession,
        title: str,
        chunk: bytes,
        sequence: Optional[int],
        mime_type: Optional[str],
    ) -> UploadSession:
        if sequence not in (None, 0):
            raise OutOfOrderChunkError(0, sequence)

        video = Video(title=title, path=None, public_url=None, mime_type=mime_type)
        db.add(video)
        await db.flush()
        session = UploadSession(
            video_id=video.id,
            temp_path=temp_blob_path(title),
            chunk_count=1,
            bytes_received=len(chunk),
            chunk_encoding=self.chunk_encoding,
        )
        db.add(session)
        try:
            await self.storage.write(session.temp_path, _frame(chunk, session.chunk_encoding))
        except StorageError:
            await db.rollback()
            raise
        await db.commit()
        logger.info(f"Started upload session {session.id} for '{title}' (video {video.id})")
        return session

    # ── Finalize ──────────────────────────────────────────────────

    async def finalize(self, db: AsyncSession, title: str) -> Video:
        """Close the streaming session for `title` and produce the final asset."""
        async with self.locks.hold(title):
            video = await self.find_by_title(db, title)
            if video is None:
                raise NotFoundError()
            if video.is_completed:
                raise AlreadyCompletedError()

            session = await self._session_for_video(db, video.id)
            temp_path = session.temp_path if session else temp_blob_path(title)
            encoding = session.chunk_encoding if session else self.chunk_encoding
            if not self.storage.exists(temp_path):
                raise StorageError(f"No uploaded data found for '{title}'.")

            asset_path = await self._produce_asset(video, temp_path, encoding)
            public_url = self.storage.url(asset_path)

            try:
                result = await db.execute(
                    update(Video)
                    .where(Video.id == video.id, Video.path.is_(None))
                    .values(path=asset_path, public_url=public_url)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise AlreadyCompletedError()
                await db.commit()
            except Exception:
                await db.rollback()
                logger.warning(f"Record update failed for '{title}', removing asset {asset_path}")
                await self.storage.delete(asset_path)
                raise

            if not self.keep_temp_blobs:
                await self.storage.delete(temp_path)
                await self.storage.delete(decoded_blob_path(title))

            await db.refresh(video)
            logger.info(f"Finalized '{title}' (video {video.id}) -> {asset_path}")
            return video

    async def _produce_asset(self, video: Video, temp_path: str, encoding: str) -> str:
        if self.finalize_strategy == "transcode":
            asset_path = self._asset_path(video, ".webm")
            source = temp_path
            if encoding == "base64":
                source = decoded_blob_path(video.title)
                await self.storage.write(source, _unframe(await self.storage.read(temp_path), encoding))
            try:
                await self.transcoder.transcode(
                    self.storage.absolute(source), self.storage.absolute(asset_path)
                )
            except Exception:
                await self.storage.delete(asset_path)
                if source != temp_path:
                    await self.storage.delete(source)
                raise
            return asset_path

        content = _unframe(await self.storage.read(temp_path), encoding)
        asset_path = self._asset_path(video, _extension_for(video.mime_type))
        await self.storage.write(asset_path, content)
        return asset_path

    def _asset_path(self, video: Video, ext: str) -> str:
        if self.asset_naming == "title":
            return f"videos/{video.title}/video{ext}"
        return f"videos/{uuid.uuid4().hex}{ext}"

    # ── Whole-file store / delete ─────────────────────────────────

    async def store(
        self,
        db: AsyncSession,
        title: str,
        content: bytes,
        mime_type: Optional[str] = None,
    ) -> tuple[Video, bool]:
        """Store a complete file. Returns (video, created)."""
        validate_title(title)
        if not content:
            raise ValidationError("The video field is required.")

        async with self.locks.hold(title):
            existing = await self.find_by_title(db, title)
            if existing is not None:
                if self.duplicate_title_policy == "reject":
                    raise ConflictError()
                return existing, False

            asset_path = f"videos/{uuid.uuid4().hex}{_extension_for(mime_type)}"
            await self.storage.write(asset_path, content)
            video = Video(
                title=title,
                path=asset_path,
                public_url=self.storage.url(asset_path),
                mime_type=mime_type,
            )
            db.add(video)
            try:
                await db.commit()
            except Exception:
                await db.rollback()
                await self.storage.delete(asset_path)
                raise
            await db.refresh(video)
            logger.info(f"Stored '{title}' (video {video.id}) -> {asset_path}")
            return video, True

    async def delete(self, db: AsyncSession, video_id: int) -> None:
        """Delete a video record with its final asset and any temp blobs."""
        video = await self.get_video(db, video_id)
        async with self.locks.hold(video.title):
            # re-read under the lock; a queued finalize may have set path
            video = await self.get_video(db, video_id)
            sessions = (
                await db.execute(select(UploadSession).where(UploadSession.video_id == video.id))
            ).scalars().all()

            if video.path:
                await self.storage.delete(video.path)
            for session in sessions:
                await self.storage.delete(session.temp_path)
            if sessions:
                await self.storage.delete(decoded_blob_path(video.title))

            await db.execute(delete(UploadSession).where(UploadSession.video_id == video.id))
            await db.delete(video)
            await db.commit()
            logger.info(f"Deleted video {video_id} ('{video.title}')")


def _frame(chunk: bytes, encoding: str) -> bytes:
    if encoding == "base64":
        return base64.b64encode(chunk) + b"\n"
    return chunk


def _unframe(stored: bytes, encoding: str) -> bytes:
    if encoding != "base64":
        return stored
    try:
        return b"".join(
            base64.b64decode(line, validate=True) for line in stored.splitlines() if line
        )
    except binascii.Error as e:
        raise StorageError(f"Temp blob is not valid base64: {e}") from e


def _choice(name: str, value: str, allowed: tuple[str, ...]) -> str:
    if value not in allowed:
        raise ValueError(f"Unknown {name}: {value!r} (expected one of {', '.join(allowed)})")
    return value


def _extension_for(mime_type: Optional[str]) -> str:
    if mime_type:
        base_type = mime_type.split(";")[0].strip().lower()
        ext = _VIDEO_EXTENSIONS.get(base_type) or mimetypes.guess_extension(base_type)
        if ext:
            return ext
    return ".bin"


upload_service = VideoUploadService(blob_storage, transcoder)


def get_upload_service() -> VideoUploadService:
    """FastAPI dependency returning the shared upload service."""
    return upload_service
