"""Videos API routes."""
from typing import Optional
from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from vidstream.database import get_db
from vidstream.models.upload_session import UploadSession
from vidstream.models.video import Video
from vidstream.schemas.common import MessageResponse, StatusResponse
from vidstream.schemas.video import (
    ChunkAckResponse,
    FinalizeResponse,
    VideoDetailResponse,
    VideoListResponse,
)
from vidstream.services.video_uploads import VideoUploadService, get_upload_service

router = APIRouter(tags=["videos"])

_NOT_FOUND = {404: {"model": MessageResponse}}


@router.get("/videos", response_model=VideoListResponse, responses=_NOT_FOUND)
@router.get("/video/all", response_model=VideoListResponse, responses=_NOT_FOUND, include_in_schema=False)
async def list_videos(
    db: AsyncSession = Depends(get_db),
    service: VideoUploadService = Depends(get_upload_service),
):
    """Display all videos."""
    videos = await service.list_videos(db)
    if not videos:
        return JSONResponse(status_code=404, content={"message": "No videos found."})
    return {
        "status": "success",
        "message": "Videos retrieved successfully.",
        "data": [_to_resource(v) for v in videos],
    }


@router.post("/video/stream", response_model=ChunkAckResponse)
async def stream_chunk(
    title: str = Form(...),
    blob: UploadFile = File(...),
    session_id: Optional[str] = Form(None),
    sequence: Optional[int] = Form(None),
    db: AsyncSession = Depends(get_db),
    service: VideoUploadService = Depends(get_upload_service),
):
    """Append one chunk to the streaming upload for `title`."""
    chunk = await blob.read()
    session = await service.ingest_chunk(
        db,
        title,
        chunk,
        session_id=session_id,
        sequence=sequence,
        mime_type=blob.content_type,
    )
    return {
        "status": "success",
        "message": "Video chunk uploaded successfully.",
        "data": _to_ack(session),
    }


@router.post("/video/store", response_model=VideoDetailResponse)
async def store_video(
    title: str = Form(...),
    video: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    service: VideoUploadService = Depends(get_upload_service),
):
    """Store a complete video file in one request."""
    contents = await video.read()
    record, created = await service.store(db, title, contents, mime_type=video.content_type)
    message = "Video uploaded successfully." if created else "Video already exists."
    return JSONResponse(
        status_code=201 if created else 200,
        content={"status": "success", "message": message, "data": _to_resource(record)},
    )


@router.get("/video/end-stream/{title}", response_model=FinalizeResponse)
async def end_stream(
    title: str,
    db: AsyncSession = Depends(get_db),
    service: VideoUploadService = Depends(get_upload_service),
):
    """Finalize the streaming upload for `title`."""
    video = await service.finalize(db, title)
    return {
        "status": "success",
        "message": "Video streaming completed successfully.",
        "data": {**_to_resource(video), "transcript": None},
    }


@router.get("/video/{video_id}", response_model=VideoDetailResponse, responses=_NOT_FOUND)
async def show_video(
    video_id: int,
    db: AsyncSession = Depends(get_db),
    service: VideoUploadService = Depends(get_upload_service),
):
    """Display the specified video."""
    video = await service.get_video(db, video_id)
    return {
        "status": "success",
        "message": "Video retrieved successfully.",
        "data": _to_resource(video),
    }


@router.delete("/video/{video_id}", response_model=StatusResponse, responses=_NOT_FOUND)
async def delete_video(
    video_id: int,
    db: AsyncSession = Depends(get_db),
    service: VideoUploadService = Depends(get_upload_service),
):
    """Remove the specified video from storage."""
    await service.delete(db, video_id)
    return {"status": "success", "message": "Video deleted successfully."}


def _to_resource(video: Video) -> dict:
    """Convert SQLAlchemy model to the public VideoResource shape."""
    return {
        "id": video.id,
        "title": video.title,
        "public_url": video.public_url,
    }


def _to_ack(session: UploadSession) -> dict:
    return {
        "session_id": session.id,
        "chunk_count": session.chunk_count,
        "bytes_received": session.bytes_received,
    }
