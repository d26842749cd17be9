"""Video request/response schemas."""
from pydantic import BaseModel
from typing import Optional


class VideoResource(BaseModel):
    id: int
    title: str
    public_url: Optional[str] = None

    model_config = {"from_attributes": True}


class FinalizedVideoResource(VideoResource):
    # Declared by the stop response; transcription is not performed.
    transcript: Optional[str] = None


class ChunkAck(BaseModel):
    session_id: str
    chunk_count: int
    bytes_received: int


class VideoListResponse(BaseModel):
    status: str = "success"
    message: str
    data: list[VideoResource]


class VideoDetailResponse(BaseModel):
    status: str = "success"
    message: str
    data: VideoResource


class FinalizeResponse(BaseModel):
    status: str = "success"
    message: str
    data: FinalizedVideoResource


class ChunkAckResponse(BaseModel):
    status: str = "success"
    message: str
    data: ChunkAck
