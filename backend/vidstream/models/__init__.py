"""Import all models so SQLAlchemy metadata knows about them."""
from vidstream.models.base import Base
from vidstream.models.video import Video
from vidstream.models.upload_session import UploadSession

__all__ = ["Base", "Video", "UploadSession"]
