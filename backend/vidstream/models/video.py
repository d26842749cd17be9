"""Video model - metadata for an uploaded or streamed video.

`path` is the state discriminator: null while chunks are still streaming in,
set (together with `public_url`) once the upload is finalized.
"""
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column
from vidstream.models.base import Base, TimestampMixin


class Video(Base, TimestampMixin):
    __tablename__ = "videos"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    path: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    public_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    mime_type: Mapped[str | None] = mapped_column(String(100), nullable=True)

    @property
    def is_completed(self) -> bool:
        return self.path is not None
