"""Async SQLAlchemy engine and session factory.

Usage in routes:
    from vidstream.database import get_db

    @router.get("/videos")
    async def list_videos(db: AsyncSession = Depends(get_db)):
        result = await db.execute(select(Video))
        return result.scalars().all()
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from vidstream.config import settings

_engine_options = {"echo": False, "pool_pre_ping": True}
if not settings.DATABASE_URL.startswith("sqlite"):
    _engine_options.update(pool_size=10, max_overflow=20)

engine = create_async_engine(settings.DATABASE_URL, **_engine_options)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency that yields an async DB session."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()
