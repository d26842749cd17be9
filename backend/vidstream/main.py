"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from vidstream.config import settings
from vidstream.database import engine, get_db
from vidstream.errors import VideoServiceError
from vidstream.models import Base
from vidstream.services.blob_storage import blob_storage

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, dispose the engine on shutdown."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Serving blobs from {blob_storage.base_path} at {settings.PUBLIC_PATH_PREFIX}")

    yield

    await engine.dispose()


app = FastAPI(
    title="Video Stream Upload API",
    version="1.0.0",
    description="Chunked video uploads with finalize and WebM transcoding.",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(VideoServiceError)
async def video_service_error_handler(request: Request, exc: VideoServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "path", "query"))
        message = f"{field}: {first.get('msg', 'invalid value')}" if field else first.get("msg", "")
    else:
        message = "Invalid request."
    return JSONResponse(status_code=400, content={"message": message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.get("/api/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """Verify API and database connectivity."""
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "ok", "database": "connected"}
    except Exception as e:
        return {"status": "error", "database": str(e)}


# Register routers
from vidstream.routes.videos import router as videos_router
app.include_router(videos_router)

app.mount(
    settings.PUBLIC_PATH_PREFIX,
    StaticFiles(directory=str(blob_storage.base_path)),
    name="storage",
)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("vidstream.main:app", host="0.0.0.0", port=settings.API_PORT)
