"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text

from app.config import settings
from app.database import engine, async_session, get_db
from app.models import Base
from app.services.catalog import FileCatalog
from app.services.errors import UploadServiceError
from app.services.file_storage import BlobStore
from app.services.ingestion import IngestionCoordinator
from app.services.upload_gate import UploadGate

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and storage on startup, reconcile blobs against the catalog."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    coordinator = IngestionCoordinator(
        gate=UploadGate(settings.upload_policy()),
        blob_store=BlobStore(settings.FILE_STORAGE_PATH, settings.PUBLIC_UPLOADS_PREFIX),
        catalog=FileCatalog(async_session),
    )
    app.state.coordinator = coordinator

    # Clean up writes interrupted by a previous crash and flag orphans
    if settings.RECONCILE_ON_STARTUP:
        await coordinator.reconcile(
            remove_orphans=settings.REMOVE_ORPHAN_BLOBS,
            grace_seconds=settings.RECONCILE_GRACE_SECONDS,
        )

    yield

    await engine.dispose()


app = FastAPI(
    title="Upload Catalog API",
    version="1.0.0",
    description="Stores uploaded files on disk and keeps a catalog of their metadata.",
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


@app.exception_handler(UploadServiceError)
async def upload_service_error_handler(request: Request, exc: UploadServiceError):
    """Client-facing message only; infrastructure causes stay in the logs."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse({"message": exc.message}, status_code=exc.status_code)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"message": "server error"}, status_code=500)


@app.get("/api/health")
async def health_check():
    """Verify API and database connectivity."""
    try:
        async for db in get_db():
            await db.execute(text("SELECT 1"))
            return {"status": "ok", "database": "connected"}
    except Exception:
        logger.exception("Health check could not reach the database")
        return {"status": "error", "database": "disconnected"}


# Register routers
from app.routes.files import router as files_router
app.include_router(files_router)

# Stored blobs are served read-only under their public path
app.mount(
    settings.PUBLIC_UPLOADS_PREFIX,
    StaticFiles(directory=settings.FILE_STORAGE_PATH, check_dir=False),
    name="uploads",
)
