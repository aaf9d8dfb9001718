"""
Chekins Posts API - FastAPI Backend
Post creation, media processing status and queue operations.
"""

import asyncio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import health, posts, admin
from services.post_media_state import recover_stalled_media
from services.queue_manager import queue_manager
from services.upload_cleanup import cleanup_stale_uploads


async def _periodic_upload_cleanup() -> None:
    interval_minutes = max(int(settings.UPLOAD_CLEANUP_INTERVAL_MINUTES), 0)
    if interval_minutes <= 0:
        return
    while True:
        try:
            removed = await asyncio.to_thread(cleanup_stale_uploads)
            if removed:
                print(f"🧹 Upload cleanup: removed={removed}")
        except Exception as exc:
            print(f"⚠️ Upload cleanup tick failed: {exc}")
        await asyncio.sleep(interval_minutes * 60)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Chekins Posts API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    try:
        recovered = await recover_stalled_media(settings.STALLED_MEDIA_MINUTES)
        if recovered:
            print(f"♻️ Marked {recovered} stalled media items as failed after startup.")
    except Exception as exc:
        print(f"⚠️ Stalled media recovery skipped: {exc}")
    cleanup_task = None
    if int(settings.UPLOAD_CLEANUP_INTERVAL_MINUTES) > 0:
        cleanup_task = asyncio.create_task(_periodic_upload_cleanup())
        print(
            "📅 Upload cleanup loop enabled "
            f"(every {int(settings.UPLOAD_CLEANUP_INTERVAL_MINUTES)} min)."
        )
    yield
    # Shutdown
    if cleanup_task is not None:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass
    queue_manager.close()
    await engine.dispose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="Chekins Posts API",
    description="Posts with asynchronously processed image and video media",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(posts.router, prefix="/posts", tags=["Posts"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Chekins Posts API",
        "version": "0.1.0",
        "status": "running"
    }
