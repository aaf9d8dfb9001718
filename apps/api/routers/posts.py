"""Post creation and media processing status router."""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from config import settings
from database import get_db
from models.post import Post, PostMedia, ProcessingStatus
from routers.auth_scope import AuthContext, get_auth_context
from routers.rate_limit import rate_limit
from services.asset_store import get_asset_store
from services.batch import submit_media_batch
from services.media_processing import cleanup_files, is_supported_media, media_type_for
from services.post_media_state import refresh_post_status

logger = logging.getLogger(__name__)

router = APIRouter()

UPLOAD_CHUNK_BYTES = 1024 * 1024


class PostMediaResponse(BaseModel):
    media_index: int
    media_type: str
    url: Optional[str] = None
    storage_id: Optional[str] = None
    preview_url: Optional[str] = None
    processing_status: str
    processing_error: Optional[str] = None
    processing_attempts: int


class PostResponse(BaseModel):
    post_id: str
    author_id: str
    description: str
    processing_status: str
    processed_media_count: int
    total_media_count: int
    media: List[PostMediaResponse]
    created_at: Optional[str] = None


def _sanitize_filename(filename: str) -> str:
    base = os.path.basename(filename or "upload.jpg")
    safe = "".join(ch if ch.isalnum() or ch in ("-", "_", ".") else "_" for ch in base)
    return safe or "upload.jpg"


def _serialize_post(post: Post) -> PostResponse:
    return PostResponse(
        post_id=post.id,
        author_id=post.author_id,
        description=post.description or "",
        processing_status=post.processing_status,
        processed_media_count=int(post.processed_media_count or 0),
        total_media_count=int(post.total_media_count or 0),
        media=[
            PostMediaResponse(
                media_index=item.media_index,
                media_type=item.media_type,
                url=item.url,
                storage_id=item.storage_id,
                preview_url=item.preview_url,
                processing_status=item.processing_status,
                processing_error=item.processing_error,
                processing_attempts=int(item.processing_attempts or 0),
            )
            for item in sorted(post.media, key=lambda row: row.media_index)
        ],
        created_at=post.created_at.isoformat() if post.created_at else None,
    )


async def _load_post(db: AsyncSession, post_id: str) -> Optional[Post]:
    result = await db.execute(
        select(Post)
        .options(selectinload(Post.media))
        .where(Post.id == post_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _store_upload(file: UploadFile, destination: Path) -> int:
    total_size = 0
    try:
        with destination.open("wb") as out:
            while True:
                chunk = await file.read(UPLOAD_CHUNK_BYTES)
                if not chunk:
                    break
                total_size += len(chunk)
                if total_size > settings.MAX_UPLOAD_BYTES:
                    raise HTTPException(
                        status_code=413,
                        detail=f"File too large. Max upload size is {settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB.",
                    )
                out.write(chunk)
    finally:
        await file.close()
    return total_size


@router.post("", response_model=PostResponse, status_code=201)
async def create_post(
    description: str = Form(""),
    files: List[UploadFile] = File(...),
    _rate_limit: None = Depends(rate_limit("post_create", limit=120, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Create a post with placeholder media and queue one processing job per file."""
    if not files:
        raise HTTPException(status_code=422, detail="A post needs at least one media file.")
    if len(files) > settings.MAX_MEDIA_FILES_PER_POST:
        raise HTTPException(
            status_code=422,
            detail=f"Too many media files. Max {settings.MAX_MEDIA_FILES_PER_POST} per post.",
        )

    filenames = [_sanitize_filename(file.filename or "") for file in files]
    unsupported = [name for name in filenames if not is_supported_media(name)]
    if unsupported:
        raise HTTPException(
            status_code=422,
            detail=f"Unsupported file type: {', '.join(unsupported)}. Upload images or videos.",
        )

    post_id = str(uuid.uuid4())
    post_dir = Path(settings.UPLOAD_DIR) / post_id
    post_dir.mkdir(parents=True, exist_ok=True)

    stored_paths: List[str] = []
    try:
        for index, (file, filename) in enumerate(zip(files, filenames)):
            destination = post_dir / f"{index}_{filename}"
            stored_paths.append(str(destination))
            await _store_upload(file, destination)
    except HTTPException:
        await cleanup_files(stored_paths)
        raise

    post = Post(
        id=post_id,
        author_id=auth.user_id,
        description=description.strip(),
        processing_status=ProcessingStatus.PENDING.value,
        processed_media_count=0,
        total_media_count=len(stored_paths),
        media=[
            PostMedia(
                media_index=index,
                media_type=media_type_for(path).value,
                source_filename=filenames[index],
                processing_status=ProcessingStatus.PENDING.value,
                processing_attempts=0,
            )
            for index, path in enumerate(stored_paths)
        ],
    )
    db.add(post)
    await db.commit()

    try:
        await submit_media_batch(post_id, stored_paths)
    except Exception as exc:
        logger.error("Could not queue media for post %s: %s", post_id, exc)
        # Jobs queued before the outage may already have settled their items.
        await db.execute(
            update(PostMedia)
            .where(
                PostMedia.post_id == post_id,
                PostMedia.processing_status == ProcessingStatus.PENDING.value,
            )
            .values(
                processing_status=ProcessingStatus.FAILED.value,
                processing_error=f"Media queue unavailable: {exc}"[:1000],
            )
            .execution_options(synchronize_session=False)
        )
        await refresh_post_status(db, post_id)
        await db.commit()
        await cleanup_files(stored_paths)
        raise HTTPException(
            status_code=503,
            detail="Media queue unavailable. Check Redis/worker availability and retry.",
        ) from exc

    return _serialize_post(await _load_post(db, post_id))


@router.get("/{post_id}", response_model=PostResponse)
async def get_post(
    post_id: str,
    _auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Post with per-item media processing state."""
    post = await _load_post(db, post_id)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return _serialize_post(post)


@router.delete("/{post_id}")
async def delete_post(
    post_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Delete a post and its processed assets. Jobs still in flight find the post gone."""
    post = await _load_post(db, post_id)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    if post.author_id != auth.user_id:
        raise HTTPException(status_code=403, detail="Only the author can delete this post.")

    storage_ids = [
        item.storage_id
        for item in post.media
        if item.storage_id and item.storage_id != settings.PLACEHOLDER_VIDEO_STORAGE_ID
    ]
    if storage_ids:
        store = get_asset_store()
        for storage_id in storage_ids:
            try:
                await asyncio.to_thread(store.delete, storage_id)
            except Exception as exc:
                logger.warning("Could not delete asset %s of post %s: %s", storage_id, post_id, exc)

    await db.delete(post)
    await db.commit()
    return {"post_id": post_id, "deleted": True, "deleted_assets": len(storage_ids)}
