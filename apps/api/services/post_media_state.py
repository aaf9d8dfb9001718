"""Per-item and aggregate processing state of a post's media."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Mapping, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database import async_session_maker
from models.post import Post, PostMedia, ProcessingStatus
from services.media_processing import MediaResult

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1000


def derive_aggregate_status(counts: Mapping[str, int]) -> Optional[ProcessingStatus]:
    """
    Coarse post status from per-item status counts.

    Settled posts (no item pending/processing) are ``completed`` when at least one
    item succeeded and ``failed`` when every item failed.
    """
    total = sum(int(value or 0) for value in counts.values())
    if total <= 0:
        return None
    completed = int(counts.get(ProcessingStatus.COMPLETED.value, 0) or 0)
    failed = int(counts.get(ProcessingStatus.FAILED.value, 0) or 0)
    processing = int(counts.get(ProcessingStatus.PROCESSING.value, 0) or 0)

    if completed + failed == total:
        return ProcessingStatus.COMPLETED if completed else ProcessingStatus.FAILED
    if processing or completed or failed:
        return ProcessingStatus.PROCESSING
    return ProcessingStatus.PENDING


async def _status_counts(db: AsyncSession, post_id: str) -> Dict[str, int]:
    result = await db.execute(
        select(PostMedia.processing_status, func.count())
        .where(PostMedia.post_id == post_id)
        .group_by(PostMedia.processing_status)
    )
    return {str(status): int(count) for status, count in result.all()}


def post_lock_statement(post_id: str):
    return select(Post.id).where(Post.id == post_id).with_for_update()


async def refresh_post_status(db: AsyncSession, post_id: str) -> Optional[ProcessingStatus]:
    """
    Recompute and store the aggregate status. Caller commits.

    The post row is locked before item states are counted, so concurrent writers
    for the same post take turns and the last one sees every committed item.
    """
    await db.execute(post_lock_statement(post_id))
    status = derive_aggregate_status(await _status_counts(db, post_id))
    if status is not None:
        await db.execute(
            update(Post).where(Post.id == post_id).values(processing_status=status.value)
        )
    return status


async def mark_media_processing(post_id: str, media_index: int) -> bool:
    """
    Flag an item as processing and count the attempt in a single statement.
    Best-effort: database errors are logged and reported as False.
    """
    try:
        async with async_session_maker() as db:
            result = await db.execute(
                update(PostMedia)
                .where(PostMedia.post_id == post_id, PostMedia.media_index == media_index)
                .values(
                    processing_status=ProcessingStatus.PROCESSING.value,
                    processing_attempts=PostMedia.processing_attempts + 1,
                    processing_started_at=datetime.now(timezone.utc),
                )
            )
            if not result.rowcount:
                return False
            await db.execute(
                update(Post)
                .where(Post.id == post_id, Post.processing_status == ProcessingStatus.PENDING.value)
                .values(processing_status=ProcessingStatus.PROCESSING.value)
            )
            await db.commit()
            return True
    except SQLAlchemyError as exc:
        logger.error("Failed to update media status for post %s index %s: %s", post_id, media_index, exc)
        return False


async def mark_media_completed(post_id: str, media_index: int, result: MediaResult) -> bool:
    """
    Store the processed asset on the item and count it towards the post.

    Returns False when the post or media index no longer exists. Database errors
    propagate so the job is recorded as failed.
    """
    async with async_session_maker() as db:
        media_id = (
            await db.execute(
                select(PostMedia.id).where(
                    PostMedia.post_id == post_id,
                    PostMedia.media_index == media_index,
                )
            )
        ).scalar_one_or_none()
        if media_id is None:
            return False

        updated = await db.execute(
            update(PostMedia)
            .where(
                PostMedia.id == media_id,
                PostMedia.processing_status != ProcessingStatus.COMPLETED.value,
            )
            .values(
                url=result.url,
                storage_id=result.storage_id,
                preview_url=result.preview_url,
                processing_status=ProcessingStatus.COMPLETED.value,
                processing_error=None,
            )
        )
        if updated.rowcount:
            await db.execute(
                update(Post)
                .where(Post.id == post_id)
                .values(processed_media_count=Post.processed_media_count + 1)
            )
        await refresh_post_status(db, post_id)
        await db.commit()
        return True


async def mark_media_failed(post_id: str, media_index: int, error: str) -> bool:
    """
    Idempotently flag an item as failed. Completed items are left untouched.
    Best-effort: database errors are logged and reported as False.
    """
    message = (error or "Processing failed")[:MAX_ERROR_LENGTH]
    try:
        async with async_session_maker() as db:
            result = await db.execute(
                update(PostMedia)
                .where(
                    PostMedia.post_id == post_id,
                    PostMedia.media_index == media_index,
                    PostMedia.processing_status != ProcessingStatus.COMPLETED.value,
                )
                .values(
                    processing_status=ProcessingStatus.FAILED.value,
                    processing_error=message,
                )
            )
            if result.rowcount:
                await refresh_post_status(db, post_id)
            await db.commit()
            return bool(result.rowcount)
    except SQLAlchemyError as exc:
        logger.error("Failed to mark media failed for post %s index %s: %s", post_id, media_index, exc)
        return False


async def recover_stalled_media(max_age_minutes: int = 120) -> int:
    """Fail items left in processing after worker crashes or restarts."""
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=max(max_age_minutes, 1))
    async with async_session_maker() as db:
        result = await db.execute(
            select(PostMedia).where(
                PostMedia.processing_status == ProcessingStatus.PROCESSING.value,
                PostMedia.processing_started_at < cutoff,
            )
        )
        stalled = result.scalars().all()
        for media in stalled:
            media.processing_status = ProcessingStatus.FAILED.value
            media.processing_error = "Media processing was interrupted. Re-upload the post media."
        post_ids = {media.post_id for media in stalled}
        if stalled:
            await db.flush()
            for post_id in post_ids:
                await refresh_post_status(db, post_id)
            await db.commit()
        return len(stalled)
