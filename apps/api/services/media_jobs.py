"""Media processing jobs: payload, enqueue helper and the RQ job handler."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field
from rq import get_current_job
from rq.job import Job

from config import settings
from database import dispose_after
from services.error_classifier import FailureKind, classify_error, error_message
from services.media_processing import MediaResult, cleanup_files, process_media
from services.post_media_state import mark_media_completed, mark_media_failed, mark_media_processing
from services.queue_manager import MEDIA_QUEUE_NAME, queue_manager

logger = logging.getLogger(__name__)

MEDIA_JOB_FUNC = "services.media_jobs.process_media_job"


class MediaJobPayload(BaseModel):
    file_path: str = Field(min_length=1)
    folder: str = Field(default_factory=lambda: settings.MEDIA_FOLDER)
    post_id: str = Field(min_length=1)
    media_index: int = Field(ge=0)


def media_job_id(post_id: str, media_index: int) -> str:
    """Deterministic id so a post's media item is only ever queued once."""
    return f"post-{post_id}-media-{media_index}"


def enqueue_media_processing_job(payload: MediaJobPayload, job_id: Optional[str] = None) -> Job:
    """Enqueue one media item for processing with the default retry policy."""
    return queue_manager.enqueue(
        MEDIA_QUEUE_NAME,
        MEDIA_JOB_FUNC,
        payload.model_dump(),
        job_id=job_id or media_job_id(payload.post_id, payload.media_index),
    )


def _uploaded_result(job: Optional[Job]) -> Optional[MediaResult]:
    stored = job.meta.get("result") if job is not None else None
    return MediaResult(**stored) if isinstance(stored, dict) else None


def _remember_result(job: Optional[Job], result: MediaResult) -> None:
    """Keep the uploaded asset on the job so a retry only has to store it."""
    if job is None:
        return
    job.meta["result"] = result.as_dict()
    job.save_meta()


async def process_media_job_async(payload: Dict[str, Any], job: Optional[Job] = None) -> Dict[str, Any]:
    """Transform one media item and record the outcome on its post."""
    data = MediaJobPayload.model_validate(payload)
    attempt = queue_manager.record_attempt(job)
    await mark_media_processing(data.post_id, data.media_index)
    queue_manager.report_progress(job, 10)
    logger.info(
        "Processing media file %s for post %s (index %s, attempt %s)",
        data.file_path,
        data.post_id,
        data.media_index,
        attempt,
    )

    try:
        result = _uploaded_result(job)
        if result is None:
            result = await process_media(data.file_path, data.folder)
            _remember_result(job, result)
        else:
            logger.info("Reusing asset %s uploaded by an earlier attempt", result.storage_id)
        queue_manager.report_progress(job, 70)

        updated = await mark_media_completed(data.post_id, data.media_index, result)
        await cleanup_files([data.file_path])
        if not updated:
            logger.warning("Post %s or media index %s not found, dropping result", data.post_id, data.media_index)
            return result.as_dict()

        queue_manager.report_progress(job, 100)
        logger.info("Updated post %s with processed media at index %s", data.post_id, data.media_index)
        return result.as_dict()
    except Exception as exc:
        message = error_message(exc)
        if classify_error(exc) is FailureKind.PERMANENT:
            await mark_media_failed(data.post_id, data.media_index, message)
            queue_manager.discard(job)
            await cleanup_files([data.file_path])
            logger.warning("Skipping retries for permanent error: %s", message)
        else:
            logger.warning("Transient error will be retried: %s", message)
        logger.exception("Error processing media file %s", data.file_path)
        raise


def process_media_job(payload: Dict[str, Any]) -> Dict[str, Any]:
    """RQ worker entrypoint for media processing jobs."""
    return asyncio.run(dispose_after(process_media_job_async(payload, job=get_current_job())))
