"""Enqueue a post's media files, pacing images and serializing videos."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence, Tuple

from rq.job import Job

from config import settings
from services.media_jobs import MediaJobPayload, enqueue_media_processing_job
from services.media_processing import is_video

logger = logging.getLogger(__name__)


def partition_media(file_paths: Sequence[str]) -> Tuple[List[Tuple[int, str]], List[Tuple[int, str]]]:
    """Split into (images, videos), each entry keeping its position in the post as media index."""
    images: List[Tuple[int, str]] = []
    videos: List[Tuple[int, str]] = []
    for index, file_path in enumerate(file_paths):
        (videos if is_video(file_path) else images).append((index, file_path))
    return images, videos


async def _enqueue(post_id: str, media_index: int, file_path: str, folder: str) -> Job:
    payload = MediaJobPayload(file_path=file_path, folder=folder, post_id=post_id, media_index=media_index)
    return await asyncio.to_thread(enqueue_media_processing_job, payload)


async def submit_media_batch(
    post_id: str,
    file_paths: Sequence[str],
    folder: Optional[str] = None,
    image_window: Optional[int] = None,
) -> List[Job]:
    """
    Enqueue one job per file. Images go out ``image_window`` at a time, videos one by one.

    This only paces submission; how many jobs run at once is decided by the worker pool.
    """
    folder = folder or settings.MEDIA_FOLDER
    window = max(int(image_window or settings.BATCH_IMAGE_WINDOW), 1)
    images, videos = partition_media(file_paths)

    async def submit_images() -> List[Job]:
        jobs: List[Job] = []
        for start in range(0, len(images), window):
            chunk = images[start:start + window]
            jobs.extend(
                await asyncio.gather(*(_enqueue(post_id, index, path, folder) for index, path in chunk))
            )
        return jobs

    async def submit_videos() -> List[Job]:
        jobs: List[Job] = []
        for index, path in videos:
            jobs.append(await _enqueue(post_id, index, path, folder))
        return jobs

    image_jobs, video_jobs = await asyncio.gather(submit_images(), submit_videos())
    logger.info(
        "Queued %s image and %s video jobs for post %s",
        len(image_jobs),
        len(video_jobs),
        post_id,
    )
    return [*image_jobs, *video_jobs]
