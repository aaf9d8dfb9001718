"""Per-asset media transforms: compress/transcode, upload, and local cleanup."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from config import settings
from media.image import compress_image
from media.video import (
    VideoBackendUnavailable,
    generate_thumbnail,
    get_video_metadata,
    transcode_video,
)
from models.post import MediaType
from services.asset_store import get_asset_store

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = {".mp4", ".mov", ".avi", ".wmv", ".flv", ".webm", ".mkv"}
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".tif", ".tiff"}


@dataclass
class MediaResult:
    media_type: str
    url: str
    storage_id: str
    preview_url: str

    def as_dict(self) -> dict:
        return asdict(self)


def is_video(file_path: str) -> bool:
    return Path(file_path).suffix.lower() in VIDEO_EXTENSIONS


def is_supported_media(file_path: str) -> bool:
    suffix = Path(file_path).suffix.lower()
    return suffix in VIDEO_EXTENSIONS or suffix in IMAGE_EXTENSIONS


def media_type_for(file_path: str) -> MediaType:
    return MediaType.VIDEO if is_video(file_path) else MediaType.IMAGE


def placeholder_video_result() -> MediaResult:
    return MediaResult(
        media_type=MediaType.VIDEO.value,
        url=settings.PLACEHOLDER_VIDEO_URL,
        storage_id=settings.PLACEHOLDER_VIDEO_STORAGE_ID,
        preview_url=settings.PLACEHOLDER_VIDEO_PREVIEW_URL,
    )


async def cleanup_files(
    file_paths: Iterable[Optional[str]],
    max_retries: Optional[int] = None,
    retry_delay: Optional[float] = None,
) -> None:
    """Delete local files, retrying briefly on lock contention. Never raises."""
    retries = max(int(max_retries if max_retries is not None else settings.CLEANUP_MAX_RETRIES), 1)
    delay = float(retry_delay if retry_delay is not None else settings.CLEANUP_RETRY_DELAY_SECONDS)

    for file_path in file_paths:
        if not file_path:
            continue
        for attempt in range(1, retries + 1):
            try:
                if os.path.exists(file_path):
                    os.remove(file_path)
                break
            except OSError as exc:
                logger.warning("Attempt %s to remove %s failed: %s", attempt, file_path, exc)
                if attempt < retries:
                    await asyncio.sleep(delay * attempt)
                else:
                    logger.error("Failed to remove %s after %s attempts.", file_path, retries)


async def process_image(file_path: str, folder: str) -> MediaResult:
    """Compress and upload an image; the preview is the image itself."""
    outputs: List[str] = []
    try:
        compressed_path = await asyncio.to_thread(compress_image, file_path, settings.IMAGE_QUALITY)
        outputs.append(compressed_path)

        uploaded = await asyncio.to_thread(get_asset_store().upload, compressed_path, folder, MediaType.IMAGE.value)
    finally:
        await cleanup_files(outputs)

    return MediaResult(
        media_type=MediaType.IMAGE.value,
        url=uploaded.url,
        storage_id=uploaded.storage_id,
        preview_url=uploaded.url,
    )


async def process_video(file_path: str, folder: str, metadata: Optional[dict] = None) -> MediaResult:
    """Thumbnail, transcode and upload a video plus its thumbnail."""
    outputs: List[str] = []
    try:
        thumbnail_path = await asyncio.to_thread(generate_thumbnail, file_path, metadata)
        outputs.append(thumbnail_path)

        transcoded_path = await asyncio.to_thread(
            transcode_video,
            file_path,
            settings.VIDEO_RESOLUTION,
            settings.VIDEO_FORMAT,
        )
        outputs.append(transcoded_path)

        store = get_asset_store()
        video_asset = await asyncio.to_thread(store.upload, transcoded_path, folder, MediaType.VIDEO.value)
        thumbnail_asset = await asyncio.to_thread(
            store.upload,
            thumbnail_path,
            f"{folder}_thumbnails",
            MediaType.IMAGE.value,
        )
    finally:
        await cleanup_files(outputs)

    return MediaResult(
        media_type=MediaType.VIDEO.value,
        url=video_asset.url,
        storage_id=video_asset.storage_id,
        preview_url=thumbnail_asset.url,
    )


async def process_media(file_path: str, folder: Optional[str] = None) -> MediaResult:
    """
    Dispatch on file extension. Videos fall back to a placeholder when ffmpeg is missing.

    Derived files are always removed. The source is never touched here: the caller
    drops it once the result is stored or the item has failed for good.
    """
    folder = folder or settings.MEDIA_FOLDER
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Source file not found: {file_path}")

    if not is_video(file_path):
        return await process_image(file_path, folder)

    try:
        metadata = await asyncio.to_thread(get_video_metadata, file_path)
    except VideoBackendUnavailable as exc:
        logger.error("FFmpeg/FFprobe not found, storing placeholder for %s: %s", file_path, exc)
        return placeholder_video_result()
    return await process_video(file_path, folder, metadata)
