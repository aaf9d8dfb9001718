"""Housekeeping for raw uploads that never made it through the media pipeline."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from config import settings

logger = logging.getLogger(__name__)


def cleanup_stale_uploads(root: Optional[str] = None, retention_hours: Optional[int] = None) -> int:
    """Best-effort removal of upload files older than the retention window."""
    upload_root = Path(root or settings.UPLOAD_DIR)
    hours = max(int(retention_hours if retention_hours is not None else settings.UPLOAD_RETENTION_HOURS), 1)
    if not upload_root.exists():
        return 0

    cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
    removed = 0
    for path in upload_root.rglob("*"):
        if not path.is_file():
            continue
        try:
            mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
            if mtime < cutoff:
                path.unlink(missing_ok=True)
                removed += 1
        except OSError as exc:
            logger.warning("Could not cleanup stale upload file %s: %s", path, exc)

    if removed:
        logger.info("Removed %s stale upload files from %s", removed, upload_root)
    return removed
