"""Operational views of the media processing queue."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from redis.exceptions import RedisError

from routers.auth_scope import AuthContext, require_admin
from services.queue_manager import MEDIA_QUEUE_NAME, queue_manager

router = APIRouter()


class QueueStatsResponse(BaseModel):
    queue: str
    waiting: int
    active: int
    completed: int
    failed: int
    delayed: int
    total: int


class FailedJobResponse(BaseModel):
    id: str
    data: Dict[str, Any]
    failed_reason: Optional[str] = None
    attempts_made: int
    timestamp: Optional[str] = None


@router.get("/queues/status", response_model=QueueStatsResponse)
async def media_queue_status(_admin: AuthContext = Depends(require_admin)):
    """Job counts of the media processing queue."""
    queue_manager.create_queue(MEDIA_QUEUE_NAME)
    try:
        stats = queue_manager.get_queue_stats(MEDIA_QUEUE_NAME)
    except RedisError as exc:
        raise HTTPException(status_code=503, detail=f"Media queue unavailable: {exc}") from exc
    return QueueStatsResponse(queue=MEDIA_QUEUE_NAME, **stats)


@router.get("/jobs/failed", response_model=List[FailedJobResponse])
async def failed_media_jobs(
    limit: int = Query(10, ge=1, le=100),
    _admin: AuthContext = Depends(require_admin),
):
    """Most recent failed media jobs retained by the queue."""
    queue_manager.create_queue(MEDIA_QUEUE_NAME)
    try:
        jobs = queue_manager.get_failed_jobs(MEDIA_QUEUE_NAME, limit=limit)
    except RedisError as exc:
        raise HTTPException(status_code=503, detail=f"Media queue unavailable: {exc}") from exc
    return [FailedJobResponse(**row) for row in jobs]
