"""Durable job queue management (Redis/RQ)."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional

from redis import Redis
from rq import Callback, Queue, Retry, Worker
from rq.job import Job, JobStatus

from config import backoff_intervals, settings
from database import dispose_after
from services.error_classifier import error_message
from services.media_processing import cleanup_files
from services.notifications import send_admin_alert
from services.post_media_state import mark_media_failed

logger = logging.getLogger(__name__)

MEDIA_QUEUE_NAME = "media-processing"
LIVE_JOB_STATUSES = (JobStatus.QUEUED, JobStatus.STARTED, JobStatus.SCHEDULED, JobStatus.DEFERRED)
FINAL_FAILURE_FALLBACK_REASON = "Processing failed after multiple attempts"

AlertSender = Callable[[str, str], Awaitable[None]]


def build_retry(attempts: Optional[int] = None, base_delay: Optional[int] = None) -> Optional[Retry]:
    """Exponential backoff policy for a job allowed ``attempts`` executions in total."""
    attempts = int(attempts if attempts is not None else settings.MEDIA_JOB_ATTEMPTS)
    if attempts <= 1:
        return None
    delay = int(base_delay if base_delay is not None else settings.MEDIA_JOB_BACKOFF_SECONDS)
    return Retry(max=attempts - 1, interval=backoff_intervals(attempts, delay))


def job_payload(job: Job) -> Dict[str, Any]:
    args = job.args or ()
    payload = args[0] if args else None
    return payload if isinstance(payload, dict) else {}


class QueueManager:
    """Owns queues, workers and outcome listeners for background jobs."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        alert_sender: Optional[AlertSender] = None,
        connection: Optional[Redis] = None,
    ):
        self.redis_url = redis_url or settings.REDIS_URL
        self.alert_sender = alert_sender or send_admin_alert
        self._connection = connection
        self._queues: Dict[str, Queue] = {}
        self._workers: Dict[str, Worker] = {}
        self._listeners: Dict[str, List[Callable[..., Any]]] = defaultdict(list)

    @property
    def connection(self) -> Redis:
        if self._connection is None:
            self._connection = Redis.from_url(self.redis_url)
        return self._connection

    def create_queue(self, name: str) -> Queue:
        """Return the named queue, creating it on first use."""
        if name not in self._queues:
            self._queues[name] = Queue(
                name=name,
                connection=self.connection,
                default_timeout=settings.MEDIA_JOB_TIMEOUT_SECONDS,
            )
        return self._queues[name]

    def get_queue(self, name: str) -> Optional[Queue]:
        return self._queues.get(name)

    def create_worker(self, name: str) -> Worker:
        """Return the worker consuming the named queue."""
        if name not in self._workers:
            self._workers[name] = Worker([self.create_queue(name)], connection=self.connection)
        return self._workers[name]

    def default_job_options(self, attempts: Optional[int] = None) -> Dict[str, Any]:
        """3 attempts, exponential backoff, completed jobs dropped, failed jobs kept."""
        return {
            "retry": build_retry(attempts),
            "job_timeout": settings.MEDIA_JOB_TIMEOUT_SECONDS,
            "result_ttl": 0,
            "failure_ttl": settings.FAILED_JOB_TTL_SECONDS,
            "on_success": Callback(on_job_success),
            "on_failure": Callback(on_job_failure),
        }

    def enqueue(
        self,
        name: str,
        func: str,
        payload: Dict[str, Any],
        job_id: str,
        attempts: Optional[int] = None,
    ) -> Job:
        """Enqueue once per job_id: a job that is still live is returned as-is."""
        queue = self.create_queue(name)
        existing = queue.fetch_job(job_id)
        if existing is not None and existing.get_status() in LIVE_JOB_STATUSES:
            logger.info("[%s] Job %s already queued, skipping duplicate enqueue", name, job_id)
            return existing

        max_attempts = int(attempts if attempts is not None else settings.MEDIA_JOB_ATTEMPTS)
        return queue.enqueue(
            func,
            payload,
            job_id=job_id,
            meta={"attempts_made": 0, "max_attempts": max_attempts, "progress": 0},
            **self.default_job_options(max_attempts),
        )

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._listeners[event].append(handler)

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._listeners.get(event, ())):
            try:
                handler(*args)
            except Exception:
                logger.exception("Listener for %s failed", event)

    def record_attempt(self, job: Optional[Job]) -> int:
        """Count one execution of the job. Returns the attempt number."""
        if job is None:
            return 0
        attempts_made = int(job.meta.get("attempts_made") or 0) + 1
        job.meta["attempts_made"] = attempts_made
        job.save_meta()
        return attempts_made

    def report_progress(self, job: Optional[Job], percent: int) -> None:
        """Advisory progress for observers; never used for control flow."""
        if job is None:
            return
        job.meta["progress"] = max(0, min(int(percent), 100))
        job.save_meta()
        logger.info("[%s] Job %s progress: %s%%", job.origin, job.id, percent)
        self.emit(f"{job.origin}:progress", job, percent)

    def discard(self, job: Optional[Job]) -> None:
        """Stop the queue from scheduling further attempts of this job."""
        if job is None:
            return
        job.retries_left = 0
        job.meta["discarded"] = True
        job.save_meta()

    def handle_completed(self, job: Job, result: Any) -> None:
        logger.info("[%s] Job %s completed", job.origin, job.id)
        self.emit(f"{job.origin}:completed", job, result)

    async def handle_failed(self, job: Job, error: Any) -> bool:
        """
        Route a failed execution. Returns True when it was the job's last allowed
        attempt and the final-failure handler ran.
        """
        attempts_made = int(job.meta.get("attempts_made") or 0)
        max_attempts = int(job.meta.get("max_attempts") or settings.MEDIA_JOB_ATTEMPTS)
        reason = error_message(error) if error is not None else ""
        job.meta["failed_reason"] = reason
        job.save_meta()

        logger.error(
            "[%s] Job %s failed (attempt %s/%s): %s",
            job.origin,
            job.id,
            attempts_made,
            max_attempts,
            reason or "Unknown error",
        )
        self.emit(f"{job.origin}:failed", job, error)

        if job.meta.get("discarded"):
            return False
        if attempts_made < max_attempts:
            return False

        logger.error(
            "[%s] CRITICAL: Job %s has failed all %s retry attempts",
            job.origin,
            job.id,
            max_attempts,
        )
        self.emit(f"{job.origin}:critical_failure", job, error)
        await self.handle_final_failure(job, reason)
        return True

    async def handle_final_failure(self, job: Job, reason: str) -> None:
        """Alert operators and flag the job's media item as failed. Safe to repeat."""
        try:
            await self.alert_sender(
                "Media Processing Failed",
                f"Job {job.id} failed after all retry attempts: {reason or 'Unknown error'}",
            )
        except Exception as exc:
            logger.error("Admin alert for job %s could not be sent: %s", job.id, exc)

        payload = job_payload(job)
        await cleanup_files([payload.get("file_path")])

        post_id = payload.get("post_id")
        media_index = payload.get("media_index")
        if not post_id or media_index is None:
            return

        updated = await mark_media_failed(post_id, int(media_index), reason or FINAL_FAILURE_FALLBACK_REASON)
        if updated:
            logger.info("Updated post %s with failed status for media at index %s", post_id, media_index)

    def get_queue_stats(self, name: str) -> Optional[Dict[str, int]]:
        queue = self.get_queue(name)
        if queue is None:
            return None

        waiting = int(queue.count)
        active = int(queue.started_job_registry.count)
        completed = int(queue.finished_job_registry.count)
        failed = int(queue.failed_job_registry.count)
        delayed = int(queue.scheduled_job_registry.count) + int(queue.deferred_job_registry.count)
        return {
            "waiting": waiting,
            "active": active,
            "completed": completed,
            "failed": failed,
            "delayed": delayed,
            "total": waiting + active + completed + failed + delayed,
        }

    def get_failed_jobs(self, name: str, limit: int = 10) -> List[Dict[str, Any]]:
        queue = self.get_queue(name)
        if queue is None:
            return []

        rows: List[Dict[str, Any]] = []
        for job_id in queue.failed_job_registry.get_job_ids(0, max(int(limit), 1) - 1):
            job = queue.fetch_job(job_id)
            if job is None:
                continue
            rows.append(
                {
                    "id": job.id,
                    "data": job_payload(job),
                    "failed_reason": job.meta.get("failed_reason"),
                    "attempts_made": int(job.meta.get("attempts_made") or 0),
                    "timestamp": job.enqueued_at.isoformat() if job.enqueued_at else None,
                }
            )
        return rows

    def close(self) -> None:
        """Drop queue/worker handles and release the Redis connection."""
        self._workers.clear()
        self._queues.clear()
        if self._connection is not None:
            self._connection.close()
            self._connection = None


queue_manager = QueueManager()


def on_job_success(job: Job, connection: Redis, result: Any, *args, **kwargs) -> None:
    """RQ success callback."""
    queue_manager.handle_completed(job, result)


def on_job_failure(job: Job, connection: Redis, exc_type, exc_value, traceback) -> None:
    """RQ failure callback, runs after every failed execution."""
    asyncio.run(dispose_after(queue_manager.handle_failed(job, exc_value)))
