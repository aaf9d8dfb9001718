from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import selectinload

from models.post import Post, PostMedia, ProcessingStatus
from services.media_processing import MediaResult
from services.post_media_state import (
    derive_aggregate_status,
    mark_media_completed,
    mark_media_failed,
    mark_media_processing,
    post_lock_statement,
    recover_stalled_media,
    refresh_post_status,
)

RESULT = MediaResult(
    media_type="image",
    url="https://cdn.test/chekins_posts/x.jpg",
    storage_id="chekins_posts/x",
    preview_url="https://cdn.test/chekins_posts/x.jpg",
)


async def _post(session_maker, post_id="p1") -> Post:
    async with session_maker() as db:
        result = await db.execute(select(Post).options(selectinload(Post.media)).where(Post.id == post_id))
        return result.scalar_one()


@pytest.mark.parametrize(
    "counts,expected",
    [
        ({}, None),
        ({"pending": 3}, ProcessingStatus.PENDING),
        ({"pending": 2, "processing": 1}, ProcessingStatus.PROCESSING),
        ({"pending": 1, "completed": 2}, ProcessingStatus.PROCESSING),
        ({"completed": 3}, ProcessingStatus.COMPLETED),
        ({"completed": 2, "failed": 1}, ProcessingStatus.COMPLETED),
        ({"failed": 3}, ProcessingStatus.FAILED),
    ],
)
def test_aggregate_status(counts, expected):
    assert derive_aggregate_status(counts) == expected


@pytest.mark.asyncio
async def test_processing_counts_attempts_and_moves_post_out_of_pending(seed_post, session_maker):
    await seed_post("p1", ["image", "video"])

    assert await mark_media_processing("p1", 1) is True
    assert await mark_media_processing("p1", 1) is True
    assert await mark_media_processing("p1", 5) is False

    post = await _post(session_maker)
    assert post.processing_status == ProcessingStatus.PROCESSING.value
    assert post.media[1].processing_attempts == 2
    assert post.media[1].processing_started_at is not None
    assert post.media[0].processing_status == ProcessingStatus.PENDING.value


@pytest.mark.asyncio
async def test_completion_is_counted_once(seed_post, session_maker):
    await seed_post("p1", ["image", "image"])

    assert await mark_media_completed("p1", 0, RESULT) is True
    assert await mark_media_completed("p1", 0, RESULT) is True

    post = await _post(session_maker)
    assert post.processed_media_count == 1
    assert post.processing_status == ProcessingStatus.PROCESSING.value
    assert post.media[0].storage_id == "chekins_posts/x"


@pytest.mark.asyncio
async def test_completion_for_missing_item_reports_false(seed_post, session_maker):
    await seed_post("p1", ["image"])
    assert await mark_media_completed("p1", 3, RESULT) is False
    assert await mark_media_completed("nope", 0, RESULT) is False


@pytest.mark.asyncio
async def test_failure_is_idempotent_and_truncated(seed_post, session_maker):
    await seed_post("p1", ["image"])

    assert await mark_media_failed("p1", 0, "x" * 5000) is True
    assert await mark_media_failed("p1", 0, "second reason") is True

    post = await _post(session_maker)
    media = post.media[0]
    assert media.processing_status == ProcessingStatus.FAILED.value
    assert media.processing_error == "second reason"
    assert post.processing_status == ProcessingStatus.FAILED.value

    await mark_media_failed("p1", 0, "y" * 5000)
    post = await _post(session_maker)
    assert len(post.media[0].processing_error) == 1000


@pytest.mark.asyncio
async def test_failure_never_overwrites_completed_item(seed_post, session_maker):
    await seed_post("p1", ["image"])
    await mark_media_completed("p1", 0, RESULT)

    assert await mark_media_failed("p1", 0, "late failure") is False

    post = await _post(session_maker)
    assert post.media[0].processing_status == ProcessingStatus.COMPLETED.value
    assert post.media[0].processing_error is None
    assert post.processing_status == ProcessingStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_failed_item_can_later_complete(seed_post, session_maker):
    await seed_post("p1", ["image"])
    await mark_media_failed("p1", 0, "connection reset")
    await mark_media_completed("p1", 0, RESULT)

    post = await _post(session_maker)
    assert post.media[0].processing_status == ProcessingStatus.COMPLETED.value
    assert post.media[0].processing_error is None
    assert post.processed_media_count == 1
    assert post.processing_status == ProcessingStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_stalled_items_are_failed_on_recovery(seed_post, session_maker):
    await seed_post("p1", ["image", "image"])
    await mark_media_processing("p1", 0)
    await mark_media_processing("p1", 1)
    async with session_maker() as db:
        await db.execute(
            update(PostMedia)
            .where(PostMedia.media_index == 0)
            .values(processing_started_at=datetime.now(timezone.utc) - timedelta(hours=5))
        )
        await db.commit()

    assert await recover_stalled_media(max_age_minutes=120) == 1

    post = await _post(session_maker)
    assert post.media[0].processing_status == ProcessingStatus.FAILED.value
    assert "interrupted" in post.media[0].processing_error
    assert post.media[1].processing_status == ProcessingStatus.PROCESSING.value
    assert post.processing_status == ProcessingStatus.PROCESSING.value


def test_post_lock_is_row_level_for_update():
    sql = str(post_lock_statement("p1").compile(dialect=postgresql.dialect()))
    assert "FROM posts" in sql
    assert sql.rstrip().endswith("FOR UPDATE")


@pytest.mark.asyncio
async def test_aggregate_refresh_locks_post_before_counting_items():
    order = []
    db = MagicMock()

    async def execute(statement):
        order.append("lock" if getattr(statement, "_for_update_arg", None) is not None else "write")
        return MagicMock()

    async def counts(session, post_id):
        order.append("count")
        return {"completed": 1, "failed": 1}

    db.execute = execute
    with patch("services.post_media_state._status_counts", side_effect=counts):
        status = await refresh_post_status(db, "p1")

    assert status is ProcessingStatus.COMPLETED
    assert order == ["lock", "count", "write"]


@pytest.mark.asyncio
async def test_failure_and_completion_settle_post_in_either_order(seed_post, session_maker):
    await seed_post("p1", ["image", "image"])
    await seed_post("p2", ["image", "image"])
    for post_id in ("p1", "p2"):
        await mark_media_processing(post_id, 0)
        await mark_media_processing(post_id, 1)

    await mark_media_completed("p1", 0, RESULT)
    await mark_media_failed("p1", 1, "corrupt file")
    await mark_media_failed("p2", 1, "corrupt file")
    await mark_media_completed("p2", 0, RESULT)

    for post_id in ("p1", "p2"):
        post = await _post(session_maker, post_id)
        assert post.processing_status == ProcessingStatus.COMPLETED.value
        assert post.processed_media_count == 1
