import os
from pathlib import Path
from typing import Iterable
from unittest.mock import patch

import pytest
import pytest_asyncio
from rq.job import JobStatus
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base
from main import app
from models.post import Post, PostMedia, ProcessingStatus
from routers import rate_limit
from services.asset_store import UploadedAsset


class FakeJob:
    """Just enough of rq.job.Job for the job handler and queue manager."""

    def __init__(self, job_id: str, payload: dict, max_attempts: int = 3, origin: str = "media-processing"):
        self.id = job_id
        self.origin = origin
        self.args = (payload,)
        self.meta = {"attempts_made": 0, "max_attempts": max_attempts, "progress": 0}
        self.retries_left = max_attempts - 1
        self.enqueued_at = None
        self.status = JobStatus.QUEUED
        self.meta_snapshots = []

    def save_meta(self):
        self.meta_snapshots.append(dict(self.meta))

    def get_status(self):
        return self.status


class FakeAssetStore:
    def __init__(self):
        self.uploads = []
        self.deleted = []

    def upload(self, file_path: str, folder: str, resource_type: str = "auto") -> UploadedAsset:
        assert os.path.exists(file_path), f"uploading missing file {file_path}"
        storage_id = f"{folder}/{len(self.uploads)}{Path(file_path).suffix}"
        self.uploads.append((file_path, folder, resource_type))
        return UploadedAsset(url=f"https://cdn.test/{storage_id}", storage_id=storage_id, resource_type=resource_type)

    def delete(self, storage_id: str) -> bool:
        self.deleted.append(storage_id)
        return True


@pytest.fixture(autouse=True)
def disable_rate_limits():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_windows.clear()
    yield
    rate_limit._local_windows.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'posts.db'}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    with patch("services.post_media_state.async_session_maker", maker):
        yield maker

    await engine.dispose()


@pytest.fixture
def seed_post(session_maker):
    async def _seed(post_id: str = "p1", media_types: Iterable[str] = ("image",), author_id: str = "author-1") -> Post:
        media_types = list(media_types)
        async with session_maker() as db:
            post = Post(
                id=post_id,
                author_id=author_id,
                description="seeded",
                processing_status=ProcessingStatus.PENDING.value,
                processed_media_count=0,
                total_media_count=len(media_types),
                media=[
                    PostMedia(
                        media_index=index,
                        media_type=media_type,
                        processing_status=ProcessingStatus.PENDING.value,
                        processing_attempts=0,
                    )
                    for index, media_type in enumerate(media_types)
                ],
            )
            db.add(post)
            await db.commit()
            return post

    return _seed


@pytest.fixture
def fake_asset_store():
    store = FakeAssetStore()
    with patch("services.media_processing.get_asset_store", return_value=store):
        yield store


@pytest.fixture
def make_job():
    return FakeJob
