"""Post and embedded media item models."""

import enum
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class ProcessingStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class MediaType(str, enum.Enum):
    IMAGE = "image"
    VIDEO = "video"


class Post(Base):
    """User post whose media is processed asynchronously."""

    __tablename__ = "posts"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    author_id = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    processing_status = Column(String, nullable=False, default=ProcessingStatus.PENDING.value, index=True)
    processed_media_count = Column(Integer, nullable=False, default=0)
    total_media_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    media = relationship(
        "PostMedia",
        back_populates="post",
        cascade="all, delete-orphan",
        order_by="PostMedia.media_index",
    )


class PostMedia(Base):
    """One image/video entry of a post, addressed by (post_id, media_index)."""

    __tablename__ = "post_media"
    __table_args__ = (UniqueConstraint("post_id", "media_index", name="uq_post_media_post_index"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    post_id = Column(String, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    media_index = Column(Integer, nullable=False)
    media_type = Column(String, nullable=False)
    source_filename = Column(String, nullable=True)
    url = Column(String, nullable=True)
    storage_id = Column(String, nullable=True)
    preview_url = Column(String, nullable=True)
    processing_status = Column(String, nullable=False, default=ProcessingStatus.PENDING.value, index=True)
    processing_error = Column(String, nullable=True)
    processing_attempts = Column(Integer, nullable=False, default=0)
    processing_started_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    post = relationship("Post", back_populates="media")
