"""Models package."""

from .post import MediaType, Post, PostMedia, ProcessingStatus
