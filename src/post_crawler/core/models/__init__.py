"""SQLAlchemy ORM models used by the crawl worker.

Only the ``posts`` table is mapped; it is owned (created, migrated, deleted)
by the API service.  The worker writes processing status and results only.
"""

from __future__ import annotations

from post_crawler.core.models.base import Base
from post_crawler.core.models.post import Post, PostProcessingStatus

__all__ = ["Base", "Post", "PostProcessingStatus"]
