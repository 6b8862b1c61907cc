"""SQLAlchemy ORM model for submitted posts.

Mirrors the subset of the API service's ``posts`` table that the crawl
worker reads and writes.  Row creation and deletion belong to the API
service; the worker only transitions ``processing_status`` and stores the
crawl outcome.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from post_crawler.core.models.base import Base


class PostProcessingStatus(str, enum.Enum):
    """Lifecycle of a post's crawl: pending → processing → completed | failed."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Post(Base):
    """A user-submitted resource URL and its crawl outcome.

    Attributes:
        id: UUID primary key.
        resource_url: The submitted URL.
        title: Page title captured by the crawl.
        metadata_: Extracted metadata plus block/filter counters (``metadata``
            column; the attribute is renamed because ``metadata`` is reserved
            on declarative classes).
        processing_status: One of :class:`PostProcessingStatus`.
        processing_error: Truncated error text of the last failed attempt.
        author_id: UUID of the submitting user.
        created_at: Submission timestamp.
        updated_at: Last modification timestamp.
    """

    __tablename__ = "posts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    resource_url: Mapped[str] = mapped_column("resourceUrl", sa.Text, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    metadata_: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata", sa.JSON, nullable=True
    )
    processing_status: Mapped[str] = mapped_column(
        "processingStatus",
        sa.String(20),
        nullable=False,
        default=PostProcessingStatus.PENDING.value,
    )
    processing_error: Mapped[Optional[str]] = mapped_column(
        "processingError", sa.Text, nullable=True
    )
    author_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        "authorId", UUID(as_uuid=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        "createdAt",
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        "updatedAt",
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
        onupdate=sa.text("NOW()"),
    )
