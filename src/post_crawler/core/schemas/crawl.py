"""Pydantic schemas for crawl jobs travelling through the queue.

The API service enqueues camelCase payloads
(``{jobId, postId, resourceUrl, authorId, createdAt}``); the worker accepts
both that form and snake_case so that jobs can be re-enqueued from Python
code with ``model_dump()``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class CrawlJob(BaseModel):
    """A queued request to crawl the resource behind one post.

    Immutable once enqueued.

    Attributes:
        job_id: Queue-level job identifier.
        post_id: Identifier of the post whose resource is crawled.
        resource_url: URL to fetch.
        author_id: Submitting user; ``None`` suppresses notifications.
        submitted_at: When the post was submitted.
        debug_mode: Launch a visible browser and capture a screenshot.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    job_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        validation_alias=AliasChoices("job_id", "jobId"),
    )
    post_id: str = Field(validation_alias=AliasChoices("post_id", "postId"))
    resource_url: str = Field(
        min_length=1,
        validation_alias=AliasChoices("resource_url", "resourceUrl"),
    )
    author_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("author_id", "authorId"),
    )
    submitted_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc),
        validation_alias=AliasChoices("submitted_at", "submittedAt", "createdAt", "created_at"),
    )
    debug_mode: bool = Field(
        default=False,
        validation_alias=AliasChoices("debug_mode", "debugMode"),
    )

    @field_validator("post_id", "job_id", "author_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: object) -> object:
        if value is None or isinstance(value, str):
            return value
        return str(value)


class JobAttempt(BaseModel):
    """Attempt bookkeeping derived from the queue's retry counter."""

    model_config = ConfigDict(frozen=True)

    attempt_number: int = Field(ge=1)
    max_attempts: int = Field(ge=1)
    started_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))

    @property
    def is_last(self) -> bool:
        """``True`` when no further attempt will be scheduled after this one."""
        return self.attempt_number >= self.max_attempts
