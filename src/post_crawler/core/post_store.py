"""Persistence interface for post processing results.

The job worker depends only on :class:`PostStore`; :class:`SqlPostStore` is
the production implementation that writes to the API service's ``posts``
table through a synchronous SQLAlchemy session.

Every write is a single-row ``UPDATE`` committed in one transaction, so a
crash between two writes can never leave a half-written result behind, and
repeating a write (at-least-once delivery) is harmless.
"""

from __future__ import annotations

import enum
import logging
import uuid
from typing import Any, Protocol

from sqlalchemy import update

from post_crawler.core.models.post import Post

logger = logging.getLogger(__name__)

# Keyword names accepted by ``update_post`` mapped to ORM attributes.
_UPDATABLE_FIELDS: dict[str, str] = {
    "processing_status": "processing_status",
    "title": "title",
    "metadata": "metadata_",
    "processing_error": "processing_error",
}


class PostStore(Protocol):
    """Outbound persistence interface used by the job worker."""

    def update_post(self, post_id: str, **fields: Any) -> None:
        """Apply ``fields`` to the post identified by ``post_id``.

        Accepted fields: ``processing_status``, ``title``, ``metadata``,
        ``processing_error``.
        """
        ...


class SqlPostStore:
    """:class:`PostStore` writing to the ``posts`` table."""

    def update_post(self, post_id: str, **fields: Any) -> None:
        """Update one post row.

        Raises:
            ValueError: If an unknown field name is supplied.
            sqlalchemy.exc.SQLAlchemyError: On database failure; the caller
                (the queue task) treats this as a retriable error.
        """
        if not fields:
            return
        values: dict[str, Any] = {}
        for name, value in fields.items():
            attr = _UPDATABLE_FIELDS.get(name)
            if attr is None:
                raise ValueError(f"Unknown post field: {name!r}")
            if isinstance(value, enum.Enum):
                value = value.value
            values[attr] = value

        from post_crawler.core.database import get_sync_session  # noqa: PLC0415

        with get_sync_session() as session:
            result = session.execute(
                update(Post).where(Post.id == uuid.UUID(str(post_id))).values(**values)
            )
            session.commit()

        if result.rowcount == 0:
            logger.warning("post_store: post %s not found; update skipped", post_id)
        else:
            logger.debug("post_store: updated post %s fields=%s", post_id, sorted(values))
