"""Redis pub/sub event bus for post-processing notifications.

The crawl worker calls :meth:`RedisNotifier.notify` when a post finished
processing or failed for good.  The real-time delivery layer (the API
service's WebSocket gateway) subscribes to the per-user channel and forwards
messages to connected clients.

Channel naming convention::

    notifications:{author_id}

Message shape::

    {
        "type": "post-processed",
        "postId": "6f1c...",
        "resourceUrl": "https://example.com/article",
        "status": "completed",          # completed | failed
        "message": "Successfully processed URL: https://example.com/article"
    }

Publishing is fire-and-forget: a publish failure is logged at WARNING and
never propagates to the caller, so a notification problem can never fail a
crawl job.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Literal, Protocol

import redis

logger = logging.getLogger(__name__)

NotificationStatus = Literal["completed", "failed"]


@dataclass(frozen=True)
class PostProcessedNotification:
    """Payload sent to a submitter when their post reached a final state."""

    post_id: str
    resource_url: str
    status: NotificationStatus
    message: str
    type: str = "post-processed"

    def to_dict(self) -> dict[str, str]:
        """Return the wire representation (camelCase keys)."""
        return {
            "type": self.type,
            "postId": self.post_id,
            "resourceUrl": self.resource_url,
            "status": self.status,
            "message": self.message,
        }


class Notifier(Protocol):
    """Outbound notification interface used by the job worker."""

    def notify(self, author_id: str, notification: PostProcessedNotification) -> None:
        ...


def channel_for(author_id: str) -> str:
    """Return the pub/sub channel name for a user."""
    return f"notifications:{author_id}"


def publish_post_processed(
    redis_url: str,
    author_id: str,
    notification: PostProcessedNotification,
) -> None:
    """Publish a post-processed event to the author's Redis pub/sub channel.

    Opens a short-lived synchronous Redis connection, publishes one message,
    and closes immediately.  Any failure is logged and swallowed.

    Args:
        redis_url: Redis connection URL (e.g. ``redis://localhost:6379/0``).
        author_id: Identifier of the user who submitted the post.
        notification: The notification payload.
    """
    try:
        r = redis.from_url(redis_url, decode_responses=True)
        try:
            receivers = r.publish(channel_for(author_id), json.dumps(notification.to_dict()))
            logger.info(
                "event_bus: published post-processed status=%s post=%s receivers=%s",
                notification.status,
                notification.post_id,
                receivers,
            )
        finally:
            r.close()
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "event_bus: failed to publish post-processed for post=%s author=%s: %s",
            notification.post_id,
            author_id,
            exc,
        )


class RedisNotifier:
    """:class:`Notifier` backed by :func:`publish_post_processed`."""

    def __init__(self, redis_url: str) -> None:
        self._redis_url = redis_url

    def notify(self, author_id: str, notification: PostProcessedNotification) -> None:
        publish_post_processed(self._redis_url, author_id, notification)
