"""Per-job processing: status transitions, persistence and notification.

:class:`JobWorker` takes one claimed :class:`~post_crawler.core.schemas.crawl.CrawlJob`
through the post lifecycle::

    pending -> processing -> completed
                          -> failed (will retry)   -> processing -> ...
                          -> failed (terminal)

``processing`` is written before the crawl starts, so a crash mid-crawl
leaves the post visibly stuck rather than silently pending.  Every write is
a single-row update, which keeps at-least-once redelivery harmless.

Failure is terminal when the crawl was classified non-retriable or the
queue has no attempts left.  Only terminal failures notify the submitter;
transient ones raise :class:`~post_crawler.core.exceptions.RetriableJobFailure`
so the queue schedules another attempt.
Errors raised while processing, a failed store write or an orchestrator
crash, take the same failure path.
"""

from __future__ import annotations

import logging
from typing import Any

from post_crawler.core.event_bus import Notifier, PostProcessedNotification
from post_crawler.core.exceptions import RetriableJobFailure, TerminalJobFailure
from post_crawler.core.metrics import crawl_jobs_total
from post_crawler.core.models.post import PostProcessingStatus
from post_crawler.core.post_store import PostStore
from post_crawler.core.schemas.crawl import CrawlJob, JobAttempt
from post_crawler.crawler.config import DEFAULT_TIMEOUT_MS
from post_crawler.crawler.orchestrator import CrawlOptions, CrawlOrchestrator, CrawlResult

logger = logging.getLogger(__name__)


def truncate_error(message: str, max_length: int) -> str:
    """Cap an error message for storage in ``posts.processingError``."""
    if len(message) <= max_length:
        return message
    return message[:max_length]


def build_post_metadata(result: CrawlResult) -> dict[str, Any]:
    """Assemble the JSON stored in ``posts.metadata`` for a successful crawl."""
    if result.metadata is None:
        raise ValueError("cannot build post metadata from a failed crawl")
    metadata: dict[str, Any] = result.metadata.to_dict()
    metadata["matched_filter_count"] = result.matched_filter_count
    metadata["blocked_resource_count"] = result.blocked_resource_count
    metadata["readability"] = result.readability.to_dict() if result.readability else None
    return metadata


class JobWorker:
    """Runs one crawl job attempt against injected collaborators.

    Args:
        orchestrator: Crawl orchestrator shared by the worker process.
        store: Post persistence.
        notifier: Submitter notification channel.
        crawl_timeout_ms: Navigation timeout handed to the orchestrator.
        crawl_max_attempts: In-process fetch attempts per job attempt.
        error_max_length: Cap on the stored processing error.
    """

    def __init__(
        self,
        orchestrator: CrawlOrchestrator,
        store: PostStore,
        notifier: Notifier,
        *,
        crawl_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        crawl_max_attempts: int = 1,
        error_max_length: int = 500,
    ) -> None:
        self._orchestrator = orchestrator
        self._store = store
        self._notifier = notifier
        self._crawl_timeout_ms = crawl_timeout_ms
        self._crawl_max_attempts = crawl_max_attempts
        self._error_max_length = error_max_length

    async def process(self, job: CrawlJob, attempt: JobAttempt) -> CrawlResult:
        """Process one attempt of ``job``.

        Returns:
            The successful :class:`CrawlResult`.

        Raises:
            RetriableJobFailure: The crawl failed and the queue should retry.
            TerminalJobFailure: The crawl failed for good; the post is marked
                failed and the submitter has been notified.
        """
        logger.info(
            "worker: processing post %s (%s) attempt %d/%d",
            job.post_id,
            job.resource_url,
            attempt.attempt_number,
            attempt.max_attempts,
        )
        try:
            self._store.update_post(job.post_id, processing_status=PostProcessingStatus.PROCESSING)
            result = await self._orchestrator.crawl(
                job.resource_url,
                CrawlOptions(
                    debug_mode=job.debug_mode,
                    timeout_ms=self._crawl_timeout_ms,
                    max_attempts=self._crawl_max_attempts,
                ),
            )
            if result.success:
                self._complete(job, result)
                return result
        except Exception as exc:  # noqa: BLE001
            logger.error("worker: error while processing post %s: %s", job.post_id, exc)
            result = CrawlResult.failure(str(exc) or type(exc).__name__)
        return self._fail(job, attempt, result)

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _complete(self, job: CrawlJob, result: CrawlResult) -> None:
        self._store.update_post(
            job.post_id,
            processing_status=PostProcessingStatus.COMPLETED,
            title=result.title,
            metadata=build_post_metadata(result),
            processing_error=None,
        )
        crawl_jobs_total.labels(status="completed").inc()
        logger.info(
            "worker: post %s completed (%d filter matches, %d blocked resources)",
            job.post_id,
            result.matched_filter_count,
            result.blocked_resource_count,
        )
        self._notify(
            job,
            status="completed",
            message=f"Successfully processed URL: {job.resource_url}",
        )

    def _fail(self, job: CrawlJob, attempt: JobAttempt, result: CrawlResult) -> CrawlResult:
        error_message = result.error_message or "Unknown crawl error"
        try:
            self._store.update_post(
                job.post_id,
                processing_status=PostProcessingStatus.FAILED,
                processing_error=truncate_error(error_message, self._error_max_length),
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("worker: could not record failure of post %s: %s", job.post_id, exc)

        if result.non_retriable or attempt.is_last:
            crawl_jobs_total.labels(status="failed").inc()
            logger.error(
                "worker: post %s failed permanently after attempt %d/%d%s: %s",
                job.post_id,
                attempt.attempt_number,
                attempt.max_attempts,
                " (non-retriable)" if result.non_retriable else "",
                error_message,
            )
            self._notify(
                job,
                status="failed",
                message=(
                    f"All attempts to process URL failed: {job.resource_url}. "
                    f"Final error: {error_message}"
                ),
            )
            raise TerminalJobFailure(
                error_message,
                post_id=job.post_id,
                non_retriable=result.non_retriable,
            )

        crawl_jobs_total.labels(status="retrying").inc()
        logger.warning(
            "worker: post %s attempt %d/%d failed, will retry: %s",
            job.post_id,
            attempt.attempt_number,
            attempt.max_attempts,
            error_message,
        )
        raise RetriableJobFailure(error_message, post_id=job.post_id)

    def _notify(self, job: CrawlJob, *, status: str, message: str) -> None:
        if not job.author_id:
            logger.debug("worker: post %s has no author; notification skipped", job.post_id)
            return
        notification = PostProcessedNotification(
            post_id=job.post_id,
            resource_url=job.resource_url,
            status=status,  # type: ignore[arg-type]
            message=message,
        )
        try:
            self._notifier.notify(job.author_id, notification)
        except Exception as exc:  # noqa: BLE001
            logger.warning("worker: notification for post %s failed: %s", job.post_id, exc)
