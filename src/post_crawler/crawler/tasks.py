"""Celery task that runs crawl jobs.

Task naming convention::

    post_crawler.crawler.tasks.<action>

Retry policy:
    The queue owns retries.  A :class:`~post_crawler.core.exceptions.RetriableJobFailure`
    triggers Celery's automatic retry (``autoretry_for`` + ``retry_backoff``)
    with exponential backoff up to ``job_max_attempts`` total attempts.  The
    job worker turns every processing error, a database outage included,
    into one of the two failure exceptions.
    A :class:`~post_crawler.core.exceptions.TerminalJobFailure` ends the job
    immediately: the task returns a ``success=False`` payload
    and Celery records it as finished.

Process-wide collaborators (block-list cache, content blocker, fetcher,
extractor, orchestrator, store, notifier) are built once per worker process
by :func:`build_job_worker` and reused by every task run in it.
"""

from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Any

import structlog
from celery.signals import task_success

from post_crawler.config.settings import get_settings
from post_crawler.core.event_bus import RedisNotifier
from post_crawler.core.exceptions import RetriableJobFailure, TerminalJobFailure
from post_crawler.core.logging_config import job_id_var
from post_crawler.core.post_store import SqlPostStore
from post_crawler.core.schemas.crawl import CrawlJob, JobAttempt
from post_crawler.crawler.config import BLOCKLIST_URLS
from post_crawler.crawler.content_blocker import ContentBlocker
from post_crawler.crawler.content_extractor import ContentExtractor
from post_crawler.crawler.filter_cache import FilterListCache
from post_crawler.crawler.orchestrator import CrawlOrchestrator
from post_crawler.crawler.page_fetcher import FileScreenshotSink, PageFetcher
from post_crawler.crawler.worker import JobWorker
from post_crawler.workers.celery_app import celery_app

logger = logging.getLogger(__name__)
log = structlog.get_logger(__name__)

_TASK_NAME = "post_crawler.crawler.tasks.process_post_task"
_settings = get_settings()


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def build_job_worker() -> JobWorker:
    """Build the process-wide :class:`JobWorker` and its collaborators."""
    settings = get_settings()
    cache = FilterListCache(settings.filter_cache_dir)
    blocker = ContentBlocker(
        cache,
        sources=settings.filter_list_urls or BLOCKLIST_URLS,
        expiration_ms=settings.filter_list_ttl_hours * 60 * 60 * 1000,
        fetch_timeout=settings.filter_list_timeout_seconds,
    )
    fetcher = PageFetcher(
        blocker,
        enforce_filter_lists=settings.enforce_filter_lists,
        diagnostic_sink=FileScreenshotSink(settings.debug_screenshot_dir),
    )
    orchestrator = CrawlOrchestrator(fetcher, ContentExtractor())
    return JobWorker(
        orchestrator,
        SqlPostStore(),
        RedisNotifier(settings.redis_url),
        crawl_timeout_ms=settings.crawl_timeout_ms,
        crawl_max_attempts=settings.crawl_max_attempts,
        error_max_length=settings.processing_error_max_length,
    )


# ---------------------------------------------------------------------------
# Celery tasks
# ---------------------------------------------------------------------------


@celery_app.task(
    name=_TASK_NAME,
    bind=True,
    acks_late=True,
    autoretry_for=(RetriableJobFailure,),
    retry_backoff=_settings.retry_backoff_base_seconds,
    retry_backoff_max=_settings.retry_backoff_max_seconds,
    retry_jitter=False,
    max_retries=_settings.job_max_attempts - 1,
)
def process_post_task(self: Any, job_payload: dict[str, Any]) -> dict[str, Any]:
    """Crawl the resource of one post and record the outcome.

    Args:
        job_payload: Serialized :class:`CrawlJob` (camelCase or snake_case).

    Returns:
        The crawl result as a dict, with ``job_id`` and ``post_id`` added.
        ``success`` is ``False`` when the job failed terminally.
    """
    settings = get_settings()
    job = CrawlJob.model_validate(job_payload)
    attempt = JobAttempt(
        attempt_number=self.request.retries + 1,
        max_attempts=settings.job_max_attempts,
    )

    token = job_id_var.set(job.job_id)
    try:
        log.info(
            "crawl task started",
            post_id=job.post_id,
            attempt=attempt.attempt_number,
            max_attempts=attempt.max_attempts,
        )
        try:
            result = asyncio.run(build_job_worker().process(job, attempt))
        except TerminalJobFailure as exc:
            return {
                "job_id": job.job_id,
                "post_id": job.post_id,
                "success": False,
                "error_message": exc.error_message,
                "non_retriable": exc.non_retriable,
            }

        payload = result.to_dict()
        payload.update({"job_id": job.job_id, "post_id": job.post_id})
        return payload
    finally:
        job_id_var.reset(token)


# ---------------------------------------------------------------------------
# Queue-level completion check
# ---------------------------------------------------------------------------


@task_success.connect
def _check_completed_payload(sender: Any = None, result: Any = None, **kwargs: Any) -> None:  # noqa: ARG001
    """Flag jobs that finished at queue level while carrying a failure.

    Status and notifications were already handled by the worker; this only
    makes the mismatch visible.
    """
    if getattr(sender, "name", None) != _TASK_NAME or not isinstance(result, dict):
        return
    if not result.get("success", False):
        logger.warning(
            "crawler: job %s for post %s finished at queue level with a failed crawl: %s",
            result.get("job_id"),
            result.get("post_id"),
            result.get("error_message"),
        )
