"""Inbound job submission.

The API service (or any Python caller) hands a post to the crawl worker with
:func:`enqueue_crawl_job`.  The job is serialized to JSON and sent by task
name, so callers need not import the task module or its browser stack.
"""

from __future__ import annotations

import logging
from typing import Any

from post_crawler.core.schemas.crawl import CrawlJob
from post_crawler.workers.celery_app import CRAWL_QUEUE, celery_app

logger = logging.getLogger(__name__)


def enqueue_crawl_job(job: CrawlJob | dict[str, Any]) -> str:
    """Enqueue a crawl job.

    Args:
        job: A :class:`CrawlJob` or its camelCase/snake_case dict form.

    Returns:
        The job id, also used as the Celery task id so redelivered and
        re-enqueued jobs share one identity.
    """
    if not isinstance(job, CrawlJob):
        job = CrawlJob.model_validate(job)
    celery_app.send_task(
        "post_crawler.crawler.tasks.process_post_task",
        kwargs={"job_payload": job.model_dump(mode="json")},
        task_id=job.job_id,
        queue=CRAWL_QUEUE,
    )
    logger.info("crawler: enqueued job %s for post %s (%s)", job.job_id, job.post_id, job.resource_url)
    return job.job_id
