"""Celery application for the post crawler worker.

Configures the broker, result backend, serialization and task routing.  All
configuration values are sourced from ``Settings`` so that no secrets or
environment-specific values are hard-coded here.

Usage (starting a worker)::

    celery -A post_crawler.workers.celery_app worker -Q crawling --loglevel=info

Usage (enqueueing from application code)::

    from post_crawler.crawler.queue import enqueue_crawl_job

    enqueue_crawl_job(job)
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import worker_process_init
from dotenv import load_dotenv

_logger = logging.getLogger(__name__)

load_dotenv()

from post_crawler.config.settings import get_settings  # noqa: E402

settings = get_settings()

#: Name of the queue crawl jobs are routed to.
CRAWL_QUEUE: str = "crawling"

#: The global Celery application instance.
celery_app = Celery(
    "post_crawler",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "post_crawler.crawler.tasks",
    ],
)

# ---------------------------------------------------------------------------
# Core configuration
# ---------------------------------------------------------------------------

celery_app.conf.update(
    # Jobs arrive from the API service as JSON; results are inspectable.
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    enable_utc=True,
    # Acknowledge after completion so a worker crash redelivers the job.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # One headless browser per in-flight job; never prefetch ahead.
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.worker_concurrency,
    result_expires=86_400,
    # A single page load is bounded by crawl_timeout_ms; these are safety nets.
    task_soft_time_limit=300,
    task_time_limit=360,
    task_routes={
        "post_crawler.crawler.tasks.process_post_task": {"queue": CRAWL_QUEUE},
    },
    task_default_queue=CRAWL_QUEUE,
)


# ---------------------------------------------------------------------------
# Per-process initialisation after fork
# ---------------------------------------------------------------------------
@worker_process_init.connect
def _init_worker_process(**kwargs: object) -> None:  # noqa: ARG001
    """Configure logging and drop inherited DB connections in a forked child.

    Pooled psycopg2 connections opened in the parent must not be shared
    with children; disposing the pool makes each child open its own.
    """
    from post_crawler.core.logging_config import configure_logging  # noqa: PLC0415

    configure_logging(settings.log_level)
    try:
        from post_crawler.core import database as _db  # noqa: PLC0415

        _db.sync_engine.dispose(close=False)
    except Exception as exc:  # noqa: BLE001
        _logger.warning("celery_app: engine disposal after fork failed: %s", exc)
