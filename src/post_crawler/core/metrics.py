"""Prometheus metrics for the crawl pipeline.

All metrics are module-level singletons registered on the default
``REGISTRY``.  They are safe to import from multiple modules because
prometheus_client deduplicates by metric name.

Metrics defined here:

  crawl_attempts_total{outcome}
      Counter — fetch attempts made by the orchestrator, labelled
      ``success``, ``retriable_error`` or ``non_retriable_error``.

  crawl_filter_matches_total
      Counter — requests matched by the ad/tracker block-lists.

  crawl_blocked_resources_total
      Counter — requests aborted by the resource-type policy.

  crawl_jobs_total{status}
      Counter — job attempts by outcome (completed, retrying, failed).

  crawl_fetch_duration_seconds
      Histogram — wall-clock duration of a single browser fetch.

Usage::

    from post_crawler.core.metrics import crawl_jobs_total
    crawl_jobs_total.labels(status="completed").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

crawl_attempts_total: Counter = Counter(
    "crawl_attempts_total",
    "Page fetch attempts by outcome.",
    labelnames=["outcome"],
)

crawl_filter_matches_total: Counter = Counter(
    "crawl_filter_matches_total",
    "Requests matched by ad/tracker block-list rules.",
)

crawl_blocked_resources_total: Counter = Counter(
    "crawl_blocked_resources_total",
    "Requests aborted by the resource-type blocking policy.",
)

crawl_jobs_total: Counter = Counter(
    "crawl_jobs_total",
    "Crawl job attempts by outcome.",
    labelnames=["status"],
)
"""Labels:
  status: one of completed, retrying, failed
"""

crawl_fetch_duration_seconds: Histogram = Histogram(
    "crawl_fetch_duration_seconds",
    "Wall-clock duration of a headless browser page fetch.",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0, 120.0),
)
