"""Crawl orchestration: fetch, extract, retry.

:class:`CrawlOrchestrator` composes the page fetcher and the content
extractor into a single :meth:`~CrawlOrchestrator.crawl` call that never
raises for crawl failures.  Every outcome is a :class:`CrawlResult`:

- success — metadata (and possibly readability content) plus counters;
- non-retriable failure — returned after the first attempt, whatever the
  remaining budget, with ``non_retriable=True``;
- retriable failure — retried by tenacity with exponential backoff while
  attempts remain, then returned with ``success=False``.

Queue-level retries are the normal mechanism, so ``max_attempts`` defaults
to 1 here.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from post_crawler.core.exceptions import NonRetriableFetchError
from post_crawler.core.metrics import crawl_attempts_total
from post_crawler.crawler.config import DEFAULT_TIMEOUT_MS
from post_crawler.crawler.content_blocker import RequestCounters
from post_crawler.crawler.content_extractor import (
    ContentExtractor,
    PageMetadata,
    ReadabilityResult,
)
from post_crawler.crawler.page_fetcher import FetchedPage, PageFetcher

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result and options
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CrawlResult:
    """Outcome of one crawl.

    Invariant: ``success`` is ``True`` exactly when ``metadata`` is set and
    ``error_message`` is ``None``.  Violations raise ``ValueError`` at
    construction time.
    """

    success: bool
    title: str = ""
    metadata: PageMetadata | None = None
    readability: ReadabilityResult | None = None
    matched_filter_count: int = 0
    blocked_resource_count: int = 0
    error_message: str | None = None
    non_retriable: bool = False
    attempts: int = 1

    def __post_init__(self) -> None:
        if self.success:
            if self.metadata is None or self.error_message is not None:
                raise ValueError("successful CrawlResult needs metadata and no error_message")
        elif not self.error_message:
            raise ValueError("failed CrawlResult needs an error_message")

    @classmethod
    def failure(
        cls,
        error_message: str,
        *,
        non_retriable: bool = False,
        attempts: int = 1,
        counters: RequestCounters | None = None,
    ) -> CrawlResult:
        counters = counters or RequestCounters()
        return cls(
            success=False,
            error_message=error_message or "Unknown crawl error",
            non_retriable=non_retriable,
            attempts=attempts,
            matched_filter_count=counters.matched_filters,
            blocked_resource_count=counters.blocked_resources,
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable form (used as the queue task's return value)."""
        return {
            "success": self.success,
            "title": self.title,
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "readability": self.readability.to_dict() if self.readability else None,
            "matched_filter_count": self.matched_filter_count,
            "blocked_resource_count": self.blocked_resource_count,
            "error_message": self.error_message,
            "non_retriable": self.non_retriable,
            "attempts": self.attempts,
        }


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: ``base * multiplier ** (retry - 1)``, capped."""

    base_seconds: float = 5.0
    multiplier: float = 2.0
    max_seconds: float = 300.0

    def wait(self) -> wait_exponential:
        """The tenacity wait strategy for this policy."""
        return wait_exponential(
            multiplier=self.base_seconds,
            exp_base=self.multiplier,
            max=self.max_seconds,
        )


@dataclass(frozen=True)
class CrawlOptions:
    debug_mode: bool = False
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_attempts: int = 1
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class CrawlOrchestrator:
    """Runs fetch + extract with in-process retry.

    Args:
        fetcher: Page fetcher (owns browser lifecycle and teardown).
        extractor: Content extractor.
        sleep: Awaitable sleep used between attempts; replaced in tests.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        extractor: ContentExtractor,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._fetcher = fetcher
        self._extractor = extractor
        self._sleep = sleep

    def _retrying(self, url: str, options: CrawlOptions, max_attempts: int) -> AsyncRetrying:
        def log_retry(retry_state: RetryCallState) -> None:
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.info("crawler: retrying %s in %.1fs", url, delay)

        return AsyncRetrying(
            retry=retry_if_not_exception_type(NonRetriableFetchError),
            stop=stop_after_attempt(max_attempts),
            wait=options.retry_policy.wait(),
            sleep=self._sleep,
            before_sleep=log_retry,
            reraise=True,
        )

    async def crawl(self, url: str, options: CrawlOptions | None = None) -> CrawlResult:
        """Crawl ``url`` and return a :class:`CrawlResult`.  Never raises for
        fetch or extraction failures."""
        options = options or CrawlOptions()
        max_attempts = max(1, options.max_attempts)
        attempt_number = 1
        counters = RequestCounters()

        try:
            async for attempt in self._retrying(url, options, max_attempts):
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    counters = RequestCounters()
                    page = await self._fetch_once(url, options, counters, attempt_number, max_attempts)
        except NonRetriableFetchError as exc:
            logger.warning(
                "crawler: non-retriable failure for %s (%s); not retrying", url, exc.code
            )
            return CrawlResult.failure(
                str(exc), non_retriable=True, attempts=attempt_number, counters=counters
            )
        except Exception as exc:  # noqa: BLE001
            return CrawlResult.failure(
                str(exc) or type(exc).__name__, attempts=attempt_number, counters=counters
            )

        logger.info("crawler: fetched %s (HTTP %s)", page.final_url or url, page.status_code)
        try:
            extracted = self._extractor.extract(page.html, page.final_url or url)
        except Exception as exc:  # noqa: BLE001
            crawl_attempts_total.labels(outcome="retriable_error").inc()
            logger.error("crawler: extraction failed for %s: %s", url, exc)
            return CrawlResult.failure(
                f"Extraction failed: {exc}", attempts=attempt_number, counters=counters
            )

        crawl_attempts_total.labels(outcome="success").inc()
        return CrawlResult(
            success=True,
            title=page.title or extracted.metadata.title,
            metadata=extracted.metadata,
            readability=extracted.readability,
            matched_filter_count=counters.matched_filters,
            blocked_resource_count=counters.blocked_resources,
            attempts=attempt_number,
        )

    async def _fetch_once(
        self,
        url: str,
        options: CrawlOptions,
        counters: RequestCounters,
        attempt_number: int,
        max_attempts: int,
    ) -> FetchedPage:
        try:
            return await self._fetcher.fetch(
                url,
                timeout_ms=options.timeout_ms,
                headless=not options.debug_mode,
                counters=counters,
                debug_mode=options.debug_mode,
            )
        except NonRetriableFetchError:
            crawl_attempts_total.labels(outcome="non_retriable_error").inc()
            raise
        except Exception as exc:
            crawl_attempts_total.labels(outcome="retriable_error").inc()
            logger.error(
                "crawler: attempt %d/%d failed for %s: %s",
                attempt_number,
                max_attempts,
                url,
                str(exc) or type(exc).__name__,
            )
            raise
