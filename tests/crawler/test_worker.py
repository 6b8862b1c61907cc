"""Unit tests for the job worker.

The post store and notifier are in-memory doubles; the orchestrator is
either mocked or wired to a mocked page fetcher for end-to-end scenarios.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from post_crawler.core.event_bus import PostProcessedNotification
from post_crawler.core.exceptions import (
    NonRetriableFetchError,
    RetriableJobFailure,
    TerminalJobFailure,
)
from post_crawler.core.models.post import PostProcessingStatus
from post_crawler.core.schemas.crawl import CrawlJob, JobAttempt
from post_crawler.crawler.content_extractor import ContentExtractor, PageMetadata
from post_crawler.crawler.orchestrator import CrawlOrchestrator, CrawlResult
from post_crawler.crawler.page_fetcher import FetchedPage
from post_crawler.crawler.worker import JobWorker, build_post_metadata, truncate_error


# ---------------------------------------------------------------------------
# Doubles
# ---------------------------------------------------------------------------


class _MemoryStore:
    """PostStore keeping every write and the merged current row."""

    def __init__(self) -> None:
        self.writes: list[tuple[str, dict[str, Any]]] = []
        self.rows: dict[str, dict[str, Any]] = {}
        self.fail_on: PostProcessingStatus | None = None

    def update_post(self, post_id: str, **fields: Any) -> None:
        if self.fail_on is not None and fields.get("processing_status") == self.fail_on:
            raise ConnectionError("database unavailable")
        self.writes.append((post_id, fields))
        self.rows.setdefault(post_id, {}).update(fields)

    def statuses(self) -> list[PostProcessingStatus]:
        return [f["processing_status"] for _, f in self.writes if "processing_status" in f]


class _RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, PostProcessedNotification]] = []

    def notify(self, author_id: str, notification: PostProcessedNotification) -> None:
        self.sent.append((author_id, notification))


def _attempt(number: int = 1, maximum: int = 3) -> JobAttempt:
    return JobAttempt(attempt_number=number, max_attempts=maximum)


def _worker(result: CrawlResult, **kwargs: Any) -> tuple[JobWorker, _MemoryStore, _RecordingNotifier]:
    orchestrator = MagicMock()
    orchestrator.crawl = AsyncMock(return_value=result)
    store, notifier = _MemoryStore(), _RecordingNotifier()
    return JobWorker(orchestrator, store, notifier, **kwargs), store, notifier


_SUCCESS = CrawlResult(
    success=True,
    title="Example",
    metadata=PageMetadata(title="Example", description="An example"),
    matched_filter_count=3,
    blocked_resource_count=7,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_truncate_error(self) -> None:
        assert truncate_error("x" * 600, 500) == "x" * 500
        assert truncate_error("short", 500) == "short"

    def test_post_metadata_includes_counters(self) -> None:
        metadata = build_post_metadata(_SUCCESS)

        assert metadata["title"] == "Example"
        assert metadata["description"] == "An example"
        assert metadata["matched_filter_count"] == 3
        assert metadata["blocked_resource_count"] == 7
        assert metadata["readability"] is None

    def test_post_metadata_rejects_failed_result(self) -> None:
        with pytest.raises(ValueError):
            build_post_metadata(CrawlResult.failure("boom"))


# ---------------------------------------------------------------------------
# process()
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestProcess:
    async def test_processing_written_before_crawl(self, make_job: Callable[..., CrawlJob]) -> None:
        worker, store, _ = _worker(_SUCCESS)
        seen: list[list[PostProcessingStatus]] = []

        async def crawl(url, options):
            seen.append(store.statuses())
            return _SUCCESS

        worker._orchestrator.crawl = AsyncMock(side_effect=crawl)  # type: ignore[attr-defined]
        await worker.process(make_job(), _attempt())

        assert seen == [[PostProcessingStatus.PROCESSING]]

    async def test_success_persists_completed_and_notifies(self, make_job: Callable[..., CrawlJob]) -> None:
        job = make_job()
        worker, store, notifier = _worker(_SUCCESS)

        result = await worker.process(job, _attempt())

        assert result is _SUCCESS
        assert store.statuses() == [PostProcessingStatus.PROCESSING, PostProcessingStatus.COMPLETED]
        final = store.writes[-1][1]
        assert final["title"] == "Example"
        assert final["processing_error"] is None
        assert final["metadata"]["matched_filter_count"] == 3
        assert len(notifier.sent) == 1
        author_id, notification = notifier.sent[0]
        assert author_id == job.author_id
        assert notification.status == "completed"
        assert notification.message == f"Successfully processed URL: {job.resource_url}"

    async def test_options_from_job_and_settings(self, make_job: Callable[..., CrawlJob]) -> None:
        worker, _, _ = _worker(_SUCCESS, crawl_timeout_ms=9_000, crawl_max_attempts=2)

        await worker.process(make_job(debugMode=True), _attempt())

        url, options = worker._orchestrator.crawl.await_args.args  # type: ignore[attr-defined]
        assert url == "https://example.com/article"
        assert options.debug_mode is True
        assert options.timeout_ms == 9_000
        assert options.max_attempts == 2

    async def test_no_author_suppresses_notification(self, make_job: Callable[..., CrawlJob]) -> None:
        worker, store, notifier = _worker(_SUCCESS)

        await worker.process(make_job(authorId=None), _attempt())

        assert store.statuses()[-1] == PostProcessingStatus.COMPLETED
        assert notifier.sent == []

    async def test_notifier_failure_does_not_fail_job(self, make_job: Callable[..., CrawlJob]) -> None:
        worker, store, _ = _worker(_SUCCESS)
        worker._notifier = MagicMock()  # type: ignore[assignment]
        worker._notifier.notify.side_effect = ConnectionError("redis down")

        result = await worker.process(make_job(), _attempt())

        assert result.success is True
        assert store.statuses()[-1] == PostProcessingStatus.COMPLETED

    async def test_retriable_failure_before_last_attempt(self, make_job: Callable[..., CrawlJob]) -> None:
        worker, store, notifier = _worker(CrawlResult.failure("Timeout 30000ms exceeded."))

        with pytest.raises(RetriableJobFailure) as exc_info:
            await worker.process(make_job(), _attempt(1, 3))

        assert exc_info.value.error_message == "Timeout 30000ms exceeded."
        assert store.statuses() == [PostProcessingStatus.PROCESSING, PostProcessingStatus.FAILED]
        assert store.writes[-1][1]["processing_error"] == "Timeout 30000ms exceeded."
        assert notifier.sent == []

    async def test_last_attempt_failure_is_terminal(self, make_job: Callable[..., CrawlJob]) -> None:
        job = make_job()
        worker, store, notifier = _worker(CrawlResult.failure("Timeout 30000ms exceeded."))

        with pytest.raises(TerminalJobFailure) as exc_info:
            await worker.process(job, _attempt(3, 3))

        assert exc_info.value.non_retriable is False
        assert store.statuses()[-1] == PostProcessingStatus.FAILED
        assert len(notifier.sent) == 1
        notification = notifier.sent[0][1]
        assert notification.status == "failed"
        assert notification.message == (
            f"All attempts to process URL failed: {job.resource_url}. "
            "Final error: Timeout 30000ms exceeded."
        )

    async def test_completed_write_error_on_last_attempt_is_terminal(
        self, make_job: Callable[..., CrawlJob]
    ) -> None:
        job = make_job()
        worker, store, notifier = _worker(_SUCCESS)
        store.fail_on = PostProcessingStatus.COMPLETED

        with pytest.raises(TerminalJobFailure, match="database unavailable"):
            await worker.process(job, _attempt(3, 3))

        assert store.rows[job.post_id]["processing_status"] == PostProcessingStatus.FAILED
        assert store.rows[job.post_id]["processing_error"] == "database unavailable"
        assert [n.status for _, n in notifier.sent] == ["failed"]

    async def test_completed_write_error_before_last_attempt_is_retried(
        self, make_job: Callable[..., CrawlJob]
    ) -> None:
        worker, store, notifier = _worker(_SUCCESS)
        store.fail_on = PostProcessingStatus.COMPLETED

        with pytest.raises(RetriableJobFailure):
            await worker.process(make_job(), _attempt(1, 3))

        assert store.statuses()[-1] == PostProcessingStatus.FAILED
        assert notifier.sent == []

    async def test_orchestrator_crash_is_recorded(self, make_job: Callable[..., CrawlJob]) -> None:
        job = make_job()
        worker, store, notifier = _worker(_SUCCESS)
        worker._orchestrator.crawl = AsyncMock(side_effect=RuntimeError("event loop closed"))  # type: ignore[attr-defined]

        with pytest.raises(TerminalJobFailure):
            await worker.process(job, _attempt(3, 3))

        assert store.rows[job.post_id]["processing_error"] == "event loop closed"
        assert len(notifier.sent) == 1

    async def test_failed_write_error_still_notifies(self, make_job: Callable[..., CrawlJob]) -> None:
        worker, store, notifier = _worker(CrawlResult.failure("Timeout 30000ms exceeded."))
        store.fail_on = PostProcessingStatus.FAILED

        with pytest.raises(TerminalJobFailure):
            await worker.process(make_job(), _attempt(3, 3))

        assert [n.status for _, n in notifier.sent] == ["failed"]

    async def test_non_retriable_failure_is_terminal_on_first_attempt(
        self, make_job: Callable[..., CrawlJob]
    ) -> None:
        worker, _, notifier = _worker(
            CrawlResult.failure("net::ERR_NAME_NOT_RESOLVED", non_retriable=True)
        )

        with pytest.raises(TerminalJobFailure) as exc_info:
            await worker.process(make_job(), _attempt(1, 3))

        assert exc_info.value.non_retriable is True
        assert len(notifier.sent) == 1

    async def test_stored_error_is_truncated(self, make_job: Callable[..., CrawlJob]) -> None:
        worker, store, _ = _worker(CrawlResult.failure("e" * 2_000), error_max_length=500)

        with pytest.raises(RetriableJobFailure):
            await worker.process(make_job(), _attempt(1, 3))

        assert len(store.writes[-1][1]["processing_error"]) == 500

    async def test_completed_never_written_for_failed_result(self, make_job: Callable[..., CrawlJob]) -> None:
        worker, store, notifier = _worker(CrawlResult.failure("boom"))

        with pytest.raises(TerminalJobFailure):
            await worker.process(make_job(), _attempt(1, 1))

        assert PostProcessingStatus.COMPLETED not in store.statuses()
        assert all(n.status != "completed" for _, n in notifier.sent)

    async def test_redelivery_is_idempotent(self, make_job: Callable[..., CrawlJob]) -> None:
        job = make_job()
        worker, store, _ = _worker(_SUCCESS)

        await worker.process(job, _attempt())
        first_row = dict(store.rows[job.post_id])
        await worker.process(job, _attempt())

        assert store.rows[job.post_id] == first_row
        assert store.rows[job.post_id]["processing_status"] == PostProcessingStatus.COMPLETED
        assert all(set(f) in ({"processing_status"}, set(first_row)) for _, f in store.writes)


# ---------------------------------------------------------------------------
# End-to-end through the orchestrator
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestEndToEnd:
    def _pipeline(self, fetch: AsyncMock) -> tuple[JobWorker, _MemoryStore, _RecordingNotifier]:
        fetcher = MagicMock()
        fetcher.fetch = fetch
        orchestrator = CrawlOrchestrator(fetcher, ContentExtractor(), sleep=AsyncMock())
        store, notifier = _MemoryStore(), _RecordingNotifier()
        return JobWorker(orchestrator, store, notifier), store, notifier

    async def test_article_is_completed(self, make_job: Callable[..., CrawlJob]) -> None:
        html = (
            '<html><head><title>Example</title><meta name="description" content="An example">'
            "</head><body><p>Example body text.</p></body></html>"
        )
        fetch = AsyncMock(
            return_value=FetchedPage(
                title="Example", html=html, final_url="https://example.com/article", status_code=200
            )
        )
        worker, store, notifier = self._pipeline(fetch)
        job = make_job(resourceUrl="https://example.com/article")

        result = await worker.process(job, _attempt())

        assert result.metadata is not None
        assert result.metadata.title == "Example"
        assert result.metadata.description == "An example"
        assert store.rows[job.post_id]["processing_status"] == PostProcessingStatus.COMPLETED
        assert [n.status for _, n in notifier.sent] == ["completed"]

    async def test_unresolvable_host_fails_immediately(self, make_job: Callable[..., CrawlJob]) -> None:
        fetch = AsyncMock(
            side_effect=NonRetriableFetchError(
                "net::ERR_NAME_NOT_RESOLVED at http://nonexistent.invalid/",
                code="ERR_NAME_NOT_RESOLVED",
                url="http://nonexistent.invalid",
            )
        )
        worker, store, notifier = self._pipeline(fetch)
        job = make_job(resourceUrl="http://nonexistent.invalid")

        with pytest.raises(TerminalJobFailure):
            await worker.process(job, _attempt(1, 3))

        assert fetch.await_count == 1
        assert store.rows[job.post_id]["processing_status"] == PostProcessingStatus.FAILED
        assert [n.status for _, n in notifier.sent] == ["failed"]
