"""Application-wide exception hierarchy for post_crawler.

All custom exceptions subclass ``PostCrawlerError``, enabling consistent
error handling and structured logging across the pipeline.

Hierarchy::

    PostCrawlerError
    ├── FetchError
    │   ├── NonRetriableFetchError   (code: str)
    │   └── RetriableFetchError
    ├── FilterListFetchError
    └── JobFailure                   (post_id, error_message)
        ├── RetriableJobFailure
        └── TerminalJobFailure

Retriability is decided where the error originates (the page fetcher) and
carried as the exception type, never re-derived from message text downstream.
"""

from __future__ import annotations


class PostCrawlerError(Exception):
    """Base class for all post_crawler exceptions.

    All application-specific exceptions inherit from this class so that
    callers can catch the entire hierarchy with a single ``except`` clause
    when needed.
    """


# ---------------------------------------------------------------------------
# Fetch exceptions
# ---------------------------------------------------------------------------


class FetchError(PostCrawlerError):
    """Raised when a page could not be loaded in the headless browser.

    Args:
        message: Human-readable description of the failure.
        url: The URL that was being fetched.
    """

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class NonRetriableFetchError(FetchError):
    """Raised for failures that a retry is certain to reproduce.

    DNS resolution failures, malformed URLs and refused or unreachable
    connections fall in this class.  The job fails on the first occurrence
    regardless of the remaining attempt budget.

    Args:
        message: Human-readable description of the failure.
        code: The network error code that classified the failure
            (e.g. ``"ERR_NAME_NOT_RESOLVED"``).
        url: The URL that was being fetched.
    """

    def __init__(self, message: str, code: str, url: str | None = None) -> None:
        super().__init__(message, url=url)
        self.code = code


class RetriableFetchError(FetchError):
    """Raised for transient failures (timeouts, aborted navigations, crashes).

    Eligible for retry up to the configured attempt budget.
    """


# ---------------------------------------------------------------------------
# Block-list exceptions
# ---------------------------------------------------------------------------


class FilterListFetchError(PostCrawlerError):
    """Raised when none of the remote block-list sources could be downloaded.

    The content blocker degrades to an empty engine when this is raised; it
    never fails a crawl.
    """


# ---------------------------------------------------------------------------
# Job exceptions
# ---------------------------------------------------------------------------


class JobFailure(PostCrawlerError):
    """Base class for a failed crawl job attempt.

    Args:
        message: Error message produced by the crawl.
        post_id: Identifier of the post the job was processing.
    """

    def __init__(self, message: str, post_id: str | None = None) -> None:
        super().__init__(message)
        self.post_id = post_id
        self.error_message = message


class RetriableJobFailure(JobFailure):
    """Raised when a job attempt failed but the queue should try again."""


class TerminalJobFailure(JobFailure):
    """Raised when a job failed for good.

    Either the attempt budget is exhausted or the failure was classified as
    non-retriable.  The post has been marked failed and the submitter
    notified by the time this propagates.

    Args:
        message: Error message produced by the crawl.
        post_id: Identifier of the post the job was processing.
        non_retriable: ``True`` when the failure class, not the attempt
            budget, made the failure terminal.
    """

    def __init__(
        self,
        message: str,
        post_id: str | None = None,
        non_retriable: bool = False,
    ) -> None:
        super().__init__(message, post_id=post_id)
        self.non_retriable = non_retriable
