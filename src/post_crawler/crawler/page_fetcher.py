"""Playwright-based headless browser fetcher.

Every call to :meth:`PageFetcher.fetch` launches its own Chromium process
and browsing context, so cookies, cache and service workers never leak
between jobs.  Requests are filtered through the shared
:class:`~post_crawler.crawler.content_blocker.ContentBlocker` before
navigation starts, and the browser is always closed in a ``finally`` block.

Fetch lifecycle::

    idle -> browser_launched -> context_created -> page_created
         -> navigating -> loaded | navigation_failed -> torn_down

Failures are classified where they happen: navigation errors carrying one
of the Chromium codes in
:data:`~post_crawler.crawler.config.NON_RETRIABLE_ERROR_CODES` raise
:class:`~post_crawler.core.exceptions.NonRetriableFetchError`; everything
else (timeouts included) raises
:class:`~post_crawler.core.exceptions.RetriableFetchError`.

Install the Chromium browser binary once per host::

    playwright install chromium
"""

from __future__ import annotations

import enum
import logging
import time
import urllib.parse
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Route, async_playwright

from post_crawler.core.exceptions import (
    FetchError,
    NonRetriableFetchError,
    RetriableFetchError,
)
from post_crawler.core.metrics import (
    crawl_blocked_resources_total,
    crawl_fetch_duration_seconds,
)
from post_crawler.crawler.config import (
    DEFAULT_TIMEOUT_MS,
    NON_RETRIABLE_ERROR_CODES,
    USER_AGENT,
    VIEWPORT,
)
from post_crawler.crawler.content_blocker import ContentBlocker, RequestCounters

logger = logging.getLogger(__name__)


class FetchState(str, enum.Enum):
    IDLE = "idle"
    BROWSER_LAUNCHED = "browser_launched"
    CONTEXT_CREATED = "context_created"
    PAGE_CREATED = "page_created"
    NAVIGATING = "navigating"
    LOADED = "loaded"
    NAVIGATION_FAILED = "navigation_failed"
    TORN_DOWN = "torn_down"


@dataclass(frozen=True)
class FetchedPage:
    """Raw result of a successful page load.

    Attributes:
        title: ``document.title`` after DOM-ready.
        html: Serialized DOM (``page.content()``).
        final_url: URL after redirects.
        status_code: Main-document HTTP status, or ``None`` when Playwright
            reported no response (e.g. ``about:`` pages).
    """

    title: str
    html: str
    final_url: str
    status_code: int | None


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


class DiagnosticSink(Protocol):
    """Receives page screenshots captured for debug-mode jobs."""

    def capture(self, url: str, screenshot: bytes) -> None:
        ...


class FileScreenshotSink:
    """Writes ``debug-<epoch ms>.png`` files into ``directory``."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    def capture(self, url: str, screenshot: bytes) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._directory / f"debug-{int(time.time() * 1000)}.png"
        path.write_bytes(screenshot)
        logger.info("page_fetcher: saved debug screenshot of %s to %s", url, path)


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


def find_non_retriable_code(message: str) -> str | None:
    """Return the non-retriable Chromium error code mentioned in ``message``."""
    for code in NON_RETRIABLE_ERROR_CODES:
        if code in message:
            return code
    return None


def classify_navigation_error(exc: Exception, url: str) -> FetchError:
    """Convert a Playwright navigation error into a typed fetch error."""
    message = str(exc).strip().splitlines()[0] if str(exc).strip() else type(exc).__name__
    code = find_non_retriable_code(str(exc))
    if code is not None:
        return NonRetriableFetchError(message, code=code, url=url)
    return RetriableFetchError(message, url=url)


def validate_url(url: str) -> None:
    """Reject URLs Chromium could never load.

    Raises:
        NonRetriableFetchError: With code ``ERR_INVALID_URL`` or
            ``ERR_UNKNOWN_URL_SCHEME``.
    """
    try:
        parts = urllib.parse.urlsplit(url)
    except ValueError as exc:
        raise NonRetriableFetchError(f"Malformed URL: {exc}", code="ERR_INVALID_URL", url=url) from exc
    if not parts.scheme:
        raise NonRetriableFetchError("URL has no scheme", code="ERR_INVALID_URL", url=url)
    if parts.scheme.lower() not in ("http", "https"):
        raise NonRetriableFetchError(
            f"Unsupported URL scheme: {parts.scheme}",
            code="ERR_UNKNOWN_URL_SCHEME",
            url=url,
        )
    if not parts.hostname:
        raise NonRetriableFetchError("URL has no host", code="ERR_INVALID_URL", url=url)


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------


class PageFetcher:
    """Loads one page per call in a fresh, isolated headless browser.

    Args:
        blocker: Shared content blocker (initialized lazily on first fetch).
        enforce_filter_lists: Abort requests matched by the block-lists in
            addition to counting them.
        diagnostic_sink: Receives screenshots for debug-mode fetches.
        playwright_factory: Returns the Playwright async context manager;
            replaced in tests.
    """

    def __init__(
        self,
        blocker: ContentBlocker,
        *,
        enforce_filter_lists: bool = True,
        diagnostic_sink: DiagnosticSink | None = None,
        playwright_factory: Callable[[], Any] = async_playwright,
    ) -> None:
        self._blocker = blocker
        self._enforce_filter_lists = enforce_filter_lists
        self._diagnostic_sink = diagnostic_sink
        self._playwright_factory = playwright_factory

    async def fetch(
        self,
        url: str,
        *,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        headless: bool = True,
        counters: RequestCounters | None = None,
        debug_mode: bool = False,
    ) -> FetchedPage:
        """Load ``url`` and return its title and serialized DOM.

        DOM-ready (``domcontentloaded``) is the load-complete signal.

        Args:
            url: Page to load.
            timeout_ms: Navigation and default action timeout.
            headless: Run Chromium without a window.
            counters: Incremented for blocked resources and block-list
                matches during this fetch.
            debug_mode: Hand a screenshot to the diagnostic sink after load.

        Raises:
            NonRetriableFetchError: DNS, URL or connection-class failure.
            RetriableFetchError: Any other failure, timeouts included.
        """
        validate_url(url)
        if counters is None:
            counters = RequestCounters()
        await self._blocker.initialize()

        session = _FetchSession(url)
        started = time.monotonic()
        try:
            async with self._playwright_factory() as pw:
                try:
                    return await self._load(pw, session, timeout_ms, headless, counters, debug_mode)
                finally:
                    await session.teardown()
        except FetchError:
            raise
        except PlaywrightError as exc:
            logger.warning("page_fetcher: browser error for %s: %s", url, exc)
            raise classify_navigation_error(exc, url) from exc
        except OSError as exc:
            raise RetriableFetchError(f"Browser launch failed: {exc}", url=url) from exc
        finally:
            crawl_fetch_duration_seconds.observe(time.monotonic() - started)

    async def _load(
        self,
        pw: Any,
        session: _FetchSession,
        timeout_ms: int,
        headless: bool,
        counters: RequestCounters,
        debug_mode: bool,
    ) -> FetchedPage:
        url = session.url
        session.browser = await pw.chromium.launch(headless=headless)
        session.advance(FetchState.BROWSER_LAUNCHED)

        session.context = await session.browser.new_context(
            user_agent=USER_AGENT,
            viewport=VIEWPORT,
            device_scale_factor=1,
            bypass_csp=True,
            java_script_enabled=True,
            ignore_https_errors=True,
            service_workers="block",
        )
        session.advance(FetchState.CONTEXT_CREATED)

        page = await session.context.new_page()
        session.advance(FetchState.PAGE_CREATED)
        page.set_default_timeout(timeout_ms)
        page.set_default_navigation_timeout(timeout_ms)
        await page.route("**/*", self._route_handler(page, counters))

        session.advance(FetchState.NAVIGATING)
        try:
            response = await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except PlaywrightError as exc:
            session.advance(FetchState.NAVIGATION_FAILED)
            error = classify_navigation_error(exc, url)
            logger.warning(
                "page_fetcher: navigation failed for %s (%s): %s",
                url,
                "non-retriable" if isinstance(error, NonRetriableFetchError) else "retriable",
                error,
            )
            raise error from exc
        session.advance(FetchState.LOADED)

        title = await page.title()
        html = await page.content()
        if debug_mode:
            await self._capture(page, url)

        logger.info(
            "page_fetcher: loaded %s (%d chars, %d filter matches, %d blocked resources)",
            url,
            len(html),
            counters.matched_filters,
            counters.blocked_resources,
        )
        return FetchedPage(
            title=title or "",
            html=html,
            final_url=page.url,
            status_code=response.status if response is not None else None,
        )

    def _route_handler(self, page: Page, counters: RequestCounters) -> Callable[[Route], Any]:
        blocker = self._blocker
        enforce = self._enforce_filter_lists

        async def handle(route: Route) -> None:
            request = route.request
            request_url = request.url
            resource_type = request.resource_type
            try:
                if blocker.should_block(request_url, resource_type, page.url):
                    counters.blocked_resources += 1
                    crawl_blocked_resources_total.inc()
                    logger.debug("page_fetcher: blocked %s %s", resource_type, request_url)
                    await route.abort()
                    return
                if resource_type != "document":
                    matched = blocker.check_filters(request_url, resource_type, page.url, counters)
                    if matched and enforce:
                        await route.abort()
                        return
                await route.continue_()
            except PlaywrightError as exc:
                # The page may have been closed while the request was in flight.
                logger.debug("page_fetcher: route handling failed for %s: %s", request_url, exc)

        return handle

    async def _capture(self, page: Page, url: str) -> None:
        if self._diagnostic_sink is None:
            return
        try:
            screenshot = await page.screenshot()
            self._diagnostic_sink.capture(url, screenshot)
        except Exception as exc:  # noqa: BLE001
            logger.warning("page_fetcher: debug screenshot failed for %s: %s", url, exc)


class _FetchSession:
    """Browser handles and lifecycle state of a single fetch."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.state = FetchState.IDLE
        self.browser: Any = None
        self.context: Any = None

    def advance(self, state: FetchState) -> None:
        logger.debug("page_fetcher: %s -> %s for %s", self.state.value, state.value, self.url)
        self.state = state

    async def teardown(self) -> None:
        """Close context and browser; errors are logged and swallowed."""
        if self.context is not None:
            try:
                await self.context.close()
            except Exception as exc:  # noqa: BLE001
                logger.debug("page_fetcher: context close failed for %s: %s", self.url, exc)
        if self.browser is not None:
            try:
                await self.browser.close()
            except Exception as exc:  # noqa: BLE001
                logger.debug("page_fetcher: browser close failed for %s: %s", self.url, exc)
        self.advance(FetchState.TORN_DOWN)
