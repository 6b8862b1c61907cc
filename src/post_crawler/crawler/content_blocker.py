"""Request blocking for headless page loads.

Two independent mechanisms are combined per request:

1. **Resource-type policy** (:meth:`ContentBlocker.should_block`) — images,
   fonts, media and stylesheets are never needed to read a page, so they
   are aborted outright.  Requests Playwright reports as ``other`` are
   re-classified from their URL and blocked when the guess is one of those
   types.  ``document`` requests are never blocked.
2. **Block-list matching** (:meth:`ContentBlocker.check_filters`) — the
   combined EasyList/EasyPrivacy/URLhaus/Peter Lowe lists compiled into an
   ``adblock`` (adblock-rust) engine.  Each match increments the
   caller-owned :class:`RequestCounters`, so concurrent fetches sharing one
   blocker never mix their counts.

The blocker is built once per worker process and shared.  Initialization
never fails: an empty engine is installed first and only replaced when the
downloaded lists parse to at least one rule.
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
import urllib.parse
from collections.abc import Sequence
from dataclasses import dataclass

import adblock

from post_crawler.core.exceptions import FilterListFetchError
from post_crawler.core.metrics import crawl_filter_matches_total
from post_crawler.crawler.config import (
    BLOCKED_RESOURCE_TYPES,
    BLOCKLIST_URLS,
    FILTER_CACHE_KEY,
    FILTER_CACHE_SUBDIR,
)
from post_crawler.crawler.filter_cache import FilterListCache
from post_crawler.crawler.filter_lists import fetch_blocklists

logger = logging.getLogger(__name__)

_DAY_MS: int = 24 * 60 * 60 * 1000

# ---------------------------------------------------------------------------
# Request type guessing
# ---------------------------------------------------------------------------

_EXTENSION_TYPES: dict[str, str] = {
    **dict.fromkeys(
        ("png", "jpg", "jpeg", "gif", "webp", "avif", "apng", "svg", "ico", "bmp", "tif", "tiff"),
        "image",
    ),
    **dict.fromkeys(("woff", "woff2", "ttf", "otf", "eot"), "font"),
    **dict.fromkeys(
        ("mp4", "webm", "ogg", "ogv", "oga", "mp3", "wav", "m4a", "m4v", "flac", "aac",
         "mov", "avi", "mkv", "m3u8", "mpd", "vtt"),
        "media",
    ),
    "css": "stylesheet",
    **dict.fromkeys(("js", "mjs", "cjs"), "script"),
    **dict.fromkeys(("html", "htm", "xhtml", "shtml"), "document"),
}

# Playwright resource types → adblock-rust request types.
_ADBLOCK_REQUEST_TYPES: dict[str, str] = {
    "document": "document",
    "stylesheet": "stylesheet",
    "image": "image",
    "media": "media",
    "texttrack": "media",
    "font": "font",
    "script": "script",
    "xhr": "xmlhttprequest",
    "fetch": "xmlhttprequest",
    "websocket": "websocket",
    "ping": "ping",
}


def guess_request_type(url: str) -> str:
    """Guess a request's resource type from the URL path extension.

    Query strings and fragments are ignored.  Unknown or missing extensions
    yield ``"other"``.
    """
    try:
        path = urllib.parse.urlsplit(url).path
    except ValueError:
        return "other"
    ext = posixpath.splitext(path)[1].lstrip(".").lower()
    return _EXTENSION_TYPES.get(ext, "other")


def count_rules(filter_text: str) -> int:
    """Count candidate filter rules in block-list text.

    Blank lines, ``!`` comments, ``[Adblock ...]`` headers and HTML (an
    error page served instead of a list) are not rules.
    """
    count = 0
    for line in filter_text.splitlines():
        stripped = line.strip()
        if not stripped or stripped[0] in "![<":
            continue
        count += 1
    return count


@dataclass
class RequestCounters:
    """Per-fetch counters, owned by the caller and passed by reference."""

    matched_filters: int = 0
    blocked_resources: int = 0


def _empty_engine() -> adblock.Engine:
    return adblock.Engine(filter_set=adblock.FilterSet())


# ---------------------------------------------------------------------------
# Blocker
# ---------------------------------------------------------------------------


class ContentBlocker:
    """Compiles block-lists into an engine and classifies page requests.

    Args:
        cache: Cache holding the combined block-list text.
        sources: Block-list URLs.
        expiration_ms: Maximum age of the cached list text.
        fetch_timeout: Per-source download timeout (seconds).
    """

    def __init__(
        self,
        cache: FilterListCache,
        *,
        sources: Sequence[str] = BLOCKLIST_URLS,
        expiration_ms: int = _DAY_MS,
        fetch_timeout: float = 30.0,
    ) -> None:
        self._cache = cache
        self._sources = tuple(sources)
        self._expiration_ms = expiration_ms
        self._fetch_timeout = fetch_timeout
        self._engine: adblock.Engine = _empty_engine()
        self._rule_count = 0
        self._initialized = False
        self._init_task: asyncio.Task[None] | None = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def rule_count(self) -> int:
        """Number of rules in the installed engine (0 for the empty engine)."""
        return self._rule_count

    async def initialize(self) -> None:
        """Load the block-lists and install the compiled engine.

        Idempotent: only the first call has an effect, and concurrent callers
        wait for that first load instead of returning early.  On download
        failure, parse failure, or a list with no rules the empty engine
        stays installed; in the last two cases the cache entry is cleared so
        the next process start downloads the lists again.
        """
        if self._initialized:
            return
        loop = asyncio.get_running_loop()
        task = self._init_task
        if task is None or task.done() or task.get_loop() is not loop:
            task = loop.create_task(self._load())
            self._init_task = task
        await asyncio.shield(task)

    async def _load(self) -> None:
        await self._install_engine()
        self._initialized = True

    async def _install_engine(self) -> None:
        logger.info("content_blocker: initializing")
        try:
            filter_text = await self._cache.get_or_fetch(
                FILTER_CACHE_KEY,
                self._download,
                expiration_ms=self._expiration_ms,
                sub_directory=FILTER_CACHE_SUBDIR,
            )
        except FilterListFetchError as exc:
            logger.error("content_blocker: %s; continuing with empty engine", exc)
            return
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "content_blocker: failed to load block-lists (%s); continuing with empty engine",
                exc,
            )
            return

        rules = count_rules(filter_text)
        if rules == 0:
            logger.warning("content_blocker: block-lists contain no rules; clearing cache")
            self._cache.clear(FILTER_CACHE_KEY, FILTER_CACHE_SUBDIR)
            return

        try:
            filter_set = adblock.FilterSet()
            filter_set.add_filter_list(filter_text)
            engine = adblock.Engine(filter_set=filter_set)
        except Exception as exc:  # noqa: BLE001
            logger.error("content_blocker: failed to compile block-lists: %s; clearing cache", exc)
            self._cache.clear(FILTER_CACHE_KEY, FILTER_CACHE_SUBDIR)
            return

        self._engine = engine
        self._rule_count = rules
        logger.info("content_blocker: installed engine with %d rules", rules)

    async def _download(self) -> str:
        return await fetch_blocklists(self._sources, timeout=self._fetch_timeout)

    def get_engine(self) -> adblock.Engine:
        """Return the installed engine (the empty engine before/without lists)."""
        return self._engine

    def should_block(self, request_url: str, resource_type: str, page_url: str | None = None) -> bool:
        """Apply the resource-type policy to one request.

        ``page_url`` is accepted for interface symmetry with
        :meth:`check_filters`; the policy does not depend on it.
        """
        if resource_type in BLOCKED_RESOURCE_TYPES:
            return True
        if resource_type == "other":
            return guess_request_type(request_url) in BLOCKED_RESOURCE_TYPES
        return False

    def check_filters(
        self,
        request_url: str,
        resource_type: str,
        page_url: str | None,
        counters: RequestCounters,
    ) -> bool:
        """Match one request against the block-lists.

        Increments ``counters.matched_filters`` once per match.

        Returns:
            ``True`` if a block-list rule matched.
        """
        if resource_type == "other":
            request_type = guess_request_type(request_url)
        else:
            request_type = resource_type
        request_type = _ADBLOCK_REQUEST_TYPES.get(request_type, "other")
        try:
            result = self._engine.check_network_urls(
                url=request_url,
                source_url=page_url or request_url,
                request_type=request_type,
            )
        except Exception as exc:  # noqa: BLE001
            logger.debug("content_blocker: could not check %s: %s", request_url, exc)
            return False

        if not result.matched:
            return False
        counters.matched_filters += 1
        crawl_filter_matches_total.inc()
        logger.debug("content_blocker: filter matched %s (%s)", request_url, request_type)
        return True
