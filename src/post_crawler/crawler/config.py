"""Constants and tuning parameters for the crawl pipeline."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Browser
# ---------------------------------------------------------------------------

#: User-agent string presented by the headless browser and the block-list
#: downloader.  Some list mirrors reject non-browser agents.
USER_AGENT: str = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)

#: Viewport used for every browsing context (also the screenshot size).
VIEWPORT: dict[str, int] = {"width": 1280, "height": 720}

#: Default navigation timeout in milliseconds.
DEFAULT_TIMEOUT_MS: int = 30_000

# ---------------------------------------------------------------------------
# Request blocking
# ---------------------------------------------------------------------------

#: Playwright resource types that are always aborted.  None of them is
#: needed to read a page's text or metadata.
BLOCKED_RESOURCE_TYPES: frozenset[str] = frozenset(
    {"image", "font", "media", "stylesheet"}
)

#: Chromium network error codes for which a retry reproduces the failure.
#: Navigation errors carrying any of these codes are non-retriable.
NON_RETRIABLE_ERROR_CODES: tuple[str, ...] = (
    "ERR_NAME_NOT_RESOLVED",
    "ERR_UNKNOWN_URL_SCHEME",
    "ERR_INVALID_URL",
    "ERR_ABORTED",
    "ERR_CONNECTION_REFUSED",
    "ERR_ADDRESS_UNREACHABLE",
    "ERR_CONNECTION_TIMED_OUT",
)

# ---------------------------------------------------------------------------
# Block-lists
# ---------------------------------------------------------------------------

#: Remote ad/tracker block-list sources, combined into one filter set.
BLOCKLIST_URLS: tuple[str, ...] = (
    "https://easylist.to/easylist/easylist.txt",
    "https://easylist.to/easylist/easyprivacy.txt",
    "https://malware-filter.gitlab.io/malware-filter/urlhaus-filter-online.txt",
    "https://pgl.yoyo.org/adservers/serverlist.php"
    "?hostformat=adblockplus&showintro=1&mimetype=plaintext",
)

#: Cache key and sub-directory of the combined block-list text.
FILTER_CACHE_KEY: str = "adblock-filters"
FILTER_CACHE_SUBDIR: str = "adblock"

# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

#: Number of visible body characters stored as ``metadata.main_text``.
MAIN_TEXT_CHARS: int = 1000

#: Maximum readability excerpt length (characters).
EXCERPT_CHARS: int = 300

#: Maximum size of extracted readability content (bytes).
MAX_CONTENT_BYTES: int = 900 * 1024  # 900 KB
