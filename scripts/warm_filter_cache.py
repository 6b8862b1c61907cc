#!/usr/bin/env python
"""Pre-populate the on-disk block-list cache.

Run from the project root before starting workers on a fresh host, so the
first jobs do not all wait on the block-list download::

    python scripts/warm_filter_cache.py [--cache-dir .cache] [--force]

The cache directory, list sources, TTL and download timeout come from the
same settings the crawl worker reads, so the script warms the cache the
worker will use.

Options:
    --cache-dir  Override the ``filter_cache_dir`` setting.
    --force      Discard the cached entry and download again.

Exit codes:
    0 — The cache holds a list with at least one rule.
    1 — No block-list could be downloaded.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure the src layout is on sys.path when run as a standalone script.
_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_SRC_DIR = os.path.join(os.path.dirname(_SCRIPT_DIR), "src")
if _SRC_DIR not in sys.path:
    sys.path.insert(0, _SRC_DIR)


async def _run(cache_dir: str | None, force: bool) -> int:
    from post_crawler.config.settings import get_settings  # noqa: PLC0415
    from post_crawler.crawler.config import (  # noqa: PLC0415
        BLOCKLIST_URLS,
        FILTER_CACHE_KEY,
        FILTER_CACHE_SUBDIR,
    )
    from post_crawler.crawler.content_blocker import ContentBlocker  # noqa: PLC0415
    from post_crawler.crawler.filter_cache import FilterListCache  # noqa: PLC0415

    settings = get_settings()
    cache_dir = cache_dir or settings.filter_cache_dir
    cache = FilterListCache(cache_dir)
    try:
        if force:
            cache.clear(FILTER_CACHE_KEY, FILTER_CACHE_SUBDIR)

        blocker = ContentBlocker(
            cache,
            sources=settings.filter_list_urls or BLOCKLIST_URLS,
            expiration_ms=settings.filter_list_ttl_hours * 60 * 60 * 1000,
            fetch_timeout=settings.filter_list_timeout_seconds,
        )
        await blocker.initialize()
    finally:
        cache.close()

    if blocker.rule_count == 0:
        print("No block-list rules could be loaded.", file=sys.stderr)
        return 1
    print(f"Cached {blocker.rule_count} block-list rules under {cache_dir}.")
    return 0


def main() -> None:
    """Parse CLI arguments and warm the cache."""
    parser = argparse.ArgumentParser(description="Download and cache the ad/tracker block-lists.")
    parser.add_argument(
        "--cache-dir",
        default=None,
        help="Block-list cache directory (default: the filter_cache_dir setting).",
    )
    parser.add_argument("--force", action="store_true", help="Ignore the cached entry.")
    args = parser.parse_args()

    from post_crawler.config.settings import get_settings  # noqa: PLC0415
    from post_crawler.core.logging_config import configure_logging  # noqa: PLC0415

    configure_logging(get_settings().log_level)
    sys.exit(asyncio.run(_run(args.cache_dir, args.force)))


if __name__ == "__main__":
    main()
