#!/usr/bin/env python
"""Crawl a single URL through the full fetch and extraction pipeline.

Run from the project root::

    python scripts/crawl_url.py https://example.com/article

No queue, database or notification channel is involved; the
:class:`CrawlResult` is printed to stdout as JSON.  Useful for checking how a
site renders under the blocking policy before blaming the worker.

Usage::

    python scripts/crawl_url.py URL [--debug] [--timeout-ms 30000]
        [--max-attempts 1] [--cache-dir .cache] [--no-enforce-filters]

Options:
    --debug               Show the browser window and save a screenshot.
    --timeout-ms          Navigation timeout in milliseconds.
    --max-attempts        In-process fetch attempts.
    --cache-dir           Block-list cache directory.
    --no-enforce-filters  Only count block-list matches; do not abort them.
    --log-level           Logging verbosity (default: WARNING).

Exit codes:
    0 — The crawl succeeded.
    1 — The crawl failed.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

# Ensure the src layout is on sys.path when run as a standalone script.
_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_SRC_DIR = os.path.join(os.path.dirname(_SCRIPT_DIR), "src")
if _SRC_DIR not in sys.path:
    sys.path.insert(0, _SRC_DIR)


async def _run(args: argparse.Namespace) -> int:
    """Build the pipeline, crawl ``args.url`` and print the result.

    Returns:
        Process exit code.
    """
    from post_crawler.crawler.content_blocker import ContentBlocker  # noqa: PLC0415
    from post_crawler.crawler.content_extractor import ContentExtractor  # noqa: PLC0415
    from post_crawler.crawler.filter_cache import FilterListCache  # noqa: PLC0415
    from post_crawler.crawler.orchestrator import (  # noqa: PLC0415
        CrawlOptions,
        CrawlOrchestrator,
    )
    from post_crawler.crawler.page_fetcher import (  # noqa: PLC0415
        FileScreenshotSink,
        PageFetcher,
    )

    blocker = ContentBlocker(FilterListCache(args.cache_dir))
    fetcher = PageFetcher(
        blocker,
        enforce_filter_lists=not args.no_enforce_filters,
        diagnostic_sink=FileScreenshotSink("debug-screenshots"),
    )
    orchestrator = CrawlOrchestrator(fetcher, ContentExtractor())
    result = await orchestrator.crawl(
        args.url,
        CrawlOptions(
            debug_mode=args.debug,
            timeout_ms=args.timeout_ms,
            max_attempts=args.max_attempts,
        ),
    )
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0 if result.success else 1


def main() -> None:
    """Parse CLI arguments and run one crawl."""
    parser = argparse.ArgumentParser(
        description="Crawl one URL and print the extracted result as JSON.",
    )
    parser.add_argument("url", help="Page to crawl.")
    parser.add_argument("--debug", action="store_true", help="Visible browser and screenshot.")
    parser.add_argument("--timeout-ms", type=int, default=30_000, help="Navigation timeout.")
    parser.add_argument("--max-attempts", type=int, default=1, help="In-process fetch attempts.")
    parser.add_argument("--cache-dir", default=".cache", help="Block-list cache directory.")
    parser.add_argument(
        "--no-enforce-filters",
        action="store_true",
        help="Count block-list matches without aborting them.",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging verbosity.")
    args = parser.parse_args()

    from post_crawler.core.logging_config import configure_logging  # noqa: PLC0415

    configure_logging(args.log_level)
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
