"""Download and combine remote ad/tracker block-lists.

Uses ``httpx`` for all HTTP requests.  Sources are fetched concurrently; a
source that times out, errors or returns an empty body is logged and left
out of the combination.  Only when every source fails is
:class:`~post_crawler.core.exceptions.FilterListFetchError` raised.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

import httpx

from post_crawler.core.exceptions import FilterListFetchError
from post_crawler.crawler.config import BLOCKLIST_URLS, USER_AGENT

logger = logging.getLogger(__name__)


async def _fetch_one(client: httpx.AsyncClient, url: str, timeout: float) -> str:
    """Return the body of one block-list source, or ``""`` on any failure."""
    try:
        response = await client.get(
            url,
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )
    except httpx.TimeoutException:
        logger.warning("filter_lists: timeout fetching %s", url)
        return ""
    except httpx.RequestError as exc:
        logger.warning("filter_lists: request error for %s: %s", url, exc)
        return ""

    if response.status_code >= 400:
        logger.warning("filter_lists: HTTP %d for %s", response.status_code, url)
        return ""

    body = response.text
    if not body.strip():
        logger.warning("filter_lists: empty body from %s", url)
        return ""
    return body


async def fetch_blocklists(
    urls: Sequence[str] = BLOCKLIST_URLS,
    *,
    timeout: float = 30.0,
    client: httpx.AsyncClient | None = None,
) -> str:
    """Fetch every block-list source and join the non-empty bodies.

    Args:
        urls: Source URLs.
        timeout: Per-request timeout in seconds.
        client: Optional shared client; a private one is created otherwise.

    Returns:
        The combined list text (sources separated by newlines).

    Raises:
        FilterListFetchError: If no source returned usable content.
    """
    logger.info("filter_lists: fetching %d block-list sources", len(urls))

    if client is None:
        async with httpx.AsyncClient() as own_client:
            bodies = await asyncio.gather(*(_fetch_one(own_client, u, timeout) for u in urls))
    else:
        bodies = await asyncio.gather(*(_fetch_one(client, u, timeout) for u in urls))

    valid = [body for body in bodies if body]
    if not valid:
        raise FilterListFetchError("No valid blocklists were fetched")

    logger.info("filter_lists: fetched %d of %d sources", len(valid), len(urls))
    return "\n".join(valid)
