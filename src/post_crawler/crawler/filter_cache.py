"""Time-based on-disk cache for remote block-list text.

Entries live in a :class:`diskcache.Cache` per sub-directory::

    <root>/<sub_directory>/   (diskcache SQLite store)
    key -> (payload, fetched_at, expires_at)   # epoch milliseconds

Concurrency:

- Inside one event loop, concurrent :meth:`FilterListCache.get_or_fetch`
  calls for the same key share a single in-flight fetch (single-flight).
- Across worker processes, diskcache serializes writes through SQLite, so
  readers only ever see a complete entry.  Two cold processes may both
  download; the last write wins, which is harmless.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

import diskcache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilterListCacheEntry:
    """One cached payload and its freshness window (epoch milliseconds)."""

    key: str
    payload: str
    fetched_at: int
    expires_at: int
    sub_directory: str = ""

    def is_fresh(self, now_ms: int, expiration_ms: int) -> bool:
        return now_ms - self.fetched_at < expiration_ms


def _now_ms() -> int:
    return int(time.time() * 1000)


class FilterListCache:
    """Fetch-through cache for block-list text.

    Args:
        root: Base directory under which sub-directories are created.
        clock: Returns the current time in epoch milliseconds.  Tests
            inject a fake clock.
    """

    def __init__(self, root: str | os.PathLike[str], clock: Callable[[], int] = _now_ms) -> None:
        self._root = Path(root)
        self._clock = clock
        self._stores: dict[str, diskcache.Cache] = {}
        self._inflight: dict[str, asyncio.Future[str]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_or_fetch(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[str]],
        *,
        expiration_ms: int,
        sub_directory: str = "",
    ) -> str:
        """Return the cached payload for ``key``, fetching it when stale.

        Args:
            key: Cache key.
            fetch_fn: Coroutine function producing a fresh payload.
            expiration_ms: Maximum age of a cached payload.
            sub_directory: Directory (below the cache root) holding the entry.

        Returns:
            The cached or freshly fetched payload.

        Raises:
            Exception: Whatever ``fetch_fn`` raised.  Stale data is never
                returned in its place; the caller decides the fallback.
        """
        entry = self._read(key, sub_directory)
        if entry is not None and entry.is_fresh(self._clock(), expiration_ms):
            logger.debug("filter_cache: hit for %s", key)
            return entry.payload

        flight_key = f"{sub_directory}/{key}"
        loop = asyncio.get_running_loop()
        pending = self._inflight.get(flight_key)
        if pending is not None and pending.get_loop() is loop and not pending.done():
            logger.debug("filter_cache: joining in-flight fetch for %s", key)
            return await asyncio.shield(pending)

        future: asyncio.Future[str] = loop.create_future()
        self._inflight[flight_key] = future
        try:
            logger.info("filter_cache: miss for %s; fetching", key)
            payload = await fetch_fn()
            self._write(key, sub_directory, payload, expiration_ms)
            future.set_result(payload)
            return payload
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Nobody else may be awaiting; mark the exception as retrieved.
            future.exception()
            raise
        finally:
            if self._inflight.get(flight_key) is future:
                del self._inflight[flight_key]

    def get(self, key: str, sub_directory: str = "") -> FilterListCacheEntry | None:
        """Return the stored entry for ``key`` regardless of its age.

        Entries are also given a diskcache ``expire`` equal to their TTL, so
        one the store has already evicted reads as ``None``.
        """
        return self._read(key, sub_directory)

    def clear(self, key: str, sub_directory: str = "") -> None:
        """Remove the entry for ``key``; a missing entry is not an error."""
        if self._store(sub_directory).delete(key):
            logger.info("filter_cache: cleared %s", key)

    def close(self) -> None:
        """Close every open store."""
        for store in self._stores.values():
            store.close()
        self._stores.clear()

    # ------------------------------------------------------------------
    # Storage helpers
    # ------------------------------------------------------------------

    def _store(self, sub_directory: str) -> diskcache.Cache:
        store = self._stores.get(sub_directory)
        if store is None:
            store = diskcache.Cache(str(self._root / sub_directory))
            self._stores[sub_directory] = store
        return store

    def _read(self, key: str, sub_directory: str) -> FilterListCacheEntry | None:
        try:
            value = self._store(sub_directory).get(key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("filter_cache: read error for %s (%s); treating as miss", key, exc)
            return None
        if value is None:
            return None
        try:
            payload, fetched_at, expires_at = value
            if not isinstance(payload, str):
                raise TypeError(f"payload is {type(payload).__name__}")
            return FilterListCacheEntry(
                key=key,
                payload=payload,
                fetched_at=int(fetched_at),
                expires_at=int(expires_at),
                sub_directory=sub_directory,
            )
        except (ValueError, TypeError) as exc:
            logger.warning("filter_cache: unreadable entry %s (%s); treating as miss", key, exc)
            return None

    def _write(self, key: str, sub_directory: str, payload: str, expiration_ms: int) -> None:
        now = self._clock()
        self._store(sub_directory).set(
            key,
            (payload, now, now + expiration_ms),
            expire=expiration_ms / 1000,
        )
        logger.info("filter_cache: stored %s (%d bytes)", key, len(payload))
