"""Tiered rate cache: memory, persistent store, origin, then stale fallbacks."""

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

import httpx

from vesrates.database.rate_store import RATES_CACHE_ID, RateStore
from vesrates.models.rates import CacheEntry, CacheReadResult, CacheSource, utcnow
from vesrates.services.errors import ExtractionError, TransientStorageError, UnavailableError
from vesrates.utils.config import config
from vesrates.utils.event_store import CACHE_READ, EventStore
from vesrates.utils.logger import StructuredLogger
from vesrates.utils.trace_context import get_current_trace

STALE_WARNING = "Using stale data - API unavailable"

OriginFetcher = Callable[[], Awaitable[Any]]


async def fetch_rates_from_origin() -> Any:
    """Fetch the full rate list from the rates API."""
    url = config.sources.rates_api_url
    try:
        async with httpx.AsyncClient(timeout=config.sources.request_timeout) as client:
            response = await client.get(url)
    except httpx.HTTPError as e:
        raise ExtractionError(f"External API request failed: {e}") from e

    if response.status_code != 200:
        raise ExtractionError(f"External API error: {response.status_code}")

    try:
        return response.json()
    except ValueError as e:
        raise ExtractionError("External API returned invalid JSON") from e


class TieredRateCache:
    """
    Serves the rate list from the freshest tier that can answer.

    The memory tier is process-scoped: it starts empty and may be lost at any
    time, so nothing here assumes a read is fresher than the previous one.
    """

    def __init__(
        self,
        origin: OriginFetcher | None = None,
        ttl_seconds: int | None = None,
        clock: Callable[[], datetime] = utcnow,
        event_store: EventStore | None = None,
    ):
        """
        Initialize the cache.

        Args:
            origin: Async callable returning a fresh rate list
            ttl_seconds: Age below which a cached value is served as fresh
            clock: Source of the current UTC time
            event_store: Optional store recording which tier answered each read
        """
        self.origin = origin or fetch_rates_from_origin
        self.ttl_seconds = ttl_seconds or config.cache.cache_ttl
        self.clock = clock
        self.event_store = event_store
        self._entries: dict[int, CacheEntry[Any]] = {}
        self.logger = StructuredLogger("TieredRateCache")

    def get_entry(self, key: int = RATES_CACHE_ID) -> CacheEntry[Any] | None:
        return self._entries.get(key)

    def clear(self) -> None:
        self._entries.clear()

    def _remember(self, key: int, value: Any, cached_at: datetime) -> None:
        self._entries[key] = CacheEntry.create(value, cached_at, self.ttl_seconds)

    def _answer(
        self, key: int, data: Any, source: CacheSource, cached_at: datetime
    ) -> CacheReadResult:
        result = CacheReadResult(
            data=data,
            source=source,
            cached_at=cached_at,
            warning=STALE_WARNING if source.is_stale else None,
        )
        if source.is_stale:
            self.logger.warning(
                "Serving stale rates",
                context={"key": key, "source": source.value, "cached_at": cached_at.isoformat()},
            )
        if self.event_store is not None:
            self.event_store.add_event(
                event_type=CACHE_READ,
                component="TieredRateCache",
                message=f"Rates served from {source.value}",
                context={"key": key, "source": source.value},
                trace_id=get_current_trace(),
            )
        return result

    async def read(self, store: RateStore, key: int = RATES_CACHE_ID) -> CacheReadResult:
        """
        Read the rate list.

        Args:
            store: Persistent store for this invocation
            key: Cache key (the rates_cache row id)

        Returns:
            CacheReadResult tagged with the tier that answered

        Raises:
            UnavailableError: If no tier and no stale copy can answer
        """
        now = self.clock()

        # 1. Fresh memory entry, no I/O at all
        entry = self._entries.get(key)
        if entry is not None and entry.is_fresh(now):
            return self._answer(key, entry.value, CacheSource.MEMORY, entry.cached_at)

        # 2. Fresh persistent row
        try:
            row = store.get_cache_row(key)
        except TransientStorageError as e:
            self.logger.warning("Persistent cache lookup failed", context={"key": key}, exception=e)
            row = None
        if row is not None and (now - row.cached_at).total_seconds() < self.ttl_seconds:
            self._remember(key, row.data, row.cached_at)
            return self._answer(key, row.data, CacheSource.PERSISTENT, row.cached_at)

        # 3. Origin
        try:
            data = await self.origin()
        except Exception as origin_error:
            self.logger.error("Origin fetch failed", context={"key": key}, exception=origin_error)
            return self._stale_or_fail(store, key, origin_error)

        try:
            store.upsert_cache_row(data, now, key)
        except TransientStorageError as e:
            self.logger.error("Failed to update persistent cache", context={"key": key}, exception=e)
        self._remember(key, data, now)
        return self._answer(key, data, CacheSource.ORIGIN, now)

    def _stale_or_fail(self, store: RateStore, key: int, origin_error: Exception) -> CacheReadResult:
        # 4. Any memory entry, however old
        entry = self._entries.get(key)
        if entry is not None:
            return self._answer(key, entry.value, CacheSource.MEMORY_STALE, entry.cached_at)

        # 5. Any persistent row, however old
        try:
            row = store.get_cache_row(key)
        except TransientStorageError as e:
            self.logger.error("Stale cache lookup failed", context={"key": key}, exception=e)
            row = None
        if row is not None:
            return self._answer(key, row.data, CacheSource.PERSISTENT_STALE, row.cached_at)

        # 6. Nothing left
        raise UnavailableError("Failed to fetch rates and no cache available") from origin_error

    async def refresh(self, store: RateStore, key: int = RATES_CACHE_ID) -> bool:
        """
        Cron write path: fetch from origin, upsert, update memory.

        Failures are logged and reported as False, never raised.
        """
        try:
            data = await self.origin()
            cached_at = self.clock()
            store.upsert_cache_row(data, cached_at, key)
        except Exception as e:
            self.logger.error("Failed to update rates cache", context={"key": key}, exception=e)
            return False

        self._remember(key, data, cached_at)
        self.logger.info(
            "Rates updated successfully", context={"key": key, "cached_at": cached_at.isoformat()}
        )
        return True
