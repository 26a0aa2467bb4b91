"""
Analytics cache orchestration

Stale-while-revalidate reads over a CacheStore:

- fresh entry            -> payload, is_stale=False
- stale, within tolerance -> payload, is_stale=True, background refresh scheduled
- expired, no tolerance  -> miss

Background refreshes are detached asyncio tasks. Callers never await them;
their outcome is only visible through the log and `BackgroundRefresher.outcomes`.
"""
import asyncio
import json
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Deque, Optional, Set

from pydantic import BaseModel

from shop_analytics.schemas.analytics import CacheMetadata
from shop_analytics.services.cache_store import CacheStore
from shop_analytics.utils.helpers import utcnow
from shop_analytics.utils.logger import log

RefreshFactory = Callable[[], Awaitable[Any]]


class CacheTTL:
    """Recommended TTLs (seconds) per metric class"""
    REVENUE_DASHBOARD = 3600      # 1 hour
    CUSTOMER_SEGMENTS = 7200      # 2 hours
    CLV_DATA = 14400              # 4 hours
    FORECAST_DATA = 86400         # 24 hours
    HISTORICAL_DATA = 604800      # 1 week
    DEFAULT = 1800                # 30 minutes


class CacheStoreError(Exception):
    """Raised when the cache store fails and the caller did not ask to ignore errors"""

    def __init__(self, operation: str, shop: str, key: Optional[str], cause: Exception):
        self.operation = operation
        self.shop = shop
        self.key = key
        self.cause = cause
        super().__init__(f"Cache {operation} failed for {shop}/{key}: {cause}")


@dataclass
class CacheHit:
    data: Any
    metadata: CacheMetadata


@dataclass(frozen=True)
class RefreshOutcome:
    shop: str
    key: str
    success: bool
    error: Optional[str]
    finished_at: datetime


class BackgroundRefresher:
    """
    Fire-and-forget scheduler for cache recomputation.

    Tasks are kept referenced until done so the event loop doesn't drop them.
    Concurrent stale reads may schedule the same key twice; recomputation is
    an idempotent upsert, so the last writer wins.
    """

    def __init__(self, history: int = 100):
        self._tasks: Set[asyncio.Task] = set()
        self.outcomes: Deque[RefreshOutcome] = deque(maxlen=history)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, shop: str, key: str, factory: RefreshFactory) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.warning(f"No running event loop, skipping background refresh of {key} for {shop}")
            return None

        log.info(f"Background refresh triggered for {key} (shop={shop})")
        task = loop.create_task(self._run(shop, key, factory))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, shop: str, key: str, factory: RefreshFactory) -> None:
        # Let the current response cycle finish first
        await asyncio.sleep(0)
        try:
            await factory()
        except Exception as e:
            log.error(f"Background refresh failed for {key} (shop={shop}): {e}")
            self.outcomes.append(RefreshOutcome(shop, key, False, str(e), utcnow()))
        else:
            log.info(f"Background refresh completed for {key} (shop={shop})")
            self.outcomes.append(RefreshOutcome(shop, key, True, None, utcnow()))

    async def drain(self) -> None:
        """Wait for in-flight refreshes (shutdown and tests)"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class AnalyticsCacheManager:
    """get/set/cleanup over a CacheStore with stale-while-revalidate reads"""

    def __init__(
        self,
        store: CacheStore,
        refresher: Optional[BackgroundRefresher] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.refresher = refresher or BackgroundRefresher()
        self.clock = clock

    async def get(
        self,
        shop: str,
        key: str,
        max_staleness: Optional[int] = None,
        ignore_errors: bool = False,
        refresh: Optional[RefreshFactory] = None,
    ) -> Optional[CacheHit]:
        """
        Look up a cached payload.

        Args:
            shop: Tenant (shop domain)
            key: Metric key
            max_staleness: Seconds since computation after which the entry is
                stale but still served. Without it (or with 0), entries are
                served until expires_at and missed afterwards.
            ignore_errors: Treat store failures as a miss instead of raising
            refresh: Coroutine factory recomputing the key; scheduled in the
                background when a stale entry is served

        Returns:
            CacheHit, or None on a miss
        """
        try:
            entry = self.store.find(shop, key)
        except Exception as e:
            log.error(f"Cache read error for {key} (shop={shop}): {e}")
            if ignore_errors:
                return None
            raise CacheStoreError("read", shop, key, e) from e

        if entry is None:
            return None

        now = self.clock()
        age_seconds = (now - entry.computed_at).total_seconds()
        is_expired = now > entry.expires_at

        if not max_staleness:
            if is_expired:
                return None
            is_stale = False
        else:
            is_stale = age_seconds > max_staleness

        try:
            data = json.loads(entry.payload) if entry.payload else None
        except ValueError as e:
            log.error(f"Corrupt cache payload for {key} (shop={shop}): {e}")
            if ignore_errors:
                return None
            raise CacheStoreError("decode", shop, key, e) from e

        if is_stale and refresh is not None:
            self.refresher.schedule(shop, key, refresh)

        return CacheHit(
            data=data,
            metadata=CacheMetadata(
                computed_at=entry.computed_at,
                expires_at=entry.expires_at,
                is_stale=is_stale
            )
        )

    async def set(
        self,
        shop: str,
        key: str,
        payload: Any,
        ttl_seconds: int = CacheTTL.DEFAULT,
        ignore_errors: bool = False,
    ) -> Optional[CacheMetadata]:
        """Upsert a payload with computed_at=now and expires_at=now+ttl"""
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")

        now = self.clock()
        expires_at = now + timedelta(seconds=ttl_seconds)

        try:
            entry = self.store.upsert(
                shop, key, json.dumps(payload, default=str), now, expires_at
            )
        except Exception as e:
            log.error(f"Cache write error for {key} (shop={shop}): {e}")
            if ignore_errors:
                return None
            raise CacheStoreError("write", shop, key, e) from e

        return CacheMetadata(
            computed_at=entry.computed_at,
            expires_at=entry.expires_at,
            is_stale=False
        )

    async def cleanup_expired(self, shop: str) -> int:
        """Delete the shop's expired entries. Best effort: failures are logged."""
        try:
            deleted = self.store.delete_expired(shop, self.clock())
        except Exception as e:
            log.error(f"Cache cleanup error (shop={shop}): {e}")
            return 0

        log.info(f"Cleaned up {deleted} expired cache entries (shop={shop})")
        return deleted
