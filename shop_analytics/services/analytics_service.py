"""
Analytics Service

Per-shop facade used by the dashboard API: revenue overview, CLV and
segments, each served from the analytics cache when possible and recomputed
from Shopify orders on a miss. Stale entries are served immediately and
refreshed in the background.
"""
import asyncio
from datetime import datetime, timedelta, tzinfo
from typing import Callable, List, Optional, Protocol

from pydantic import ValidationError

from shop_analytics.config import get_settings
from shop_analytics.connectors.shopify import ShopifyOrderSource
from shop_analytics.models.base import SessionLocal
from shop_analytics.models.shop import Shop
from shop_analytics.schemas.analytics import (
    AnalyticsResult,
    CacheMetadata,
    CLVResult,
    CUSTOMER_SEGMENTS_KEY,
    MetricKind,
    RevenueOverview,
    SegmentBreakdown,
    clv_key,
    metric_kind,
    parse_payload,
    revenue_overview_key,
)
from shop_analytics.services.analytics_cache import (
    AnalyticsCacheManager,
    BackgroundRefresher,
    CacheTTL,
)
from shop_analytics.services.cache_store import SQLCacheStore
from shop_analytics.services.clv import build_clv_result, build_segment_breakdown
from shop_analytics.services.customer_profiles import CustomerProfileRepository
from shop_analytics.services.revenue import build_revenue_overview
from shop_analytics.utils.helpers import resolve_timezone, utcnow
from shop_analytics.utils.logger import log

settings = get_settings()

# Shared by every request in the process
background_refresher = BackgroundRefresher(history=settings.refresh_outcome_history)


class OrderSource(Protocol):
    async def fetch_orders(self, days: int, now: Optional[datetime] = None) -> List[dict]:
        ...

    async def fetch_customer_orders(self, customer_id: str) -> List[dict]:
        ...


class AnalyticsService:
    def __init__(
        self,
        shop: str,
        source: OrderSource,
        cache: AnalyticsCacheManager,
        profiles: CustomerProfileRepository,
        tz: tzinfo,
        clock: Callable[[], datetime] = utcnow,
        clv_lookback_days: int = 365,
        ignore_cache_errors: bool = True,
    ):
        self.shop = shop
        self.source = source
        self.cache = cache
        self.profiles = profiles
        self.tz = tz
        self.clock = clock
        self.clv_lookback_days = clv_lookback_days
        self.ignore_cache_errors = ignore_cache_errors

    # ------------------------------------------------------------------
    # Cache plumbing
    # ------------------------------------------------------------------

    async def _cached(self, key: str, max_staleness: Optional[int]) -> Optional[AnalyticsResult]:
        hit = await self.cache.get(
            self.shop,
            key,
            max_staleness=max_staleness,
            ignore_errors=self.ignore_cache_errors,
            refresh=lambda: self.refresh(key)
        )
        if hit is None or hit.data is None:
            return None

        try:
            data = parse_payload(key, hit.data)
        except ValidationError as e:
            # Written by an older payload shape; recompute
            log.warning(f"Discarding cached {key} for {self.shop}: {e.error_count()} validation errors")
            return None

        return AnalyticsResult[type(data)](data=data, metadata=hit.metadata)

    async def _store(self, key: str, payload, ttl_seconds: int) -> AnalyticsResult:
        metadata = await self.cache.set(
            self.shop, key, payload, ttl_seconds, ignore_errors=self.ignore_cache_errors
        )
        if metadata is None:
            now = self.clock()
            metadata = CacheMetadata(
                computed_at=now,
                expires_at=now + timedelta(seconds=ttl_seconds)
            )
        return AnalyticsResult[type(payload)](data=payload, metadata=metadata)

    # ------------------------------------------------------------------
    # Revenue
    # ------------------------------------------------------------------

    async def get_revenue_overview(
        self,
        days: int = 30,
        max_staleness: Optional[int] = None,
    ) -> AnalyticsResult[RevenueOverview]:
        cached = await self._cached(revenue_overview_key(days), max_staleness)
        if cached is not None:
            return cached
        return await self.compute_revenue_overview(days)

    async def compute_revenue_overview(self, days: int = 30) -> AnalyticsResult[RevenueOverview]:
        """Fetch orders for this and the previous window, aggregate and cache"""
        now = self.clock()
        orders = await self.source.fetch_orders(days * 2, now)
        overview = build_revenue_overview(orders, days, now, self.tz)

        log.info(
            f"Revenue overview for {self.shop} ({days}d): "
            f"{overview.order_count} orders, {overview.total_revenue:.2f} revenue"
        )
        return await self._store(revenue_overview_key(days), overview, CacheTTL.REVENUE_DASHBOARD)

    # ------------------------------------------------------------------
    # CLV
    # ------------------------------------------------------------------

    async def calculate_clv(
        self,
        customer_id: Optional[str] = None,
        max_staleness: Optional[int] = None,
    ) -> AnalyticsResult[CLVResult]:
        cached = await self._cached(clv_key(customer_id), max_staleness)
        if cached is not None:
            return cached
        return await self.compute_clv(customer_id)

    async def compute_clv(self, customer_id: Optional[str] = None) -> AnalyticsResult[CLVResult]:
        """Score customers from fresh orders, cache, then write profiles behind"""
        now = self.clock()
        if customer_id:
            orders = await self.source.fetch_customer_orders(customer_id)
        else:
            orders = await self.source.fetch_orders(self.clv_lookback_days, now)

        result = build_clv_result(orders, now, customer_id)
        stored = await self._store(clv_key(customer_id), result, CacheTTL.CLV_DATA)

        self.profiles.upsert_profiles(self.shop, result.customers)
        return stored

    # ------------------------------------------------------------------
    # Segments
    # ------------------------------------------------------------------

    async def get_customer_segments(
        self,
        max_staleness: Optional[int] = None,
    ) -> AnalyticsResult[SegmentBreakdown]:
        cached = await self._cached(CUSTOMER_SEGMENTS_KEY, max_staleness)
        if cached is not None:
            return cached
        return await self.compute_customer_segments()

    async def compute_customer_segments(self) -> AnalyticsResult[SegmentBreakdown]:
        clv = await self.calculate_clv()
        breakdown = build_segment_breakdown(clv.data)
        return await self._store(CUSTOMER_SEGMENTS_KEY, breakdown, CacheTTL.CUSTOMER_SEGMENTS)

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    async def get_dashboard(self, days: int = 30, max_staleness: Optional[int] = None) -> dict:
        """Revenue and CLV in parallel; if either fails the whole call fails"""
        revenue, clv = await asyncio.gather(
            self.get_revenue_overview(days, max_staleness),
            self.calculate_clv(max_staleness=max_staleness)
        )
        return {"revenue": revenue, "clv": clv}

    async def refresh(self, key: str) -> AnalyticsResult:
        """Recompute a cache key by its metric kind, bypassing the cache read"""
        kind = metric_kind(key)
        if kind == MetricKind.REVENUE_OVERVIEW:
            return await self.compute_revenue_overview(int(key[len("revenue_overview_"):]))
        if kind == MetricKind.CLV:
            customer_id = key[len("clv_customer_"):] if key.startswith("clv_customer_") else None
            return await self.compute_clv(customer_id)
        return await self.compute_customer_segments()

    def _schedule_refresh(self, key: str):
        return self.cache.refresher.schedule(self.shop, key, lambda: self.refresh(key))

    def prefetch_common_caches(self) -> List[str]:
        """Warm the 30-day overview and all-customer CLV in the background"""
        keys = [revenue_overview_key(30), clv_key()]
        for key in keys:
            self._schedule_refresh(key)
        return keys

    async def cleanup_expired_caches(self) -> int:
        return await self.cache.cleanup_expired(self.shop)


def build_analytics_service(shop: Shop, session_factory=SessionLocal) -> AnalyticsService:
    """Wire an AnalyticsService for an installed shop"""
    return AnalyticsService(
        shop=shop.domain,
        source=ShopifyOrderSource(
            shop.domain,
            shop.access_token,
            api_version=settings.shopify_api_version,
            page_limit=settings.shopify_page_limit,
            max_pages=settings.shopify_max_pages,
            timeout=settings.shopify_request_timeout
        ),
        cache=AnalyticsCacheManager(SQLCacheStore(session_factory), background_refresher),
        profiles=CustomerProfileRepository(session_factory),
        tz=resolve_timezone(shop.iana_timezone, settings.default_timezone),
        clv_lookback_days=settings.clv_lookback_days
    )
