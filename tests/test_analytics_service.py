"""
Tests for the analytics service: cache-through reads, recomputation,
profile write-behind and background refresh of stale entries.
"""
from zoneinfo import ZoneInfo

import pytest

from shop_analytics.models.base import engine
from shop_analytics.models.customer_profile import CustomerProfile
from shop_analytics.models.shop import Shop
from shop_analytics.schemas.analytics import CLVResult, RevenueOverview, SegmentBreakdown
from shop_analytics.services.analytics_cache import AnalyticsCacheManager, BackgroundRefresher
from shop_analytics.services.analytics_service import AnalyticsService, build_analytics_service
from shop_analytics.services.cache_store import SQLCacheStore
from shop_analytics.services.clv import NEW_CUSTOMER, PROMISING
from shop_analytics.services.customer_profiles import CustomerProfileRepository
from conftest import NOW, FakeOrderSource, make_order
from test_analytics_cache import BrokenStore

SHOP = "test-store.myshopify.com"
UTC = ZoneInfo("UTC")


def _orders():
    return [
        make_order(1, 100, days_ago=100, customer_id=7),
        make_order(2, 200, days_ago=50, customer_id=7),
        make_order(3, 300, days_ago=5, customer_id=7),
        make_order(4, 80, days_ago=2, customer_id=8),
        make_order(5, 40, days_ago=45),
    ]


@pytest.fixture
def source():
    return FakeOrderSource(_orders(), customer_orders=[make_order(4, 80, days_ago=2, customer_id=8)])


@pytest.fixture
def profiles(session_factory):
    return CustomerProfileRepository(session_factory)


@pytest.fixture
def service(source, profiles, session_factory, clock):
    cache = AnalyticsCacheManager(SQLCacheStore(session_factory), BackgroundRefresher(), clock=clock)
    return AnalyticsService(SHOP, source, cache, profiles, UTC, clock=clock)


# ────────────────────────────────────────────
# REVENUE
# ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_revenue_overview_computes_then_serves_from_cache(service, source):
    first = await service.get_revenue_overview(30)
    second = await service.get_revenue_overview(30)

    assert isinstance(first.data, RevenueOverview)
    assert first.data.order_count == 2
    assert first.data.total_revenue == pytest.approx(380.0)
    assert first.metadata.computed_at == NOW
    assert first.metadata.is_stale is False

    assert second.data == first.data
    assert source.order_calls == [60]


@pytest.mark.asyncio
async def test_revenue_windows_are_cached_separately(service, source):
    await service.get_revenue_overview(7)
    await service.get_revenue_overview(30)
    assert source.order_calls == [14, 60]


@pytest.mark.asyncio
async def test_empty_upstream_gives_zero_filled_overview(profiles, session_factory, clock):
    cache = AnalyticsCacheManager(SQLCacheStore(session_factory), clock=clock)
    service = AnalyticsService(SHOP, FakeOrderSource([]), cache, profiles, UTC, clock=clock)

    result = await service.get_revenue_overview(30)

    assert result.data.total_revenue == 0
    assert result.data.order_count == 0
    assert len(result.data.revenue_by_day) == 30
    assert result.data.revenue_by_day[-1].date == NOW.date().isoformat()


# ────────────────────────────────────────────
# CLV / PROFILES
# ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_clv_scores_customers_and_writes_profiles(service, source, profiles):
    result = await service.calculate_clv()

    assert isinstance(result.data, CLVResult)
    assert [c.customer_id for c in result.data.customers] == ["7", "8"]
    assert result.data.customers[0].segment == PROMISING
    assert source.order_calls == [365]

    stored = profiles.get_profiles(SHOP)
    assert [(p.customer_id, p.segment) for p in stored] == [("7", PROMISING), ("8", NEW_CUSTOMER)]
    assert stored[0].clv_score == result.data.customers[0].predicted_clv
    assert stored[0].last_order_date is not None


@pytest.mark.asyncio
async def test_clv_rerun_updates_existing_profiles(service, profiles, clock):
    await service.calculate_clv()
    clock.advance(20000)
    await service.calculate_clv()

    assert len(profiles.get_profiles(SHOP)) == 2


@pytest.mark.asyncio
async def test_single_customer_clv_uses_customer_orders(service, source):
    result = await service.calculate_clv("8")

    assert source.customer_calls == ["8"]
    assert source.order_calls == []
    assert [c.customer_id for c in result.data.customers] == ["8"]

    await service.calculate_clv("8")
    assert source.customer_calls == ["8"]


@pytest.mark.asyncio
async def test_profile_write_failure_does_not_fail_clv(service):
    CustomerProfile.__table__.drop(engine)

    result = await service.calculate_clv()

    assert len(result.data.customers) == 2


# ────────────────────────────────────────────
# SEGMENTS / DASHBOARD
# ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_customer_segments(service):
    result = await service.get_customer_segments()

    assert isinstance(result.data, SegmentBreakdown)
    assert result.data.total_customers == 2
    assert len(result.data.segments) == 6


@pytest.mark.asyncio
async def test_dashboard_loads_revenue_and_clv(service):
    results = await service.get_dashboard(30)

    assert results["revenue"].data.order_count == 2
    assert len(results["clv"].data.customers) == 2


@pytest.mark.asyncio
async def test_dashboard_fails_when_either_side_fails(service, source):
    async def boom_orders(days, now=None):
        raise RuntimeError("upstream exploded")

    source.fetch_orders = boom_orders

    with pytest.raises(RuntimeError):
        await service.get_dashboard(30)


# ────────────────────────────────────────────
# STALENESS / REFRESH
# ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_stale_read_serves_cached_and_refreshes_in_background(service, source, clock):
    await service.get_revenue_overview(30)
    source.orders = source.orders + [make_order(99, 1000, days_ago=0.5)]
    clock.advance(700)

    stale = await service.get_revenue_overview(30, max_staleness=600)

    assert stale.metadata.is_stale is True
    assert stale.data.order_count == 2

    await service.cache.refresher.drain()

    fresh = await service.get_revenue_overview(30)
    assert fresh.data.order_count == 3
    assert fresh.metadata.is_stale is False
    assert source.order_calls == [60, 60]


@pytest.mark.asyncio
async def test_refresh_dispatches_on_key(service, source):
    revenue = await service.refresh("revenue_overview_7")
    clv = await service.refresh("clv_customer_8")
    segments = await service.refresh("customer_segments")

    assert revenue.data.days == 7
    assert [c.customer_id for c in clv.data.customers] == ["8"]
    assert segments.data.total_customers == 2
    assert source.order_calls == [14, 365]
    assert source.customer_calls == ["8"]

    with pytest.raises(ValueError):
        await service.refresh("forecast_90")


@pytest.mark.asyncio
async def test_prefetch_schedules_common_keys(service, source):
    keys = service.prefetch_common_caches()
    await service.cache.refresher.drain()

    assert keys == ["revenue_overview_30", "clv_all_customers"]
    assert sorted(source.order_calls) == [60, 365]
    assert all(o.success for o in service.cache.refresher.outcomes)


@pytest.mark.asyncio
async def test_cached_payload_with_old_shape_is_recomputed(service, source):
    await service.cache.set(SHOP, "revenue_overview_30", {"unexpected": True}, 3600)

    result = await service.get_revenue_overview(30)

    assert result.data.order_count == 2
    assert source.order_calls == [60]


# ────────────────────────────────────────────
# CACHE ERRORS / WIRING
# ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_broken_cache_still_computes(source, profiles, clock):
    cache = AnalyticsCacheManager(BrokenStore(), clock=clock)
    service = AnalyticsService(SHOP, source, cache, profiles, UTC, clock=clock)

    result = await service.get_revenue_overview(30)

    assert result.data.order_count == 2
    assert result.metadata.computed_at == NOW
    assert await service.cleanup_expired_caches() == 0


def test_build_analytics_service_uses_shop_timezone():
    shop = Shop(domain=SHOP, access_token="shpat_test", iana_timezone="America/New_York")
    service = build_analytics_service(shop)

    assert service.shop == SHOP
    assert service.tz == ZoneInfo("America/New_York")
    assert service.source.access_token == "shpat_test"


def test_build_analytics_service_falls_back_on_bad_timezone():
    shop = Shop(domain=SHOP, access_token="t", iana_timezone="Mars/Olympus_Mons")
    assert build_analytics_service(shop).tz == ZoneInfo("UTC")
