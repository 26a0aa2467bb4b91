"""
Analytics API

Dashboard endpoints for the embedded admin app: revenue overview, CLV,
customer segments and cache maintenance. The calling shop is identified by
the X-Shopify-Shop-Domain header and must be installed.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from shop_analytics.models.base import SessionLocal, get_db
from shop_analytics.models.shop import Shop
from shop_analytics.services.analytics_service import AnalyticsService, build_analytics_service
from shop_analytics.services.customer_profiles import CustomerProfileRepository
from shop_analytics.utils.logger import log

router = APIRouter(prefix="/analytics", tags=["analytics"])


def get_current_shop(
    x_shopify_shop_domain: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Shop:
    """Dependency: resolve the installed shop or raise 401."""
    if not x_shopify_shop_domain:
        raise HTTPException(status_code=401, detail="Missing shop domain")
    shop = db.query(Shop).filter(
        Shop.domain == x_shopify_shop_domain,
        Shop.is_active.is_(True)
    ).first()
    if not shop:
        raise HTTPException(status_code=401, detail="Shop not installed")
    return shop


def get_analytics_service(shop: Shop = Depends(get_current_shop)) -> AnalyticsService:
    return build_analytics_service(shop)


def get_profile_repository() -> CustomerProfileRepository:
    return CustomerProfileRepository(SessionLocal)


@router.get("/revenue")
async def get_revenue_overview(
    days: int = Query(30, ge=1, le=365, description="Window length in days"),
    max_staleness: Optional[int] = Query(None, ge=0, description="Serve cached data up to this age (seconds); 0 means no tolerance"),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Revenue, AOV, orders, daily series and trends vs the previous window."""
    try:
        result = await service.get_revenue_overview(days, max_staleness)
        return {"success": True, **result.model_dump(mode="json")}
    except Exception as e:
        log.error(f"Revenue overview failed for {service.shop}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/clv")
async def get_clv(
    customer_id: Optional[str] = Query(None, description="Limit to one Shopify customer"),
    max_staleness: Optional[int] = Query(None, ge=0),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Customer lifetime value ranking with segment summary."""
    try:
        result = await service.calculate_clv(customer_id, max_staleness)
        return {"success": True, **result.model_dump(mode="json")}
    except Exception as e:
        log.error(f"CLV calculation failed for {service.shop}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/segments")
async def get_segments(
    max_staleness: Optional[int] = Query(None, ge=0),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Customers grouped by segment."""
    try:
        result = await service.get_customer_segments(max_staleness)
        return {"success": True, **result.model_dump(mode="json")}
    except Exception as e:
        log.error(f"Segment breakdown failed for {service.shop}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/profiles")
async def get_profiles(
    segment: Optional[str] = Query(None, description="Filter by segment name"),
    shop: Shop = Depends(get_current_shop),
    profiles: CustomerProfileRepository = Depends(get_profile_repository),
):
    """Stored customer profiles from the last CLV run, best first."""
    rows = profiles.get_profiles(shop.domain, segment)
    return {
        "success": True,
        "count": len(rows),
        "data": [
            {
                "customer_id": p.customer_id,
                "clv_score": p.clv_score,
                "total_orders": p.total_orders,
                "total_spent": p.total_spent,
                "last_order_date": p.last_order_date.isoformat() if p.last_order_date else None,
                "segment": p.segment,
            }
            for p in rows
        ]
    }


@router.get("/dashboard")
async def get_dashboard(
    days: int = Query(30, ge=1, le=365),
    max_staleness: Optional[int] = Query(None, ge=0),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Revenue overview and CLV in one payload."""
    try:
        results = await service.get_dashboard(days, max_staleness)
    except Exception as e:
        log.error(f"Dashboard load failed for {service.shop}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load analytics data")

    return {
        "success": True,
        "revenue": results["revenue"].model_dump(mode="json"),
        "clv": results["clv"].model_dump(mode="json"),
    }


@router.post("/prefetch")
async def prefetch(service: AnalyticsService = Depends(get_analytics_service)):
    """Warm the common caches in the background."""
    keys = service.prefetch_common_caches()
    return {"success": True, "scheduled": keys}


@router.post("/cache/cleanup")
async def cleanup_cache(service: AnalyticsService = Depends(get_analytics_service)):
    """Delete this shop's expired cache entries."""
    deleted = await service.cleanup_expired_caches()
    return {"success": True, "deleted": deleted}
