"""
Scheduler for periodic cache maintenance

Uses APScheduler to sweep expired analytics cache entries for every
installed shop.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
import time

from shop_analytics.models.base import SessionLocal
from shop_analytics.models.shop import Shop
from shop_analytics.services.analytics_cache import AnalyticsCacheManager
from shop_analytics.services.cache_store import SQLCacheStore
from shop_analytics.config import get_settings
from shop_analytics.utils.logger import log

settings = get_settings()
scheduler = AsyncIOScheduler()


async def cleanup_expired_caches(session_factory=SessionLocal) -> int:
    """Delete expired cache entries for all active shops"""
    start = time.time()

    db = session_factory()
    try:
        domains = [
            row.domain for row in db.query(Shop.domain).filter(Shop.is_active.is_(True)).all()
        ]
    except Exception as e:
        log.error(f"Cache sweep could not list shops: {e}")
        return 0
    finally:
        db.close()

    cache = AnalyticsCacheManager(SQLCacheStore(session_factory))
    total = 0
    for domain in domains:
        total += await cache.cleanup_expired(domain)

    log.info(f"Cache sweep removed {total} entries across {len(domains)} shops in {time.time() - start:.1f}s")
    return total


def start_scheduler():
    """Register jobs and start the scheduler"""
    scheduler.add_job(
        cleanup_expired_caches,
        trigger=IntervalTrigger(minutes=settings.cache_cleanup_interval_minutes),
        id="cleanup_expired_caches",
        name="Sweep expired analytics cache entries",
        replace_existing=True,
        max_instances=1
    )
    scheduler.start()
    log.info(f"Scheduler started: cache sweep every {settings.cache_cleanup_interval_minutes} minutes")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        log.info("Scheduler stopped")
