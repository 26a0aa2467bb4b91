"""
Cache Store

Durable key-value storage for analytics payloads, keyed by (shop, metric key).
The orchestrator only talks to the `CacheStore` protocol so aggregation and
staleness logic can be exercised against any backing store.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shop_analytics.models.analytics_cache import AnalyticsCache
from shop_analytics.utils.helpers import as_utc


@dataclass(frozen=True)
class CacheEntry:
    shop: str
    metric_key: str
    payload: Optional[str]
    computed_at: datetime
    expires_at: datetime


class CacheStore(Protocol):
    def find(self, shop: str, metric_key: str) -> Optional[CacheEntry]:
        ...

    def upsert(
        self,
        shop: str,
        metric_key: str,
        payload: str,
        computed_at: datetime,
        expires_at: datetime,
    ) -> CacheEntry:
        ...

    def delete_expired(self, shop: str, now: datetime) -> int:
        ...

    def count(self, shop: Optional[str] = None) -> int:
        ...


class SQLCacheStore:
    """
    CacheStore backed by the analytics_cache table

    Opens a short-lived session per operation, so it is safe to use from
    background refresh tasks that outlive the request session.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    @staticmethod
    def _to_entry(row: AnalyticsCache) -> CacheEntry:
        return CacheEntry(
            shop=row.shop,
            metric_key=row.metric_key,
            payload=row.payload,
            computed_at=as_utc(row.computed_at),
            expires_at=as_utc(row.expires_at),
        )

    def find(self, shop: str, metric_key: str) -> Optional[CacheEntry]:
        db = self.session_factory()
        try:
            row = db.query(AnalyticsCache).filter(
                AnalyticsCache.shop == shop,
                AnalyticsCache.metric_key == metric_key
            ).first()
            return self._to_entry(row) if row else None
        finally:
            db.close()

    def upsert(
        self,
        shop: str,
        metric_key: str,
        payload: str,
        computed_at: datetime,
        expires_at: datetime,
    ) -> CacheEntry:
        db = self.session_factory()
        try:
            # Two writers can race to create the same row; the loser retries as an update
            for attempt in range(2):
                row = db.query(AnalyticsCache).filter(
                    AnalyticsCache.shop == shop,
                    AnalyticsCache.metric_key == metric_key
                ).first()

                if not row:
                    row = AnalyticsCache(shop=shop, metric_key=metric_key)
                    db.add(row)

                row.payload = payload
                row.computed_at = computed_at
                row.expires_at = expires_at

                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    if attempt == 1:
                        raise
                    continue

                db.refresh(row)
                return self._to_entry(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def delete_expired(self, shop: str, now: datetime) -> int:
        db = self.session_factory()
        try:
            deleted = db.query(AnalyticsCache).filter(
                AnalyticsCache.shop == shop,
                AnalyticsCache.expires_at < now
            ).delete(synchronize_session=False)
            db.commit()
            return deleted
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def count(self, shop: Optional[str] = None) -> int:
        db = self.session_factory()
        try:
            query = db.query(AnalyticsCache)
            if shop:
                query = query.filter(AnalyticsCache.shop == shop)
            return query.count()
        finally:
            db.close()
