"""
Analytics cache table

One row per (shop, metric_key). The payload is the JSON-serialised metric,
overwritten on every recomputation and removed only by the expiry sweep.
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, UniqueConstraint, Index

from shop_analytics.models.base import Base


class AnalyticsCache(Base):
    """Cached analytics payload for one shop and metric key"""
    __tablename__ = "analytics_cache"

    id = Column(Integer, primary_key=True, index=True)
    shop = Column(String, nullable=False, index=True)  # e.g. "my-store.myshopify.com"
    metric_key = Column(String, nullable=False)  # revenue_overview_30, clv_all_customers, ...

    payload = Column(Text, nullable=True)  # JSON text
    computed_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint('shop', 'metric_key', name='uq_analytics_cache_shop_metric'),
        Index('ix_analytics_cache_shop_expires', 'shop', 'expires_at'),
    )
