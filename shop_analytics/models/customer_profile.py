"""
Customer profile projection

Latest CLV score and segment per customer, upserted after every
CLV computation.
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, UniqueConstraint
from sqlalchemy.sql import func

from shop_analytics.models.base import Base


class CustomerProfile(Base):
    __tablename__ = "customer_profiles"

    id = Column(Integer, primary_key=True, index=True)
    shop = Column(String, nullable=False, index=True)
    customer_id = Column(String, nullable=False, index=True)  # Shopify customer ID

    clv_score = Column(Integer, default=0)
    total_orders = Column(Integer, default=0)
    total_spent = Column(Float, default=0.0)
    last_order_date = Column(DateTime(timezone=True), nullable=True)
    segment = Column(String, index=True)  # VIP, Loyal, Promising, ...

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('shop', 'customer_id', name='uq_customer_profiles_shop_customer'),
    )
