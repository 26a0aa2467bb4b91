"""Installed shops (tenants) and their Admin API credentials"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func

from shop_analytics.models.base import Base


class Shop(Base):
    __tablename__ = "shops"

    id = Column(Integer, primary_key=True, index=True)
    domain = Column(String, unique=True, index=True, nullable=False)  # my-store.myshopify.com
    access_token = Column(String, nullable=False)
    iana_timezone = Column(String, nullable=True)  # e.g. "America/New_York"
    is_active = Column(Boolean, default=True)
    installed_at = Column(DateTime, server_default=func.now())
