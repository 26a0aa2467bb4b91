"""Database models for Shop Analytics"""

from shop_analytics.models.analytics_cache import AnalyticsCache
from shop_analytics.models.customer_profile import CustomerProfile
from shop_analytics.models.shop import Shop
