"""Data sources for Shop Analytics"""

from shop_analytics.connectors.shopify import ShopifyOrderSource, validate_orders

__all__ = [
    "ShopifyOrderSource",
    "validate_orders"
]
