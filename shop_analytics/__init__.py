"""Shop Analytics: revenue, CLV and segment dashboards for Shopify stores"""

__version__ = "0.3.0"
