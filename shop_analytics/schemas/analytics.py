"""
Analytics payload schemas

Every cache key belongs to exactly one metric kind, and every kind has its
own payload model. `parse_payload()` turns a cached JSON blob back into the
model for its key.
"""
from datetime import datetime
from typing import Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field


# ── Revenue ──────────────────────────────────────────────

class DailyRevenue(BaseModel):
    date: str  # YYYY-MM-DD in the shop's timezone
    revenue: float


class TopProduct(BaseModel):
    id: str
    title: Optional[str] = None
    units: int = 0
    revenue: float = 0.0


class PeriodComparison(BaseModel):
    revenue_trend: int
    order_trend: int
    aov_trend: int


class RevenueOverview(BaseModel):
    days: int
    period_start: datetime
    period_end: datetime
    total_revenue: float
    average_order_value: float
    order_count: int
    # None until a storefront traffic source is connected
    conversion_rate: Optional[float] = None
    top_products: List[TopProduct] = Field(default_factory=list)
    revenue_by_day: List[DailyRevenue] = Field(default_factory=list)
    previous_period_revenue_by_day: List[DailyRevenue] = Field(default_factory=list)
    period_comparison: PeriodComparison


# ── CLV ──────────────────────────────────────────────────

class CustomerCLV(BaseModel):
    customer_id: str
    customer_name: Optional[str] = None
    email: Optional[str] = None
    total_spent: float
    order_count: int
    avg_order_value: float
    days_since_first_order: int
    days_since_last_order: int
    last_order_date: Optional[datetime] = None
    predicted_clv: int
    segment: str


class SegmentCount(BaseModel):
    name: str
    count: int = 0


class CLVSummary(BaseModel):
    average_clv: float = 0.0
    top_segments: List[SegmentCount] = Field(default_factory=list)


class CLVResult(BaseModel):
    customers: List[CustomerCLV] = Field(default_factory=list)
    summary: CLVSummary = Field(default_factory=CLVSummary)


# ── Segments ─────────────────────────────────────────────

class SegmentDetail(BaseModel):
    name: str
    count: int = 0
    total_spent: float = 0.0
    average_clv: float = 0.0
    top_customers: List[CustomerCLV] = Field(default_factory=list)


class SegmentBreakdown(BaseModel):
    total_customers: int = 0
    segments: List[SegmentDetail] = Field(default_factory=list)


# ── Cache envelope ───────────────────────────────────────

class CacheMetadata(BaseModel):
    computed_at: datetime
    expires_at: datetime
    is_stale: bool = False


PayloadT = TypeVar("PayloadT", bound=BaseModel)


class AnalyticsResult(BaseModel, Generic[PayloadT]):
    """Payload plus the cache metadata it was served with"""
    data: PayloadT
    metadata: CacheMetadata


# ── Metric keys ──────────────────────────────────────────

class MetricKind:
    REVENUE_OVERVIEW = "revenue_overview"
    CLV = "clv"
    CUSTOMER_SEGMENTS = "customer_segments"


PAYLOAD_SCHEMAS: Dict[str, Type[BaseModel]] = {
    MetricKind.REVENUE_OVERVIEW: RevenueOverview,
    MetricKind.CLV: CLVResult,
    MetricKind.CUSTOMER_SEGMENTS: SegmentBreakdown,
}

CLV_ALL_CUSTOMERS_KEY = "clv_all_customers"
CUSTOMER_SEGMENTS_KEY = "customer_segments"


def revenue_overview_key(days: int) -> str:
    return f"revenue_overview_{days}"


def clv_key(customer_id: Optional[str] = None) -> str:
    return f"clv_customer_{customer_id}" if customer_id else CLV_ALL_CUSTOMERS_KEY


def metric_kind(key: str) -> str:
    """Map a cache key to its metric kind; ValueError for unknown keys"""
    if key.startswith("revenue_overview_"):
        suffix = key[len("revenue_overview_"):]
        if suffix.isdigit() and int(suffix) > 0:
            return MetricKind.REVENUE_OVERVIEW
    elif key == CLV_ALL_CUSTOMERS_KEY:
        return MetricKind.CLV
    elif key.startswith("clv_customer_") and len(key) > len("clv_customer_"):
        return MetricKind.CLV
    elif key == CUSTOMER_SEGMENTS_KEY:
        return MetricKind.CUSTOMER_SEGMENTS
    raise ValueError(f"Unknown analytics metric key: {key}")


def parse_payload(key: str, data: dict) -> BaseModel:
    """Validate a cached JSON payload against the schema for its key"""
    return PAYLOAD_SCHEMAS[metric_kind(key)].model_validate(data)
