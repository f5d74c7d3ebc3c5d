from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import Field

from src.models.travel_agents import RateType
from src.shared.base import BaseSchema


class CachedAggregate(BaseSchema):
    generated_at: datetime
    from_cache: bool = False
    cache_age_seconds: Optional[int] = None


class DashboardCounts(BaseSchema):
    total_agents: int
    active_agents: int
    pending_approvals: int
    total_bookings: int
    agent_growth: Decimal
    revenue_growth: Decimal


class RevenueTotals(BaseSchema):
    total_revenue: Decimal
    average_booking_value: Decimal
    total_bookings: int


class CommissionTotals(BaseSchema):
    total_commission: Decimal
    pending_commission: Decimal
    processing_commission: Decimal
    paid_commission: Decimal
    cancelled_commission: Decimal
    commission_rate: Decimal


class TopPerformer(BaseSchema):
    agent_id: str
    agent_code: str
    company_name: str
    total_bookings: int
    total_revenue: Decimal
    total_commission: Decimal


class RecentBooking(BaseSchema):
    id: str
    agent_id: str
    agent_code: str
    company_name: Optional[str] = None
    confirmation_number: str
    booking_status: str
    guest_name: Optional[str] = None
    total_amount: Decimal
    total_commission: Decimal
    created_at: datetime
    # Rows derived from agent counters when no raw bookings exist for the window.
    is_synthetic: bool = False


class MonthlyTrendPoint(BaseSchema):
    month: int
    bookings: int
    revenue: Decimal
    commission: Decimal


class DashboardOverview(CachedAggregate):
    period: str
    data_source: Literal["bookings", "agent_counters"]
    overview: DashboardCounts
    revenue: RevenueTotals
    commission: CommissionTotals
    top_performers: List[TopPerformer]
    recent_bookings: List[RecentBooking]
    monthly_trends: List[MonthlyTrendPoint]
    errors: Dict[str, str] = Field(default_factory=dict)


class BreakdownBucket(BaseSchema):
    key: str
    count: int
    revenue: Decimal
    commission: Decimal


class StayAverages(BaseSchema):
    average_nights: Decimal
    average_rooms: Decimal
    average_guests: Decimal


class DashboardAnalytics(CachedAggregate):
    period: str
    total_bookings: int
    by_booking_status: List[BreakdownBucket]
    by_commission_status: List[BreakdownBucket]
    by_seasonality: List[BreakdownBucket]
    by_lead_time: List[BreakdownBucket]
    by_commission_rate: List[BreakdownBucket]
    stay_averages: StayAverages


class MonthlyTrends(CachedAggregate):
    year: int
    points: List[MonthlyTrendPoint]


class RateTypeBreakdown(BaseSchema):
    rate_type: RateType
    count: int
    average_discount: Optional[Decimal] = None


class RateDiscountRow(BaseSchema):
    id: str
    agent_id: str
    room_type_id: str
    discount_percentage: Decimal
    valid_from: date
    valid_to: date


class RatesOverview(BaseSchema):
    total_active: int
    currently_valid: int
    expiring_soon: int
    by_rate_type: List[RateTypeBreakdown]
    top_discounts: List[RateDiscountRow]


class DashboardFilters(BaseSchema):
    period: str = "30d"
    agent_id: Optional[str] = None
