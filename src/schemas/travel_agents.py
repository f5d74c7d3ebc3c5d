from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import Field

from src.models.travel_agents import AgentStatus, PaymentMethod, Seasonality
from src.shared.base import BaseSchema, RequestSchema


class AddressSchema(BaseSchema):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None


class RoomTypeCommissionRateSchema(BaseSchema):
    room_type_id: str
    rate: Decimal = Field(ge=0, le=50, decimal_places=2)


class SeasonalCommissionRateSchema(BaseSchema):
    name: Optional[str] = None
    season: Optional[Seasonality] = None
    start_date: date
    end_date: date
    rate: Decimal = Field(ge=0, le=50, decimal_places=2)


class CommissionStructureSchema(BaseSchema):
    default_rate: Decimal = Field(default=Decimal("10"), ge=0, le=50, decimal_places=2)
    room_type_rates: List[RoomTypeCommissionRateSchema] = Field(default_factory=list)
    seasonal_rates: List[SeasonalCommissionRateSchema] = Field(default_factory=list)


class BookingLimitsSchema(BaseSchema):
    max_bookings_per_day: int = Field(default=10, ge=1)
    max_rooms_per_booking: int = Field(default=5, ge=1)
    max_advance_booking_days: int = Field(default=365, ge=0)


class PaymentTermsSchema(BaseSchema):
    credit_limit: Decimal = Field(default=Decimal("0"), ge=0)
    payment_due_days: int = Field(default=30, ge=0)
    preferred_payment_method: PaymentMethod = "bank_transfer"


class PerformanceMetricsSchema(BaseSchema):
    total_bookings: int
    total_revenue: Decimal
    total_commission_earned: Decimal
    average_booking_value: Decimal
    cancelled_bookings: int
    cancellation_rate: Decimal
    last_booking_date: Optional[datetime] = None


class AgentRegistrationRequest(RequestSchema):
    user_id: str
    agent_code: Optional[str] = Field(default=None, min_length=2, max_length=20, pattern="^[A-Za-z0-9]+$")
    company_name: str = Field(min_length=1, max_length=200)
    contact_person: str = Field(min_length=1, max_length=100)
    phone: str = Field(min_length=5, max_length=30)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    address: AddressSchema = Field(default_factory=AddressSchema)
    business_details: Dict[str, Any] = Field(default_factory=dict)
    commission_structure: Optional[CommissionStructureSchema] = None
    booking_limits: BookingLimitsSchema = Field(default_factory=BookingLimitsSchema)
    payment_terms: PaymentTermsSchema = Field(default_factory=PaymentTermsSchema)
    hotel_id: Optional[str] = None


class AgentUpdateRequest(RequestSchema):
    company_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    contact_person: Optional[str] = Field(default=None, min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, min_length=5, max_length=30)
    email: Optional[str] = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    address: Optional[AddressSchema] = None
    business_details: Optional[Dict[str, Any]] = None
    commission_structure: Optional[CommissionStructureSchema] = None
    booking_limits: Optional[BookingLimitsSchema] = None
    payment_terms: Optional[PaymentTermsSchema] = None
    status: Optional[AgentStatus] = None
    is_active: Optional[bool] = None
    # Accepted only so the request can be rejected with a clear message.
    agent_code: Optional[str] = None
    performance_metrics: Optional[Dict[str, Any]] = None


class AgentStatusUpdateRequest(RequestSchema):
    status: AgentStatus
    reason: Optional[str] = Field(default=None, max_length=500)


class TravelAgent(BaseSchema):
    id: str
    hotel_id: str
    user_id: str
    agent_code: str
    company_name: str
    contact_person: str
    phone: str
    email: str
    address: AddressSchema
    business_details: Dict[str, Any]
    commission_structure: CommissionStructureSchema
    booking_limits: BookingLimitsSchema
    payment_terms: PaymentTermsSchema
    status: AgentStatus
    status_reason: Optional[str] = None
    performance_metrics: PerformanceMetricsSchema
    is_active: bool
    created_at: datetime
    updated_at: datetime


class AgentCodeValidation(BaseSchema):
    valid: bool
    agent_code: Optional[str] = None
    company_name: Optional[str] = None
    commission_rate: Optional[Decimal] = None
    message: Optional[str] = None


class TravelAgentListFilters(BaseSchema):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    status: Optional[AgentStatus] = None
    search: Optional[str] = None


class AgentPerformanceSummary(BaseSchema):
    total_bookings: int
    total_revenue: Decimal
    total_commission: Decimal
    average_booking_value: Decimal
    total_nights: int
    total_rooms: int
    confirmed_bookings: int
    cancelled_bookings: int


class MonthlyRevenuePoint(BaseSchema):
    month: int
    revenue: Decimal
    commission: Decimal
    bookings: int


class AgentDetails(BaseSchema):
    company_name: str
    agent_code: str
    status: AgentStatus
    commission_rate: Decimal


class AgentPerformanceResponse(BaseSchema):
    performance: AgentPerformanceSummary
    monthly_revenue: List[MonthlyRevenuePoint]
    agent_details: AgentDetails
    start_date: Optional[date] = None
    end_date: Optional[date] = None


