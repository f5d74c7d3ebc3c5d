from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

AgentStatus = Literal["pending_approval", "active", "inactive", "suspended"]
PaymentMethod = Literal["credit_card", "bank_transfer", "cash", "cheque", "agent_credit"]
Seasonality = Literal["peak", "high", "low", "off"]
RateType = Literal["special_rate", "discount_percentage", "commission_bonus"]

AGENT_STATUS_TRANSITIONS = {
    "pending_approval": frozenset({"active", "inactive"}),
    "active": frozenset({"suspended", "inactive"}),
    "suspended": frozenset({"active"}),
    "inactive": frozenset({"active"}),
}

MAX_COMMISSION_RATE = Decimal("50")
# Counter application keys kept on the agent document for idempotent re-delivery.
APPLIED_COUNTER_KEYS_LIMIT = 500


class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None


class RoomTypeCommissionRate(BaseModel):
    room_type_id: str
    rate: Decimal = Field(ge=0, le=50)


class SeasonalCommissionRate(BaseModel):
    name: Optional[str] = None
    season: Optional[Seasonality] = None
    start_date: date
    end_date: date
    rate: Decimal = Field(ge=0, le=50)


class CommissionStructure(BaseModel):
    default_rate: Decimal = Field(default=Decimal("10"), ge=0, le=50)
    room_type_rates: List[RoomTypeCommissionRate] = Field(default_factory=list)
    seasonal_rates: List[SeasonalCommissionRate] = Field(default_factory=list)


class BookingLimits(BaseModel):
    max_bookings_per_day: int = Field(default=10, ge=1)
    max_rooms_per_booking: int = Field(default=5, ge=1)
    max_advance_booking_days: int = Field(default=365, ge=0)


class PaymentTerms(BaseModel):
    credit_limit: Decimal = Field(default=Decimal("0"), ge=0)
    payment_due_days: int = Field(default=30, ge=0)
    preferred_payment_method: PaymentMethod = "bank_transfer"


class PerformanceMetrics(BaseModel):
    total_bookings: int = 0
    total_revenue: Decimal = Decimal("0.00")
    total_commission_earned: Decimal = Decimal("0.00")
    average_booking_value: Decimal = Decimal("0.00")
    cancelled_bookings: int = 0
    cancellation_rate: Decimal = Decimal("0.00")
    last_booking_date: Optional[datetime] = None


class AgentRecord(BaseModel):
    id: str
    hotel_id: str
    user_id: str
    agent_code: str
    company_name: str
    contact_person: str
    phone: str
    email: str
    address: Address = Field(default_factory=Address)
    business_details: Dict[str, Any] = Field(default_factory=dict)
    commission_structure: CommissionStructure = Field(default_factory=CommissionStructure)
    booking_limits: BookingLimits = Field(default_factory=BookingLimits)
    payment_terms: PaymentTerms = Field(default_factory=PaymentTerms)
    status: AgentStatus = "pending_approval"
    status_reason: Optional[str] = None
    performance_metrics: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    applied_counter_keys: List[str] = Field(default_factory=list)
    version: int = 0
    is_active: bool = True
    created_at: datetime
    updated_at: datetime

    def room_type_rate(self, room_type_id: str) -> Optional[Decimal]:
        for entry in self.commission_structure.room_type_rates:
            if entry.room_type_id == room_type_id:
                return entry.rate
        return None

    def seasonal_override(self, on_date: date) -> Optional[SeasonalCommissionRate]:
        for entry in self.commission_structure.seasonal_rates:
            if entry.start_date <= on_date <= entry.end_date:
                return entry
        return None


class RateConditions(BaseModel):
    min_nights: int = Field(default=1, ge=1)
    max_nights: int = Field(default=30, ge=1)
    advance_booking_days: int = Field(default=0, ge=0)
    cancellation_policy: str = "standard"
    payment_terms: str = "standard"


class RateEntryRecord(BaseModel):
    id: str
    hotel_id: str
    agent_id: str
    room_type_id: str
    rate_type: RateType
    special_rate: Optional[Decimal] = None
    discount_percentage: Optional[Decimal] = None
    commission_bonus: Optional[Decimal] = None
    valid_from: date
    valid_to: date
    conditions: RateConditions = Field(default_factory=RateConditions)
    notes: Optional[str] = None
    is_active: bool = True
    created_at: datetime
    updated_at: datetime

    @property
    def window_days(self) -> int:
        return (self.valid_to - self.valid_from).days


class CounterDelta(BaseModel):
    """Signed change applied to an agent's performance counters, keyed for idempotent delivery."""

    key: str
    bookings: int = 0
    revenue: Decimal = Decimal("0.00")
    commission: Decimal = Decimal("0.00")
    cancelled: int = 0
    booking_created_at: Optional[datetime] = None
