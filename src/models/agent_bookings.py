from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, computed_field, model_validator

from src.models.travel_agents import PaymentMethod, Seasonality
from src.shared.money import to_money
from src.shared.time import days_between

BookingStatus = Literal["confirmed", "modified", "completed", "cancelled", "no_show"]
CommissionPaymentStatus = Literal["pending", "processing", "paid", "cancelled"]
PaymentStatus = Literal["pending", "paid", "partial", "failed", "refunded"]
BookingSource = Literal["direct", "online", "phone", "email", "walk_in"]
BulkBookingStatus = Literal["pending", "partially_booked", "confirmed", "failed", "cancelled"]
BulkLineStatus = Literal["pending", "booked", "failed", "rolled_back"]

BOOKING_STATUS_TRANSITIONS = {
    "confirmed": frozenset({"modified", "completed", "cancelled", "no_show"}),
    "modified": frozenset({"modified", "completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
    "no_show": frozenset(),
}

COMMISSION_STATUS_TRANSITIONS = {
    "pending": frozenset({"processing", "paid", "cancelled"}),
    "processing": frozenset({"paid", "cancelled"}),
    "paid": frozenset(),
    "cancelled": frozenset(),
}

BULK_STATUS_TRANSITIONS = {
    "pending": frozenset({"partially_booked", "confirmed", "failed"}),
    "partially_booked": frozenset({"cancelled"}),
    "confirmed": frozenset({"cancelled"}),
    "failed": frozenset(),
    "cancelled": frozenset(),
}

# Statuses whose revenue and commission are reversed out of the agent counters.
REVERSED_BOOKING_STATUSES = frozenset({"cancelled", "no_show"})


class PrimaryGuest(BaseModel):
    name: str
    email: str
    phone: str


class GuestDetails(BaseModel):
    primary_guest: PrimaryGuest
    total_guests: int = Field(ge=1)
    total_rooms: int = Field(ge=1)


class RoomLine(BaseModel):
    room_type_id: str
    room_type_name: Optional[str] = None
    quantity: int = Field(ge=1)
    rate_per_night: Decimal = Field(ge=0)
    special_rate: Optional[Decimal] = Field(default=None, ge=0)
    line_total: Decimal = Field(ge=0)

    @property
    def effective_rate(self) -> Decimal:
        return self.special_rate if self.special_rate is not None else self.rate_per_night


class StayDetails(BaseModel):
    check_in: date
    check_out: date
    nights: int = Field(ge=1)
    room_types: List[RoomLine] = Field(default_factory=list)


class Pricing(BaseModel):
    subtotal: Decimal = Field(ge=0)
    taxes: Decimal = Field(default=Decimal("0.00"), ge=0)
    fees: Decimal = Field(default=Decimal("0.00"), ge=0)
    discounts: Decimal = Field(default=Decimal("0.00"), ge=0)
    special_rate_discount: Decimal = Field(default=Decimal("0.00"), ge=0)
    total_amount: Decimal = Field(ge=0)


class Commission(BaseModel):
    rate: Decimal = Field(ge=0, le=50)
    amount: Decimal = Field(ge=0)
    bonus_rate: Decimal = Field(default=Decimal("0.00"), ge=0, le=25)
    bonus_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    payment_status: CommissionPaymentStatus = "pending"
    payment_date: Optional[datetime] = None
    payment_reference: Optional[str] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_commission(self) -> Decimal:
        return to_money(self.amount + self.bonus_amount)


class PaymentDetails(BaseModel):
    method: PaymentMethod
    status: PaymentStatus = "pending"
    paid_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    pending_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    payment_date: Optional[datetime] = None


class SpecialConditions(BaseModel):
    early_checkin: bool = False
    late_checkout: bool = False
    room_upgrade: bool = False
    special_requests: Optional[str] = Field(default=None, max_length=1000)


class PerformanceHints(BaseModel):
    booking_source: BookingSource = "direct"
    lead_time_days: int = 0
    seasonality: Optional[Seasonality] = None


class AgentBookingRecord(BaseModel):
    id: str
    booking_id: str
    agent_id: str
    agent_code: str
    hotel_id: str
    confirmation_number: str
    idempotency_key: str
    request_fingerprint: str
    guest_details: GuestDetails
    booking_details: StayDetails
    pricing: Pricing
    commission: Commission
    booking_status: BookingStatus = "confirmed"
    payment_details: PaymentDetails
    special_conditions: SpecialConditions = Field(default_factory=SpecialConditions)
    performance: PerformanceHints = Field(default_factory=PerformanceHints)
    notes: Optional[str] = Field(default=None, max_length=2000)
    bulk_booking_id: Optional[str] = None
    revision: int = 0
    is_active: bool = True
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def _derive_save_time_fields(self) -> "AgentBookingRecord":
        pending = to_money(self.pricing.total_amount - self.payment_details.paid_amount)
        if pending < 0:
            raise ValueError("paid_amount cannot exceed total_amount")
        self.payment_details.pending_amount = pending
        self.performance.lead_time_days = days_between(self.created_at, self.booking_details.check_in)
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def profit(self) -> Decimal:
        return to_money(self.pricing.total_amount - self.commission.total_commission)


class GuestBlock(BaseModel):
    primary_guest: Optional[PrimaryGuest] = None
    adults: int = Field(default=1, ge=1)
    children: int = Field(default=0, ge=0)


class BulkLineItem(BaseModel):
    room_type_id: str
    room_type_name: Optional[str] = None
    quantity: int = Field(ge=1)
    rate_per_night: Decimal = Field(ge=0)
    special_rate: Optional[Decimal] = Field(default=None, ge=0)
    taxes: Decimal = Field(default=Decimal("0.00"), ge=0)
    fees: Decimal = Field(default=Decimal("0.00"), ge=0)
    guest_block: GuestBlock = Field(default_factory=GuestBlock)
    status: BulkLineStatus = "pending"
    agent_booking_id: Optional[str] = None


class BulkPricing(BaseModel):
    subtotal: Decimal = Decimal("0.00")
    bulk_discount_rate: Decimal = Decimal("0.00")
    bulk_discount: Decimal = Decimal("0.00")
    taxes: Decimal = Decimal("0.00")
    fees: Decimal = Decimal("0.00")
    total_amount: Decimal = Decimal("0.00")


class FailureReason(BaseModel):
    line_index: int
    reason: str
    code: Optional[str] = None


class BulkBookingRecord(BaseModel):
    id: str
    group_reference_id: str
    hotel_id: str
    agent_id: str
    agent_code: str
    group_name: str
    primary_contact: PrimaryGuest
    check_in: date
    check_out: date
    nights: int = Field(ge=1)
    line_items: List[BulkLineItem]
    pricing: BulkPricing = Field(default_factory=BulkPricing)
    payment_method: PaymentMethod
    seasonality: Optional[Seasonality] = None
    atomic: bool = False
    status: BulkBookingStatus = "pending"
    created_agent_bookings: List[str] = Field(default_factory=list)
    rolled_back_agent_bookings: List[str] = Field(default_factory=list)
    failure_reasons: List[FailureReason] = Field(default_factory=list)
    rollback_reason: Optional[str] = None
    idempotency_key: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
