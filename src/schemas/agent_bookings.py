from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import Field, model_validator

from src.models.agent_bookings import (
    BookingSource,
    BookingStatus,
    BulkBookingStatus,
    BulkLineStatus,
    CommissionPaymentStatus,
    PaymentStatus,
)
from src.models.travel_agents import PaymentMethod, Seasonality
from src.shared.base import BaseSchema, RequestSchema


class PrimaryGuestSchema(BaseSchema):
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: str = Field(min_length=5, max_length=30)


class GuestDetailsInput(BaseSchema):
    primary_guest: PrimaryGuestSchema
    total_guests: int = Field(ge=1)


class RoomLineInput(BaseSchema):
    room_type_id: str
    room_type_name: Optional[str] = None
    quantity: int = Field(ge=1)
    rate_per_night: Decimal = Field(ge=0, decimal_places=2)
    special_rate: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)


class SpecialConditionsSchema(BaseSchema):
    early_checkin: bool = False
    late_checkout: bool = False
    room_upgrade: bool = False
    special_requests: Optional[str] = Field(default=None, max_length=1000)


def _check_stay(check_in: Optional[date], check_out: Optional[date]) -> None:
    if check_in is not None and check_out is not None and check_out <= check_in:
        raise ValueError("checkOut must be after checkIn")


class CreateAgentBookingRequest(RequestSchema):
    idempotency_key: str = Field(min_length=1, max_length=128)
    agent_id: Optional[str] = None
    booking_id: Optional[str] = None
    guest_details: GuestDetailsInput
    check_in: date
    check_out: date
    room_types: List[RoomLineInput] = Field(min_length=1)
    taxes: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    fees: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    discounts: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    special_rate_discount: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    payment_method: PaymentMethod
    seasonality: Optional[Seasonality] = None
    booking_source: BookingSource = "direct"
    require_special_rate: bool = False
    special_conditions: SpecialConditionsSchema = Field(default_factory=SpecialConditionsSchema)
    notes: Optional[str] = Field(default=None, max_length=2000)


class ModifyAgentBookingRequest(RequestSchema):
    check_in: Optional[date] = None
    check_out: Optional[date] = None
    room_types: Optional[List[RoomLineInput]] = Field(default=None, min_length=1)
    guest_details: Optional[GuestDetailsInput] = None
    taxes: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    fees: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    discounts: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    special_rate_discount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    notes: Optional[str] = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def _check_window(self) -> "ModifyAgentBookingRequest":
        _check_stay(self.check_in, self.check_out)
        return self


class BookingStatusUpdateRequest(RequestSchema):
    status: Literal["completed", "cancelled", "no_show"]
    reason: Optional[str] = Field(default=None, max_length=500)


class GuestDetailsSchema(BaseSchema):
    primary_guest: PrimaryGuestSchema
    total_guests: int
    total_rooms: int


class RoomLineSchema(BaseSchema):
    room_type_id: str
    room_type_name: Optional[str] = None
    quantity: int
    rate_per_night: Decimal
    special_rate: Optional[Decimal] = None
    line_total: Decimal


class StayDetailsSchema(BaseSchema):
    check_in: date
    check_out: date
    nights: int
    room_types: List[RoomLineSchema]


class PricingSchema(BaseSchema):
    subtotal: Decimal
    taxes: Decimal
    fees: Decimal
    discounts: Decimal
    special_rate_discount: Decimal
    total_amount: Decimal


class CommissionSchema(BaseSchema):
    rate: Decimal
    amount: Decimal
    bonus_rate: Decimal
    bonus_amount: Decimal
    total_commission: Decimal
    payment_status: CommissionPaymentStatus
    payment_date: Optional[datetime] = None
    payment_reference: Optional[str] = None


class PaymentDetailsSchema(BaseSchema):
    method: PaymentMethod
    status: PaymentStatus
    paid_amount: Decimal
    pending_amount: Decimal
    payment_date: Optional[datetime] = None


class PerformanceHintsSchema(BaseSchema):
    booking_source: BookingSource
    lead_time_days: int
    seasonality: Optional[Seasonality] = None


class AgentBooking(BaseSchema):
    id: str
    booking_id: str
    agent_id: str
    agent_code: str
    hotel_id: str
    confirmation_number: str
    guest_details: GuestDetailsSchema
    booking_details: StayDetailsSchema
    pricing: PricingSchema
    commission: CommissionSchema
    booking_status: BookingStatus
    payment_details: PaymentDetailsSchema
    special_conditions: SpecialConditionsSchema
    performance: PerformanceHintsSchema
    notes: Optional[str] = None
    bulk_booking_id: Optional[str] = None
    profit: Decimal
    created_at: datetime
    updated_at: datetime


class GuestBlockSchema(BaseSchema):
    primary_guest: Optional[PrimaryGuestSchema] = None
    adults: int = Field(default=1, ge=1)
    children: int = Field(default=0, ge=0)


class BulkLineItemInput(BaseSchema):
    room_type_id: str
    room_type_name: Optional[str] = None
    quantity: int = Field(ge=1)
    rate_per_night: Decimal = Field(ge=0, decimal_places=2)
    special_rate: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    taxes: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    fees: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    guest_block: GuestBlockSchema = Field(default_factory=GuestBlockSchema)


class BulkBookingRequest(RequestSchema):
    idempotency_key: str = Field(min_length=1, max_length=128)
    agent_id: Optional[str] = None
    group_name: str = Field(min_length=1, max_length=200)
    primary_contact: PrimaryGuestSchema
    check_in: date
    check_out: date
    line_items: List[BulkLineItemInput]
    # Validated by the orchestrator so an unknown method is reported as a bad envelope.
    payment_method: str
    seasonality: Optional[Seasonality] = None
    booking_source: BookingSource = "online"
    atomic: bool = False
    notes: Optional[str] = Field(default=None, max_length=2000)


class BulkRollbackRequest(RequestSchema):
    reason: str = Field(min_length=1, max_length=500)


class BulkLineItemSchema(BaseSchema):
    room_type_id: str
    room_type_name: Optional[str] = None
    quantity: int
    rate_per_night: Decimal
    special_rate: Optional[Decimal] = None
    taxes: Decimal
    fees: Decimal
    guest_block: GuestBlockSchema
    status: BulkLineStatus
    agent_booking_id: Optional[str] = None


class BulkPricingSchema(BaseSchema):
    subtotal: Decimal
    bulk_discount_rate: Decimal
    bulk_discount: Decimal
    taxes: Decimal
    fees: Decimal
    total_amount: Decimal


class FailureReasonSchema(BaseSchema):
    line_index: int
    reason: str
    code: Optional[str] = None


class BulkBooking(BaseSchema):
    id: str
    group_reference_id: str
    hotel_id: str
    agent_id: str
    agent_code: str
    group_name: str
    primary_contact: PrimaryGuestSchema
    check_in: date
    check_out: date
    nights: int
    line_items: List[BulkLineItemSchema]
    pricing: BulkPricingSchema
    payment_method: PaymentMethod
    seasonality: Optional[Seasonality] = None
    atomic: bool
    status: BulkBookingStatus
    created_agent_bookings: List[str]
    rolled_back_agent_bookings: List[str]
    failure_reasons: List[FailureReasonSchema]
    rollback_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class MarkProcessingRequest(RequestSchema):
    agent_booking_ids: List[str] = Field(min_length=1, max_length=500)


class MarkPaidRequest(RequestSchema):
    payment_reference: str = Field(min_length=1, max_length=100)


class CommissionTransitionRejection(BaseSchema):
    agent_booking_id: str
    code: str
    reason: str


class CommissionBatchResult(BaseSchema):
    processed: List[str]
    rejected: List[CommissionTransitionRejection]


class CommissionSummary(BaseSchema):
    pending_amount: Decimal
    processing_amount: Decimal
    paid_amount: Decimal
    pending_count: int
    processing_count: int
    paid_count: int


class PendingCommissionsSummary(BaseSchema):
    total_pending_amount: Decimal
    total_bookings: int
    average_commission: Decimal


class PendingCommissionsResponse(BaseSchema):
    commissions: List[AgentBooking]
    summary: PendingCommissionsSummary
