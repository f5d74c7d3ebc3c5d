from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional, Union

from pydantic import Field, model_validator

from src.models.travel_agents import RateType, Seasonality
from src.shared.base import BaseSchema, RequestSchema


class RateConditionsSchema(BaseSchema):
    min_nights: int = Field(default=1, ge=1)
    max_nights: int = Field(default=30, ge=1)
    advance_booking_days: int = Field(default=0, ge=0)
    cancellation_policy: str = "standard"
    payment_terms: str = "standard"

    @model_validator(mode="after")
    def _check_night_bounds(self) -> "RateConditionsSchema":
        if self.max_nights < self.min_nights:
            raise ValueError("maxNights must be greater than or equal to minNights")
        return self


class _RateEntryCreateBase(RequestSchema):
    agent_id: str
    room_type_id: str
    valid_from: date
    valid_to: date
    conditions: RateConditionsSchema = Field(default_factory=RateConditionsSchema)
    notes: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _check_window(self):
        if self.valid_to <= self.valid_from:
            raise ValueError("validTo must be after validFrom")
        return self


class SpecialRateEntryCreate(_RateEntryCreateBase):
    rate_type: Literal["special_rate"]
    special_rate: Decimal = Field(ge=0, decimal_places=2)


class DiscountRateEntryCreate(_RateEntryCreateBase):
    rate_type: Literal["discount_percentage"]
    discount_percentage: Decimal = Field(ge=0, le=100, decimal_places=2)


class CommissionBonusEntryCreate(_RateEntryCreateBase):
    rate_type: Literal["commission_bonus"]
    commission_bonus: Decimal = Field(ge=0, le=50, decimal_places=2)


RateEntryCreateRequest = Union[SpecialRateEntryCreate, DiscountRateEntryCreate, CommissionBonusEntryCreate]


class RateEntryUpdateRequest(RequestSchema):
    special_rate: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    discount_percentage: Optional[Decimal] = Field(default=None, ge=0, le=100, decimal_places=2)
    commission_bonus: Optional[Decimal] = Field(default=None, ge=0, le=50, decimal_places=2)
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    conditions: Optional[RateConditionsSchema] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    is_active: Optional[bool] = None


class RateEntry(BaseSchema):
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
    conditions: RateConditionsSchema
    notes: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class RateQuoteRequest(RequestSchema):
    agent_id: str
    room_type_id: str
    check_in: date
    check_out: date
    base_rate: Decimal = Field(ge=0, decimal_places=2)
    require_special_rate: bool = False


class RateResolution(BaseSchema):
    room_type_id: str
    per_night: Decimal
    base_rate: Decimal
    special_rate: Optional[Decimal] = None
    discount_percentage: Optional[Decimal] = None
    commission_rate: Decimal
    bonus_rate: Decimal
    seasonality: Seasonality
    applied_rate_entry_ids: List[str] = Field(default_factory=list)
