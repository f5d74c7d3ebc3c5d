from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Callable, List, Optional, Tuple

from src.core.errors import (
    AgentInactiveError,
    ConflictError,
    DuplicateIdempotencyKeyError,
    InvalidStateTransitionError,
    InvalidStayError,
    LimitExceededError,
    NotFoundError,
    PricingInconsistentError,
)
from src.models.agent_bookings import (
    BOOKING_STATUS_TRANSITIONS,
    REVERSED_BOOKING_STATUSES,
    AgentBookingRecord,
    Commission,
    Pricing,
    RoomLine,
)
from src.models.travel_agents import AgentRecord, CounterDelta
from src.repositories.agent_bookings_repository import DERIVED_FIELDS, AgentBookingsRepository
from src.schemas.agent_bookings import (
    AgentBooking,
    CreateAgentBookingRequest,
    ModifyAgentBookingRequest,
    RoomLineInput,
)
from src.schemas.rate_entries import RateResolution
from src.services.commission_ledger_service import CommissionLedgerService
from src.services.rate_catalog_service import RateCatalogService
from src.services.travel_agents_service import TravelAgentsService
from src.shared.identifiers import format_confirmation_number, new_id
from src.shared.money import ZERO, money_sum, percent_of, to_money
from src.shared.response import Pagination, build_pagination
from src.shared.state_machine import ensure_transition
from src.shared.time import days_between, utc_now

logger = logging.getLogger(__name__)


@dataclass
class PricedStay:
    lines: List[RoomLine]
    pricing: Pricing
    commission: Commission
    seasonality: str


def to_agent_booking(record: AgentBookingRecord) -> AgentBooking:
    return AgentBooking.model_validate(record.model_dump())


def request_fingerprint(agent_id: str, request: CreateAgentBookingRequest) -> str:
    body = request.model_dump(mode="json", exclude={"idempotency_key", "agent_id"})
    canonical = json.dumps({"agent_id": agent_id, "request": body}, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def rebuild(record: AgentBookingRecord, **changes: Any) -> AgentBookingRecord:
    """Copy a booking with changes applied, re-running save-time derivations."""
    data = record.model_dump(exclude=DERIVED_FIELDS)
    data.update(changes)
    return AgentBookingRecord.model_validate(data)


class AgentBookingsService:
    def __init__(
        self,
        repository: AgentBookingsRepository,
        agents_service: TravelAgentsService,
        rate_catalog: RateCatalogService,
        ledger: CommissionLedgerService,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.agents_service = agents_service
        self.rate_catalog = rate_catalog
        self.ledger = ledger
        self.clock = clock

    def get_booking(self, hotel_id: str, agent_booking_id: str) -> AgentBookingRecord:
        booking = self.repository.get_booking(hotel_id, agent_booking_id)
        if not booking:
            raise NotFoundError("Agent booking not found")
        return booking

    def list_agent_bookings(
        self,
        hotel_id: str,
        agent_id: str,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[AgentBookingRecord], Pagination]:
        records, total = self.repository.list_bookings(
            hotel_id,
            agent_id=agent_id,
            booking_statuses=[status] if status else None,
            limit=limit,
            offset=(page - 1) * limit,
        )
        return records, build_pagination(page, limit, total)

    def create(
        self,
        hotel_id: str,
        agent_id: str,
        request: CreateAgentBookingRequest,
        bulk_booking_id: Optional[str] = None,
    ) -> AgentBookingRecord:
        fingerprint = request_fingerprint(agent_id, request)
        existing = self._replay(hotel_id, request.idempotency_key, fingerprint)
        if existing:
            return existing

        agent = self.agents_service.get_agent(hotel_id, agent_id)
        if agent.status != "active":
            raise AgentInactiveError(agent.status)
        now = self.clock()
        self._check_stay(request.check_in, request.check_out, now.date())
        self._check_limits(agent, request.room_types, request.check_in, now.date())
        self._check_daily_limit(agent, now)

        priced = self._price(
            agent,
            request.room_types,
            request.check_in,
            request.check_out,
            taxes=request.taxes,
            fees=request.fees,
            discounts=request.discounts,
            special_rate_discount=request.special_rate_discount,
            require_special_rate=request.require_special_rate,
        )
        sequence = self.repository.count_agent_bookings(agent.id) + 1
        record = AgentBookingRecord(
            id=new_id(),
            booking_id=request.booking_id or new_id(),
            agent_id=agent.id,
            agent_code=agent.agent_code,
            hotel_id=hotel_id,
            confirmation_number=format_confirmation_number(agent.agent_code, sequence),
            idempotency_key=request.idempotency_key,
            request_fingerprint=fingerprint,
            guest_details={
                "primary_guest": request.guest_details.primary_guest.model_dump(),
                "total_guests": request.guest_details.total_guests,
                "total_rooms": sum(line.quantity for line in priced.lines),
            },
            booking_details={
                "check_in": request.check_in,
                "check_out": request.check_out,
                "nights": days_between(request.check_in, request.check_out),
                "room_types": priced.lines,
            },
            pricing=priced.pricing,
            commission=priced.commission,
            booking_status="confirmed",
            payment_details={"method": request.payment_method, "paid_amount": ZERO},
            special_conditions=request.special_conditions.model_dump(),
            performance={
                "booking_source": request.booking_source,
                "seasonality": request.seasonality or priced.seasonality,
            },
            notes=request.notes,
            bulk_booking_id=bulk_booking_id,
            created_at=now,
            updated_at=now,
        )
        try:
            created = self.repository.insert_booking(record)
        except ConflictError:
            replay = self._replay(hotel_id, request.idempotency_key, fingerprint)
            if replay:
                return replay
            raise

        delta = CounterDelta(
            key=f"{created.id}:create",
            bookings=1,
            revenue=created.pricing.total_amount,
            commission=created.commission.total_commission,
            booking_created_at=created.created_at,
        )
        try:
            self.agents_service.apply_booking(hotel_id, agent.id, delta)
        except Exception:
            logger.error("Counter apply failed for booking %s, removing it", created.id, exc_info=True)
            self.repository.delete_booking(hotel_id, created.id)
            raise
        logger.info(
            "Recorded agent booking %s (%s) for agent %s total=%s commission=%s",
            created.id,
            created.confirmation_number,
            agent.agent_code,
            created.pricing.total_amount,
            created.commission.total_commission,
        )
        return created

    def _replay(self, hotel_id: str, idempotency_key: str, fingerprint: str) -> Optional[AgentBookingRecord]:
        existing = self.repository.get_by_idempotency_key(hotel_id, idempotency_key)
        if existing is None:
            return None
        if existing.request_fingerprint != fingerprint:
            raise DuplicateIdempotencyKeyError(idempotency_key)
        return existing

    @staticmethod
    def _check_stay(check_in: date, check_out: date, today: date) -> None:
        if check_out <= check_in:
            raise InvalidStayError("Check-out date must be after check-in date")
        if check_in < today:
            raise InvalidStayError("Check-in date cannot be in the past")

    @staticmethod
    def _check_limits(agent: AgentRecord, room_types: List[RoomLineInput], check_in: date, today: date) -> None:
        limits = agent.booking_limits
        rooms = sum(line.quantity for line in room_types)
        if rooms > limits.max_rooms_per_booking:
            raise LimitExceededError("max_rooms_per_booking", limits.max_rooms_per_booking, rooms)
        advance = days_between(today, check_in)
        if advance > limits.max_advance_booking_days:
            raise LimitExceededError("max_advance_booking_days", limits.max_advance_booking_days, advance)

    def _check_daily_limit(self, agent: AgentRecord, now: datetime) -> None:
        start_of_day = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo or timezone.utc)
        booked_today = self.repository.count_agent_bookings(
            agent.id, created_from=start_of_day, exclude_statuses=["cancelled"]
        )
        limit = agent.booking_limits.max_bookings_per_day
        if booked_today >= limit:
            raise LimitExceededError("max_bookings_per_day", limit, booked_today + 1)

    def _price(
        self,
        agent: AgentRecord,
        room_types: List[RoomLineInput],
        check_in: date,
        check_out: date,
        taxes: Decimal,
        fees: Decimal,
        discounts: Decimal,
        special_rate_discount: Decimal,
        require_special_rate: bool = False,
    ) -> PricedStay:
        nights = days_between(check_in, check_out)
        lines: List[RoomLine] = []
        resolutions: List[RateResolution] = []
        for line in room_types:
            resolution = self.rate_catalog.resolve(
                agent,
                line.room_type_id,
                check_in,
                check_out,
                base_rate=line.rate_per_night,
                require_special_rate=require_special_rate,
            )
            special_rate: Optional[Decimal] = None
            if resolution.special_rate is not None or resolution.discount_percentage is not None:
                special_rate = resolution.per_night
            elif line.special_rate is not None:
                special_rate = to_money(line.special_rate)
            effective = special_rate if special_rate is not None else resolution.base_rate
            lines.append(
                RoomLine(
                    room_type_id=line.room_type_id,
                    room_type_name=line.room_type_name,
                    quantity=line.quantity,
                    rate_per_night=resolution.base_rate,
                    special_rate=special_rate,
                    line_total=to_money(effective * line.quantity * nights),
                )
            )
            resolutions.append(resolution)

        subtotal = to_money(money_sum(line.line_total for line in lines) - to_money(special_rate_discount))
        if subtotal < 0:
            raise PricingInconsistentError(
                "Special rate discount exceeds the room total",
                details={"specialRateDiscount": str(special_rate_discount)},
            )
        total_amount = to_money(subtotal + to_money(taxes) + to_money(fees) - to_money(discounts))
        if total_amount < 0:
            raise PricingInconsistentError(
                "Discounts exceed the booking total",
                details={"subtotal": str(subtotal), "discounts": str(discounts)},
            )

        # The largest line sets the commission terms for the whole booking.
        primary_index = max(range(len(lines)), key=lambda index: (lines[index].line_total, -index))
        primary = resolutions[primary_index]
        commission = Commission(
            rate=primary.commission_rate,
            amount=percent_of(subtotal, primary.commission_rate),
            bonus_rate=primary.bonus_rate,
            bonus_amount=percent_of(subtotal, primary.bonus_rate),
        )
        return PricedStay(
            lines=lines,
            pricing=Pricing(
                subtotal=subtotal,
                taxes=to_money(taxes),
                fees=to_money(fees),
                discounts=to_money(discounts),
                special_rate_discount=to_money(special_rate_discount),
                total_amount=total_amount,
            ),
            commission=commission,
            seasonality=primary.seasonality,
        )

    def modify(self, hotel_id: str, agent_booking_id: str, request: ModifyAgentBookingRequest) -> AgentBookingRecord:
        booking = self.get_booking(hotel_id, agent_booking_id)
        ensure_transition(BOOKING_STATUS_TRANSITIONS, "booking", booking.booking_status, "modified")
        if booking.commission.payment_status != "pending":
            raise ConflictError(
                "Commission is already in payout, the booking can no longer be re-priced",
                details={"commissionStatus": booking.commission.payment_status},
            )
        agent = self.agents_service.get_agent(hotel_id, booking.agent_id)
        if agent.status != "active":
            raise AgentInactiveError(agent.status)

        stay = booking.booking_details
        check_in = request.check_in or stay.check_in
        check_out = request.check_out or stay.check_out
        room_types = request.room_types or [
            RoomLineInput(
                room_type_id=line.room_type_id,
                room_type_name=line.room_type_name,
                quantity=line.quantity,
                rate_per_night=line.rate_per_night,
                special_rate=line.special_rate,
            )
            for line in stay.room_types
        ]
        today = self.clock().date()
        if check_out <= check_in:
            raise InvalidStayError("Check-out date must be after check-in date")
        if check_in != stay.check_in and check_in < today:
            raise InvalidStayError("Check-in date cannot be in the past")
        self._check_limits(agent, room_types, check_in, today)

        pricing = booking.pricing
        priced = self._price(
            agent,
            room_types,
            check_in,
            check_out,
            taxes=request.taxes if request.taxes is not None else pricing.taxes,
            fees=request.fees if request.fees is not None else pricing.fees,
            discounts=request.discounts if request.discounts is not None else pricing.discounts,
            special_rate_discount=(
                request.special_rate_discount
                if request.special_rate_discount is not None
                else pricing.special_rate_discount
            ),
        )
        guest_details = booking.guest_details.model_dump()
        if request.guest_details is not None:
            guest_details.update(
                primary_guest=request.guest_details.primary_guest.model_dump(),
                total_guests=request.guest_details.total_guests,
            )
        guest_details["total_rooms"] = sum(line.quantity for line in priced.lines)
        performance = booking.performance.model_dump()
        performance["seasonality"] = booking.performance.seasonality or priced.seasonality

        revision = booking.revision + 1
        modified = rebuild(
            booking,
            guest_details=guest_details,
            booking_details={
                "check_in": check_in,
                "check_out": check_out,
                "nights": days_between(check_in, check_out),
                "room_types": priced.lines,
            },
            pricing=priced.pricing,
            commission=priced.commission,
            booking_status="modified",
            performance=performance,
            notes=request.notes if request.notes is not None else booking.notes,
            revision=revision,
            updated_at=self.clock(),
        )
        saved = self._compare_and_replace(modified, booking, "modified")
        delta = CounterDelta(
            key=f"{booking.id}:modify:{revision}",
            revenue=saved.pricing.total_amount - booking.pricing.total_amount,
            commission=saved.commission.total_commission - booking.commission.total_commission,
        )
        self._apply_or_restore(hotel_id, saved, booking, delta)
        logger.info(
            "Modified agent booking %s total %s -> %s",
            booking.id,
            booking.pricing.total_amount,
            saved.pricing.total_amount,
        )
        return saved

    def complete(self, hotel_id: str, agent_booking_id: str) -> AgentBookingRecord:
        booking = self.get_booking(hotel_id, agent_booking_id)
        ensure_transition(BOOKING_STATUS_TRANSITIONS, "booking", booking.booking_status, "completed")
        completed = rebuild(booking, booking_status="completed", revision=booking.revision + 1, updated_at=self.clock())
        saved = self._compare_and_replace(completed, booking, "completed")
        logger.info("Completed agent booking %s", booking.id)
        return saved

    def cancel(self, hotel_id: str, agent_booking_id: str, reason: Optional[str] = None) -> AgentBookingRecord:
        return self._reverse(hotel_id, agent_booking_id, "cancelled", reason)

    def mark_no_show(self, hotel_id: str, agent_booking_id: str, reason: Optional[str] = None) -> AgentBookingRecord:
        return self._reverse(hotel_id, agent_booking_id, "no_show", reason)

    def transition(
        self,
        hotel_id: str,
        agent_booking_id: str,
        status: str,
        reason: Optional[str] = None,
    ) -> AgentBookingRecord:
        if status == "completed":
            return self.complete(hotel_id, agent_booking_id)
        if status in REVERSED_BOOKING_STATUSES:
            return self._reverse(hotel_id, agent_booking_id, status, reason)
        booking = self.get_booking(hotel_id, agent_booking_id)
        raise InvalidStateTransitionError("booking", booking.booking_status, status)

    def _reverse(self, hotel_id: str, agent_booking_id: str, target: str, reason: Optional[str]) -> AgentBookingRecord:
        booking = self.get_booking(hotel_id, agent_booking_id)
        ensure_transition(BOOKING_STATUS_TRANSITIONS, "booking", booking.booking_status, target)
        commission = self.ledger.cancelled(booking.commission)
        reversed_booking = rebuild(
            booking,
            booking_status=target,
            commission=commission,
            revision=booking.revision + 1,
            updated_at=self.clock(),
        )
        saved = self._compare_and_replace(reversed_booking, booking, target)
        delta = CounterDelta(
            key=f"{booking.id}:cancel",
            bookings=-1,
            revenue=-booking.pricing.total_amount,
            commission=-booking.commission.total_commission,
            cancelled=1 if target == "cancelled" else 0,
        )
        self._apply_or_restore(hotel_id, saved, booking, delta)
        logger.info("Agent booking %s moved to %s reason=%s", booking.id, target, reason or "-")
        return saved

    def _compare_and_replace(
        self,
        updated: AgentBookingRecord,
        original: AgentBookingRecord,
        target: str,
    ) -> AgentBookingRecord:
        saved = self.repository.replace_booking_if_status(updated, original.booking_status, original.revision)
        if saved is None:
            latest = self.repository.get_booking(original.hotel_id, original.id)
            current = latest.booking_status if latest else original.booking_status
            raise InvalidStateTransitionError("booking", current, target)
        return saved

    def _apply_or_restore(
        self,
        hotel_id: str,
        saved: AgentBookingRecord,
        original: AgentBookingRecord,
        delta: CounterDelta,
    ) -> None:
        try:
            self.agents_service.apply_booking(hotel_id, saved.agent_id, delta)
        except Exception:
            logger.error("Counter apply failed for booking %s, restoring previous state", saved.id, exc_info=True)
            # Restored under a fresh revision so a later change never reuses this delta key.
            restored = rebuild(original, revision=saved.revision + 1, updated_at=self.clock())
            if self.repository.replace_booking_if_status(restored, saved.booking_status, saved.revision) is None:
                logger.error("Could not restore booking %s after counter failure", saved.id)
            raise

