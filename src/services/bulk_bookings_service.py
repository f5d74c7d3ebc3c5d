from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Tuple, get_args

from src.core.errors import (
    AgentInactiveError,
    AppError,
    BadRequestError,
    InvalidStateTransitionError,
    InvalidStayError,
    LimitExceededError,
    NotFoundError,
)
from src.models.agent_bookings import (
    BULK_STATUS_TRANSITIONS,
    BulkBookingRecord,
    BulkLineItem,
    BulkPricing,
    FailureReason,
)
from src.models.travel_agents import AgentRecord, PaymentMethod
from src.repositories.bulk_bookings_repository import BulkBookingsRepository
from src.schemas.agent_bookings import (
    BulkBooking,
    BulkBookingRequest,
    BulkLineItemInput,
    CreateAgentBookingRequest,
)
from src.services.agent_bookings_service import AgentBookingsService
from src.services.rate_catalog_service import infer_seasonality
from src.services.travel_agents_service import TravelAgentsService
from src.shared.identifiers import new_group_reference, new_id
from src.shared.money import ZERO, money_sum, percent_of, to_money
from src.shared.state_machine import ensure_transition
from src.shared.time import days_between, utc_now

logger = logging.getLogger(__name__)

# (minimum rooms, discount percentage); first matching tier wins.
BULK_DISCOUNT_TIERS: Tuple[Tuple[int, Decimal], ...] = (
    (20, Decimal("15")),
    (10, Decimal("10")),
    (5, Decimal("5")),
)
PEAK_SEASONS = frozenset({"peak"})


def to_bulk_booking(record: BulkBookingRecord) -> BulkBooking:
    return BulkBooking.model_validate(record.model_dump())


def bulk_discount_rate(total_rooms: int, season: str) -> Decimal:
    for minimum_rooms, rate in BULK_DISCOUNT_TIERS:
        if total_rooms >= minimum_rooms:
            return to_money(rate / 2) if season in PEAK_SEASONS else rate
    return ZERO


def line_estimate(line: BulkLineItemInput, nights: int) -> Decimal:
    rate = line.special_rate if line.special_rate is not None else line.rate_per_night
    return to_money(rate * line.quantity * nights)


class BulkBookingsService:
    def __init__(
        self,
        repository: BulkBookingsRepository,
        bookings_service: AgentBookingsService,
        agents_service: TravelAgentsService,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.bookings_service = bookings_service
        self.agents_service = agents_service
        self.clock = clock

    def get_bulk_booking(self, hotel_id: str, bulk_booking_id: str) -> BulkBookingRecord:
        envelope = self.repository.get_bulk_booking(hotel_id, bulk_booking_id)
        if not envelope:
            raise NotFoundError("Bulk booking not found")
        return envelope

    def create(self, hotel_id: str, agent_id: str, request: BulkBookingRequest) -> BulkBookingRecord:
        existing = self.repository.get_by_idempotency_key(hotel_id, request.idempotency_key)
        if existing:
            return existing
        self._validate_envelope(request)
        agent = self.agents_service.get_agent(hotel_id, agent_id)
        if agent.status != "active":
            raise AgentInactiveError(agent.status)

        now = self.clock()
        nights = days_between(request.check_in, request.check_out)
        season = request.seasonality or infer_seasonality(request.check_in)
        discount_rate = bulk_discount_rate(sum(line.quantity for line in request.line_items), season)
        line_subtotals = [line_estimate(line, nights) for line in request.line_items]
        subtotal = money_sum(line_subtotals)
        taxes = money_sum(line.taxes for line in request.line_items)
        fees = money_sum(line.fees for line in request.line_items)
        bulk_discount = percent_of(subtotal, discount_rate)
        envelope = BulkBookingRecord(
            id=new_id(),
            group_reference_id=new_group_reference(now),
            hotel_id=hotel_id,
            agent_id=agent.id,
            agent_code=agent.agent_code,
            group_name=request.group_name,
            primary_contact=request.primary_contact.model_dump(),
            check_in=request.check_in,
            check_out=request.check_out,
            nights=nights,
            line_items=[BulkLineItem(**line.model_dump()) for line in request.line_items],
            pricing=BulkPricing(
                subtotal=subtotal,
                bulk_discount_rate=discount_rate,
                bulk_discount=bulk_discount,
                taxes=taxes,
                fees=fees,
                total_amount=to_money(subtotal - bulk_discount + taxes + fees),
            ),
            payment_method=request.payment_method,
            seasonality=request.seasonality,
            atomic=request.atomic,
            idempotency_key=request.idempotency_key,
            notes=request.notes,
            created_at=now,
            updated_at=now,
        )
        envelope = self.repository.insert_bulk_booking(envelope)

        try:
            self._book_lines(hotel_id, agent, envelope, request, line_subtotals, discount_rate)
        finally:
            saved = self._finish(hotel_id, envelope, request.atomic)
        return saved

    def _book_lines(
        self,
        hotel_id: str,
        agent: AgentRecord,
        envelope: BulkBookingRecord,
        request: BulkBookingRequest,
        line_subtotals: List[Decimal],
        discount_rate: Decimal,
    ) -> None:
        room_cap = agent.booking_limits.max_rooms_per_booking
        booked_rooms = 0
        for index, line in enumerate(envelope.line_items):
            try:
                # The room cap applies to the group as a whole, not to each line.
                if booked_rooms + line.quantity > room_cap:
                    raise LimitExceededError("max_rooms_per_booking", room_cap, booked_rooms + line.quantity)
                line_discount = percent_of(line_subtotals[index], discount_rate)
                line_request = self._line_request(envelope, request, index, line, line_discount)
                booking = self.bookings_service.create(hotel_id, agent.id, line_request, bulk_booking_id=envelope.id)
            except AppError as exc:
                logger.info("Bulk %s line %d failed: %s", envelope.group_reference_id, index, exc.message)
                self._record_line_failure(envelope, index, exc.code, exc.message)
                continue
            except Exception:
                logger.exception("Bulk %s line %d failed unexpectedly", envelope.group_reference_id, index)
                self._record_line_failure(envelope, index, "internal_error", "Internal server error")
                continue
            booked_rooms += line.quantity
            line.status = "booked"
            line.agent_booking_id = booking.id
            envelope.created_agent_bookings.append(booking.id)

    @staticmethod
    def _record_line_failure(envelope: BulkBookingRecord, index: int, code: str, message: str) -> None:
        envelope.line_items[index].status = "failed"
        envelope.failure_reasons.append(FailureReason(line_index=index, reason=message, code=code))

    def _finish(self, hotel_id: str, envelope: BulkBookingRecord, atomic: bool) -> BulkBookingRecord:
        # Lines never reached count as failed so an interrupted group is not left pending.
        for index, line in enumerate(envelope.line_items):
            if line.status == "pending":
                self._record_line_failure(envelope, index, "internal_error", "Line was not attempted")

        booked = len(envelope.created_agent_bookings)
        failed = len(envelope.failure_reasons)
        if failed == 0:
            target = "confirmed"
        elif booked == 0:
            target = "failed"
        elif atomic:
            self._rollback_lines(hotel_id, envelope, "Atomic group booking had failing lines")
            target = "failed"
        else:
            target = "partially_booked"
        saved = self._save(envelope, target)
        logger.info(
            "Bulk booking %s finished %s: %d booked, %d failed, %d rolled back",
            saved.group_reference_id,
            saved.status,
            booked,
            failed,
            len(saved.rolled_back_agent_bookings),
        )
        return saved

    @staticmethod
    def _validate_envelope(request: BulkBookingRequest) -> None:
        if not request.line_items:
            raise BadRequestError("A bulk booking needs at least one line item")
        if request.check_out <= request.check_in:
            raise InvalidStayError("Check-out date must be after check-in date")
        if request.payment_method not in get_args(PaymentMethod):
            raise BadRequestError(
                "Unsupported payment method",
                details={"paymentMethod": request.payment_method, "allowed": list(get_args(PaymentMethod))},
            )

    @staticmethod
    def _line_request(
        envelope: BulkBookingRecord,
        request: BulkBookingRequest,
        index: int,
        line: BulkLineItem,
        line_discount: Decimal,
    ) -> CreateAgentBookingRequest:
        block = line.guest_block
        primary_guest = block.primary_guest or envelope.primary_contact
        return CreateAgentBookingRequest(
            idempotency_key=f"{request.idempotency_key}:{index}",
            guest_details={
                "primary_guest": primary_guest.model_dump(),
                "total_guests": block.adults + block.children,
            },
            check_in=envelope.check_in,
            check_out=envelope.check_out,
            room_types=[
                {
                    "room_type_id": line.room_type_id,
                    "room_type_name": line.room_type_name,
                    "quantity": line.quantity,
                    "rate_per_night": line.rate_per_night,
                    "special_rate": line.special_rate,
                }
            ],
            taxes=line.taxes,
            fees=line.fees,
            discounts=line_discount,
            payment_method=envelope.payment_method,
            seasonality=request.seasonality,
            booking_source=request.booking_source,
            notes=f"Group booking {envelope.group_name} ({envelope.group_reference_id})",
        )

    def rollback(self, hotel_id: str, bulk_booking_id: str, reason: str) -> BulkBookingRecord:
        envelope = self.get_bulk_booking(hotel_id, bulk_booking_id)
        ensure_transition(BULK_STATUS_TRANSITIONS, "bulk_booking", envelope.status, "cancelled")
        self._rollback_lines(hotel_id, envelope, reason)
        envelope.rollback_reason = reason
        saved = self._save(envelope, "cancelled")
        logger.info(
            "Rolled back bulk booking %s: %d cancelled, %d could not be cancelled",
            saved.group_reference_id,
            len(saved.rolled_back_agent_bookings),
            len(saved.created_agent_bookings),
        )
        return saved

    def _rollback_lines(self, hotel_id: str, envelope: BulkBookingRecord, reason: str) -> None:
        line_index: Dict[str, int] = {
            line.agent_booking_id: index for index, line in enumerate(envelope.line_items) if line.agent_booking_id
        }
        remaining: List[str] = []
        for agent_booking_id in envelope.created_agent_bookings:
            index = line_index.get(agent_booking_id, -1)
            try:
                self.bookings_service.cancel(hotel_id, agent_booking_id, reason)
            except NotFoundError:
                logger.info("Bulk %s booking %s already gone", envelope.group_reference_id, agent_booking_id)
            except InvalidStateTransitionError as exc:
                if exc.current != "cancelled":
                    self._record_rollback_failure(envelope, index, agent_booking_id, exc.code, exc.message, remaining)
                    continue
            except AppError as exc:
                self._record_rollback_failure(envelope, index, agent_booking_id, exc.code, exc.message, remaining)
                continue
            except Exception:
                logger.exception("Bulk %s rollback of %s failed", envelope.group_reference_id, agent_booking_id)
                self._record_rollback_failure(
                    envelope, index, agent_booking_id, "internal_error", "Internal server error", remaining
                )
                continue
            envelope.rolled_back_agent_bookings.append(agent_booking_id)
            if index >= 0:
                envelope.line_items[index].status = "rolled_back"
        envelope.created_agent_bookings = remaining

    @staticmethod
    def _record_rollback_failure(
        envelope: BulkBookingRecord,
        index: int,
        agent_booking_id: str,
        code: str,
        message: str,
        remaining: List[str],
    ) -> None:
        logger.warning(
            "Bulk %s could not cancel booking %s: %s", envelope.group_reference_id, agent_booking_id, message
        )
        envelope.failure_reasons.append(
            FailureReason(line_index=index, reason=f"Rollback failed: {message}", code=code)
        )
        remaining.append(agent_booking_id)

    def _save(self, envelope: BulkBookingRecord, target: str) -> BulkBookingRecord:
        expected = envelope.status
        ensure_transition(BULK_STATUS_TRANSITIONS, "bulk_booking", expected, target)
        envelope.status = target
        envelope.updated_at = self.clock()
        saved = self.repository.replace_bulk_booking_if_status(envelope, expected)
        if saved is None:
            latest = self.repository.get_bulk_booking(envelope.hotel_id, envelope.id)
            raise InvalidStateTransitionError("bulk_booking", latest.status if latest else expected, target)
        return saved
