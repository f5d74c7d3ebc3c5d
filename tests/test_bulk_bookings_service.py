from __future__ import annotations

from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Dict

import httpx
import pytest

from src.core.errors import BadRequestError, InvalidStateTransitionError, InvalidStayError
from src.schemas.agent_bookings import BulkBookingRequest
from src.services.bulk_bookings_service import bulk_discount_rate
from tests.conftest import HOTEL_ID, make_agent


def line(quantity: int, rate: str = "400", room_type_id: str = "deluxe") -> Dict[str, Any]:
    return {"room_type_id": room_type_id, "quantity": quantity, "rate_per_night": Decimal(rate)}


def bulk_request(idempotency_key: str = "group-1", **overrides: Any) -> BulkBookingRequest:
    data: Dict[str, Any] = {
        "idempotency_key": idempotency_key,
        "group_name": "Acme Offsite",
        "primary_contact": {"name": "Riley Chen", "email": "riley@example.com", "phone": "+15550122"},
        "check_in": date(2026, 3, 20),
        "check_out": date(2026, 3, 22),
        "line_items": [line(2), line(6)],
        "payment_method": "bank_transfer",
    }
    data.update(overrides)
    return BulkBookingRequest.model_validate(data)


def test_non_atomic_group_keeps_successful_lines(stores: SimpleNamespace, services: SimpleNamespace) -> None:
    make_agent(stores)

    envelope = services.bulk.create(HOTEL_ID, "agent-1", bulk_request())

    assert envelope.status == "partially_booked"
    assert len(envelope.created_agent_bookings) == 1
    assert [line.status for line in envelope.line_items] == ["booked", "failed"]
    assert [(reason.line_index, reason.code) for reason in envelope.failure_reasons] == [(1, "limit_exceeded")]
    assert envelope.pricing.bulk_discount_rate == Decimal("5")
    assert envelope.pricing.subtotal == Decimal("6400.00")
    assert envelope.pricing.bulk_discount == Decimal("320.00")
    assert envelope.pricing.total_amount == Decimal("6080.00")

    booking = services.bookings.get_booking(HOTEL_ID, envelope.created_agent_bookings[0])
    assert booking.bulk_booking_id == envelope.id
    assert booking.idempotency_key == "group-1:0"
    assert booking.pricing.discounts == Decimal("80.00")
    assert booking.pricing.total_amount == Decimal("1520.00")
    assert booking.commission.amount == Decimal("160.00")
    assert booking.notes == f"Group booking Acme Offsite ({envelope.group_reference_id})"

    metrics = services.agents.get_agent(HOTEL_ID, "agent-1").performance_metrics
    assert metrics.total_bookings == 1
    assert metrics.total_revenue == Decimal("1520.00")


def test_atomic_group_rolls_back_on_any_failure(stores: SimpleNamespace, services: SimpleNamespace) -> None:
    make_agent(stores)

    envelope = services.bulk.create(HOTEL_ID, "agent-1", bulk_request(atomic=True))

    assert envelope.status == "failed"
    assert envelope.created_agent_bookings == []
    assert len(envelope.rolled_back_agent_bookings) == 1
    assert [line.status for line in envelope.line_items] == ["rolled_back", "failed"]

    booking = services.bookings.get_booking(HOTEL_ID, envelope.rolled_back_agent_bookings[0])
    assert booking.booking_status == "cancelled"
    metrics = services.agents.get_agent(HOTEL_ID, "agent-1").performance_metrics
    assert metrics.total_bookings == 0
    assert metrics.total_revenue == Decimal("0.00")


def test_all_lines_failing_marks_group_failed(stores: SimpleNamespace, services: SimpleNamespace) -> None:
    make_agent(stores)

    envelope = services.bulk.create(HOTEL_ID, "agent-1", bulk_request(line_items=[line(6), line(7)]))

    assert envelope.status == "failed"
    assert len(envelope.failure_reasons) == 2
    assert stores.bookings.rows == {}


def test_rollback_cancels_booked_lines_once(stores: SimpleNamespace, services: SimpleNamespace) -> None:
    make_agent(stores)
    envelope = services.bulk.create(HOTEL_ID, "agent-1", bulk_request())

    rolled_back = services.bulk.rollback(HOTEL_ID, envelope.id, "Event postponed")

    assert rolled_back.status == "cancelled"
    assert rolled_back.rollback_reason == "Event postponed"
    assert rolled_back.created_agent_bookings == []
    assert rolled_back.rolled_back_agent_bookings == envelope.created_agent_bookings
    assert services.agents.get_agent(HOTEL_ID, "agent-1").performance_metrics.total_bookings == 0

    with pytest.raises(InvalidStateTransitionError):
        services.bulk.rollback(HOTEL_ID, envelope.id, "Again")


def test_rollback_treats_already_cancelled_lines_as_done(
    stores: SimpleNamespace, services: SimpleNamespace
) -> None:
    make_agent(stores)
    envelope = services.bulk.create(HOTEL_ID, "agent-1", bulk_request(line_items=[line(2), line(2)]))
    assert envelope.status == "confirmed"
    first, second = envelope.created_agent_bookings
    services.bookings.cancel(HOTEL_ID, first, "Guest cancelled")

    rolled_back = services.bulk.rollback(HOTEL_ID, envelope.id, "Group cancelled")

    assert rolled_back.rolled_back_agent_bookings == [first, second]
    assert rolled_back.failure_reasons == []
    metrics = services.agents.get_agent(HOTEL_ID, "agent-1").performance_metrics
    assert metrics.total_bookings == 0
    assert metrics.cancelled_bookings == 2


def test_rollback_keeps_lines_it_cannot_cancel(stores: SimpleNamespace, services: SimpleNamespace) -> None:
    make_agent(stores)
    envelope = services.bulk.create(HOTEL_ID, "agent-1", bulk_request(line_items=[line(2), line(2)]))
    first, second = envelope.created_agent_bookings
    services.bookings.complete(HOTEL_ID, second)

    rolled_back = services.bulk.rollback(HOTEL_ID, envelope.id, "Group cancelled")

    assert rolled_back.status == "cancelled"
    assert rolled_back.rolled_back_agent_bookings == [first]
    assert rolled_back.created_agent_bookings == [second]
    assert [(reason.line_index, reason.code) for reason in rolled_back.failure_reasons] == [
        (1, "invalid_state_transition")
    ]


def test_same_idempotency_key_returns_existing_group(stores: SimpleNamespace, services: SimpleNamespace) -> None:
    make_agent(stores)

    first = services.bulk.create(HOTEL_ID, "agent-1", bulk_request())
    second = services.bulk.create(HOTEL_ID, "agent-1", bulk_request())

    assert first.id == second.id
    assert len(stores.bulk.rows) == 1
    assert len(stores.bookings.rows) == 1


def test_envelope_validation(stores: SimpleNamespace, services: SimpleNamespace) -> None:
    make_agent(stores)

    with pytest.raises(BadRequestError):
        services.bulk.create(HOTEL_ID, "agent-1", bulk_request(payment_method="bitcoin"))
    with pytest.raises(BadRequestError):
        services.bulk.create(HOTEL_ID, "agent-1", bulk_request(line_items=[]))
    with pytest.raises(InvalidStayError):
        services.bulk.create(HOTEL_ID, "agent-1", bulk_request(check_out=date(2026, 3, 20)))
    assert stores.bulk.rows == {}


@pytest.mark.parametrize(
    ("rooms", "season", "expected"),
    [
        (4, "low", Decimal("0")),
        (5, "low", Decimal("5")),
        (10, "high", Decimal("10")),
        (20, "off", Decimal("15")),
        (20, "peak", Decimal("7.50")),
        (12, "peak", Decimal("5.00")),
    ],
)
def test_bulk_discount_tiers(rooms: int, season: str, expected: Decimal) -> None:
    assert bulk_discount_rate(rooms, season) == expected


def test_room_cap_applies_across_lines(stores: SimpleNamespace, services: SimpleNamespace) -> None:
    make_agent(stores)

    envelope = services.bulk.create(HOTEL_ID, "agent-1", bulk_request(line_items=[line(3), line(3), line(2)]))

    assert envelope.status == "partially_booked"
    assert [line.status for line in envelope.line_items] == ["booked", "failed", "booked"]
    assert [(reason.line_index, reason.code) for reason in envelope.failure_reasons] == [(1, "limit_exceeded")]
    booked_rooms = sum(
        services.bookings.get_booking(HOTEL_ID, booking_id).room_types[0].quantity
        for booking_id in envelope.created_agent_bookings
    )
    assert booked_rooms == 5


def failing_second_insert(stores: SimpleNamespace, error: Exception) -> None:
    original = stores.bookings.insert_booking
    calls = []

    def insert_booking(record):
        calls.append(record.id)
        if len(calls) == 2:
            raise error
        return original(record)

    stores.bookings.insert_booking = insert_booking


def test_atomic_group_rolls_back_when_the_store_fails(stores: SimpleNamespace, services: SimpleNamespace) -> None:
    make_agent(stores)
    request = httpx.Request("POST", "http://store.test/rest/v1/agent_bookings")
    failing_second_insert(
        stores, httpx.HTTPStatusError("server error", request=request, response=httpx.Response(500, request=request))
    )

    envelope = services.bulk.create(HOTEL_ID, "agent-1", bulk_request(line_items=[line(2), line(2)], atomic=True))

    assert envelope.status == "failed"
    assert envelope.created_agent_bookings == []
    assert [line.status for line in envelope.line_items] == ["rolled_back", "failed"]
    assert [(reason.line_index, reason.code) for reason in envelope.failure_reasons] == [(1, "internal_error")]
    live = [row for row in stores.bookings.rows.values() if row["booking_status"] != "cancelled"]
    assert live == []
    assert services.agents.get_agent(HOTEL_ID, "agent-1").performance_metrics.total_bookings == 0

    replay = services.bulk.create(HOTEL_ID, "agent-1", bulk_request(line_items=[line(2), line(2)], atomic=True))
    assert replay.id == envelope.id
    assert replay.status == "failed"


def test_unexpected_line_error_does_not_stop_siblings(stores: SimpleNamespace, services: SimpleNamespace) -> None:
    make_agent(stores)
    failing_second_insert(stores, RuntimeError("socket closed"))

    envelope = services.bulk.create(
        HOTEL_ID, "agent-1", bulk_request(line_items=[line(1), line(1), line(1)])
    )

    assert envelope.status == "partially_booked"
    assert [line.status for line in envelope.line_items] == ["booked", "failed", "booked"]
    assert envelope.failure_reasons[0].code == "internal_error"
    assert len(envelope.created_agent_bookings) == 2
