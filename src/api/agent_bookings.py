from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from src.api.dependencies import (
    Principal,
    get_agent_bookings_service,
    get_bulk_bookings_service,
    get_commission_ledger_service,
    get_principal,
    get_tenant_id,
    get_travel_agents_service,
    require_admin,
)
from src.core.errors import BadRequestError, ForbiddenError
from src.models.agent_bookings import AgentBookingRecord
from src.schemas.agent_bookings import (
    AgentBooking,
    BookingStatusUpdateRequest,
    BulkBooking,
    BulkBookingRequest,
    BulkRollbackRequest,
    CommissionBatchResult,
    CommissionSummary,
    CreateAgentBookingRequest,
    MarkPaidRequest,
    MarkProcessingRequest,
    ModifyAgentBookingRequest,
)
from src.services.agent_bookings_service import AgentBookingsService, to_agent_booking
from src.services.bulk_bookings_service import BulkBookingsService, to_bulk_booking
from src.services.commission_ledger_service import CommissionLedgerService
from src.services.travel_agents_service import TravelAgentsService
from src.shared.response import Meta, ResponseEnvelope

router = APIRouter(prefix="/travel-agent-bookings", tags=["travel-agent-bookings"])


def _meta(source: str = "agent_bookings") -> Meta:
    return Meta(
        as_of_date=date.today().isoformat(),
        source=source,
        time_window="now",
        calculation_version="v1",
    )


def resolve_acting_agent_id(
    principal: Principal,
    hotel_id: str,
    requested_agent_id: Optional[str],
    agents_service: TravelAgentsService,
) -> str:
    """Travel agents always act as themselves; staff must name the agent."""
    if principal.is_travel_agent:
        agent = agents_service.get_agent_for_user(principal.user_id)
        if agent.hotel_id != hotel_id:
            raise ForbiddenError("Cannot access another hotel")
        if requested_agent_id and requested_agent_id != agent.id:
            raise ForbiddenError("Travel agents can only book for themselves")
        return agent.id
    if not requested_agent_id:
        raise BadRequestError("agentId is required")
    return requested_agent_id


def ensure_booking_access(
    principal: Principal,
    booking: AgentBookingRecord,
    agents_service: TravelAgentsService,
) -> None:
    if principal.is_travel_agent:
        agent = agents_service.get_agent_for_user(principal.user_id)
        if booking.agent_id != agent.id:
            raise ForbiddenError("Travel agents can only access their own bookings")


@router.post("", status_code=201)
def create_agent_booking(
    request: CreateAgentBookingRequest,
    hotel_id: str = Depends(get_tenant_id),
    principal: Principal = Depends(get_principal),
    agents_service: TravelAgentsService = Depends(get_travel_agents_service),
    service: AgentBookingsService = Depends(get_agent_bookings_service),
) -> ResponseEnvelope[AgentBooking]:
    agent_id = resolve_acting_agent_id(principal, hotel_id, request.agent_id, agents_service)
    booking = service.create(hotel_id, agent_id, request)
    return ResponseEnvelope(data=to_agent_booking(booking), meta=_meta())


@router.get("")
def list_agent_bookings(
    agent_id: str | None = Query(default=None, alias="agentId"),
    status: str | None = Query(default=None, pattern="^(confirmed|modified|completed|cancelled|no_show)$"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    hotel_id: str = Depends(get_tenant_id),
    principal: Principal = Depends(get_principal),
    agents_service: TravelAgentsService = Depends(get_travel_agents_service),
    service: AgentBookingsService = Depends(get_agent_bookings_service),
) -> ResponseEnvelope[List[AgentBooking]]:
    acting_agent_id = resolve_acting_agent_id(principal, hotel_id, agent_id, agents_service)
    records, pagination = service.list_agent_bookings(
        hotel_id, acting_agent_id, status=status, page=page, limit=limit
    )
    return ResponseEnvelope(
        data=[to_agent_booking(record) for record in records], pagination=pagination, meta=_meta()
    )


@router.post("/bulk", status_code=201)
def create_bulk_booking(
    request: BulkBookingRequest,
    hotel_id: str = Depends(get_tenant_id),
    principal: Principal = Depends(get_principal),
    agents_service: TravelAgentsService = Depends(get_travel_agents_service),
    service: BulkBookingsService = Depends(get_bulk_bookings_service),
) -> ResponseEnvelope[BulkBooking]:
    agent_id = resolve_acting_agent_id(principal, hotel_id, request.agent_id, agents_service)
    envelope = service.create(hotel_id, agent_id, request)
    return ResponseEnvelope(data=to_bulk_booking(envelope), meta=_meta(source="bulk_bookings,agent_bookings"))


@router.get("/bulk/{bulk_booking_id}")
def get_bulk_booking(
    bulk_booking_id: str,
    hotel_id: str = Depends(get_tenant_id),
    principal: Principal = Depends(get_principal),
    agents_service: TravelAgentsService = Depends(get_travel_agents_service),
    service: BulkBookingsService = Depends(get_bulk_bookings_service),
) -> ResponseEnvelope[BulkBooking]:
    envelope = service.get_bulk_booking(hotel_id, bulk_booking_id)
    if principal.is_travel_agent:
        resolve_acting_agent_id(principal, hotel_id, envelope.agent_id, agents_service)
    return ResponseEnvelope(data=to_bulk_booking(envelope), meta=_meta(source="bulk_bookings"))


@router.post("/bulk/{bulk_booking_id}/rollback")
def rollback_bulk_booking(
    bulk_booking_id: str,
    request: BulkRollbackRequest,
    hotel_id: str = Depends(get_tenant_id),
    principal: Principal = Depends(get_principal),
    agents_service: TravelAgentsService = Depends(get_travel_agents_service),
    service: BulkBookingsService = Depends(get_bulk_bookings_service),
) -> ResponseEnvelope[BulkBooking]:
    if principal.is_travel_agent:
        envelope = service.get_bulk_booking(hotel_id, bulk_booking_id)
        resolve_acting_agent_id(principal, hotel_id, envelope.agent_id, agents_service)
    envelope = service.rollback(hotel_id, bulk_booking_id, request.reason)
    return ResponseEnvelope(data=to_bulk_booking(envelope), meta=_meta(source="bulk_bookings,agent_bookings"))


@router.post("/commissions/process")
def process_commissions(
    request: MarkProcessingRequest,
    hotel_id: str = Depends(get_tenant_id),
    _: Principal = Depends(require_admin),
    ledger: CommissionLedgerService = Depends(get_commission_ledger_service),
) -> ResponseEnvelope[CommissionBatchResult]:
    return ResponseEnvelope(data=ledger.mark_processing(hotel_id, request.agent_booking_ids), meta=_meta())


@router.get("/commissions/summary")
def commission_summary(
    agent_id: str | None = Query(default=None, alias="agentId"),
    hotel_id: str = Depends(get_tenant_id),
    principal: Principal = Depends(get_principal),
    agents_service: TravelAgentsService = Depends(get_travel_agents_service),
    ledger: CommissionLedgerService = Depends(get_commission_ledger_service),
) -> ResponseEnvelope[CommissionSummary]:
    if principal.is_travel_agent:
        agent_id = resolve_acting_agent_id(principal, hotel_id, agent_id, agents_service)
    return ResponseEnvelope(data=ledger.summary(hotel_id, agent_id), meta=_meta())


@router.get("/{agent_booking_id}")
def get_agent_booking(
    agent_booking_id: str,
    hotel_id: str = Depends(get_tenant_id),
    principal: Principal = Depends(get_principal),
    agents_service: TravelAgentsService = Depends(get_travel_agents_service),
    service: AgentBookingsService = Depends(get_agent_bookings_service),
) -> ResponseEnvelope[AgentBooking]:
    booking = service.get_booking(hotel_id, agent_booking_id)
    ensure_booking_access(principal, booking, agents_service)
    return ResponseEnvelope(data=to_agent_booking(booking), meta=_meta())


@router.patch("/{agent_booking_id}")
def modify_agent_booking(
    agent_booking_id: str,
    request: ModifyAgentBookingRequest,
    hotel_id: str = Depends(get_tenant_id),
    principal: Principal = Depends(get_principal),
    agents_service: TravelAgentsService = Depends(get_travel_agents_service),
    service: AgentBookingsService = Depends(get_agent_bookings_service),
) -> ResponseEnvelope[AgentBooking]:
    booking = service.get_booking(hotel_id, agent_booking_id)
    ensure_booking_access(principal, booking, agents_service)
    modified = service.modify(hotel_id, agent_booking_id, request)
    return ResponseEnvelope(data=to_agent_booking(modified), meta=_meta())


@router.patch("/{agent_booking_id}/status")
def update_agent_booking_status(
    agent_booking_id: str,
    request: BookingStatusUpdateRequest,
    hotel_id: str = Depends(get_tenant_id),
    principal: Principal = Depends(get_principal),
    agents_service: TravelAgentsService = Depends(get_travel_agents_service),
    service: AgentBookingsService = Depends(get_agent_bookings_service),
) -> ResponseEnvelope[AgentBooking]:
    booking = service.get_booking(hotel_id, agent_booking_id)
    ensure_booking_access(principal, booking, agents_service)
    if principal.is_travel_agent and request.status != "cancelled":
        raise ForbiddenError("Travel agents can only cancel their bookings")
    updated = service.transition(hotel_id, agent_booking_id, request.status, request.reason)
    return ResponseEnvelope(data=to_agent_booking(updated), meta=_meta())


@router.post("/{agent_booking_id}/commission/pay")
def pay_commission(
    agent_booking_id: str,
    request: MarkPaidRequest,
    hotel_id: str = Depends(get_tenant_id),
    _: Principal = Depends(require_admin),
    ledger: CommissionLedgerService = Depends(get_commission_ledger_service),
) -> ResponseEnvelope[AgentBooking]:
    booking = ledger.mark_paid(hotel_id, agent_booking_id, request.payment_reference)
    return ResponseEnvelope(data=to_agent_booking(booking), meta=_meta())
