from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from src.api.dependencies import (
    Principal,
    get_agent_bookings_service,
    get_principal,
    get_tenant_id,
    get_travel_agents_service,
    require_admin,
    resolve_hotel_id,
)
from src.core.errors import BadRequestError, ForbiddenError
from src.models.travel_agents import AgentRecord
from src.schemas.agent_bookings import AgentBooking
from src.schemas.travel_agents import (
    AgentCodeValidation,
    AgentPerformanceResponse,
    AgentRegistrationRequest,
    AgentStatusUpdateRequest,
    AgentUpdateRequest,
    TravelAgent,
    TravelAgentListFilters,
)
from src.services.agent_bookings_service import AgentBookingsService, to_agent_booking
from src.services.travel_agents_service import TravelAgentsService, to_travel_agent
from src.shared.response import Meta, ResponseEnvelope

router = APIRouter(prefix="/travel-agents", tags=["travel-agents"])


def _meta(source: str = "agents", time_window: str = "now") -> Meta:
    return Meta(
        as_of_date=date.today().isoformat(),
        source=source,
        time_window=time_window,
        calculation_version="v1",
    )


def ensure_agent_access(principal: Principal, agent: AgentRecord) -> None:
    if principal.is_travel_agent and agent.user_id != principal.user_id:
        raise ForbiddenError("Travel agents can only access their own profile")


def get_travel_agent_list_filters(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status: str | None = Query(default=None, pattern="^(pending_approval|active|inactive|suspended)$"),
    search: str | None = Query(default=None, max_length=100),
) -> TravelAgentListFilters:
    return TravelAgentListFilters(page=page, limit=limit, status=status, search=search)


@router.post("", status_code=201)
def register_travel_agent(
    request: AgentRegistrationRequest,
    principal: Principal = Depends(get_principal),
    service: TravelAgentsService = Depends(get_travel_agents_service),
) -> ResponseEnvelope[TravelAgent]:
    if principal.is_travel_agent and request.user_id != principal.user_id:
        raise ForbiddenError("Travel agents can only register themselves")
    hotel_id = resolve_hotel_id(principal, request.hotel_id)
    agent = service.register(hotel_id, request)
    return ResponseEnvelope(data=to_travel_agent(agent), meta=_meta())


@router.get("")
def list_travel_agents(
    filters: TravelAgentListFilters = Depends(get_travel_agent_list_filters),
    hotel_id: str = Depends(get_tenant_id),
    _: Principal = Depends(require_admin),
    service: TravelAgentsService = Depends(get_travel_agents_service),
) -> ResponseEnvelope[List[TravelAgent]]:
    agents, pagination = service.list_agents(hotel_id, filters)
    return ResponseEnvelope(data=agents, pagination=pagination, meta=_meta())


@router.get("/me")
def get_own_travel_agent(
    principal: Principal = Depends(get_principal),
    service: TravelAgentsService = Depends(get_travel_agents_service),
) -> ResponseEnvelope[TravelAgent]:
    if not principal.is_travel_agent:
        raise ForbiddenError("Only travel agents have an agent profile")
    agent = service.get_agent_for_user(principal.user_id)
    return ResponseEnvelope(data=to_travel_agent(agent), meta=_meta())


@router.get("/me/bookings")
def list_own_bookings(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status: str | None = Query(default=None, pattern="^(confirmed|modified|completed|cancelled|no_show)$"),
    principal: Principal = Depends(get_principal),
    service: TravelAgentsService = Depends(get_travel_agents_service),
    bookings_service: AgentBookingsService = Depends(get_agent_bookings_service),
) -> ResponseEnvelope[List[AgentBooking]]:
    if not principal.is_travel_agent:
        raise ForbiddenError("Only travel agents have an agent profile")
    agent = service.get_agent_for_user(principal.user_id)
    records, pagination = bookings_service.list_agent_bookings(
        agent.hotel_id, agent.id, status=status, page=page, limit=limit
    )
    return ResponseEnvelope(
        data=[to_agent_booking(record) for record in records],
        pagination=pagination,
        meta=_meta(source="agent_bookings"),
    )


@router.get("/validate-code/{agent_code}")
def validate_agent_code(
    agent_code: str,
    hotel_id: str = Depends(get_tenant_id),
    service: TravelAgentsService = Depends(get_travel_agents_service),
) -> ResponseEnvelope[AgentCodeValidation]:
    return ResponseEnvelope(data=service.validate_code(hotel_id, agent_code), meta=_meta())


@router.get("/{agent_id}")
def get_travel_agent(
    agent_id: str,
    hotel_id: str = Depends(get_tenant_id),
    principal: Principal = Depends(get_principal),
    service: TravelAgentsService = Depends(get_travel_agents_service),
) -> ResponseEnvelope[TravelAgent]:
    agent = service.get_agent(hotel_id, agent_id)
    ensure_agent_access(principal, agent)
    return ResponseEnvelope(data=to_travel_agent(agent), meta=_meta())


@router.patch("/{agent_id}")
def update_travel_agent(
    agent_id: str,
    patch: AgentUpdateRequest,
    hotel_id: str = Depends(get_tenant_id),
    principal: Principal = Depends(get_principal),
    service: TravelAgentsService = Depends(get_travel_agents_service),
) -> ResponseEnvelope[TravelAgent]:
    agent = service.get_agent(hotel_id, agent_id)
    ensure_agent_access(principal, agent)
    updated = service.update(hotel_id, agent_id, patch, is_self=principal.is_travel_agent)
    return ResponseEnvelope(data=to_travel_agent(updated), meta=_meta())


@router.patch("/{agent_id}/status")
def update_travel_agent_status(
    agent_id: str,
    request: AgentStatusUpdateRequest,
    hotel_id: str = Depends(get_tenant_id),
    _: Principal = Depends(require_admin),
    service: TravelAgentsService = Depends(get_travel_agents_service),
) -> ResponseEnvelope[TravelAgent]:
    agent = service.set_status(hotel_id, agent_id, request.status, request.reason)
    return ResponseEnvelope(data=to_travel_agent(agent), meta=_meta())


@router.get("/{agent_id}/performance")
def travel_agent_performance(
    agent_id: str,
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    hotel_id: str = Depends(get_tenant_id),
    principal: Principal = Depends(get_principal),
    service: TravelAgentsService = Depends(get_travel_agents_service),
) -> ResponseEnvelope[AgentPerformanceResponse]:
    if start_date and end_date and end_date < start_date:
        raise BadRequestError("endDate must not be before startDate")
    agent = service.get_agent(hotel_id, agent_id)
    ensure_agent_access(principal, agent)
    data = service.performance(hotel_id, agent_id, start_date, end_date)
    window = f"{start_date or 'all'}..{end_date or 'now'}"
    return ResponseEnvelope(data=data, meta=_meta(source="agents,agent_bookings", time_window=window))
