from __future__ import annotations

from datetime import date
from typing import Annotated, List

from fastapi import APIRouter, Body, Depends, Query

from src.api.dependencies import (
    Principal,
    get_principal,
    get_rate_catalog_service,
    get_tenant_id,
    get_travel_agents_service,
    require_admin,
)
from src.api.travel_agents import ensure_agent_access
from src.schemas.rate_entries import (
    RateEntry,
    RateEntryCreateRequest,
    RateEntryUpdateRequest,
    RateQuoteRequest,
    RateResolution,
)
from src.services.rate_catalog_service import RateCatalogService, to_rate_entry
from src.services.travel_agents_service import TravelAgentsService
from src.shared.response import Meta, ResponseEnvelope

router = APIRouter(prefix="/travel-agent-rates", tags=["travel-agent-rates"])


def _meta(time_window: str = "now") -> Meta:
    return Meta(
        as_of_date=date.today().isoformat(),
        source="rate_entries",
        time_window=time_window,
        calculation_version="v1",
    )


@router.post("", status_code=201)
def create_rate_entry(
    request: Annotated[RateEntryCreateRequest, Body(discriminator="rate_type")],
    hotel_id: str = Depends(get_tenant_id),
    _: Principal = Depends(require_admin),
    service: RateCatalogService = Depends(get_rate_catalog_service),
) -> ResponseEnvelope[RateEntry]:
    entry = service.create_entry(hotel_id, request)
    return ResponseEnvelope(data=to_rate_entry(entry), meta=_meta())


@router.get("")
def list_rate_entries(
    agent_id: str | None = Query(default=None, alias="agentId"),
    room_type_id: str | None = Query(default=None, alias="roomTypeId"),
    rate_type: str | None = Query(
        default=None, alias="rateType", pattern="^(special_rate|discount_percentage|commission_bonus)$"
    ),
    include_inactive: bool = Query(default=False, alias="includeInactive"),
    hotel_id: str = Depends(get_tenant_id),
    _: Principal = Depends(require_admin),
    service: RateCatalogService = Depends(get_rate_catalog_service),
) -> ResponseEnvelope[List[RateEntry]]:
    entries = service.list_entries(
        hotel_id,
        agent_id=agent_id,
        room_type_id=room_type_id,
        rate_type=rate_type,
        include_inactive=include_inactive,
    )
    return ResponseEnvelope(data=[to_rate_entry(entry) for entry in entries], meta=_meta())


@router.post("/resolve")
def resolve_rate(
    request: RateQuoteRequest,
    hotel_id: str = Depends(get_tenant_id),
    principal: Principal = Depends(get_principal),
    agents_service: TravelAgentsService = Depends(get_travel_agents_service),
    service: RateCatalogService = Depends(get_rate_catalog_service),
) -> ResponseEnvelope[RateResolution]:
    agent = agents_service.get_agent(hotel_id, request.agent_id)
    ensure_agent_access(principal, agent)
    resolution = service.resolve(
        agent,
        request.room_type_id,
        request.check_in,
        request.check_out,
        base_rate=request.base_rate,
        require_special_rate=request.require_special_rate,
    )
    return ResponseEnvelope(
        data=resolution,
        meta=_meta(time_window=f"{request.check_in.isoformat()}..{request.check_out.isoformat()}"),
    )


@router.get("/{entry_id}")
def get_rate_entry(
    entry_id: str,
    hotel_id: str = Depends(get_tenant_id),
    _: Principal = Depends(require_admin),
    service: RateCatalogService = Depends(get_rate_catalog_service),
) -> ResponseEnvelope[RateEntry]:
    return ResponseEnvelope(data=to_rate_entry(service.get_entry(hotel_id, entry_id)), meta=_meta())


@router.patch("/{entry_id}")
def update_rate_entry(
    entry_id: str,
    patch: RateEntryUpdateRequest,
    hotel_id: str = Depends(get_tenant_id),
    _: Principal = Depends(require_admin),
    service: RateCatalogService = Depends(get_rate_catalog_service),
) -> ResponseEnvelope[RateEntry]:
    entry = service.update_entry(hotel_id, entry_id, patch)
    return ResponseEnvelope(data=to_rate_entry(entry), meta=_meta())


@router.delete("/{entry_id}")
def deactivate_rate_entry(
    entry_id: str,
    hotel_id: str = Depends(get_tenant_id),
    _: Principal = Depends(require_admin),
    service: RateCatalogService = Depends(get_rate_catalog_service),
) -> ResponseEnvelope[RateEntry]:
    entry = service.deactivate_entry(hotel_id, entry_id)
    return ResponseEnvelope(data=to_rate_entry(entry), meta=_meta())
