from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query

from src.api.dependencies import (
    Principal,
    get_commission_ledger_service,
    get_rate_catalog_service,
    get_tenant_id,
    get_travel_dashboard_service,
    require_admin,
)
from src.schemas.agent_bookings import PendingCommissionsResponse
from src.schemas.travel_dashboard import (
    CachedAggregate,
    DashboardAnalytics,
    DashboardFilters,
    DashboardOverview,
    MonthlyTrends,
    RatesOverview,
)
from src.services.agent_bookings_service import to_agent_booking
from src.services.commission_ledger_service import CommissionLedgerService
from src.services.rate_catalog_service import RateCatalogService
from src.services.travel_dashboard_service import TravelDashboardService
from src.shared.response import Meta, ResponseEnvelope
from src.shared.time import PERIOD_PATTERN

router = APIRouter(prefix="/admin/travel-dashboard", tags=["travel-dashboard"])


def get_dashboard_filters(
    period: str = Query(default="30d", pattern=PERIOD_PATTERN),
    agent_id: str | None = Query(default=None, alias="agentId"),
) -> DashboardFilters:
    return DashboardFilters(period=period, agent_id=agent_id)


def _cached_meta(data: CachedAggregate, source: str, time_window: str) -> Meta:
    return Meta(
        as_of_date=date.today().isoformat(),
        source=source,
        time_window=time_window,
        calculation_version="v1",
        generated_at=data.generated_at.isoformat(),
        from_cache=data.from_cache,
        cache_age_seconds=data.cache_age_seconds,
    )


@router.get("")
def dashboard_overview(
    filters: DashboardFilters = Depends(get_dashboard_filters),
    hotel_id: str = Depends(get_tenant_id),
    _: Principal = Depends(require_admin),
    service: TravelDashboardService = Depends(get_travel_dashboard_service),
) -> ResponseEnvelope[DashboardOverview]:
    data = service.overview(hotel_id, filters.period, filters.agent_id)
    meta = _cached_meta(data, "agents,agent_bookings", filters.period)
    meta.degraded = bool(data.errors) or None
    return ResponseEnvelope(data=data, meta=meta)


@router.get("/analytics")
def dashboard_analytics(
    filters: DashboardFilters = Depends(get_dashboard_filters),
    hotel_id: str = Depends(get_tenant_id),
    _: Principal = Depends(require_admin),
    service: TravelDashboardService = Depends(get_travel_dashboard_service),
) -> ResponseEnvelope[DashboardAnalytics]:
    data = service.analytics(hotel_id, filters.period, filters.agent_id)
    return ResponseEnvelope(data=data, meta=_cached_meta(data, "agent_bookings", filters.period))


@router.get("/monthly-trends")
def dashboard_monthly_trends(
    agent_id: str | None = Query(default=None, alias="agentId"),
    hotel_id: str = Depends(get_tenant_id),
    _: Principal = Depends(require_admin),
    service: TravelDashboardService = Depends(get_travel_dashboard_service),
) -> ResponseEnvelope[MonthlyTrends]:
    data = service.monthly_trends(hotel_id, agent_id)
    return ResponseEnvelope(data=data, meta=_cached_meta(data, "agent_bookings", str(data.year)))


@router.get("/pending-commissions")
def dashboard_pending_commissions(
    agent_id: str | None = Query(default=None, alias="agentId"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    hotel_id: str = Depends(get_tenant_id),
    _: Principal = Depends(require_admin),
    ledger: CommissionLedgerService = Depends(get_commission_ledger_service),
) -> ResponseEnvelope[PendingCommissionsResponse]:
    items, pagination, summary = ledger.list_pending(hotel_id, agent_id, page=page, limit=limit)
    return ResponseEnvelope(
        data=PendingCommissionsResponse(commissions=[to_agent_booking(item) for item in items], summary=summary),
        pagination=pagination,
        meta=Meta(
            as_of_date=date.today().isoformat(),
            source="agent_bookings",
            time_window="now",
            calculation_version="v1",
        ),
    )


@router.get("/rates")
def dashboard_rates(
    hotel_id: str = Depends(get_tenant_id),
    _: Principal = Depends(require_admin),
    rate_catalog: RateCatalogService = Depends(get_rate_catalog_service),
) -> ResponseEnvelope[RatesOverview]:
    return ResponseEnvelope(
        data=rate_catalog.rates_overview(hotel_id),
        meta=Meta(
            as_of_date=date.today().isoformat(),
            source="rate_entries",
            time_window="now",
            calculation_version="v1",
        ),
    )
