from __future__ import annotations

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, Query
from pydantic import BaseModel

from src.analytics.dashboard_cache import DashboardCache
from src.core.config import get_settings
from src.core.errors import BadRequestError, ForbiddenError, UnauthorizedError
from src.repositories.agent_bookings_repository import AgentBookingsRepository
from src.repositories.bulk_bookings_repository import BulkBookingsRepository
from src.repositories.rate_entries_repository import RateEntriesRepository
from src.repositories.travel_agents_repository import TravelAgentsRepository
from src.repositories.users_repository import UsersRepository
from src.services.agent_bookings_service import AgentBookingsService
from src.services.bulk_bookings_service import BulkBookingsService
from src.services.commission_ledger_service import CommissionLedgerService
from src.services.rate_catalog_service import RateCatalogService
from src.services.travel_agents_service import TravelAgentsService
from src.services.travel_dashboard_service import TravelDashboardService
from src.shared.locks import KeyedLock

ROLES = frozenset({"super_admin", "admin", "manager", "travel_agent"})
MULTI_TENANT_ROLES = frozenset({"super_admin"})
TRAVEL_AGENT_ROLE = "travel_agent"


class Principal(BaseModel):
    user_id: str
    role: str
    hotel_id: Optional[str] = None

    @property
    def is_travel_agent(self) -> bool:
        return self.role == TRAVEL_AGENT_ROLE


def get_principal(
    authorization: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
    x_hotel_id: Optional[str] = Header(default=None),
) -> Principal:
    if not authorization or not authorization.lower().startswith("bearer ") or not x_user_id:
        raise UnauthorizedError()
    if x_user_role not in ROLES:
        raise ForbiddenError("Unknown role")
    return Principal(user_id=x_user_id, role=x_user_role, hotel_id=x_hotel_id)


def resolve_hotel_id(principal: Principal, hotel_id: Optional[str]) -> str:
    if principal.role in MULTI_TENANT_ROLES:
        if not hotel_id:
            raise BadRequestError("hotelId is required for multi-tenant principals")
        return hotel_id
    if not principal.hotel_id:
        raise ForbiddenError("Principal is not bound to a hotel")
    if hotel_id and hotel_id != principal.hotel_id:
        raise ForbiddenError("Cannot access another hotel")
    return principal.hotel_id


def get_tenant_id(
    principal: Principal = Depends(get_principal),
    hotel_id: Optional[str] = Query(default=None, alias="hotelId"),
) -> str:
    return resolve_hotel_id(principal, hotel_id)


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.is_travel_agent:
        raise ForbiddenError("Administrator access required")
    return principal


@lru_cache
def get_travel_agents_repository() -> TravelAgentsRepository:
    return TravelAgentsRepository()


@lru_cache
def get_users_repository() -> UsersRepository:
    return UsersRepository()


@lru_cache
def get_rate_entries_repository() -> RateEntriesRepository:
    return RateEntriesRepository()


@lru_cache
def get_agent_bookings_repository() -> AgentBookingsRepository:
    return AgentBookingsRepository()


@lru_cache
def get_bulk_bookings_repository() -> BulkBookingsRepository:
    return BulkBookingsRepository()


@lru_cache
def get_counter_lock() -> KeyedLock:
    return KeyedLock(get_settings().agent_lock_wait_seconds)


@lru_cache
def get_dashboard_cache() -> DashboardCache:
    settings = get_settings()
    return DashboardCache(
        ttl_seconds=settings.dashboard_cache_ttl_seconds,
        sweep_seconds=settings.dashboard_cache_sweep_seconds,
    )


def get_travel_agents_service() -> TravelAgentsService:
    settings = get_settings()
    return TravelAgentsService(
        repository=get_travel_agents_repository(),
        users_repository=get_users_repository(),
        bookings_repository=get_agent_bookings_repository(),
        counter_lock=get_counter_lock(),
        code_max_attempts=settings.agent_code_max_attempts,
        counter_max_attempts=settings.counter_cas_max_attempts,
    )


def get_rate_catalog_service() -> RateCatalogService:
    return RateCatalogService(
        repository=get_rate_entries_repository(),
        agents_repository=get_travel_agents_repository(),
    )


def get_commission_ledger_service() -> CommissionLedgerService:
    return CommissionLedgerService(repository=get_agent_bookings_repository())


def get_agent_bookings_service() -> AgentBookingsService:
    return AgentBookingsService(
        repository=get_agent_bookings_repository(),
        agents_service=get_travel_agents_service(),
        rate_catalog=get_rate_catalog_service(),
        ledger=get_commission_ledger_service(),
    )


def get_bulk_bookings_service() -> BulkBookingsService:
    return BulkBookingsService(
        repository=get_bulk_bookings_repository(),
        bookings_service=get_agent_bookings_service(),
        agents_service=get_travel_agents_service(),
    )


def get_travel_dashboard_service() -> TravelDashboardService:
    settings = get_settings()
    return TravelDashboardService(
        agents_repository=get_travel_agents_repository(),
        bookings_repository=get_agent_bookings_repository(),
        cache=get_dashboard_cache(),
        top_performers_limit=settings.dashboard_top_performers,
        recent_bookings_limit=settings.dashboard_recent_bookings,
    )
