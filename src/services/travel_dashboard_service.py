from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

from src.analytics.dashboard_cache import DashboardCache
from src.analytics.travel_aggregations import (
    breakdown,
    commission_rate_bucket,
    commission_totals,
    counter_commission_totals,
    counter_revenue_totals,
    growth_percent,
    lead_time_bucket,
    monthly_points,
    realized,
    recent_bookings,
    revenue_totals,
    stay_averages,
    synthetic_recent_bookings,
    top_performers,
)
from src.core.deadline import current_deadline
from src.core.errors import AnalyticsUnavailableError, BadRequestError
from src.models.agent_bookings import AgentBookingRecord
from src.models.travel_agents import AgentRecord
from src.repositories.agent_bookings_repository import AgentBookingsRepository
from src.repositories.travel_agents_repository import TravelAgentsRepository
from src.schemas.travel_dashboard import (
    CachedAggregate,
    DashboardAnalytics,
    DashboardCounts,
    DashboardOverview,
    MonthlyTrendPoint,
    MonthlyTrends,
)
from src.shared.money import ZERO, money_sum
from src.shared.time import resolve_period, utc_now, year_window

logger = logging.getLogger(__name__)

A = TypeVar("A", bound=CachedAggregate)

BOOKING_STATUS_ORDER = ("confirmed", "modified", "completed", "cancelled", "no_show")
COMMISSION_STATUS_ORDER = ("pending", "processing", "paid", "cancelled")
SEASONALITY_ORDER = ("peak", "high", "low", "off")
LEAD_TIME_ORDER = ("0-7", "8-30", "31-90", "90+")
COMMISSION_RATE_ORDER = ("<5", "5-10", "10-15", "15+")


class TravelDashboardService:
    def __init__(
        self,
        agents_repository: TravelAgentsRepository,
        bookings_repository: AgentBookingsRepository,
        cache: DashboardCache,
        top_performers_limit: int = 5,
        recent_bookings_limit: int = 10,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.agents_repository = agents_repository
        self.bookings_repository = bookings_repository
        self.cache = cache
        self.top_performers_limit = top_performers_limit
        self.recent_bookings_limit = recent_bookings_limit
        self.clock = clock

    def overview(self, hotel_id: str, period: str, agent_id: Optional[str] = None) -> DashboardOverview:
        return self._cached(
            "overview", hotel_id, period, agent_id, lambda: self._overview(hotel_id, period, agent_id)
        )

    def analytics(self, hotel_id: str, period: str, agent_id: Optional[str] = None) -> DashboardAnalytics:
        return self._cached(
            "analytics", hotel_id, period, agent_id, lambda: self._analytics(hotel_id, period, agent_id)
        )

    def monthly_trends(self, hotel_id: str, agent_id: Optional[str] = None) -> MonthlyTrends:
        year = self.clock().year
        return self._cached(
            "monthly_trends",
            hotel_id,
            str(year),
            agent_id,
            lambda: MonthlyTrends(
                year=year, points=self._monthly_points(hotel_id, agent_id), generated_at=self.clock()
            ),
        )

    def _cached(
        self,
        kind: str,
        hotel_id: str,
        period: str,
        agent_id: Optional[str],
        compute: Callable[[], A],
    ) -> A:
        key = (kind, period, agent_id or "all", hotel_id)
        hit = self.cache.get(key)
        if hit is not None:
            value, age = hit
            return value.model_copy(update={"from_cache": True, "cache_age_seconds": age})

        started = time.monotonic()
        try:
            value = compute()
        except BadRequestError:
            raise
        except Exception as exc:
            logger.error("Dashboard %s aggregation failed for hotel %s", kind, hotel_id, exc_info=True)
            stale = self.cache.get_stale(key)
            if stale is None:
                raise AnalyticsUnavailableError() from exc
            previous, age = stale
            return previous.model_copy(update={"from_cache": True, "cache_age_seconds": age})

        elapsed = time.monotonic() - started
        deadline = current_deadline()
        stale = self.cache.get_stale(key)
        # Results carrying sub-query errors are served once and recomputed on the next call.
        if getattr(value, "errors", None):
            logger.debug("Dashboard %s result for hotel %s is degraded, not caching", kind, hotel_id)
        else:
            self.cache.put(key, value)
        if deadline is not None and elapsed > deadline.seconds / 2 and stale is not None:
            logger.warning("Dashboard %s recompute took %.1fs, serving previous value", kind, elapsed)
            previous, age = stale
            return previous.model_copy(update={"from_cache": True, "cache_age_seconds": age})
        return value

    def _scope(self, hotel_id: str, agent_id: Optional[str]) -> Tuple[List[AgentRecord], Dict[str, AgentRecord]]:
        agents = self.agents_repository.list_all_agents(hotel_id)
        if agent_id:
            agents = [agent for agent in agents if agent.id == agent_id]
        return agents, {agent.id: agent for agent in agents}

    def _bookings(
        self, hotel_id: str, agent_id: Optional[str], start: datetime, end: datetime
    ) -> List[AgentBookingRecord]:
        records, _ = self.bookings_repository.list_bookings(
            hotel_id, agent_id=agent_id, created_from=start, created_to=end
        )
        return records

    def _overview(self, hotel_id: str, period: str, agent_id: Optional[str]) -> DashboardOverview:
        now = self.clock()
        start, end = resolve_period(period, now)
        previous_start = start - (end - start)
        agents, agents_by_id = self._scope(hotel_id, agent_id)
        bookings = self._bookings(hotel_id, agent_id, start, end)

        new_agents = sum(1 for agent in agents if start <= agent.created_at < end)
        previous_new_agents = sum(1 for agent in agents if previous_start <= agent.created_at < start)

        if bookings:
            data_source = "bookings"
            revenue = revenue_totals(bookings)
            commission = commission_totals(bookings, revenue.total_revenue)
            recent = recent_bookings(bookings, agents_by_id, self.recent_bookings_limit)
            previous_revenue = money_sum(
                booking.pricing.total_amount
                for booking in realized(self._bookings(hotel_id, agent_id, previous_start, start))
            )
            revenue_growth = growth_percent(revenue.total_revenue, previous_revenue)
        else:
            data_source = "agent_counters"
            revenue = counter_revenue_totals(agents)
            commission = counter_commission_totals(agents, revenue.total_revenue)
            recent = synthetic_recent_bookings(agents, self.top_performers_limit, now)
            revenue_growth = ZERO

        errors: Dict[str, str] = {}
        try:
            trends = self._monthly_points(hotel_id, agent_id)
        except Exception:
            logger.error("Monthly trends failed for hotel %s", hotel_id, exc_info=True)
            errors["monthly_trends"] = "Monthly trends are temporarily unavailable"
            trends = []

        return DashboardOverview(
            period=period,
            data_source=data_source,
            overview=DashboardCounts(
                total_agents=len(agents),
                active_agents=sum(1 for agent in agents if agent.status == "active"),
                pending_approvals=sum(1 for agent in agents if agent.status == "pending_approval"),
                total_bookings=revenue.total_bookings,
                agent_growth=growth_percent(new_agents, previous_new_agents),
                revenue_growth=revenue_growth,
            ),
            revenue=revenue,
            commission=commission,
            top_performers=top_performers(agents, self.top_performers_limit),
            recent_bookings=recent,
            monthly_trends=trends,
            errors=errors,
            generated_at=now,
        )

    def _analytics(self, hotel_id: str, period: str, agent_id: Optional[str]) -> DashboardAnalytics:
        now = self.clock()
        start, end = resolve_period(period, now)
        bookings = self._bookings(hotel_id, agent_id, start, end)
        return DashboardAnalytics(
            period=period,
            total_bookings=len(bookings),
            by_booking_status=breakdown(bookings, lambda booking: booking.booking_status, BOOKING_STATUS_ORDER),
            by_commission_status=breakdown(
                bookings, lambda booking: booking.commission.payment_status, COMMISSION_STATUS_ORDER
            ),
            by_seasonality=breakdown(bookings, lambda booking: booking.performance.seasonality, SEASONALITY_ORDER),
            by_lead_time=breakdown(
                bookings, lambda booking: lead_time_bucket(booking.performance.lead_time_days), LEAD_TIME_ORDER
            ),
            by_commission_rate=breakdown(
                bookings, lambda booking: commission_rate_bucket(booking.commission.rate), COMMISSION_RATE_ORDER
            ),
            stay_averages=stay_averages(bookings),
            generated_at=now,
        )

    def _monthly_points(self, hotel_id: str, agent_id: Optional[str]) -> List[MonthlyTrendPoint]:
        year_start, year_end = year_window(self.clock().year)
        return monthly_points(self._bookings(hotel_id, agent_id, year_start, year_end))
