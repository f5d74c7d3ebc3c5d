from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from src.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from src.models.travel_agents import (
    AGENT_STATUS_TRANSITIONS,
    APPLIED_COUNTER_KEYS_LIMIT,
    AgentRecord,
    CommissionStructure,
    CounterDelta,
    PerformanceMetrics,
)
from src.repositories.agent_bookings_repository import AgentBookingsRepository
from src.repositories.travel_agents_repository import TravelAgentsRepository
from src.repositories.users_repository import UsersRepository
from src.schemas.travel_agents import (
    AgentCodeValidation,
    AgentDetails,
    AgentPerformanceResponse,
    AgentPerformanceSummary,
    AgentRegistrationRequest,
    AgentUpdateRequest,
    MonthlyRevenuePoint,
    TravelAgent,
    TravelAgentListFilters,
)
from src.shared.identifiers import format_agent_code, new_id, normalize_agent_code, parse_agent_code_sequence
from src.shared.locks import KeyedLock
from src.shared.money import HUNDRED, ZERO, money_sum, safe_divide, to_money
from src.shared.response import Pagination, build_pagination
from src.shared.state_machine import ensure_transition
from src.shared.time import utc_now, year_window

logger = logging.getLogger(__name__)

TRAVEL_AGENT_ROLE = "travel_agent"
SELF_FORBIDDEN_FIELDS = ("status", "commission_structure", "is_active")
IMMUTABLE_FIELDS = ("agent_code", "performance_metrics")


def to_travel_agent(record: AgentRecord) -> TravelAgent:
    return TravelAgent.model_validate(record.model_dump())


class TravelAgentsService:
    def __init__(
        self,
        repository: TravelAgentsRepository,
        users_repository: UsersRepository,
        bookings_repository: AgentBookingsRepository,
        counter_lock: KeyedLock,
        code_max_attempts: int = 5,
        counter_max_attempts: int = 5,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.users_repository = users_repository
        self.bookings_repository = bookings_repository
        self.counter_lock = counter_lock
        self.code_max_attempts = code_max_attempts
        self.counter_max_attempts = counter_max_attempts
        self.clock = clock

    def register(self, hotel_id: str, request: AgentRegistrationRequest) -> AgentRecord:
        user = self.users_repository.get_user(request.user_id)
        if not user:
            raise NotFoundError("User not found")
        if user.role != TRAVEL_AGENT_ROLE:
            raise ForbiddenError("User must hold the travel_agent role")
        if self.repository.get_agent_by_user(request.user_id):
            raise ConflictError("User is already registered as a travel agent")

        requested_code = normalize_agent_code(request.agent_code) if request.agent_code else None
        if requested_code and self.repository.get_agent_by_code(hotel_id, requested_code):
            raise ConflictError("Agent code already exists", details={"agentCode": requested_code})

        for attempt in range(self.code_max_attempts):
            agent_code = requested_code or self._next_agent_code(hotel_id, attempt)
            now = self.clock()
            record = AgentRecord(
                id=new_id(),
                hotel_id=hotel_id,
                user_id=request.user_id,
                agent_code=agent_code,
                company_name=request.company_name,
                contact_person=request.contact_person,
                phone=request.phone,
                email=request.email,
                address=request.address.model_dump(),
                business_details=request.business_details,
                commission_structure=(
                    request.commission_structure.model_dump()
                    if request.commission_structure
                    else CommissionStructure()
                ),
                booking_limits=request.booking_limits.model_dump(),
                payment_terms=request.payment_terms.model_dump(),
                status="pending_approval",
                created_at=now,
                updated_at=now,
            )
            try:
                created = self.repository.insert_agent(record)
            except ConflictError:
                if requested_code:
                    raise
                logger.info("Agent code %s taken for hotel %s, retrying", agent_code, hotel_id)
                continue
            self.users_repository.update_travel_agent_details(
                request.user_id,
                {"agent_id": created.id, "agent_code": created.agent_code, "company_name": created.company_name},
            )
            logger.info("Registered travel agent %s (%s) for hotel %s", created.id, created.agent_code, hotel_id)
            return created
        raise ConflictError("Could not allocate a unique agent code")

    def _next_agent_code(self, hotel_id: str, attempt: int) -> str:
        sequences = [parse_agent_code_sequence(code) for code in self.repository.list_agent_codes(hotel_id)]
        highest = max((value for value in sequences if value is not None), default=0)
        return format_agent_code(highest + 1 + attempt)

    def get_agent(self, hotel_id: str, agent_id: str) -> AgentRecord:
        agent = self.repository.get_agent(hotel_id, agent_id)
        if not agent:
            raise NotFoundError("Travel agent not found")
        return agent

    def get_agent_for_user(self, user_id: str) -> AgentRecord:
        agent = self.repository.get_agent_by_user(user_id)
        if not agent:
            raise NotFoundError("Travel agent profile not found")
        return agent

    def list_agents(self, hotel_id: str, filters: TravelAgentListFilters) -> Tuple[List[TravelAgent], Pagination]:
        records, total = self.repository.list_agents(
            hotel_id,
            status=filters.status,
            search=filters.search,
            limit=filters.limit,
            offset=(filters.page - 1) * filters.limit,
        )
        return [to_travel_agent(record) for record in records], build_pagination(filters.page, filters.limit, total)

    def update(self, hotel_id: str, agent_id: str, patch: AgentUpdateRequest, is_self: bool = False) -> AgentRecord:
        changes = patch.model_dump(exclude_unset=True)
        locked = [field for field in IMMUTABLE_FIELDS if field in changes]
        if locked:
            raise BadRequestError("Agent code and performance metrics cannot be updated", details={"fields": locked})
        if is_self:
            forbidden = [field for field in SELF_FORBIDDEN_FIELDS if field in changes]
            if forbidden:
                raise ForbiddenError(f"Travel agents cannot change their own {', '.join(forbidden)}")

        agent = self.get_agent(hotel_id, agent_id)
        if "status" in changes and changes["status"] != agent.status:
            ensure_transition(AGENT_STATUS_TRANSITIONS, "agent", agent.status, changes["status"])
        else:
            changes.pop("status", None)
        payload = patch.model_dump(mode="json", include=set(changes))
        payload["updated_at"] = self.clock().isoformat()
        updated = self.repository.update_agent(hotel_id, agent_id, payload)
        logger.info("Updated travel agent %s fields=%s", agent_id, sorted(changes))
        return updated

    def set_status(self, hotel_id: str, agent_id: str, status: str, reason: Optional[str] = None) -> AgentRecord:
        for _ in range(self.counter_max_attempts):
            agent = self.get_agent(hotel_id, agent_id)
            ensure_transition(AGENT_STATUS_TRANSITIONS, "agent", agent.status, status)
            updated = self.repository.update_agent_if_version(
                hotel_id,
                agent_id,
                agent.version,
                {"status": status, "status_reason": reason, "updated_at": self.clock().isoformat()},
            )
            if updated:
                logger.info("Travel agent %s status %s -> %s", agent_id, agent.status, status)
                return updated
        raise ConflictError("Travel agent was modified concurrently, retry the status change")

    def validate_code(self, hotel_id: str, agent_code: str) -> AgentCodeValidation:
        code = normalize_agent_code(agent_code)
        agent = self.repository.get_agent_by_code(hotel_id, code)
        if not agent or not agent.is_active:
            return AgentCodeValidation(valid=False, agent_code=code, message="Invalid agent code")
        if agent.status != "active":
            return AgentCodeValidation(valid=False, agent_code=code, message="Travel agent account is not active")
        return AgentCodeValidation(
            valid=True,
            agent_code=agent.agent_code,
            company_name=agent.company_name,
            commission_rate=agent.commission_structure.default_rate,
        )

    def apply_booking(self, hotel_id: str, agent_id: str, delta: CounterDelta) -> AgentRecord:
        """Apply a signed counter delta once per ``delta.key``.

        Writes are serialized per agent in-process and guarded by the document version
        so that concurrent writers in other processes retry instead of overwriting.
        """
        with self.counter_lock.hold(agent_id):
            for _ in range(self.counter_max_attempts):
                agent = self.get_agent(hotel_id, agent_id)
                if delta.key in agent.applied_counter_keys:
                    return agent
                metrics = self._apply_delta(agent.performance_metrics, delta)
                keys = (agent.applied_counter_keys + [delta.key])[-APPLIED_COUNTER_KEYS_LIMIT:]
                updated = self.repository.update_agent_if_version(
                    hotel_id,
                    agent_id,
                    agent.version,
                    {
                        "performance_metrics": metrics.model_dump(mode="json"),
                        "applied_counter_keys": keys,
                        "updated_at": self.clock().isoformat(),
                    },
                )
                if updated:
                    return updated
                logger.debug("Counter update for agent %s lost a version race, retrying", agent_id)
        raise ConflictError("Travel agent counters changed concurrently")

    @staticmethod
    def _apply_delta(metrics: PerformanceMetrics, delta: CounterDelta) -> PerformanceMetrics:
        total_bookings = metrics.total_bookings + delta.bookings
        total_revenue = to_money(metrics.total_revenue + delta.revenue)
        cancelled = metrics.cancelled_bookings + delta.cancelled
        last_booking_date = metrics.last_booking_date
        if delta.booking_created_at and delta.bookings > 0:
            if last_booking_date is None or delta.booking_created_at > last_booking_date:
                last_booking_date = delta.booking_created_at
        return PerformanceMetrics(
            total_bookings=total_bookings,
            total_revenue=total_revenue,
            total_commission_earned=to_money(metrics.total_commission_earned + delta.commission),
            average_booking_value=safe_divide(total_revenue, total_bookings) if total_bookings > 0 else ZERO,
            cancelled_bookings=cancelled,
            cancellation_rate=safe_divide(Decimal(cancelled) * HUNDRED, total_bookings + cancelled),
            last_booking_date=last_booking_date,
        )

    def performance(
        self,
        hotel_id: str,
        agent_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> AgentPerformanceResponse:
        agent = self.get_agent(hotel_id, agent_id)
        created_from = datetime.combine(start_date, time.min, tzinfo=timezone.utc) if start_date else None
        created_to = (
            datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc) if end_date else None
        )
        bookings, _ = self.bookings_repository.list_bookings(
            hotel_id, agent_id=agent_id, created_from=created_from, created_to=created_to
        )
        total_revenue = money_sum(booking.pricing.total_amount for booking in bookings)
        summary = AgentPerformanceSummary(
            total_bookings=len(bookings),
            total_revenue=total_revenue,
            total_commission=money_sum(booking.commission.total_commission for booking in bookings),
            average_booking_value=safe_divide(total_revenue, len(bookings)),
            total_nights=sum(booking.booking_details.nights for booking in bookings),
            total_rooms=sum(booking.guest_details.total_rooms for booking in bookings),
            confirmed_bookings=sum(1 for booking in bookings if booking.booking_status == "confirmed"),
            cancelled_bookings=sum(1 for booking in bookings if booking.booking_status == "cancelled"),
        )
        return AgentPerformanceResponse(
            performance=summary,
            monthly_revenue=self._monthly_revenue(hotel_id, agent_id),
            agent_details=AgentDetails(
                company_name=agent.company_name,
                agent_code=agent.agent_code,
                status=agent.status,
                commission_rate=agent.commission_structure.default_rate,
            ),
            start_date=start_date,
            end_date=end_date,
        )

    def _monthly_revenue(self, hotel_id: str, agent_id: str) -> List[MonthlyRevenuePoint]:
        year_start, year_end = year_window(self.clock().year)
        bookings, _ = self.bookings_repository.list_bookings(
            hotel_id, agent_id=agent_id, created_from=year_start, created_to=year_end
        )
        buckets: Dict[int, Dict[str, Any]] = defaultdict(lambda: {"revenue": [], "commission": [], "bookings": 0})
        for booking in bookings:
            if booking.booking_status == "cancelled":
                continue
            bucket = buckets[booking.created_at.month]
            bucket["revenue"].append(booking.pricing.total_amount)
            bucket["commission"].append(booking.commission.total_commission)
            bucket["bookings"] += 1
        return [
            MonthlyRevenuePoint(
                month=month,
                revenue=money_sum(bucket["revenue"]),
                commission=money_sum(bucket["commission"]),
                bookings=bucket["bookings"],
            )
            for month, bucket in sorted(buckets.items())
        ]
