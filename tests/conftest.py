from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from src.analytics.dashboard_cache import DashboardCache
from src.api.dependencies import (
    get_agent_bookings_service,
    get_bulk_bookings_service,
    get_commission_ledger_service,
    get_rate_catalog_service,
    get_travel_agents_service,
    get_travel_dashboard_service,
)
from src.core.errors import ConflictError, NotFoundError
from src.main import create_app
from src.models.agent_bookings import AgentBookingRecord, BulkBookingRecord
from src.models.travel_agents import AgentRecord, RateEntryRecord
from src.repositories.agent_bookings_repository import serialize_booking
from src.repositories.users_repository import UserRecord
from src.schemas.agent_bookings import CreateAgentBookingRequest
from src.services.agent_bookings_service import AgentBookingsService
from src.services.bulk_bookings_service import BulkBookingsService
from src.services.commission_ledger_service import CommissionLedgerService
from src.services.rate_catalog_service import RateCatalogService
from src.services.travel_agents_service import TravelAgentsService
from src.services.travel_dashboard_service import TravelDashboardService
from src.shared.locks import KeyedLock

HOTEL_ID = "hotel-1"
NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


def _merge(model: Any, row: Dict[str, Any], payload: Dict[str, Any]) -> Any:
    merged = dict(row)
    merged.update(payload)
    return model.model_validate(merged)


class InMemoryTravelAgentsRepository:
    def __init__(self) -> None:
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.fail_counter_updates = False
        self.lost_races = 0

    def _record(self, row: Dict[str, Any]) -> AgentRecord:
        return AgentRecord.model_validate(row)

    def get_agent(self, hotel_id: str, agent_id: str) -> Optional[AgentRecord]:
        row = self.rows.get(agent_id)
        if row and row["hotel_id"] == hotel_id and row["is_active"]:
            return self._record(row)
        return None

    def get_agent_by_user(self, user_id: str) -> Optional[AgentRecord]:
        for row in self.rows.values():
            if row["user_id"] == user_id and row["is_active"]:
                return self._record(row)
        return None

    def get_agent_by_code(self, hotel_id: str, agent_code: str) -> Optional[AgentRecord]:
        for row in self.rows.values():
            if row["hotel_id"] == hotel_id and row["agent_code"] == agent_code:
                return self._record(row)
        return None

    def list_agent_codes(self, hotel_id: str) -> List[str]:
        return [row["agent_code"] for row in self.rows.values() if row["hotel_id"] == hotel_id]

    def insert_agent(self, record: AgentRecord) -> AgentRecord:
        if self.get_agent_by_code(record.hotel_id, record.agent_code):
            raise ConflictError("Duplicate agent code")
        self.rows[record.id] = record.model_dump(mode="json")
        return self._record(self.rows[record.id])

    def update_agent(self, hotel_id: str, agent_id: str, payload: Dict[str, Any]) -> AgentRecord:
        row = self.rows.get(agent_id)
        if not row or row["hotel_id"] != hotel_id:
            raise NotFoundError("Travel agent not found")
        updated = _merge(AgentRecord, row, payload)
        self.rows[agent_id] = updated.model_dump(mode="json")
        return updated

    def update_agent_if_version(
        self,
        hotel_id: str,
        agent_id: str,
        expected_version: int,
        payload: Dict[str, Any],
    ) -> Optional[AgentRecord]:
        if self.fail_counter_updates and "performance_metrics" in payload:
            raise RuntimeError("agents store unavailable")
        if self.lost_races > 0:
            self.lost_races -= 1
            return None
        row = self.rows.get(agent_id)
        if not row or row["hotel_id"] != hotel_id or row["version"] != expected_version:
            return None
        return self.update_agent(hotel_id, agent_id, {**payload, "version": expected_version + 1})

    def list_agents(
        self,
        hotel_id: str,
        status: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[AgentRecord], int]:
        records = self.list_all_agents(hotel_id)
        if status:
            records = [record for record in records if record.status == status]
        if search:
            term = search.lower()
            records = [
                record
                for record in records
                if term in record.company_name.lower() or term in record.agent_code.lower()
            ]
        return records[offset : offset + limit], len(records)

    def list_all_agents(self, hotel_id: str) -> List[AgentRecord]:
        records = [
            self._record(row) for row in self.rows.values() if row["hotel_id"] == hotel_id and row["is_active"]
        ]
        return sorted(records, key=lambda record: record.created_at, reverse=True)


class InMemoryUsersRepository:
    def __init__(self) -> None:
        self.users: Dict[str, UserRecord] = {}
        self.travel_agent_details: Dict[str, Dict[str, Any]] = {}

    def add(self, user_id: str, role: str = "travel_agent") -> UserRecord:
        self.users[user_id] = UserRecord(id=user_id, role=role, hotel_id=HOTEL_ID)
        return self.users[user_id]

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self.users.get(user_id)

    def update_travel_agent_details(self, user_id: str, details: Dict[str, Any]) -> None:
        self.travel_agent_details[user_id] = details


class InMemoryRateEntriesRepository:
    def __init__(self) -> None:
        self.rows: Dict[str, Dict[str, Any]] = {}

    def get_rate_entry(self, hotel_id: str, entry_id: str) -> Optional[RateEntryRecord]:
        row = self.rows.get(entry_id)
        return RateEntryRecord.model_validate(row) if row and row["hotel_id"] == hotel_id else None

    def list_rate_entries(
        self,
        hotel_id: str,
        agent_id: Optional[str] = None,
        room_type_id: Optional[str] = None,
        rate_type: Optional[str] = None,
        active_only: bool = True,
    ) -> List[RateEntryRecord]:
        records = [RateEntryRecord.model_validate(row) for row in self.rows.values() if row["hotel_id"] == hotel_id]
        records = [
            record
            for record in records
            if (agent_id is None or record.agent_id == agent_id)
            and (room_type_id is None or record.room_type_id == room_type_id)
            and (rate_type is None or record.rate_type == rate_type)
            and (record.is_active or not active_only)
        ]
        return sorted(records, key=lambda record: record.valid_from)

    def list_overlapping(
        self,
        hotel_id: str,
        agent_id: str,
        room_type_id: str,
        start: date,
        end: date,
    ) -> List[RateEntryRecord]:
        return [
            record
            for record in self.list_rate_entries(hotel_id, agent_id=agent_id, room_type_id=room_type_id)
            if record.valid_from <= end and record.valid_to >= start
        ]

    def insert_rate_entry(self, record: RateEntryRecord) -> RateEntryRecord:
        self.rows[record.id] = record.model_dump(mode="json")
        return RateEntryRecord.model_validate(self.rows[record.id])

    def update_rate_entry(self, hotel_id: str, entry_id: str, payload: Dict[str, Any]) -> RateEntryRecord:
        row = self.rows.get(entry_id)
        if not row or row["hotel_id"] != hotel_id:
            raise NotFoundError("Rate entry not found")
        updated = _merge(RateEntryRecord, row, payload)
        self.rows[entry_id] = updated.model_dump(mode="json")
        return updated


class InMemoryAgentBookingsRepository:
    def __init__(self) -> None:
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.fail_reads = False

    def _records(self) -> List[AgentBookingRecord]:
        if self.fail_reads:
            raise RuntimeError("bookings store unavailable")
        return [AgentBookingRecord.model_validate(row) for row in self.rows.values()]

    def get_booking(self, hotel_id: str, agent_booking_id: str) -> Optional[AgentBookingRecord]:
        row = self.rows.get(agent_booking_id)
        return AgentBookingRecord.model_validate(row) if row and row["hotel_id"] == hotel_id else None

    def get_by_idempotency_key(self, hotel_id: str, idempotency_key: str) -> Optional[AgentBookingRecord]:
        for row in self.rows.values():
            if row["hotel_id"] == hotel_id and row["idempotency_key"] == idempotency_key:
                return AgentBookingRecord.model_validate(row)
        return None

    def insert_booking(self, record: AgentBookingRecord) -> AgentBookingRecord:
        if self.get_by_idempotency_key(record.hotel_id, record.idempotency_key):
            raise ConflictError("Duplicate idempotency key")
        self.rows[record.id] = serialize_booking(record)
        return AgentBookingRecord.model_validate(self.rows[record.id])

    def delete_booking(self, hotel_id: str, agent_booking_id: str) -> None:
        row = self.rows.get(agent_booking_id)
        if row and row["hotel_id"] == hotel_id:
            del self.rows[agent_booking_id]

    def replace_booking_if_status(
        self,
        record: AgentBookingRecord,
        expected_status: str,
        expected_revision: int,
    ) -> Optional[AgentBookingRecord]:
        row = self.rows.get(record.id)
        if (
            not row
            or row["hotel_id"] != record.hotel_id
            or row["booking_status"] != expected_status
            or row["revision"] != expected_revision
        ):
            return None
        self.rows[record.id] = serialize_booking(record)
        return AgentBookingRecord.model_validate(self.rows[record.id])

    def update_commission_if_status(
        self,
        hotel_id: str,
        agent_booking_id: str,
        expected_statuses: Iterable[str],
        commission: Dict[str, Any],
    ) -> Optional[AgentBookingRecord]:
        row = self.rows.get(agent_booking_id)
        if not row or row["hotel_id"] != hotel_id or row["commission"]["payment_status"] not in expected_statuses:
            return None
        row["commission"] = commission
        return AgentBookingRecord.model_validate(row)

    def count_agent_bookings(
        self,
        agent_id: str,
        created_from: Optional[datetime] = None,
        exclude_statuses: Optional[Iterable[str]] = None,
    ) -> int:
        excluded = set(exclude_statuses or ())
        return sum(
            1
            for record in self._records()
            if record.agent_id == agent_id
            and (created_from is None or record.created_at >= created_from)
            and record.booking_status not in excluded
        )

    def list_bookings(
        self,
        hotel_id: str,
        agent_id: Optional[str] = None,
        booking_statuses: Optional[Iterable[str]] = None,
        commission_statuses: Optional[Iterable[str]] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        limit: int = 5000,
        offset: int = 0,
    ) -> Tuple[List[AgentBookingRecord], int]:
        booking_statuses = set(booking_statuses) if booking_statuses else None
        commission_statuses = set(commission_statuses) if commission_statuses else None
        records = [
            record
            for record in self._records()
            if record.hotel_id == hotel_id
            and record.is_active
            and (agent_id is None or record.agent_id == agent_id)
            and (booking_statuses is None or record.booking_status in booking_statuses)
            and (commission_statuses is None or record.commission.payment_status in commission_statuses)
            and (created_from is None or record.created_at >= created_from)
            and (created_to is None or record.created_at < created_to)
        ]
        records.sort(key=lambda record: record.created_at, reverse=True)
        return records[offset : offset + limit], len(records)


class InMemoryBulkBookingsRepository:
    def __init__(self) -> None:
        self.rows: Dict[str, Dict[str, Any]] = {}

    def get_bulk_booking(self, hotel_id: str, bulk_booking_id: str) -> Optional[BulkBookingRecord]:
        row = self.rows.get(bulk_booking_id)
        return BulkBookingRecord.model_validate(row) if row and row["hotel_id"] == hotel_id else None

    def get_by_idempotency_key(self, hotel_id: str, idempotency_key: str) -> Optional[BulkBookingRecord]:
        for row in self.rows.values():
            if row["hotel_id"] == hotel_id and row["idempotency_key"] == idempotency_key:
                return BulkBookingRecord.model_validate(row)
        return None

    def insert_bulk_booking(self, record: BulkBookingRecord) -> BulkBookingRecord:
        self.rows[record.id] = record.model_dump(mode="json")
        return BulkBookingRecord.model_validate(self.rows[record.id])

    def replace_bulk_booking_if_status(
        self,
        record: BulkBookingRecord,
        expected_status: str,
    ) -> Optional[BulkBookingRecord]:
        row = self.rows.get(record.id)
        if not row or row["status"] != expected_status:
            return None
        self.rows[record.id] = record.model_dump(mode="json")
        return BulkBookingRecord.model_validate(self.rows[record.id])


def make_agent(
    stores: SimpleNamespace,
    agent_id: str = "agent-1",
    agent_code: str = "TA001",
    user_id: str = "user-1",
    status: str = "active",
    created_at: datetime = NOW - timedelta(days=90),
    **overrides: Any,
) -> AgentRecord:
    data: Dict[str, Any] = {
        "id": agent_id,
        "hotel_id": HOTEL_ID,
        "user_id": user_id,
        "agent_code": agent_code,
        "company_name": f"{agent_code} Travel",
        "contact_person": "Dana Reyes",
        "phone": "+15550100",
        "email": f"{agent_code.lower()}@example.com",
        "status": status,
        "created_at": created_at,
        "updated_at": created_at,
    }
    data.update(overrides)
    record = AgentRecord.model_validate(data)
    stores.agents.rows[record.id] = record.model_dump(mode="json")
    stores.users.add(user_id)
    return record


def booking_request(idempotency_key: str = "key-1", **overrides: Any) -> CreateAgentBookingRequest:
    data: Dict[str, Any] = {
        "idempotency_key": idempotency_key,
        "guest_details": {
            "primary_guest": {"name": "Sam Guest", "email": "sam@example.com", "phone": "+15550111"},
            "total_guests": 2,
        },
        "check_in": date(2026, 3, 20),
        "check_out": date(2026, 3, 22),
        "room_types": [
            {"room_type_id": "deluxe", "room_type_name": "Deluxe", "quantity": 1, "rate_per_night": Decimal("1000")}
        ],
        "taxes": Decimal("240"),
        "fees": Decimal("100"),
        "payment_method": "bank_transfer",
    }
    data.update(overrides)
    return CreateAgentBookingRequest.model_validate(data)


def auth_headers(user_id: str = "admin-1", role: str = "admin", hotel_id: Optional[str] = HOTEL_ID) -> Dict[str, str]:
    headers = {"Authorization": "Bearer test-token", "X-User-Id": user_id, "X-User-Role": role}
    if hotel_id:
        headers["X-Hotel-Id"] = hotel_id
    return headers


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def stores() -> SimpleNamespace:
    return SimpleNamespace(
        agents=InMemoryTravelAgentsRepository(),
        users=InMemoryUsersRepository(),
        rates=InMemoryRateEntriesRepository(),
        bookings=InMemoryAgentBookingsRepository(),
        bulk=InMemoryBulkBookingsRepository(),
    )


@pytest.fixture
def services(stores: SimpleNamespace, clock: FixedClock) -> SimpleNamespace:
    agents = TravelAgentsService(
        repository=stores.agents,
        users_repository=stores.users,
        bookings_repository=stores.bookings,
        counter_lock=KeyedLock(1.0),
        clock=clock,
    )
    rates = RateCatalogService(repository=stores.rates, agents_repository=stores.agents, clock=clock)
    ledger = CommissionLedgerService(repository=stores.bookings, clock=clock)
    bookings = AgentBookingsService(
        repository=stores.bookings,
        agents_service=agents,
        rate_catalog=rates,
        ledger=ledger,
        clock=clock,
    )
    bulk = BulkBookingsService(
        repository=stores.bulk,
        bookings_service=bookings,
        agents_service=agents,
        clock=clock,
    )
    cache = DashboardCache(ttl_seconds=300, sweep_seconds=600, clock=clock)
    dashboard = TravelDashboardService(
        agents_repository=stores.agents,
        bookings_repository=stores.bookings,
        cache=cache,
        clock=clock,
    )
    return SimpleNamespace(
        agents=agents,
        rates=rates,
        ledger=ledger,
        bookings=bookings,
        bulk=bulk,
        cache=cache,
        dashboard=dashboard,
    )


@pytest.fixture
def client(services: SimpleNamespace) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_travel_agents_service] = lambda: services.agents
    app.dependency_overrides[get_rate_catalog_service] = lambda: services.rates
    app.dependency_overrides[get_commission_ledger_service] = lambda: services.ledger
    app.dependency_overrides[get_agent_bookings_service] = lambda: services.bookings
    app.dependency_overrides[get_bulk_bookings_service] = lambda: services.bulk
    app.dependency_overrides[get_travel_dashboard_service] = lambda: services.dashboard
    return TestClient(app)
