from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from src.core.supabase import SupabaseClient
from src.models.agent_bookings import AgentBookingRecord

MAX_QUERY_ROWS = 5000

AGENT_BOOKING_COLUMNS = (
    "id,booking_id,agent_id,agent_code,hotel_id,confirmation_number,idempotency_key,request_fingerprint,"
    "guest_details,booking_details,pricing,commission,booking_status,payment_details,special_conditions,"
    "performance,notes,bulk_booking_id,revision,is_active,created_at,updated_at"
)

# Derived fields are recomputed on read and never persisted.
DERIVED_FIELDS: Dict[str, Any] = {"profit": True, "commission": {"total_commission"}}


def serialize_booking(record: AgentBookingRecord) -> Dict[str, Any]:
    return record.model_dump(mode="json", exclude=DERIVED_FIELDS)


class AgentBookingsRepository:
    def __init__(self) -> None:
        self.client = SupabaseClient()

    def get_booking(self, hotel_id: str, agent_booking_id: str) -> Optional[AgentBookingRecord]:
        rows, _ = self.client.select(
            table="agent_bookings",
            select=AGENT_BOOKING_COLUMNS,
            filters=[("hotel_id", f"eq.{hotel_id}"), ("id", f"eq.{agent_booking_id}")],
            limit=1,
        )
        return AgentBookingRecord.model_validate(rows[0]) if rows else None

    def get_by_idempotency_key(self, hotel_id: str, idempotency_key: str) -> Optional[AgentBookingRecord]:
        rows, _ = self.client.select(
            table="agent_bookings",
            select=AGENT_BOOKING_COLUMNS,
            filters=[("hotel_id", f"eq.{hotel_id}"), ("idempotency_key", f"eq.{idempotency_key}")],
            limit=1,
        )
        return AgentBookingRecord.model_validate(rows[0]) if rows else None

    def insert_booking(self, record: AgentBookingRecord) -> AgentBookingRecord:
        rows = self.client.insert(table="agent_bookings", payload=serialize_booking(record))
        return AgentBookingRecord.model_validate(rows[0]) if rows else record

    def delete_booking(self, hotel_id: str, agent_booking_id: str) -> None:
        self.client.delete(
            table="agent_bookings",
            filters=[("hotel_id", f"eq.{hotel_id}"), ("id", f"eq.{agent_booking_id}")],
        )

    def replace_booking_if_status(
        self,
        record: AgentBookingRecord,
        expected_status: str,
        expected_revision: int,
    ) -> Optional[AgentBookingRecord]:
        payload = serialize_booking(record)
        payload.pop("id", None)
        rows = self.client.update(
            table="agent_bookings",
            payload=payload,
            filters=[
                ("hotel_id", f"eq.{record.hotel_id}"),
                ("id", f"eq.{record.id}"),
                ("booking_status", f"eq.{expected_status}"),
                ("revision", f"eq.{expected_revision}"),
            ],
        )
        return AgentBookingRecord.model_validate(rows[0]) if rows else None

    def update_commission_if_status(
        self,
        hotel_id: str,
        agent_booking_id: str,
        expected_statuses: Iterable[str],
        commission: Dict[str, Any],
    ) -> Optional[AgentBookingRecord]:
        rows = self.client.update(
            table="agent_bookings",
            payload={"commission": commission, "updated_at": datetime.now(timezone.utc).isoformat()},
            filters=[
                ("hotel_id", f"eq.{hotel_id}"),
                ("id", f"eq.{agent_booking_id}"),
                ("commission->>payment_status", f"in.({','.join(expected_statuses)})"),
            ],
        )
        return AgentBookingRecord.model_validate(rows[0]) if rows else None

    def count_agent_bookings(
        self,
        agent_id: str,
        created_from: Optional[datetime] = None,
        exclude_statuses: Optional[Iterable[str]] = None,
    ) -> int:
        filters: List[Tuple[str, str]] = [("agent_id", f"eq.{agent_id}")]
        if created_from is not None:
            filters.append(("created_at", f"gte.{created_from.isoformat()}"))
        if exclude_statuses:
            filters.append(("booking_status", f"not.in.({','.join(exclude_statuses)})"))
        rows, total = self.client.select(
            table="agent_bookings",
            select="id",
            filters=filters,
            limit=1,
            count=True,
        )
        return total if total is not None else len(rows)

    def list_bookings(
        self,
        hotel_id: str,
        agent_id: Optional[str] = None,
        booking_statuses: Optional[Iterable[str]] = None,
        commission_statuses: Optional[Iterable[str]] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        limit: int = MAX_QUERY_ROWS,
        offset: int = 0,
    ) -> Tuple[List[AgentBookingRecord], int]:
        filters: List[Tuple[str, str]] = [("hotel_id", f"eq.{hotel_id}"), ("is_active", "eq.true")]
        if agent_id:
            filters.append(("agent_id", f"eq.{agent_id}"))
        if booking_statuses:
            filters.append(("booking_status", f"in.({','.join(booking_statuses)})"))
        if commission_statuses:
            filters.append(("commission->>payment_status", f"in.({','.join(commission_statuses)})"))
        if created_from is not None:
            filters.append(("created_at", f"gte.{created_from.isoformat()}"))
        if created_to is not None:
            filters.append(("created_at", f"lt.{created_to.isoformat()}"))
        rows, total = self.client.select(
            table="agent_bookings",
            select=AGENT_BOOKING_COLUMNS,
            filters=filters,
            limit=limit,
            offset=offset,
            order="created_at.desc",
            count=True,
        )
        records = [AgentBookingRecord.model_validate(row) for row in rows]
        return records, total if total is not None else len(records)
