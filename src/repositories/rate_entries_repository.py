from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from src.core.errors import NotFoundError
from src.core.supabase import SupabaseClient
from src.models.travel_agents import RateEntryRecord

MAX_QUERY_ROWS = 5000

RATE_ENTRY_COLUMNS = (
    "id,hotel_id,agent_id,room_type_id,rate_type,special_rate,discount_percentage,commission_bonus,"
    "valid_from,valid_to,conditions,notes,is_active,created_at,updated_at"
)


class RateEntriesRepository:
    def __init__(self) -> None:
        self.client = SupabaseClient()

    def get_rate_entry(self, hotel_id: str, entry_id: str) -> Optional[RateEntryRecord]:
        rows, _ = self.client.select(
            table="rate_entries",
            select=RATE_ENTRY_COLUMNS,
            filters=[("hotel_id", f"eq.{hotel_id}"), ("id", f"eq.{entry_id}")],
            limit=1,
        )
        return RateEntryRecord.model_validate(rows[0]) if rows else None

    def list_rate_entries(
        self,
        hotel_id: str,
        agent_id: Optional[str] = None,
        room_type_id: Optional[str] = None,
        rate_type: Optional[str] = None,
        active_only: bool = True,
    ) -> List[RateEntryRecord]:
        filters: List[Tuple[str, str]] = [("hotel_id", f"eq.{hotel_id}")]
        if agent_id:
            filters.append(("agent_id", f"eq.{agent_id}"))
        if room_type_id:
            filters.append(("room_type_id", f"eq.{room_type_id}"))
        if rate_type:
            filters.append(("rate_type", f"eq.{rate_type}"))
        if active_only:
            filters.append(("is_active", "eq.true"))
        rows, _ = self.client.select(
            table="rate_entries",
            select=RATE_ENTRY_COLUMNS,
            filters=filters,
            limit=MAX_QUERY_ROWS,
            order="valid_from.asc",
        )
        return [RateEntryRecord.model_validate(row) for row in rows]

    def list_overlapping(
        self,
        hotel_id: str,
        agent_id: str,
        room_type_id: str,
        start: date,
        end: date,
    ) -> List[RateEntryRecord]:
        rows, _ = self.client.select(
            table="rate_entries",
            select=RATE_ENTRY_COLUMNS,
            filters=[
                ("hotel_id", f"eq.{hotel_id}"),
                ("agent_id", f"eq.{agent_id}"),
                ("room_type_id", f"eq.{room_type_id}"),
                ("is_active", "eq.true"),
                ("valid_from", f"lte.{end.isoformat()}"),
                ("valid_to", f"gte.{start.isoformat()}"),
            ],
            limit=MAX_QUERY_ROWS,
            order="valid_from.asc",
        )
        return [RateEntryRecord.model_validate(row) for row in rows]

    def insert_rate_entry(self, record: RateEntryRecord) -> RateEntryRecord:
        rows = self.client.insert(table="rate_entries", payload=record.model_dump(mode="json"))
        return RateEntryRecord.model_validate(rows[0]) if rows else record

    def update_rate_entry(self, hotel_id: str, entry_id: str, payload: Dict[str, Any]) -> RateEntryRecord:
        rows = self.client.update(
            table="rate_entries",
            payload=payload,
            filters=[("hotel_id", f"eq.{hotel_id}"), ("id", f"eq.{entry_id}")],
        )
        if not rows:
            raise NotFoundError("Rate entry not found")
        return RateEntryRecord.model_validate(rows[0])
