from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from src.core.errors import NotFoundError
from src.core.supabase import SupabaseClient
from src.models.travel_agents import AgentRecord

MAX_QUERY_ROWS = 5000

AGENT_COLUMNS = (
    "id,hotel_id,user_id,agent_code,company_name,contact_person,phone,email,address,business_details,"
    "commission_structure,booking_limits,payment_terms,status,status_reason,performance_metrics,"
    "applied_counter_keys,version,is_active,created_at,updated_at"
)


class TravelAgentsRepository:
    def __init__(self) -> None:
        self.client = SupabaseClient()

    def get_agent(self, hotel_id: str, agent_id: str) -> Optional[AgentRecord]:
        rows, _ = self.client.select(
            table="agents",
            select=AGENT_COLUMNS,
            filters=[("hotel_id", f"eq.{hotel_id}"), ("id", f"eq.{agent_id}"), ("is_active", "eq.true")],
            limit=1,
        )
        return AgentRecord.model_validate(rows[0]) if rows else None

    def get_agent_by_user(self, user_id: str) -> Optional[AgentRecord]:
        rows, _ = self.client.select(
            table="agents",
            select=AGENT_COLUMNS,
            filters=[("user_id", f"eq.{user_id}"), ("is_active", "eq.true")],
            limit=1,
        )
        return AgentRecord.model_validate(rows[0]) if rows else None

    def get_agent_by_code(self, hotel_id: str, agent_code: str) -> Optional[AgentRecord]:
        rows, _ = self.client.select(
            table="agents",
            select=AGENT_COLUMNS,
            filters=[("hotel_id", f"eq.{hotel_id}"), ("agent_code", f"eq.{agent_code}")],
            limit=1,
        )
        return AgentRecord.model_validate(rows[0]) if rows else None

    def list_agent_codes(self, hotel_id: str) -> List[str]:
        rows, _ = self.client.select(
            table="agents",
            select="agent_code",
            filters=[("hotel_id", f"eq.{hotel_id}")],
            limit=MAX_QUERY_ROWS,
        )
        return [str(row.get("agent_code") or "") for row in rows if row.get("agent_code")]

    def insert_agent(self, record: AgentRecord) -> AgentRecord:
        rows = self.client.insert(table="agents", payload=record.model_dump(mode="json"))
        return AgentRecord.model_validate(rows[0]) if rows else record

    def update_agent(self, hotel_id: str, agent_id: str, payload: Dict[str, Any]) -> AgentRecord:
        rows = self.client.update(
            table="agents",
            payload=payload,
            filters=[("hotel_id", f"eq.{hotel_id}"), ("id", f"eq.{agent_id}")],
        )
        if not rows:
            raise NotFoundError("Travel agent not found")
        return AgentRecord.model_validate(rows[0])

    def update_agent_if_version(
        self,
        hotel_id: str,
        agent_id: str,
        expected_version: int,
        payload: Dict[str, Any],
    ) -> Optional[AgentRecord]:
        rows = self.client.update(
            table="agents",
            payload={**payload, "version": expected_version + 1},
            filters=[
                ("hotel_id", f"eq.{hotel_id}"),
                ("id", f"eq.{agent_id}"),
                ("version", f"eq.{expected_version}"),
            ],
        )
        return AgentRecord.model_validate(rows[0]) if rows else None

    def list_agents(
        self,
        hotel_id: str,
        status: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[AgentRecord], int]:
        filters: List[Tuple[str, str]] = [("hotel_id", f"eq.{hotel_id}"), ("is_active", "eq.true")]
        if status:
            filters.append(("status", f"eq.{status}"))
        if search:
            term = self._escape_like(search)
            filters.append(
                (
                    "or",
                    f"(company_name.ilike.*{term}*,contact_person.ilike.*{term}*,"
                    f"agent_code.ilike.*{term}*,email.ilike.*{term}*)",
                )
            )
        rows, total = self.client.select(
            table="agents",
            select=AGENT_COLUMNS,
            filters=filters,
            limit=limit,
            offset=offset,
            order="created_at.desc",
            count=True,
        )
        records = [AgentRecord.model_validate(row) for row in rows]
        return records, total if total is not None else len(records)

    def list_all_agents(self, hotel_id: str) -> List[AgentRecord]:
        rows, _ = self.client.select(
            table="agents",
            select=AGENT_COLUMNS,
            filters=[("hotel_id", f"eq.{hotel_id}"), ("is_active", "eq.true")],
            limit=MAX_QUERY_ROWS,
            order="created_at.desc",
        )
        return [AgentRecord.model_validate(row) for row in rows]

    @staticmethod
    def _escape_like(value: str) -> str:
        return "".join(ch for ch in value.strip() if ch not in ",()*\"")
