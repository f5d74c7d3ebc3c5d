from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel

from src.core.supabase import SupabaseClient


class UserRecord(BaseModel):
    id: str
    role: str
    hotel_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None


class UsersRepository:
    def __init__(self) -> None:
        self.client = SupabaseClient()

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        rows, _ = self.client.select(
            table="users",
            select="id,role,hotel_id,name,email",
            filters=[("id", f"eq.{user_id}")],
            limit=1,
        )
        return UserRecord.model_validate(rows[0]) if rows else None

    def update_travel_agent_details(self, user_id: str, details: Dict[str, Any]) -> None:
        self.client.update(
            table="users",
            payload={"travel_agent_details": details},
            filters=[("id", f"eq.{user_id}")],
        )
