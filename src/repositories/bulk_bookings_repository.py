from __future__ import annotations

from typing import Optional

from src.core.supabase import SupabaseClient
from src.models.agent_bookings import BulkBookingRecord

BULK_BOOKING_COLUMNS = (
    "id,group_reference_id,hotel_id,agent_id,agent_code,group_name,primary_contact,check_in,check_out,"
    "nights,line_items,pricing,payment_method,seasonality,atomic,status,created_agent_bookings,"
    "rolled_back_agent_bookings,failure_reasons,rollback_reason,idempotency_key,notes,created_at,updated_at"
)


class BulkBookingsRepository:
    def __init__(self) -> None:
        self.client = SupabaseClient()

    def get_bulk_booking(self, hotel_id: str, bulk_booking_id: str) -> Optional[BulkBookingRecord]:
        rows, _ = self.client.select(
            table="bulk_bookings",
            select=BULK_BOOKING_COLUMNS,
            filters=[("hotel_id", f"eq.{hotel_id}"), ("id", f"eq.{bulk_booking_id}")],
            limit=1,
        )
        return BulkBookingRecord.model_validate(rows[0]) if rows else None

    def get_by_idempotency_key(self, hotel_id: str, idempotency_key: str) -> Optional[BulkBookingRecord]:
        rows, _ = self.client.select(
            table="bulk_bookings",
            select=BULK_BOOKING_COLUMNS,
            filters=[("hotel_id", f"eq.{hotel_id}"), ("idempotency_key", f"eq.{idempotency_key}")],
            limit=1,
        )
        return BulkBookingRecord.model_validate(rows[0]) if rows else None

    def insert_bulk_booking(self, record: BulkBookingRecord) -> BulkBookingRecord:
        rows = self.client.insert(table="bulk_bookings", payload=record.model_dump(mode="json"))
        return BulkBookingRecord.model_validate(rows[0]) if rows else record

    def replace_bulk_booking_if_status(
        self,
        record: BulkBookingRecord,
        expected_status: str,
    ) -> Optional[BulkBookingRecord]:
        payload = record.model_dump(mode="json")
        payload.pop("id", None)
        rows = self.client.update(
            table="bulk_bookings",
            payload=payload,
            filters=[
                ("hotel_id", f"eq.{record.hotel_id}"),
                ("id", f"eq.{record.id}"),
                ("status", f"eq.{expected_status}"),
            ],
        )
        return BulkBookingRecord.model_validate(rows[0]) if rows else None
