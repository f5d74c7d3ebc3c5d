from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Tuple

from src.core.errors import InvalidStateTransitionError, NotFoundError
from src.models.agent_bookings import COMMISSION_STATUS_TRANSITIONS, AgentBookingRecord, Commission
from src.repositories.agent_bookings_repository import AgentBookingsRepository
from src.schemas.agent_bookings import (
    CommissionBatchResult,
    CommissionSummary,
    CommissionTransitionRejection,
    PendingCommissionsSummary,
)
from src.shared.money import money_sum, safe_divide
from src.shared.response import Pagination, paginate_list
from src.shared.state_machine import ensure_transition
from src.shared.time import utc_now

logger = logging.getLogger(__name__)

PAYABLE_BOOKING_STATUSES = ("confirmed", "completed")


class CommissionLedgerService:
    def __init__(
        self,
        repository: AgentBookingsRepository,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.clock = clock

    def list_pending(
        self,
        hotel_id: str,
        agent_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[AgentBookingRecord], Pagination, PendingCommissionsSummary]:
        records, _ = self.repository.list_bookings(
            hotel_id,
            agent_id=agent_id,
            booking_statuses=PAYABLE_BOOKING_STATUSES,
            commission_statuses=("pending",),
        )
        records.sort(key=lambda record: record.created_at, reverse=True)
        total_pending = money_sum(record.commission.total_commission for record in records)
        summary = PendingCommissionsSummary(
            total_pending_amount=total_pending,
            total_bookings=len(records),
            average_commission=safe_divide(total_pending, len(records)),
        )
        items, pagination = paginate_list(records, page, limit)
        return items, pagination, summary

    def mark_processing(self, hotel_id: str, agent_booking_ids: Iterable[str]) -> CommissionBatchResult:
        processed: List[str] = []
        rejected: List[CommissionTransitionRejection] = []
        for agent_booking_id in dict.fromkeys(agent_booking_ids):
            try:
                self._transition(hotel_id, agent_booking_id, "processing")
            except (NotFoundError, InvalidStateTransitionError) as exc:
                rejected.append(
                    CommissionTransitionRejection(agent_booking_id=agent_booking_id, code=exc.code, reason=exc.message)
                )
                continue
            processed.append(agent_booking_id)
        logger.info(
            "Commission batch for hotel %s: %d processing, %d rejected", hotel_id, len(processed), len(rejected)
        )
        return CommissionBatchResult(processed=processed, rejected=rejected)

    def mark_paid(self, hotel_id: str, agent_booking_id: str, payment_reference: str) -> AgentBookingRecord:
        record = self._transition(hotel_id, agent_booking_id, "paid", payment_reference=payment_reference)
        logger.info("Commission for booking %s paid, reference %s", agent_booking_id, payment_reference)
        return record

    def _transition(
        self,
        hotel_id: str,
        agent_booking_id: str,
        target: str,
        payment_reference: Optional[str] = None,
    ) -> AgentBookingRecord:
        booking = self.repository.get_booking(hotel_id, agent_booking_id)
        if not booking:
            raise NotFoundError("Agent booking not found")
        current = booking.commission.payment_status
        ensure_transition(COMMISSION_STATUS_TRANSITIONS, "commission", current, target)
        changes = {"payment_status": target}
        if target == "paid":
            changes["payment_date"] = self.clock()
            changes["payment_reference"] = payment_reference
        commission = booking.commission.model_copy(update=changes)
        updated = self.repository.update_commission_if_status(
            hotel_id,
            agent_booking_id,
            [current],
            commission.model_dump(mode="json", exclude={"total_commission"}),
        )
        if updated is None:
            latest = self.repository.get_booking(hotel_id, agent_booking_id)
            raise InvalidStateTransitionError(
                "commission", latest.commission.payment_status if latest else current, target
            )
        return updated

    @staticmethod
    def cancelled(commission: Commission) -> Commission:
        """Commission state for a booking that is being cancelled; paid commissions are never reversed."""
        if commission.payment_status == "cancelled":
            return commission
        ensure_transition(COMMISSION_STATUS_TRANSITIONS, "commission", commission.payment_status, "cancelled")
        return commission.model_copy(update={"payment_status": "cancelled"})

    def summary(self, hotel_id: str, agent_id: Optional[str] = None) -> CommissionSummary:
        records, _ = self.repository.list_bookings(hotel_id, agent_id=agent_id)
        by_status = {status: [] for status in COMMISSION_STATUS_TRANSITIONS}
        for record in records:
            by_status[record.commission.payment_status].append(record.commission.total_commission)
        return CommissionSummary(
            pending_amount=money_sum(by_status["pending"]),
            processing_amount=money_sum(by_status["processing"]),
            paid_amount=money_sum(by_status["paid"]),
            pending_count=len(by_status["pending"]),
            processing_count=len(by_status["processing"]),
            paid_count=len(by_status["paid"]),
        )

    def process_batch(self, hotel_id: str, older_than_days: int, apply: bool = False) -> CommissionBatchResult:
        cutoff = self.clock() - timedelta(days=older_than_days)
        records, _ = self.repository.list_bookings(
            hotel_id,
            booking_statuses=PAYABLE_BOOKING_STATUSES,
            commission_statuses=("pending",),
            created_to=cutoff,
        )
        ids = [record.id for record in records]
        if not apply:
            logger.info(
                "Dry run: %d pending commissions older than %d days for hotel %s", len(ids), older_than_days, hotel_id
            )
            return CommissionBatchResult(processed=ids, rejected=[])
        return self.mark_processing(hotel_id, ids)
