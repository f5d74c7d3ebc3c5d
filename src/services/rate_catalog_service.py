from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional

from src.core.errors import BadRequestError, ConflictError, NoApplicableRateError, NotFoundError
from src.models.travel_agents import MAX_COMMISSION_RATE, AgentRecord, RateEntryRecord
from src.repositories.rate_entries_repository import RateEntriesRepository
from src.repositories.travel_agents_repository import TravelAgentsRepository
from src.schemas.rate_entries import RateEntry, RateEntryCreateRequest, RateEntryUpdateRequest, RateResolution
from src.schemas.travel_dashboard import RateDiscountRow, RateTypeBreakdown, RatesOverview
from src.shared.identifiers import new_id
from src.shared.money import ZERO, apply_discount, money_sum, safe_divide, to_money, to_rate
from src.shared.time import days_between, intervals_overlap, stay_midpoint, utc_now

logger = logging.getLogger(__name__)

MAX_BONUS_RATE = Decimal("25")
PAYLOAD_FIELD_BY_TYPE = {
    "special_rate": "special_rate",
    "discount_percentage": "discount_percentage",
    "commission_bonus": "commission_bonus",
}
SEASON_BY_MONTH = {
    1: "low",
    2: "off",
    3: "low",
    4: "high",
    5: "high",
    6: "peak",
    7: "peak",
    8: "peak",
    9: "high",
    10: "high",
    11: "off",
    12: "peak",
}
EXPIRING_WITHIN_DAYS = 30
TOP_DISCOUNTS = 10


def to_rate_entry(record: RateEntryRecord) -> RateEntry:
    return RateEntry.model_validate(record.model_dump())


def infer_seasonality(on_date: date) -> str:
    return SEASON_BY_MONTH[on_date.month]


class RateCatalogService:
    def __init__(
        self,
        repository: RateEntriesRepository,
        agents_repository: TravelAgentsRepository,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.agents_repository = agents_repository
        self.clock = clock

    def create_entry(self, hotel_id: str, request: RateEntryCreateRequest) -> RateEntryRecord:
        if not self.agents_repository.get_agent(hotel_id, request.agent_id):
            raise NotFoundError("Travel agent not found")
        self._ensure_no_overlap(
            hotel_id,
            request.agent_id,
            request.room_type_id,
            request.rate_type,
            request.valid_from,
            request.valid_to,
        )
        now = self.clock()
        payload_field = PAYLOAD_FIELD_BY_TYPE[request.rate_type]
        record = RateEntryRecord(
            id=new_id(),
            hotel_id=hotel_id,
            agent_id=request.agent_id,
            room_type_id=request.room_type_id,
            rate_type=request.rate_type,
            valid_from=request.valid_from,
            valid_to=request.valid_to,
            conditions=request.conditions.model_dump(),
            notes=request.notes,
            created_at=now,
            updated_at=now,
            **{payload_field: to_rate(getattr(request, payload_field))},
        )
        created = self.repository.insert_rate_entry(record)
        logger.info(
            "Created %s rate entry %s for agent %s room type %s",
            created.rate_type,
            created.id,
            created.agent_id,
            created.room_type_id,
        )
        return created

    def get_entry(self, hotel_id: str, entry_id: str) -> RateEntryRecord:
        entry = self.repository.get_rate_entry(hotel_id, entry_id)
        if not entry:
            raise NotFoundError("Rate entry not found")
        return entry

    def list_entries(
        self,
        hotel_id: str,
        agent_id: Optional[str] = None,
        room_type_id: Optional[str] = None,
        rate_type: Optional[str] = None,
        include_inactive: bool = False,
    ) -> List[RateEntryRecord]:
        return self.repository.list_rate_entries(
            hotel_id,
            agent_id=agent_id,
            room_type_id=room_type_id,
            rate_type=rate_type,
            active_only=not include_inactive,
        )

    def update_entry(self, hotel_id: str, entry_id: str, patch: RateEntryUpdateRequest) -> RateEntryRecord:
        entry = self.get_entry(hotel_id, entry_id)
        changes = patch.model_dump(exclude_unset=True)
        foreign = [
            field
            for field in PAYLOAD_FIELD_BY_TYPE.values()
            if field in changes and field != PAYLOAD_FIELD_BY_TYPE[entry.rate_type]
        ]
        if foreign:
            raise BadRequestError(
                f"A {entry.rate_type} entry only carries {PAYLOAD_FIELD_BY_TYPE[entry.rate_type]}",
                details={"fields": foreign},
            )
        own_field = PAYLOAD_FIELD_BY_TYPE[entry.rate_type]
        if own_field in changes and changes[own_field] is None:
            raise BadRequestError(f"{own_field} is required for a {entry.rate_type} entry")

        valid_from = changes.get("valid_from") or entry.valid_from
        valid_to = changes.get("valid_to") or entry.valid_to
        if valid_to <= valid_from:
            raise BadRequestError("validTo must be after validFrom")
        is_active = changes.get("is_active", entry.is_active)
        window_changed = valid_from != entry.valid_from or valid_to != entry.valid_to
        if is_active and (window_changed or not entry.is_active):
            self._ensure_no_overlap(
                hotel_id,
                entry.agent_id,
                entry.room_type_id,
                entry.rate_type,
                valid_from,
                valid_to,
                exclude_id=entry.id,
            )

        payload = patch.model_dump(mode="json", include=set(changes))
        payload["updated_at"] = self.clock().isoformat()
        updated = self.repository.update_rate_entry(hotel_id, entry_id, payload)
        logger.info("Updated rate entry %s fields=%s", entry_id, sorted(changes))
        return updated

    def deactivate_entry(self, hotel_id: str, entry_id: str) -> RateEntryRecord:
        self.get_entry(hotel_id, entry_id)
        updated = self.repository.update_rate_entry(
            hotel_id, entry_id, {"is_active": False, "updated_at": self.clock().isoformat()}
        )
        logger.info("Deactivated rate entry %s", entry_id)
        return updated

    def _ensure_no_overlap(
        self,
        hotel_id: str,
        agent_id: str,
        room_type_id: str,
        rate_type: str,
        valid_from: date,
        valid_to: date,
        exclude_id: Optional[str] = None,
    ) -> None:
        clashes = [
            entry
            for entry in self.repository.list_overlapping(hotel_id, agent_id, room_type_id, valid_from, valid_to)
            if entry.rate_type == rate_type
            and entry.id != exclude_id
            and intervals_overlap(entry.valid_from, entry.valid_to, valid_from, valid_to)
        ]
        if clashes:
            raise ConflictError(
                "An active rate entry already covers part of this validity window",
                details={"conflictingEntryIds": [entry.id for entry in clashes]},
            )

    def resolve(
        self,
        agent: AgentRecord,
        room_type_id: str,
        check_in: date,
        check_out: date,
        base_rate: Decimal,
        require_special_rate: bool = False,
    ) -> RateResolution:
        nights = days_between(check_in, check_out)
        advance_days = days_between(self.clock(), check_in)
        candidates = [
            entry
            for entry in self.repository.list_overlapping(agent.hotel_id, agent.id, room_type_id, check_in, check_out)
            if entry.conditions.min_nights <= nights <= entry.conditions.max_nights
            and entry.conditions.advance_booking_days <= advance_days
        ]
        special = self._pick(entry for entry in candidates if entry.rate_type == "special_rate")
        discount = self._pick(entry for entry in candidates if entry.rate_type == "discount_percentage")
        bonus_entry = self._pick(entry for entry in candidates if entry.rate_type == "commission_bonus")

        if require_special_rate and special is None:
            raise NoApplicableRateError(room_type_id)

        applied: List[str] = []
        base = to_money(base_rate)
        if special is not None:
            per_night = to_money(special.special_rate)
            applied.append(special.id)
        elif discount is not None:
            per_night = apply_discount(base, discount.discount_percentage)
            applied.append(discount.id)
        else:
            per_night = base

        midpoint = stay_midpoint(check_in, check_out)
        commission_rate = agent.room_type_rate(room_type_id)
        if commission_rate is None:
            commission_rate = agent.commission_structure.default_rate
        seasonal = agent.seasonal_override(midpoint)
        if seasonal is not None:
            commission_rate = seasonal.rate
        commission_rate = to_rate(commission_rate)

        bonus_rate = ZERO
        if bonus_entry is not None:
            headroom = MAX_COMMISSION_RATE - commission_rate
            bonus_rate = to_rate(max(ZERO, min(bonus_entry.commission_bonus, headroom, MAX_BONUS_RATE)))
            applied.append(bonus_entry.id)

        return RateResolution(
            room_type_id=room_type_id,
            per_night=per_night,
            base_rate=base,
            special_rate=per_night if special is not None else None,
            discount_percentage=(
                to_rate(discount.discount_percentage) if discount is not None and special is None else None
            ),
            commission_rate=commission_rate,
            bonus_rate=bonus_rate,
            seasonality=(seasonal.season if seasonal and seasonal.season else infer_seasonality(midpoint)),
            applied_rate_entry_ids=applied,
        )

    @staticmethod
    def _pick(entries: Iterable[RateEntryRecord]) -> Optional[RateEntryRecord]:
        ordered = sorted(entries, key=lambda entry: (entry.window_days, -entry.updated_at.timestamp()))
        return ordered[0] if ordered else None

    def rates_overview(self, hotel_id: str) -> RatesOverview:
        today = self.clock().date()
        entries = self.repository.list_rate_entries(hotel_id, active_only=True)
        valid_now = [entry for entry in entries if entry.valid_from <= today <= entry.valid_to]
        expiring = [
            entry for entry in valid_now if entry.valid_to <= today + timedelta(days=EXPIRING_WITHIN_DAYS)
        ]

        by_type: Dict[str, List[RateEntryRecord]] = defaultdict(list)
        for entry in entries:
            by_type[entry.rate_type].append(entry)
        breakdown = [
            RateTypeBreakdown(
                rate_type=rate_type,
                count=len(items),
                average_discount=safe_divide(
                    money_sum(item.discount_percentage for item in items), len(items)
                )
                if rate_type == "discount_percentage"
                else None,
            )
            for rate_type, items in sorted(by_type.items())
        ]
        top_discounts = sorted(
            (entry for entry in entries if entry.rate_type == "discount_percentage"),
            key=lambda entry: entry.discount_percentage or ZERO,
            reverse=True,
        )[:TOP_DISCOUNTS]
        return RatesOverview(
            total_active=len(entries),
            currently_valid=len(valid_now),
            expiring_soon=len(expiring),
            by_rate_type=breakdown,
            top_discounts=[
                RateDiscountRow(
                    id=entry.id,
                    agent_id=entry.agent_id,
                    room_type_id=entry.room_type_id,
                    discount_percentage=to_rate(entry.discount_percentage),
                    valid_from=entry.valid_from,
                    valid_to=entry.valid_to,
                )
                for entry in top_discounts
            ],
        )
