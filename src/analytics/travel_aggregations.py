from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from src.models.agent_bookings import REVERSED_BOOKING_STATUSES, AgentBookingRecord
from src.models.travel_agents import AgentRecord
from src.schemas.travel_dashboard import (
    BreakdownBucket,
    CommissionTotals,
    MonthlyTrendPoint,
    RecentBooking,
    RevenueTotals,
    StayAverages,
    TopPerformer,
)
from src.shared.money import HUNDRED, ZERO, money_sum, safe_divide, to_money

LEAD_TIME_BUCKETS: Tuple[Tuple[str, int], ...] = (("0-7", 7), ("8-30", 30), ("31-90", 90))
LEAD_TIME_OVERFLOW = "90+"
COMMISSION_RATE_BUCKETS: Tuple[Tuple[str, Decimal], ...] = (
    ("<5", Decimal("5")),
    ("5-10", Decimal("10")),
    ("10-15", Decimal("15")),
)
COMMISSION_RATE_OVERFLOW = "15+"


def lead_time_bucket(days: int) -> str:
    for label, upper in LEAD_TIME_BUCKETS:
        if days <= upper:
            return label
    return LEAD_TIME_OVERFLOW


def commission_rate_bucket(rate: Decimal) -> str:
    for label, upper in COMMISSION_RATE_BUCKETS:
        if rate < upper:
            return label
    return COMMISSION_RATE_OVERFLOW


def breakdown(
    bookings: Iterable[AgentBookingRecord],
    key: Callable[[AgentBookingRecord], Optional[str]],
    order: Sequence[str] = (),
) -> List[BreakdownBucket]:
    """Group bookings by ``key``; labels in ``order`` always appear, others follow alphabetically."""
    grouped: Dict[str, List[AgentBookingRecord]] = defaultdict(list)
    for booking in bookings:
        grouped[key(booking) or "unspecified"].append(booking)
    labels = list(order) + sorted(label for label in grouped if label not in order)
    return [
        BreakdownBucket(
            key=label,
            count=len(grouped[label]),
            revenue=money_sum(booking.pricing.total_amount for booking in grouped[label]),
            commission=money_sum(booking.commission.total_commission for booking in grouped[label]),
        )
        for label in labels
    ]


def stay_averages(bookings: Sequence[AgentBookingRecord]) -> StayAverages:
    count = len(bookings)
    return StayAverages(
        average_nights=safe_divide(Decimal(sum(booking.booking_details.nights for booking in bookings)), count),
        average_rooms=safe_divide(Decimal(sum(booking.guest_details.total_rooms for booking in bookings)), count),
        average_guests=safe_divide(Decimal(sum(booking.guest_details.total_guests for booking in bookings)), count),
    )


def monthly_points(bookings: Iterable[AgentBookingRecord]) -> List[MonthlyTrendPoint]:
    buckets: Dict[int, List[AgentBookingRecord]] = defaultdict(list)
    for booking in bookings:
        buckets[booking.created_at.month].append(booking)
    return [
        MonthlyTrendPoint(
            month=month,
            bookings=len(buckets[month]),
            revenue=money_sum(booking.pricing.total_amount for booking in buckets[month]),
            commission=money_sum(booking.commission.total_commission for booking in buckets[month]),
        )
        for month in range(1, 13)
    ]


def growth_percent(current: Decimal, previous: Decimal) -> Decimal:
    if previous == 0:
        return to_money(HUNDRED) if current > 0 else ZERO
    return to_money((Decimal(current) - Decimal(previous)) * HUNDRED / Decimal(previous))


def realized(bookings: Iterable[AgentBookingRecord]) -> List[AgentBookingRecord]:
    return [booking for booking in bookings if booking.booking_status not in REVERSED_BOOKING_STATUSES]


def revenue_totals(bookings: Sequence[AgentBookingRecord]) -> RevenueTotals:
    kept = realized(bookings)
    total_revenue = money_sum(booking.pricing.total_amount for booking in kept)
    return RevenueTotals(
        total_revenue=total_revenue,
        average_booking_value=safe_divide(total_revenue, len(kept)),
        total_bookings=len(bookings),
    )


def commission_totals(bookings: Iterable[AgentBookingRecord], total_revenue: Decimal) -> CommissionTotals:
    by_status: Dict[str, List[Decimal]] = defaultdict(list)
    for booking in bookings:
        by_status[booking.commission.payment_status].append(booking.commission.total_commission)
    earned = money_sum(by_status["pending"] + by_status["processing"] + by_status["paid"])
    return CommissionTotals(
        total_commission=earned,
        pending_commission=money_sum(by_status["pending"]),
        processing_commission=money_sum(by_status["processing"]),
        paid_commission=money_sum(by_status["paid"]),
        cancelled_commission=money_sum(by_status["cancelled"]),
        commission_rate=safe_divide(earned * HUNDRED, total_revenue),
    )


def counter_revenue_totals(agents: Sequence[AgentRecord]) -> RevenueTotals:
    total_bookings = sum(agent.performance_metrics.total_bookings for agent in agents)
    total_revenue = money_sum(agent.performance_metrics.total_revenue for agent in agents)
    return RevenueTotals(
        total_revenue=total_revenue,
        average_booking_value=safe_divide(total_revenue, total_bookings),
        total_bookings=total_bookings,
    )


def counter_commission_totals(agents: Sequence[AgentRecord], total_revenue: Decimal) -> CommissionTotals:
    earned = money_sum(agent.performance_metrics.total_commission_earned for agent in agents)
    # Counters carry no payout split.
    return CommissionTotals(
        total_commission=earned,
        pending_commission=ZERO,
        processing_commission=ZERO,
        paid_commission=ZERO,
        cancelled_commission=ZERO,
        commission_rate=safe_divide(earned * HUNDRED, total_revenue),
    )


def top_performers(agents: Iterable[AgentRecord], limit: int) -> List[TopPerformer]:
    ranked = sorted(agents, key=lambda agent: agent.performance_metrics.total_revenue, reverse=True)[:limit]
    return [
        TopPerformer(
            agent_id=agent.id,
            agent_code=agent.agent_code,
            company_name=agent.company_name,
            total_bookings=agent.performance_metrics.total_bookings,
            total_revenue=to_money(agent.performance_metrics.total_revenue),
            total_commission=to_money(agent.performance_metrics.total_commission_earned),
        )
        for agent in ranked
    ]


def recent_bookings(
    bookings: Sequence[AgentBookingRecord],
    agents_by_id: Dict[str, AgentRecord],
    limit: int,
) -> List[RecentBooking]:
    latest = sorted(bookings, key=lambda booking: booking.created_at, reverse=True)[:limit]
    rows = []
    for booking in latest:
        agent = agents_by_id.get(booking.agent_id)
        rows.append(
            RecentBooking(
                id=booking.id,
                agent_id=booking.agent_id,
                agent_code=booking.agent_code,
                company_name=agent.company_name if agent else None,
                confirmation_number=booking.confirmation_number,
                booking_status=booking.booking_status,
                guest_name=booking.guest_details.primary_guest.name,
                total_amount=booking.pricing.total_amount,
                total_commission=booking.commission.total_commission,
                created_at=booking.created_at,
            )
        )
    return rows


def synthetic_recent_bookings(agents: Iterable[AgentRecord], limit: int, now: datetime) -> List[RecentBooking]:
    """One placeholder row per top agent, priced at the agent's counter averages."""
    with_bookings = [agent for agent in agents if agent.performance_metrics.total_bookings > 0]
    ranked = sorted(with_bookings, key=lambda agent: agent.performance_metrics.total_revenue, reverse=True)[:limit]
    rows = []
    for index, agent in enumerate(ranked):
        metrics = agent.performance_metrics
        rows.append(
            RecentBooking(
                id=f"synthetic-{agent.id}",
                agent_id=agent.id,
                agent_code=agent.agent_code,
                company_name=agent.company_name,
                confirmation_number=f"{agent.agent_code}-SYN{index + 1:02d}",
                booking_status="confirmed",
                total_amount=safe_divide(metrics.total_revenue, metrics.total_bookings),
                total_commission=safe_divide(metrics.total_commission_earned, metrics.total_bookings),
                created_at=metrics.last_booking_date or now - timedelta(days=index),
                is_synthetic=True,
            )
        )
    return rows
