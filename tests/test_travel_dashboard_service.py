from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from src.core.deadline import request_deadline
from src.core.errors import AnalyticsUnavailableError
from src.services import travel_dashboard_service
from tests.conftest import HOTEL_ID, NOW, FixedClock, booking_request, make_agent


def test_overview_is_cached_for_five_minutes(
    stores: SimpleNamespace, services: SimpleNamespace, clock: FixedClock
) -> None:
    make_agent(stores)
    services.bookings.create(HOTEL_ID, "agent-1", booking_request())

    first = services.dashboard.overview(HOTEL_ID, "30d")
    assert first.from_cache is False
    assert first.data_source == "bookings"
    assert first.revenue.total_revenue == Decimal("2340.00")
    assert first.overview.revenue_growth == Decimal("100.00")

    clock.advance(minutes=2)
    cached = services.dashboard.overview(HOTEL_ID, "30d")
    assert cached.from_cache is True
    assert cached.cache_age_seconds == 120
    assert cached.generated_at == first.generated_at

    clock.advance(minutes=4)
    fresh = services.dashboard.overview(HOTEL_ID, "30d")
    assert fresh.from_cache is False
    assert fresh.generated_at == clock()


def test_cache_is_keyed_by_period_and_agent(stores: SimpleNamespace, services: SimpleNamespace) -> None:
    make_agent(stores)
    services.dashboard.overview(HOTEL_ID, "30d")

    assert services.dashboard.overview(HOTEL_ID, "7d").from_cache is False
    assert services.dashboard.overview(HOTEL_ID, "30d", agent_id="agent-1").from_cache is False
    assert services.dashboard.overview(HOTEL_ID, "30d").from_cache is True


def test_overview_counts_and_growth(stores: SimpleNamespace, services: SimpleNamespace) -> None:
    make_agent(stores)
    make_agent(
        stores,
        agent_id="agent-2",
        agent_code="TA002",
        user_id="user-2",
        status="pending_approval",
        created_at=NOW - timedelta(days=5),
    )
    booking = services.bookings.create(HOTEL_ID, "agent-1", booking_request("key-1"))
    services.bookings.create(HOTEL_ID, "agent-1", booking_request("key-2"))
    services.bookings.cancel(HOTEL_ID, booking.id)

    overview = services.dashboard.overview(HOTEL_ID, "30d")

    assert overview.overview.total_agents == 2
    assert overview.overview.active_agents == 1
    assert overview.overview.pending_approvals == 1
    assert overview.overview.total_bookings == 2
    assert overview.overview.agent_growth == Decimal("100.00")
    assert overview.revenue.total_revenue == Decimal("2340.00")
    assert overview.commission.total_commission == Decimal("200.00")
    assert overview.commission.cancelled_commission == Decimal("200.00")
    assert overview.commission.commission_rate == Decimal("8.55")
    assert overview.top_performers[0].agent_id == "agent-1"
    assert len(overview.recent_bookings) == 2
    assert not any(row.is_synthetic for row in overview.recent_bookings)
    assert len(overview.monthly_trends) == 12
    assert overview.errors == {}


def test_overview_falls_back_to_agent_counters(stores: SimpleNamespace, services: SimpleNamespace) -> None:
    make_agent(
        stores,
        performance_metrics={
            "total_bookings": 4,
            "total_revenue": Decimal("4000"),
            "total_commission_earned": Decimal("400"),
            "last_booking_date": NOW - timedelta(days=40),
        },
    )

    overview = services.dashboard.overview(HOTEL_ID, "30d")

    assert overview.data_source == "agent_counters"
    assert overview.revenue.total_revenue == Decimal("4000.00")
    assert overview.revenue.average_booking_value == Decimal("1000.00")
    assert overview.commission.commission_rate == Decimal("10.00")
    assert overview.overview.revenue_growth == Decimal("0.00")
    [row] = overview.recent_bookings
    assert row.is_synthetic is True
    assert row.total_amount == Decimal("1000.00")
    assert row.created_at == NOW - timedelta(days=40)


def test_failed_recompute_serves_expired_value(
    stores: SimpleNamespace, services: SimpleNamespace, clock: FixedClock
) -> None:
    make_agent(stores)
    services.bookings.create(HOTEL_ID, "agent-1", booking_request())
    services.dashboard.overview(HOTEL_ID, "30d")
    clock.advance(minutes=6)
    stores.bookings.fail_reads = True

    stale = services.dashboard.overview(HOTEL_ID, "30d")

    assert stale.from_cache is True
    assert stale.cache_age_seconds == 360
    assert stale.revenue.total_revenue == Decimal("2340.00")


def test_failed_recompute_without_previous_value(stores: SimpleNamespace, services: SimpleNamespace) -> None:
    make_agent(stores)
    stores.bookings.fail_reads = True

    with pytest.raises(AnalyticsUnavailableError):
        services.dashboard.overview(HOTEL_ID, "30d")
    with pytest.raises(AnalyticsUnavailableError):
        services.dashboard.analytics(HOTEL_ID, "30d")


def test_slow_recompute_serves_previous_value_and_stores_new_one(
    stores: SimpleNamespace,
    services: SimpleNamespace,
    clock: FixedClock,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    make_agent(stores)
    services.bookings.create(HOTEL_ID, "agent-1", booking_request("key-1"))
    services.dashboard.overview(HOTEL_ID, "30d")
    clock.advance(minutes=6)
    services.bookings.create(HOTEL_ID, "agent-1", booking_request("key-2"))
    readings = [0.0, 100.0]
    monkeypatch.setattr(travel_dashboard_service, "time", SimpleNamespace(monotonic=lambda: readings.pop(0)))

    with request_deadline(10.0):
        served = services.dashboard.overview(HOTEL_ID, "30d")

    assert served.from_cache is True
    assert served.revenue.total_bookings == 1
    refreshed = services.dashboard.overview(HOTEL_ID, "30d")
    assert refreshed.revenue.total_bookings == 2


def test_monthly_trend_failure_is_reported_in_overview(
    stores: SimpleNamespace, services: SimpleNamespace, monkeypatch: pytest.MonkeyPatch
) -> None:
    make_agent(stores)
    services.bookings.create(HOTEL_ID, "agent-1", booking_request())

    def fail(*_: object) -> None:
        raise RuntimeError("trend query failed")

    monkeypatch.setattr(services.dashboard, "_monthly_points", fail)
    overview = services.dashboard.overview(HOTEL_ID, "30d")

    assert overview.monthly_trends == []
    assert "monthly_trends" in overview.errors
    assert overview.revenue.total_revenue == Decimal("2340.00")


def test_degraded_overview_is_not_cached(
    stores: SimpleNamespace, services: SimpleNamespace, clock: FixedClock, monkeypatch: pytest.MonkeyPatch
) -> None:
    make_agent(stores)
    services.bookings.create(HOTEL_ID, "agent-1", booking_request())
    working = services.dashboard._monthly_points
    outcomes = [RuntimeError("trend query failed")]

    def flaky(*args: object) -> object:
        if outcomes:
            raise outcomes.pop()
        return working(*args)

    monkeypatch.setattr(services.dashboard, "_monthly_points", flaky)
    degraded = services.dashboard.overview(HOTEL_ID, "30d")
    clock.advance(minutes=1)
    recovered = services.dashboard.overview(HOTEL_ID, "30d")
    clock.advance(minutes=1)
    cached = services.dashboard.overview(HOTEL_ID, "30d")

    assert "monthly_trends" in degraded.errors
    assert recovered.from_cache is False
    assert recovered.errors == {}
    assert len(recovered.monthly_trends) == 12
    assert cached.from_cache is True
    assert cached.errors == {}


def test_analytics_breakdowns(stores: SimpleNamespace, services: SimpleNamespace) -> None:
    make_agent(stores)
    booking = services.bookings.create(HOTEL_ID, "agent-1", booking_request("key-1"))
    services.bookings.create(HOTEL_ID, "agent-1", booking_request("key-2"))
    services.bookings.cancel(HOTEL_ID, booking.id)

    analytics = services.dashboard.analytics(HOTEL_ID, "30d")

    assert analytics.total_bookings == 2
    assert [(bucket.key, bucket.count) for bucket in analytics.by_booking_status] == [
        ("confirmed", 1),
        ("modified", 0),
        ("completed", 0),
        ("cancelled", 1),
        ("no_show", 0),
    ]
    assert {bucket.key: bucket.count for bucket in analytics.by_seasonality}["low"] == 2
    assert {bucket.key: bucket.count for bucket in analytics.by_lead_time}["8-30"] == 2
    assert {bucket.key: bucket.count for bucket in analytics.by_commission_rate}["10-15"] == 2
    assert analytics.stay_averages.average_nights == Decimal("2.00")


def test_monthly_trends_cover_current_year(stores: SimpleNamespace, services: SimpleNamespace) -> None:
    make_agent(stores)
    services.bookings.create(HOTEL_ID, "agent-1", booking_request())

    trends = services.dashboard.monthly_trends(HOTEL_ID)

    assert trends.year == 2026
    assert [point.month for point in trends.points] == list(range(1, 13))
    assert trends.points[2].bookings == 1
    assert trends.points[2].commission == Decimal("200.00")


def test_cache_sweeps_expired_entries(services: SimpleNamespace, clock: FixedClock) -> None:
    cache = services.cache
    cache.put("overview", "value")

    clock.advance(seconds=301)
    assert cache.get("overview") is None
    assert cache.get_stale("overview") == ("value", 301)
    assert len(cache) == 1

    clock.advance(seconds=300)
    assert cache.get("overview") is None
    assert cache.get_stale("overview") is None
    assert len(cache) == 0
