from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace

from fastapi.testclient import TestClient

from tests.conftest import FixedClock, auth_headers, booking_request, make_agent


def test_overview_reports_cache_state(
    client: TestClient, stores: SimpleNamespace, services: SimpleNamespace, clock: FixedClock
) -> None:
    make_agent(stores)
    services.bookings.create("hotel-1", "agent-1", booking_request())

    first = client.get("/api/v1/admin/travel-dashboard", params={"period": "30d"}, headers=auth_headers())
    assert first.status_code == 200
    body = first.json()
    assert body["meta"]["fromCache"] is False
    assert body["data"]["dataSource"] == "bookings"
    assert Decimal(body["data"]["revenue"]["totalRevenue"]) == Decimal("2340.00")

    clock.advance(minutes=1)
    second = client.get("/api/v1/admin/travel-dashboard", params={"period": "30d"}, headers=auth_headers())
    assert second.json()["meta"]["fromCache"] is True
    assert second.json()["meta"]["cacheAgeSeconds"] == 60


def test_dashboard_is_admin_only(client: TestClient, stores: SimpleNamespace) -> None:
    make_agent(stores)

    response = client.get(
        "/api/v1/admin/travel-dashboard", headers=auth_headers(user_id="user-1", role="travel_agent")
    )

    assert response.status_code == 403


def test_unsupported_period_is_rejected(client: TestClient) -> None:
    response = client.get("/api/v1/admin/travel-dashboard", params={"period": "14d"}, headers=auth_headers())

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "validation_error"


def test_analytics_and_trends(client: TestClient, stores: SimpleNamespace, services: SimpleNamespace) -> None:
    make_agent(stores)
    services.bookings.create("hotel-1", "agent-1", booking_request())

    analytics = client.get("/api/v1/admin/travel-dashboard/analytics", headers=auth_headers())
    assert analytics.status_code == 200
    assert analytics.json()["data"]["totalBookings"] == 1

    trends = client.get("/api/v1/admin/travel-dashboard/monthly-trends", headers=auth_headers())
    assert trends.status_code == 200
    assert len(trends.json()["data"]["points"]) == 12


def test_pending_commissions(client: TestClient, stores: SimpleNamespace, services: SimpleNamespace) -> None:
    make_agent(stores)
    services.bookings.create("hotel-1", "agent-1", booking_request("key-1"))
    services.bookings.create("hotel-1", "agent-1", booking_request("key-2"))

    response = client.get(
        "/api/v1/admin/travel-dashboard/pending-commissions", params={"limit": 1}, headers=auth_headers()
    )

    assert response.status_code == 200
    body = response.json()
    assert len(body["data"]["commissions"]) == 1
    assert body["data"]["summary"]["totalBookings"] == 2
    assert Decimal(body["data"]["summary"]["totalPendingAmount"]) == Decimal("400.00")
    assert body["pagination"]["hasNext"] is True


def test_rate_catalog_endpoints(client: TestClient, stores: SimpleNamespace) -> None:
    make_agent(stores)
    entry = {
        "agentId": "agent-1",
        "roomTypeId": "deluxe",
        "rateType": "discount_percentage",
        "discountPercentage": 20,
        "validFrom": "2026-03-01",
        "validTo": "2026-04-30",
    }

    created = client.post("/api/v1/travel-agent-rates", json=entry, headers=auth_headers())
    assert created.status_code == 201
    assert created.json()["data"]["rateType"] == "discount_percentage"

    overlap = client.post("/api/v1/travel-agent-rates", json=entry, headers=auth_headers())
    assert overlap.status_code == 409

    quote = client.post(
        "/api/v1/travel-agent-rates/resolve",
        json={
            "agentId": "agent-1",
            "roomTypeId": "deluxe",
            "checkIn": "2026-03-20",
            "checkOut": "2026-03-22",
            "baseRate": 1000,
        },
        headers=auth_headers(user_id="user-1", role="travel_agent"),
    )
    assert quote.status_code == 200
    assert Decimal(quote.json()["data"]["perNight"]) == Decimal("800.00")

    rates = client.get("/api/v1/admin/travel-dashboard/rates", headers=auth_headers())
    assert rates.json()["data"]["totalActive"] == 1
