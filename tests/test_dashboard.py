"""
Tests for the admin dashboard loader: parallel sections with zeroed
placeholders for the ones that fail.
"""

import asyncio

import httpx

from conftest import bearer
from evcharge.client.dashboard import (
    FINANCE_PLACEHOLDER,
    SUMMARY_PLACEHOLDER,
    load_admin_analytics,
    load_admin_dashboard,
)
from evcharge.main import app


def _asgi_client(**kwargs) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver/api", **kwargs)


def _run(loader, **kwargs):
    async def go():
        async with _asgi_client() as client:
            return await loader(client=client, **kwargs)

    return asyncio.run(go())


class TestDashboard:
    def test_full_load(self, admin_headers, station):
        data = _run(load_admin_dashboard, admin_token=admin_headers["X-Admin-Token"])
        assert data["errors"] == {}
        assert data["summary"]["overview"]["totalStations"] == 1
        assert data["stations"]["stations"][0]["name"] == "Central Charging Hub"
        assert data["finance"]["totalRevenue"] == 0

    def test_without_token_every_section_is_zeroed(self):
        data = _run(load_admin_dashboard)
        assert set(data["errors"]) == {"summary", "stations", "finance"}
        assert data["summary"] == SUMMARY_PLACEHOLDER
        assert data["finance"] == FINANCE_PLACEHOLDER

    def test_non_admin_token_rejected(self, user):
        token = bearer(user, "user")["Authorization"].split()[1]
        data = _run(load_admin_dashboard, admin_token=token)
        assert "summary" in data["errors"]

    def test_single_failing_section(self, admin_headers):
        async def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/finance/summary"):
                return httpx.Response(500, json={"success": False, "error": "boom"})
            return httpx.Response(200, json={"ok": True})

        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://testserver/api") as c:
                return await load_admin_dashboard(client=c, admin_token="t")

        data = asyncio.run(go())
        assert list(data["errors"]) == ["finance"]
        assert data["summary"] == {"ok": True}
        assert data["finance"]["platformFees"] == 0

    def test_placeholders_are_copies(self):
        data = _run(load_admin_dashboard)
        data["summary"]["overview"]["totalStations"] = 99
        assert SUMMARY_PLACEHOLDER["overview"]["totalStations"] == 0


class TestAnalytics:
    def test_full_load(self, admin_headers, booking_factory):
        booking_factory()
        data = _run(load_admin_analytics, admin_token=admin_headers["X-Admin-Token"])
        assert data["errors"] == {}
        assert data["kpis"]["totalBookings"] == 1

    def test_fallbacks(self):
        data = _run(load_admin_analytics)
        assert data["topStations"] == []
        assert data["bookings"]["analytics"]["totalBookings"] == 0
        assert len(data["errors"]) == 5
