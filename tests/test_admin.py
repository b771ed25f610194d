"""
Integration tests for the admin portal API.

Tests:
- dashboard counts and revenue from the real split
- finance summary, live and materialized
- station moderation (approve / reject / feature / bulk update)
- account management (role change, ban / unban)
- booking refunds, settings and audit log
"""

import pytest

from evcharge.services import finance, stations
from evcharge.services import payments as payment_svc


@pytest.fixture
def paid_booking(client, booking_factory, user_headers):
    booking = booking_factory(hours=2)["booking"]
    checkout = client.post("/api/payments/checkout", json={"bookingId": booking["id"]}, headers=user_headers).json()
    client.post(
        f"/api/payments/confirm/{checkout['paymentId']}",
        json={"cardNumber": payment_svc.TEST_CARDS["success"]},
        headers=user_headers,
    )
    return booking


class TestGuards:
    def test_requires_admin(self, client, user_headers, owner_headers):
        assert client.get("/api/admin/summary").status_code == 401
        assert client.get("/api/admin/summary", headers=user_headers).status_code == 403
        assert client.get("/api/admin/summary", headers=owner_headers).status_code == 403


class TestDashboard:
    """Tests for dashboard and analytics endpoints."""

    def test_summary_uses_split(self, client, paid_booking, admin_headers):
        data = client.get("/api/admin/summary", headers=admin_headers).json()
        assert data["overview"]["totalStations"] == 1
        assert data["overview"]["totalUsers"] == 1
        assert data["revenue"]["totalRevenue"] == 600.0
        assert data["revenue"]["platformProfit"] == 60.0
        assert data["revenue"]["ownerPayouts"] == 540.0
        assert data["revenue"]["profitMargin"] == 10.0

    def test_empty_dashboard(self, client, admin_headers):
        data = client.get("/api/admin/dashboard", headers=admin_headers).json()
        assert data["revenue"]["totalRevenue"] == 0
        assert data["revenue"]["profitMargin"] == 0

    def test_kpis(self, client, paid_booking, admin_headers):
        data = client.get("/api/admin/analytics/kpis", headers=admin_headers).json()
        assert data["revenueAllTime"] == 600.0
        assert data["revenue30d"] == 600.0
        assert data["totalBookings"] == 1

    def test_financial_range(self, client, paid_booking, admin_headers):
        data = client.get("/api/admin/analytics/financial", params={"period": "7d"}, headers=admin_headers).json()
        assert data["summary"]["paidCount"] == 1
        assert data["summary"]["averageBookingValue"] == 600.0

    def test_booking_analytics(self, client, paid_booking, admin_headers):
        data = client.get("/api/admin/analytics/bookings", headers=admin_headers).json()["analytics"]
        assert data["totalBookings"] == 1
        assert data["statusBreakdown"] == {"confirmed": 1}
        assert sum(data["patterns"]["hourly"]) == 1

    def test_top_stations(self, client, paid_booking, admin_headers):
        rows = client.get("/api/admin/analytics/top-stations", headers=admin_headers).json()
        assert rows[0]["bookings"] == 1
        assert rows[0]["revenue"] == 600.0

    def test_user_trends(self, client, user, admin_headers):
        rows = client.get("/api/admin/analytics/users", headers=admin_headers).json()
        assert sum(r["users"] for r in rows) == 1


class TestFinance:
    """Tests for /api/admin/finance/*."""

    def test_live_summary(self, client, paid_booking, admin_headers):
        data = client.get("/api/admin/finance/summary", headers=admin_headers).json()
        assert data["totalRevenue"] == 600.0
        assert data["platformFees"] == 60.0
        assert data["transactions"] == 1

    def test_materialized_summary(self, client, paid_booking, admin_headers):
        finance.materialize_finance_snapshot()
        data = client.get("/api/admin/finance/summary", params={"materialized": True}, headers=admin_headers).json()
        assert data["totalRevenue"] == 600.0
        assert "timestamp" in data

    def test_transactions_filter(self, client, paid_booking, admin_headers):
        data = client.get("/api/admin/finance/transactions", params={"type": "payment"}, headers=admin_headers).json()
        assert data["pagination"]["total"] == 1


class TestStationModeration:
    """Tests for admin station routes."""

    def test_approve_pending(self, client, owner, admin_headers, db):
        pending = stations.create_station({"name": "Waiting", "location": {"lat": 1, "lng": 1}}, str(owner["_id"]))
        assert pending["status"] == "pending"
        data = client.post(f"/api/admin/stations/{pending['_id']}/approve", headers=admin_headers).json()
        assert data["station"]["status"] == "active"
        assert db.notifications.find_one({"user_id": str(owner["_id"])})["title"] == "Station approved"
        assert db.admin_logs.find_one({"action": "APPROVE_STATION"})

    def test_reject_with_reason(self, client, station, admin_headers):
        data = client.post(f"/api/admin/stations/{station['_id']}/reject", json={"reason": "Missing permits"}, headers=admin_headers).json()
        assert data["station"]["status"] == "rejected"

    def test_feature_toggle(self, client, station, admin_headers):
        assert client.patch(f"/api/admin/stations/{station['_id']}/feature", headers=admin_headers).json()["featured"] is True
        assert client.patch(f"/api/admin/bunks/{station['_id']}/feature", headers=admin_headers).json()["featured"] is False

    def test_bunks_aliases(self, client, owner, station, admin_headers):
        pending = stations.create_station({"name": "Waiting", "location": {"lat": 1, "lng": 1}}, str(owner["_id"]))
        approved = client.post(f"/api/admin/bunks/{pending['_id']}/approve", headers=admin_headers)
        assert approved.json()["station"]["status"] == "active"
        rejected = client.post(f"/api/admin/bunks/{station['_id']}/reject", json={"reason": "Duplicate"}, headers=admin_headers)
        assert rejected.json()["station"]["status"] == "rejected"
        renamed = client.patch(f"/api/admin/bunks/{station['_id']}", json={"name": "Renamed Hub"}, headers=admin_headers)
        assert renamed.status_code == 200
        assert renamed.json()["station"]["name"] == "Renamed Hub"

    def test_create_requires_location(self, client, admin_headers):
        resp = client.post("/api/admin/stations", json={"name": "No coords"}, headers=admin_headers)
        assert resp.status_code == 400

    def test_create_is_active(self, client, admin_headers):
        resp = client.post("/api/admin/stations", json={"name": "Admin Hub", "location": {"lat": 10, "lng": 76}}, headers=admin_headers)
        assert resp.status_code == 201
        assert resp.json()["station"]["status"] == "active"

    def test_list_includes_pending(self, client, owner, station, admin_headers):
        stations.create_station({"name": "Waiting", "location": {"lat": 1, "lng": 1}}, str(owner["_id"]))
        data = client.get("/api/admin/stations", headers=admin_headers).json()
        assert data["pagination"]["total"] == 2
        only_pending = client.get("/api/admin/bunks", params={"status": "pending"}, headers=admin_headers).json()
        assert [s["name"] for s in only_pending["stations"]] == ["Waiting"]

    def test_bulk_update(self, client, station, admin_headers, db):
        resp = client.post(
            "/api/admin/stations/bulk-update",
            json={"stationIds": [str(station["_id"])], "updates": {"status": "inactive"}},
            headers=admin_headers,
        ).json()
        assert resp["modified"] == 1
        assert db.stations.find_one({"_id": station["_id"]})["status"] == "inactive"

    def test_permanent_delete(self, client, station, admin_headers, db):
        client.delete(f"/api/admin/stations/{station['_id']}", params={"permanent": True}, headers=admin_headers)
        assert db.stations.count_documents({}) == 0


class TestAccounts:
    """Tests for admin user management."""

    def test_list_users_by_role(self, client, user, owner, admin_headers):
        owners = client.get("/api/admin/users", params={"role": "owner"}, headers=admin_headers).json()
        assert [u["email"] for u in owners["users"]] == ["owner@example.com"]
        assert owners["users"][0]["role"] == "owner"

    def test_change_role_moves_account(self, client, user, admin_headers, db):
        resp = client.patch(f"/api/admin/users/{user['_id']}/role", json={"role": "owner"}, headers=admin_headers)
        assert resp.json()["user"]["role"] == "owner"
        assert db.users.count_documents({}) == 0
        moved = db.owners.find_one({"_id": user["_id"]})
        assert moved["earnings"]["pending_payout"] == 0.0

    def test_cannot_change_own_role(self, client, admin, admin_headers):
        resp = client.patch(f"/api/admin/users/{admin['_id']}/role", json={"role": "user"}, headers=admin_headers)
        assert resp.status_code == 400

    def test_ban_blocks_access(self, client, user, user_headers, admin_headers):
        client.post(f"/api/admin/users/{user['_id']}/ban", json={"reason": "Fraud"}, headers=admin_headers)
        assert client.get("/api/users/me", headers=user_headers).status_code == 403
        client.post(f"/api/admin/users/{user['_id']}/unban", headers=admin_headers)
        assert client.get("/api/users/me", headers=user_headers).status_code == 200

    def test_admin_cannot_be_banned(self, client, admin, admin_headers):
        assert client.post(f"/api/admin/users/{admin['_id']}/ban", headers=admin_headers).status_code == 400

    def test_unknown_user(self, client, admin_headers):
        assert client.get("/api/admin/users/000000000000000000000000", headers=admin_headers).status_code == 404


class TestBookingsAndSettings:
    """Tests for refunds, settings and logs."""

    def test_refund_route(self, client, paid_booking, admin_headers, db):
        data = client.post(f"/api/admin/bookings/{paid_booking['id']}/refund", json={"reason": "Outage"}, headers=admin_headers).json()
        assert data["booking"]["status"] == "refunded"
        assert data["refund"]["total_amount"] == 600.0
        summary = client.get("/api/admin/finance/summary", headers=admin_headers).json()
        assert summary["refunds"] == 600.0
        assert summary["platformFees"] == 0.0

    def test_refund_unpaid_conflicts(self, client, booking_factory, admin_headers):
        booking = booking_factory()["booking"]
        assert client.post(f"/api/admin/bookings/{booking['id']}/refund", headers=admin_headers).status_code == 409

    def test_admin_booking_status(self, client, booking_factory, admin_headers):
        booking = booking_factory()["booking"]
        resp = client.patch(f"/api/admin/bookings/{booking['id']}", json={"status": "completed"}, headers=admin_headers)
        assert resp.json()["booking"]["status"] == "completed"
        bad = client.patch(f"/api/admin/bookings/{booking['id']}", json={"status": "refunded"}, headers=admin_headers)
        assert bad.status_code == 400

    def test_settings_change_fee(self, client, admin_headers):
        data = client.patch("/api/admin/settings", json={"platformFeePercent": 15}, headers=admin_headers).json()
        assert data["settings"]["platformFeePercent"] == 15
        assert payment_svc.split_amount(100.0)["platform_fee"] == 15.0

    def test_settings_fee_bounds(self, client, admin_headers):
        assert client.patch("/api/admin/settings", json={"platformFeePercent": 80}, headers=admin_headers).status_code == 400

    def test_logs(self, client, station, admin_headers):
        client.patch(f"/api/admin/stations/{station['_id']}/feature", headers=admin_headers)
        logs = client.get("/api/admin/logs", params={"action": "FEATURE_STATION"}, headers=admin_headers).json()
        assert logs["pagination"]["total"] == 1

    def test_health(self, client, admin_headers):
        data = client.get("/api/admin/health", headers=admin_headers).json()
        assert data["pendingPayouts"] == 0
