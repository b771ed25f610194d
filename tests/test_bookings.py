"""
Tests for booking creation, access control and expiry.

Tests:
- duration must be 1–8 hours
- capacity check over overlapping holding bookings
- cost estimate from the station tariff
- cancellation rules and unpaid booking expiry
"""

from datetime import timedelta

import pytest
from conftest import bearer, future_start

from evcharge.database.database import utcnow
from evcharge.services import accounts
from evcharge.services import bookings as svc


class TestWindow:
    """Tests for resolve_window."""

    def test_duration_from_minutes(self):
        start, end, minutes = svc.resolve_window("2030-01-01T10:00:00Z", None, 90)
        assert minutes == 90
        assert end - start == timedelta(minutes=90)
        assert start.tzinfo is None

    def test_explicit_end(self):
        _, _, minutes = svc.resolve_window("2030-01-01T10:00:00", "2030-01-01T12:00:00", None)
        assert minutes == 120

    @pytest.mark.parametrize("minutes", [30, 59, 481, 600])
    def test_out_of_range(self, minutes):
        with pytest.raises(svc.BookingError) as exc:
            svc.resolve_window("2030-01-01T10:00:00", None, minutes)
        assert exc.value.message == "Duration must be 1–8 hours"

    def test_missing_start(self):
        with pytest.raises(svc.BookingError) as exc:
            svc.resolve_window(None, None, 60)
        assert exc.value.field == "startTime"

    def test_epoch_milliseconds(self):
        assert svc.parse_datetime(0).year == 1970

    def test_estimate_cost(self):
        assert svc.estimate_cost(120, 10.0) == (60.0, 600.0)


class TestCreateBooking:
    """Tests for POST /api/bookings."""

    def test_creates_pending_payment(self, booking_factory, station):
        data = booking_factory(hours=2)
        booking = data["booking"]
        assert booking["status"] == "pending_payment"
        assert booking["paymentStatus"] == "pending"
        assert booking["stationId"] == str(station["_id"])
        assert booking["totalAmount"] == 600.0
        assert data["paymentRequired"] is True
        assert data["paymentUrl"] == f"/payment?bookingId={booking['id']}"

    def test_booking_notifies_user(self, client, booking_factory, user_headers):
        booking_factory()
        data = client.get("/api/notifications", headers=user_headers).json()
        assert data["unreadCount"] == 1
        assert data["notifications"][0]["type"] == "booking"

    def test_duration_validation_message(self, client, user_headers, station):
        resp = client.post(
            "/api/bookings",
            json={"stationId": str(station["_id"]), "startTime": future_start(), "durationMins": 540},
            headers=user_headers,
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "Duration must be 1–8 hours"
        assert resp.json()["field"] == "durationMins"

    def test_owner_cannot_book(self, client, owner_headers, station):
        resp = client.post(
            "/api/bookings",
            json={"stationId": str(station["_id"]), "startTime": future_start(), "durationMins": 60},
            headers=owner_headers,
        )
        assert resp.status_code == 403

    def test_unknown_station(self, client, user_headers):
        resp = client.post(
            "/api/bookings",
            json={"stationId": "000000000000000000000000", "startTime": future_start(), "durationMins": 60},
            headers=user_headers,
        )
        assert resp.status_code == 404

    def test_pending_station_not_bookable(self, client, user_headers, station, db):
        db.stations.update_one({"_id": station["_id"]}, {"$set": {"status": "pending"}})
        resp = client.post(
            "/api/bookings",
            json={"stationId": str(station["_id"]), "startTime": future_start(), "durationMins": 60},
            headers=user_headers,
        )
        assert resp.status_code == 409

    def test_capacity_full(self, client, booking_factory, station):
        start = future_start()
        booking_factory(hours=2, start=start)
        other = accounts.create_account("user", "second@example.com", "secret123")
        resp = client.post(
            "/api/bookings",
            json={"stationId": str(station["_id"]), "startTime": start, "durationMins": 60},
            headers=bearer(other, "user"),
        )
        assert resp.status_code == 409
        assert resp.json()["error"] == "Selected slot not available"

    def test_concurrent_insert_keeps_earliest(self, client, booking_factory, station, db, monkeypatch):
        start = future_start()
        first = booking_factory(hours=2, start=start)
        # El conteo previo no ve la otra reserva, como en dos altas simultáneas
        monkeypatch.setattr(svc, "overlapping_count", lambda *args: 0)
        other = accounts.create_account("user", "racer@example.com", "secret123")
        resp = client.post(
            "/api/bookings",
            json={"stationId": str(station["_id"]), "startTime": start, "durationMins": 60},
            headers=bearer(other, "user"),
        )
        assert resp.status_code == 409
        assert [str(b["_id"]) for b in db.bookings.find({})] == [first["booking"]["id"]]

    def test_adjacent_window_is_free(self, booking_factory):
        start = future_start()
        first = booking_factory(hours=2, start=start)
        second = booking_factory(hours=1, start=first["booking"]["endTime"])
        assert second["booking"]["status"] == "pending_payment"

    def test_cancelled_booking_frees_slot(self, client, booking_factory, user_headers):
        start = future_start()
        first = booking_factory(hours=2, start=start)
        client.delete(f"/api/bookings/{first['booking']['id']}", headers=user_headers)
        assert booking_factory(hours=2, start=start)["booking"]["status"] == "pending_payment"


class TestBookingAccess:
    """Tests for listing, reading and cancelling bookings."""

    def test_list_own_bookings(self, client, booking_factory, user_headers):
        booking_factory()
        data = client.get("/api/bookings", headers=user_headers).json()
        assert data["total"] == 1
        assert data["items"] == data["bookings"]
        assert data["nextOffset"] is None

    def test_owner_sees_station_bookings(self, client, booking_factory, owner_headers):
        booking_factory()
        assert client.get("/api/bookings", headers=owner_headers).json()["total"] == 1

    def test_other_user_denied(self, client, booking_factory):
        booking = booking_factory()["booking"]
        stranger = accounts.create_account("user", "stranger@example.com", "secret123")
        resp = client.get(f"/api/bookings/{booking['id']}", headers=bearer(stranger, "user"))
        assert resp.status_code == 403

    def test_user_may_only_cancel(self, client, booking_factory, user_headers):
        booking = booking_factory()["booking"]
        resp = client.patch(f"/api/bookings/{booking['id']}", json={"status": "confirmed"}, headers=user_headers)
        assert resp.status_code == 403
        resp = client.patch(f"/api/bookings/{booking['id']}", json={"status": "cancelled"}, headers=user_headers)
        assert resp.json()["booking"]["status"] == "cancelled"

    def test_update_notes(self, client, booking_factory, user_headers):
        booking = booking_factory()["booking"]
        resp = client.patch(f"/api/bookings/{booking['id']}", json={"notes": "Gate code 1234"}, headers=user_headers)
        assert resp.json()["booking"]["notes"] == "Gate code 1234"

    def test_cannot_cancel_completed(self, client, booking_factory, user_headers, db):
        booking = booking_factory()["booking"]
        db.bookings.update_one({}, {"$set": {"status": "completed"}})
        resp = client.delete(f"/api/bookings/{booking['id']}", headers=user_headers)
        assert resp.status_code == 409

    def test_users_me_bookings(self, client, booking_factory, user_headers):
        booking_factory()
        assert client.get("/api/users/me/bookings", headers=user_headers).json()["total"] == 1


class TestExpiry:
    """Tests for expire_unpaid_bookings."""

    def test_expires_old_unpaid(self, booking_factory, db):
        booking_factory()
        db.bookings.update_one({}, {"$set": {"created_at": utcnow() - timedelta(minutes=45)}})
        assert svc.expire_unpaid_bookings(30) == 1
        doc = db.bookings.find_one({})
        assert doc["status"] == "expired"
        assert doc["payment_status"] == "expired"

    def test_recent_unpaid_kept(self, booking_factory):
        booking_factory()
        assert svc.expire_unpaid_bookings(30) == 0
