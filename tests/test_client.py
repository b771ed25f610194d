"""
Tests for the portal client layer: API service, session resolution, route
guards and the booking flow, all against the real app through TestClient.
"""

from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from conftest import PASSWORD, future_start
from evcharge.client.api_client import ApiError, EVChargeClient
from evcharge.client.booking import BookingValidationError, book_and_pay, validate_booking_form
from evcharge.client.session import Session, guard, landing_path, login_path, normalize_session, redirect_if_authed
from evcharge.main import app


@pytest.fixture
def api():
    with EVChargeClient("http://testserver/api", http=TestClient(app)) as c:
        yield c


class TestLogin:
    def test_user_login(self, api, user):
        session = api.login("driver@example.com", PASSWORD)
        assert session.role == "user"
        assert session.uid == str(user["_id"])
        assert api.token

    def test_owner_login(self, api, owner):
        session = api.login("owner@example.com", PASSWORD, role="owner")
        assert session.role == "owner"
        assert landing_path(session.role) == "/owner/dashboard"

    def test_admin_login_stores_admin_token(self, api, admin):
        session = api.login("admin@example.com", PASSWORD, role="admin")
        assert session.role == "admin"
        assert session.uid == str(admin["_id"])
        assert api.admin_token and api.token is None
        assert api.admin_summary()["success"] is True

    def test_wrong_password_raises(self, api, user):
        with pytest.raises(ApiError) as exc:
            api.login("driver@example.com", "wrong-password")
        assert exc.value.status_code == 401
        assert exc.value.message

    def test_unknown_role(self, api):
        with pytest.raises(ValueError):
            api.login("x@example.com", PASSWORD, role="root")


class TestResolveSession:
    """The client probes admin, then owner, then user."""

    def test_anonymous(self, api):
        session = api.resolve_session()
        assert not session.authenticated

    def test_user(self, api, user):
        api.login("driver@example.com", PASSWORD)
        session = api.resolve_session()
        assert session.role == "user"
        assert session.user["email"] == "driver@example.com"

    def test_owner(self, api, owner):
        api.login("owner@example.com", PASSWORD, role="owner")
        assert api.resolve_session().role == "owner"

    def test_admin(self, api, admin):
        api.login("admin@example.com", PASSWORD, role="admin")
        assert api.resolve_session().role == "admin"

    def test_logout_clears_tokens(self, api, user):
        api.login("driver@example.com", PASSWORD)
        api.logout()
        assert api.token is None and api.admin_token is None


class TestGuards:
    def test_anonymous_goes_to_role_login(self):
        assert guard(Session(), "owner") == "/owner/login"
        assert guard(Session(), "admin") == "/admin/login"
        assert guard(Session()) == "/login"

    def test_wrong_role_goes_home(self):
        session = Session(role="user", user={"uid": "u1"})
        assert guard(session, "admin") == "/"
        assert guard(Session(role="owner"), "user") == "/owner/dashboard"

    def test_allowed(self):
        assert guard(Session(role="admin"), "admin") is None
        assert guard(Session(role="owner"), "owner", "admin") is None

    def test_redirect_if_authed(self):
        assert redirect_if_authed(Session(role="admin")) == "/admin"
        assert redirect_if_authed(Session()) is None

    def test_paths(self):
        assert landing_path("nobody") == "/login"
        assert login_path() == "/login"

    def test_normalize_flags_win_over_role(self):
        session = normalize_session({"uid": "1", "role": "user", "isOwner": True})
        assert session.role == "owner"
        assert normalize_session(None).role is None


class TestBookingForm:
    def test_valid(self):
        body = validate_booking_form("s1", datetime(2030, 1, 1, 10), 3)
        assert body == {"stationId": "s1", "startTime": "2030-01-01T10:00:00", "durationMins": 180}

    @pytest.mark.parametrize(
        "station_id,start,hours,field",
        [
            (None, "2030-01-01T10:00:00", 2, "stationId"),
            ("s1", "", 2, "startTime"),
            ("s1", "tomorrow", 2, "startTime"),
            ("s1", "2030-01-01T10:00:00", 0, "duration"),
            ("s1", "2030-01-01T10:00:00", 9, "duration"),
            ("s1", "2030-01-01T10:00:00", 1.5, "duration"),
            ("s1", "2030-01-01T10:00:00", "abc", "duration"),
        ],
    )
    def test_invalid(self, station_id, start, hours, field):
        with pytest.raises(BookingValidationError) as exc:
            validate_booking_form(station_id, start, hours)
        assert exc.value.field == field


class TestBookAndPay:
    def test_opens_checkout(self, api, user, station):
        api.login("driver@example.com", PASSWORD)
        outcome = book_and_pay(api, str(station["_id"]), future_start(), 2)
        assert outcome.payment_required
        assert outcome.payment_url.startswith("/checkout?paymentId=")
        assert outcome.amount == 600
        assert outcome.booking["status"] == "pending_payment"

    def test_server_rejection_surfaces(self, api, user, station):
        api.login("driver@example.com", PASSWORD)
        start = future_start()
        book_and_pay(api, str(station["_id"]), start, 2)
        with pytest.raises(ApiError) as exc:
            book_and_pay(api, str(station["_id"]), start, 1)
        assert exc.value.status_code == 409
        assert exc.value.message == "Selected slot not available"

    def test_cancel_and_list(self, api, user, station):
        api.login("driver@example.com", PASSWORD)
        outcome = book_and_pay(api, str(station["_id"]), future_start(), 1)
        api.cancel_booking(outcome.booking["id"])
        listed = api.list_bookings(status="cancelled")
        assert [b["id"] for b in listed["bookings"]] == [outcome.booking["id"]]
