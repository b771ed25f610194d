"""
Tests for the user profile, favorites, notifications and owner analytics.
"""

from conftest import bearer

from evcharge.services import accounts, notifications


class TestProfile:
    def test_get_me(self, client, user, user_headers):
        data = client.get("/api/users/me", headers=user_headers).json()
        assert data["user"]["uid"] == str(user["_id"])
        assert data["user"]["role"] == "user"

    def test_owner_is_not_a_user(self, client, owner_headers):
        assert client.get("/api/users/me", headers=owner_headers).status_code == 403

    def test_patch_me(self, client, user_headers):
        data = client.patch("/api/users/me", json={"bio": "EV commuter"}, headers=user_headers).json()
        assert data["user"]["profile"]["bio"] == "EV commuter"

    def test_patch_me_empty(self, client, user_headers):
        assert client.patch("/api/users/me", json={}, headers=user_headers).status_code == 400


class TestFavorites:
    """Tests for favorite stations and their aliases."""

    def test_add_list_remove(self, client, user_headers, station):
        sid = str(station["_id"])
        assert client.post("/api/users/me/favorites", json={"stationId": sid}, headers=user_headers).json()["added"] is True
        assert client.post(f"/api/users/stations/{sid}/favorite", headers=user_headers).json()["added"] is False
        favorites = client.get("/api/users/me/favorites", headers=user_headers).json()
        assert [s["id"] for s in favorites["favorites"]] == [sid]
        assert client.delete(f"/api/users/me/favorites/{sid}", headers=user_headers).status_code == 200
        assert client.get("/api/users/stations/favorites", headers=user_headers).json()["count"] == 0

    def test_toggle(self, client, user_headers, station):
        body = {"stationId": str(station["_id"])}
        assert client.post("/api/users/me/favorites/toggle", json=body, headers=user_headers).json()["toggled"] == "added"
        assert client.post("/api/users/me/favorites/toggle", json=body, headers=user_headers).json()["toggled"] == "removed"

    def test_unknown_station(self, client, user_headers):
        resp = client.post("/api/users/me/favorites", json={"stationId": "000000000000000000000000"}, headers=user_headers)
        assert resp.status_code == 404

    def test_remove_missing(self, client, user_headers, station):
        assert client.delete(f"/api/users/me/favorites/{station['_id']}", headers=user_headers).status_code == 404


class TestNotifications:
    """Tests for /api/notifications."""

    def test_list_and_mark_read(self, client, user, user_headers):
        doc = notifications.notify(str(user["_id"]), "Hello", "First message")
        notifications.notify(str(user["_id"]), "Again", "Second message")
        data = client.get("/api/notifications", headers=user_headers).json()
        assert data["unreadCount"] == 2
        assert {n["title"] for n in data["notifications"]} == {"Hello", "Again"}

        resp = client.patch(f"/api/notifications/{doc['_id']}/read", headers=user_headers)
        assert resp.json()["notification"]["read"] is True
        assert client.patch("/api/notifications/read-all", headers=user_headers).json()["updated"] == 1

    def test_cannot_read_foreign_notification(self, client, user, owner_headers):
        doc = notifications.notify(str(user["_id"]), "Private", "Not for owners")
        assert client.patch(f"/api/notifications/{doc['_id']}/read", headers=owner_headers).status_code == 403

    def test_missing_notification(self, client, user_headers):
        assert client.patch("/api/notifications/000000000000000000000000/read", headers=user_headers).status_code == 404

    def test_admin_broadcast_to_all_users(self, client, user, admin_headers, db):
        accounts.create_account("user", "second@example.com", "secret123")
        data = client.post("/api/notifications/send", json={"title": "Maintenance", "message": "Tonight"}, headers=admin_headers).json()
        assert data["recipientCount"] == 2
        assert db.notifications.count_documents({"title": "Maintenance"}) == 2

    def test_send_to_targets(self, client, user, admin_headers):
        data = client.post(
            "/api/notifications/send",
            json={"title": "Hi", "message": "Just you", "targetUsers": [str(user["_id"])]},
            headers=admin_headers,
        ).json()
        assert data["recipientCount"] == 1

    def test_send_requires_admin(self, client, user_headers):
        resp = client.post("/api/notifications/send", json={"title": "x", "message": "y"}, headers=user_headers)
        assert resp.status_code == 403


class TestOwnerAnalytics:
    """Tests for /api/analytics/*."""

    def test_owner_rollup_includes_idle_stations(self, client, owner_headers, station):
        data = client.get("/api/analytics/owner", headers=owner_headers).json()
        assert data["stations"][0]["id"] == str(station["_id"])
        assert data["totals"]["bookings"] == 0

    def test_station_analytics(self, client, booking_factory, owner_headers, station):
        booking_factory()
        data = client.get(f"/api/analytics/station/{station['_id']}", headers=owner_headers).json()["analytics"]
        assert data["bookings"] == 1
        assert data["statusBreakdown"] == {"pending_payment": 1}

    def test_station_analytics_other_owner(self, client, station):
        other = accounts.create_account("owner", "other@example.com", "secret123")
        resp = client.get(f"/api/analytics/station/{station['_id']}", headers=bearer(other, "owner"))
        assert resp.status_code == 403

    def test_revenue_series(self, client, owner_headers):
        series = client.get("/api/analytics/revenue", params={"range": "14d"}, headers=owner_headers).json()
        assert len(series) == 14
