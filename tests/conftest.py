"""Shared pytest fixtures for the test suite.

The environment is configured before ``evcharge`` is imported: cheap bcrypt
rounds, no background scheduler and a throw-away upload directory.

Fixture overview
----------------
db             : fresh ``mongomock`` database installed with ``set_database``
offline_maps   : maps provider replaced by a transport that always fails
client         : FastAPI ``TestClient`` over the app
user / owner / admin         : stored accounts (password ``secret123``)
user_headers / owner_headers / admin_headers: auth headers for each role
station        : active station of ``owner`` (1 slot, 10 per kWh)
booking_factory: creates a booking through the API and returns its JSON
"""

from __future__ import annotations

import os
import tempfile
from datetime import timedelta

os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="evcharge-uploads-")
os.environ.setdefault("JWT_SECRET", "test-secret")

import httpx  # noqa: E402
import mongomock  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from evcharge.auth.security import make_access_token  # noqa: E402
from evcharge.client.maps_client import MapsClient, set_maps_client  # noqa: E402
from evcharge.database.database import set_database, utcnow  # noqa: E402
from evcharge.main import app  # noqa: E402
from evcharge.services import accounts, stations  # noqa: E402

PASSWORD = "secret123"


# ── Infrastructure ───────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def db():
    """Each test gets an empty in-memory database."""
    database = mongomock.MongoClient()["evcharge_test"]
    set_database(database)
    yield database
    set_database(None)


def _unavailable(request: httpx.Request) -> httpx.Response:
    return httpx.Response(503, json={"error": "unavailable"})


@pytest.fixture(autouse=True)
def offline_maps():
    """No test reaches the real geocoding provider."""
    maps = MapsClient(
        base_url="https://maps.test",
        transport=httpx.MockTransport(_unavailable),
        async_transport=httpx.MockTransport(_unavailable),
    )
    set_maps_client(maps)
    yield maps
    set_maps_client(None)


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


# ── Accounts ─────────────────────────────────────────────────────────────────


@pytest.fixture
def user() -> dict:
    return accounts.create_account("user", "driver@example.com", PASSWORD, name="Driver")


@pytest.fixture
def owner() -> dict:
    return accounts.create_account("owner", "owner@example.com", PASSWORD, display_name="Station Owner")


@pytest.fixture
def admin() -> dict:
    return accounts.create_account("admin", "admin@example.com", PASSWORD, name="Admin")


def bearer(record: dict, role: str) -> dict:
    return {"Authorization": f"Bearer {make_access_token(str(record['_id']), role)}"}


@pytest.fixture
def user_headers(user) -> dict:
    return bearer(user, "user")


@pytest.fixture
def owner_headers(owner) -> dict:
    return bearer(owner, "owner")


@pytest.fixture
def admin_headers(admin) -> dict:
    return {"X-Admin-Token": make_access_token(str(admin["_id"]), "admin")}


# ── Domain data ──────────────────────────────────────────────────────────────


@pytest.fixture
def station(owner) -> dict:
    """Active station with a single slot priced at 10 per kWh."""
    return stations.create_station(
        {
            "name": "Central Charging Hub",
            "address": "MG Road, Bengaluru",
            "location": {"lat": 12.9716, "lng": 77.5946},
            "pricing": {"per_kwh": 10},
            "connectors": [{"type": "type2", "power_kw": 22}],
            "slots": 1,
        },
        str(owner["_id"]),
        approved=True,
    )


def future_start(hours_ahead: int = 24) -> str:
    start = (utcnow() + timedelta(hours=hours_ahead)).replace(minute=0, second=0, microsecond=0)
    return start.isoformat()


@pytest.fixture
def booking_factory(client, user_headers, station):
    """Create a booking through the API; defaults to 2 h tomorrow on ``station``."""

    def make(hours: int = 2, start: str | None = None, headers: dict | None = None, station_id: str | None = None):
        resp = client.post(
            "/api/bookings",
            json={
                "stationId": station_id or str(station["_id"]),
                "startTime": start or future_start(),
                "durationMins": hours * 60,
            },
            headers=headers or user_headers,
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    return make
