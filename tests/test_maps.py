"""
Tests for the geocoding client and the /api/maps routes.

External HTTP is served by ``httpx.MockTransport``; nothing leaves the process.
"""

import asyncio

import httpx
import pytest

from evcharge.client.maps_client import MapsClient, fallback_address, set_maps_client
from evcharge.services import stations

PLACES = [
    {"lat": "12.9716", "lon": "77.5946", "display_name": "MG Road, Bengaluru, India", "type": "road"},
    {"lat": "12.97161", "lon": "77.59461", "display_name": "MG Road, Bengaluru, India", "type": "road"},
    {"lat": "bad", "lon": "77.0", "display_name": "Broken"},
]


def _provider(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/search":
        return httpx.Response(200, json=PLACES)
    if request.url.path == "/reverse":
        return httpx.Response(200, json={"display_name": "Cubbon Park, Bengaluru"})
    return httpx.Response(404)


@pytest.fixture
def maps():
    client = MapsClient(
        base_url="https://maps.test",
        transport=httpx.MockTransport(_provider),
        async_transport=httpx.MockTransport(_provider),
    )
    set_maps_client(client)
    return client


class TestMapsClient:
    """Tests for MapsClient parsing and fallbacks."""

    def test_search_parses_places(self, maps):
        places = maps.search("mg road")
        assert len(places) == 2
        assert places[0]["name"] == "MG Road"
        assert places[0]["lng"] == 77.5946

    def test_blank_query(self, maps):
        assert maps.search("   ") == []

    def test_reverse(self, maps):
        assert maps.reverse(12.97, 77.59) == "Cubbon Park, Bengaluru"

    def test_reverse_fallback_when_provider_fails(self, offline_maps):
        assert offline_maps.reverse(12.5, 77.25) == fallback_address(12.5, 77.25) == "12.5, 77.25"

    def test_search_async(self, maps):
        places = asyncio.run(maps.search_async("mg road", limit=5))
        assert len(places) == 2

    def test_search_async_failure_is_empty(self, offline_maps):
        assert asyncio.run(offline_maps.search_async("anything")) == []


class TestMapsRoutes:
    """Tests for /api/maps/*."""

    def test_reverse_route(self, client, maps):
        data = client.get("/api/maps/reverse", params={"lat": 12.97, "lng": 77.59}).json()
        assert data["address"] == "Cubbon Park, Bengaluru"

    def test_reverse_invalid_coordinates(self, client):
        assert client.get("/api/maps/reverse", params={"lat": 100, "lng": 0}).status_code == 400

    def test_locate_not_found(self, client):
        assert client.get("/api/maps/locate", params={"q": "nowhere"}).status_code == 404

    def test_suggestions_are_deduplicated(self, client, maps):
        data = client.get("/api/maps/places-suggestions", params={"q": "mg road"}).json()
        assert len(data["places"]) == 1

    def test_nearby_radius_in_metres(self, client, owner):
        stations.create_station({"name": "Close", "location": {"lat": 12.972, "lng": 77.595}}, str(owner["_id"]), approved=True)
        stations.create_station({"name": "Across town", "location": {"lat": 13.05, "lng": 77.65}}, str(owner["_id"]), approved=True)
        data = client.get("/api/maps/nearby", params={"lat": 12.9716, "lng": 77.5946, "radius": 2000}).json()
        assert [s["name"] for s in data["stations"]] == ["Close"]

    def test_text_search_rejects_nan(self, client, owner):
        stations.create_station({"name": "Close", "location": {"lat": 12.972, "lng": 77.595}}, str(owner["_id"]), approved=True)
        resp = client.get("/api/maps/text", params={"q": "Close", "lat": "nan", "lng": "77.59"})
        assert resp.status_code == 400

    def test_distance(self, client):
        data = client.get(
            "/api/maps/distance",
            params={"fromLat": 12.9716, "fromLng": 77.5946, "toLat": 12.9716, "toLng": 77.5946},
        ).json()
        assert data["distanceKm"] == 0
        assert data["durationMins"] == 0
