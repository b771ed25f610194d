"""
Unit tests for record normalization.

Tests:
- tolerant number parsing
- price / location / capacity resolution across stored shapes
- normalized station and booking views
"""

import math

from bson import ObjectId

from evcharge.database.database import serialize
from evcharge.services.normalize import (
    booking_amount,
    normalize_booking,
    normalize_station,
    station_capacity,
    station_location,
    station_price,
    to_number,
)


class TestToNumber:
    def test_numeric_strings(self):
        assert to_number("12.5") == 12.5
        assert to_number(3) == 3.0

    def test_invalid_values_use_default(self):
        assert to_number(None, 0.0) == 0.0
        assert to_number("abc") is None
        assert to_number(math.nan, 1.0) == 1.0
        assert to_number(math.inf) is None
        assert to_number(True) is None


class TestStationFields:
    """Tests for alias resolution on stored stations."""

    def test_price_aliases(self):
        assert station_price({"pricing": {"per_kwh": 15}}) == 15
        assert station_price({"pricing": {"perKwh": "14"}}) == 14
        assert station_price({"pricePerKwh": 13}) == 13
        assert station_price({"tariff": 9}) == 9
        assert station_price({"price": 0}) is None

    def test_location_shapes(self):
        assert station_location({"location": {"lat": 12.0, "lng": 77.0}}) == (12.0, 77.0)
        assert station_location({"location": {"latitude": 12.0, "longitude": 77.0}}) == (12.0, 77.0)
        assert station_location({"location": {"type": "Point", "coordinates": [77.0, 12.0]}}) == (12.0, 77.0)
        assert station_location({"lat": "12", "lng": "77"}) == (12.0, 77.0)

    def test_location_out_of_range(self):
        assert station_location({"lat": 120, "lng": 77}) is None

    def test_capacity(self):
        assert station_capacity({"slots": 3}) == 3
        assert station_capacity({"connectors": [{}, {}]}) == 2
        assert station_capacity({}) == 1
        assert station_capacity({"slots": 0, "ports": [{}]}) == 1


class TestViews:
    """Tests for normalized API records."""

    def test_normalize_station_aliases(self):
        doc = {
            "_id": ObjectId(),
            "name": "Hub",
            "status": "active",
            "pricing": {"per_kwh": 11},
            "location": {"lat": 1.5, "lng": 2.5},
            "ports": [{"type": "ccs"}],
            "owner_id": "owner-1",
            "password_hash": "x",
        }
        out = normalize_station(doc)
        assert out["id"] == str(doc["_id"])
        assert out["price"] == out["pricePerKwh"] == out["tariff"] == 11
        assert out["lat"] == out["latitude"] == 1.5
        assert out["connectors"] == out["sockets"] == [{"type": "ccs"}]
        assert out["capacity"] == 1
        assert out["active"] is True
        assert out["ownerId"] == "owner-1"
        assert "password_hash" not in out

    def test_normalize_station_without_location(self):
        out = normalize_station({"_id": ObjectId(), "name": "Hub", "status": "pending"})
        assert out["location"] is None
        assert out["active"] is False
        assert out["images"] == []

    def test_booking_amount_aliases(self):
        assert booking_amount({"total_amount": 50}) == 50
        assert booking_amount({"totalAmount": "40"}) == 40
        assert booking_amount({"price": 0, "total": 30}) == 30
        assert booking_amount({}) is None

    def test_normalize_booking(self):
        doc = {"_id": ObjectId(), "station_id": "s1", "amount": 120.0, "payment_status": "paid", "duration_mins": 60}
        out = normalize_booking(doc)
        assert out["bookingId"] == str(doc["_id"])
        assert out["stationId"] == "s1"
        assert out["totalAmount"] == 120.0
        assert out["paymentStatus"] == "paid"

    def test_serialize_handles_none(self):
        assert serialize(None) is None
