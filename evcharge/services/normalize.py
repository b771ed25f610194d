from __future__ import annotations

import math
from typing import Any, Optional

from evcharge.database.database import serialize


def to_number(value: Any, default: Optional[float] = None) -> Optional[float]:
    """Conversión tolerante: strings numéricos, None, NaN e infinitos."""
    if value is None or isinstance(value, bool):
        return default
    try:
        n = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(n) or math.isinf(n):
        return default
    return n


def _first_positive(*values: Any) -> Optional[float]:
    for v in values:
        n = to_number(v)
        if n is not None and n > 0:
            return n
    return None


def station_price(rec: dict) -> Optional[float]:
    """Precio por kWh de una estación sin importar cómo se guardó."""
    pricing = rec.get("pricing")
    if not isinstance(pricing, dict):
        pricing = {}
    return _first_positive(
        pricing.get("per_kwh"),
        pricing.get("perKwh"),
        rec.get("pricePerKwh"),
        rec.get("price_per_kwh"),
        rec.get("price"),
        rec.get("tariff"),
    )


def _valid_coords(lat: Any, lng: Any) -> Optional[tuple[float, float]]:
    la, ln = to_number(lat), to_number(lng)
    if la is None or ln is None:
        return None
    if not (-90 <= la <= 90 and -180 <= ln <= 180):
        return None
    return la, ln


def station_location(rec: dict) -> Optional[tuple[float, float]]:
    loc = rec.get("location")
    candidates = []
    if isinstance(loc, dict):
        candidates.append((loc.get("lat"), loc.get("lng")))
        candidates.append((loc.get("latitude"), loc.get("longitude")))
        coords = loc.get("coordinates")
        # GeoJSON guarda [lng, lat]
        if isinstance(coords, (list, tuple)) and len(coords) == 2:
            candidates.append((coords[1], coords[0]))
    candidates.append((rec.get("lat"), rec.get("lng")))
    candidates.append((rec.get("latitude"), rec.get("longitude")))
    for lat, lng in candidates:
        found = _valid_coords(lat, lng)
        if found:
            return found
    return None


def station_connectors(rec: dict) -> list:
    for key in ("connectors", "ports", "sockets"):
        value = rec.get(key)
        if isinstance(value, list) and value:
            return value
    return []


def station_capacity(rec: dict) -> int:
    """Plazas simultáneas: `slots`, si no nº de conectores, mínimo 1."""
    slots = to_number(rec.get("slots"))
    if slots is not None and slots >= 1:
        return int(slots)
    return max(1, len(station_connectors(rec)))


def booking_amount(rec: dict) -> Optional[float]:
    return _first_positive(
        rec.get("total_amount"),
        rec.get("totalAmount"),
        rec.get("amount"),
        rec.get("price"),
        rec.get("total"),
    )


def normalize_station(doc: dict) -> dict:
    """Registro de estación con todos los alias que leen las vistas."""
    out = serialize(doc)
    price = station_price(doc)
    loc = station_location(doc)
    lat, lng = loc if loc else (None, None)
    connectors = _plain_list(station_connectors(doc))
    hours = doc.get("operating_hours") or doc.get("operatingHours")
    phone = doc.get("contact_phone") or doc.get("contactPhone") or doc.get("phone")
    amenities = doc.get("amenities") or doc.get("facilities") or []
    owner = out.get("owner_id") or out.get("ownerId")
    out.update(
        {
            "stationId": out.get("id"),
            "price": price,
            "pricePerKwh": price,
            "tariff": price,
            "lat": lat,
            "lng": lng,
            "latitude": lat,
            "longitude": lng,
            "location": {"lat": lat, "lng": lng} if loc else None,
            "connectors": connectors,
            "ports": connectors,
            "sockets": connectors,
            "capacity": station_capacity(doc),
            "operatingHours": hours,
            "hours": hours,
            "contact": phone,
            "phone": phone,
            "amenities": amenities,
            "facilities": amenities,
            "ownerId": owner,
            "owner": owner,
            "active": doc.get("status") == "active",
            "images": out.get("images") or [],
        }
    )
    return out


def _plain_list(items: list) -> list:
    return serialize({"items": items})["items"]


def normalize_booking(doc: dict) -> dict:
    out = serialize(doc)
    out.update(
        {
            "bookingId": out.get("id"),
            "userId": out.get("user_id"),
            "ownerId": out.get("owner_id"),
            "stationId": out.get("station_id"),
            "stationName": out.get("station_name"),
            "startTime": out.get("start_time"),
            "endTime": out.get("end_time"),
            "durationMins": out.get("duration_mins"),
            "paymentStatus": out.get("payment_status"),
            "totalAmount": booking_amount(doc),
            "createdAt": out.get("created_at"),
        }
    )
    return out
