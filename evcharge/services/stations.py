from __future__ import annotations

import math
import os
import re
from typing import Optional

from evcharge.database.database import collection, to_object_id, utcnow
from evcharge.services.normalize import normalize_station, station_location, station_price, to_number

EARTH_RADIUS_KM = 6371.0
DEFAULT_SEARCH_RADIUS_KM = float(os.getenv("SEARCH_RADIUS_KM", "10"))
AUTO_APPROVE_STATIONS = os.getenv("AUTO_APPROVE_STATIONS", "false").lower() == "true"

# Campos que un owner puede editar; los alias de precio se resuelven aparte
EDITABLE_FIELDS = (
    "name",
    "address",
    "slots",
    "amenities",
    "provider",
    "website",
    "metadata",
)


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dp = math.radians(lat2 - lat1)
    dl = math.radians(lng2 - lng1)
    a = math.sin(dp / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def valid_coordinates(lat: float, lng: float) -> bool:
    # nan e inf no pasan los rangos
    return -90 <= lat <= 90 and -180 <= lng <= 180


def format_distance(km: float) -> str:
    return f"{km:.1f} km"


def get_station(station_id: str, include_deleted: bool = False) -> Optional[dict]:
    oid = to_object_id(station_id)
    if oid is None:
        return None
    doc = collection("stations").find_one({"_id": oid})
    if doc and doc.get("status") == "deleted" and not include_deleted:
        return None
    return doc


def text_query(q: Optional[str], fields: tuple = ("name", "address", "provider")) -> dict:
    if not q or not q.strip():
        return {}
    rx = {"$regex": re.escape(q.strip()), "$options": "i"}
    return {"$or": [{f: rx} for f in fields]}


def station_fields_from_body(body: dict) -> dict:
    """Convierte un cuerpo de formulario (con alias) al esquema guardado."""
    out = {k: body[k] for k in EDITABLE_FIELDS if body.get(k) is not None}
    if body.get("name") is not None:
        out["name"] = str(body["name"]).strip()

    pricing = body.get("pricing") if isinstance(body.get("pricing"), dict) else {}
    per_kwh = station_price({"pricing": pricing, **{k: body.get(k) for k in ("pricePerKwh", "price", "tariff")}})
    if per_kwh is not None or pricing:
        out["pricing"] = {
            "per_kwh": per_kwh,
            "session_fee": to_number(pricing.get("session_fee", pricing.get("sessionFee")), 0.0),
            "parking_fee": to_number(pricing.get("parking_fee", pricing.get("parkingFee")), 0.0),
        }

    for key in ("connectors", "ports", "sockets"):
        if isinstance(body.get(key), list):
            out["connectors"] = body[key]
            break

    loc = station_location(body)
    if loc:
        out["location"] = {"lat": loc[0], "lng": loc[1]}

    hours = body.get("operatingHours", body.get("operating_hours"))
    if hours is not None:
        out["operating_hours"] = hours
    phone = body.get("contactPhone", body.get("contact_phone", body.get("phone")))
    if phone is not None:
        out["contact_phone"] = phone
    return out


def create_station(body: dict, owner_id: Optional[str], approved: Optional[bool] = None) -> dict:
    if approved is None:
        approved = AUTO_APPROVE_STATIONS
    now = utcnow()
    doc = {
        "slots": 1,
        "amenities": [],
        "connectors": [],
        "images": [],
        "featured": False,
        "rating": 0.0,
        **station_fields_from_body(body),
        "owner_id": owner_id,
        "status": "active" if approved else "pending",
        "approved": approved,
        "created_at": now,
        "updated_at": now,
    }
    result = collection("stations").insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def update_station(station: dict, fields: dict) -> dict:
    if not fields:
        return station
    fields["updated_at"] = utcnow()
    collection("stations").update_one({"_id": station["_id"]}, {"$set": fields})
    station.update(fields)
    return station


def soft_delete(station: dict) -> dict:
    return update_station(station, {"status": "deleted", "deleted_at": utcnow()})


def can_manage(station: dict, identity) -> bool:
    if identity.is_admin:
        return True
    return str(station.get("owner_id")) == identity.id


def list_stations(query: dict, limit: int, offset: int, sort: Optional[list] = None) -> tuple[list[dict], int]:
    coll = collection("stations")
    total = coll.count_documents(query)
    cursor = coll.find(query).sort(sort or [("created_at", -1)]).skip(offset).limit(limit)
    return [normalize_station(d) for d in cursor], total


def search_stations(
    q: Optional[str] = None,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    radius_km: Optional[float] = None,
    status: Optional[str] = "active",
    limit: int = 50,
) -> list[dict]:
    """Búsqueda por texto y, si hay coordenadas, por radio ordenada por distancia."""
    query = text_query(q)
    if status:
        query["status"] = status
    else:
        query["status"] = {"$ne": "deleted"}
    docs = list(collection("stations").find(query))

    if lat is None or lng is None:
        return [normalize_station(d) for d in docs[:limit]]

    radius = radius_km if radius_km and radius_km > 0 else DEFAULT_SEARCH_RADIUS_KM
    found = []
    for d in docs:
        loc = station_location(d)
        if not loc:
            continue
        km = haversine_km(lat, lng, loc[0], loc[1])
        if km > radius:
            continue
        item = normalize_station(d)
        item["distanceKm"] = round(km, 3)
        item["distance"] = format_distance(km)
        found.append(item)
    found.sort(key=lambda s: s["distanceKm"])
    return found[:limit]


def dedupe_places(items: list[dict]) -> list[dict]:
    """Quita duplicados por coordenadas (4 decimales) + nombre."""
    seen = set()
    out = []
    for it in items:
        lat, lng = to_number(it.get("lat")), to_number(it.get("lng"))
        key = (
            round(lat, 4) if lat is not None else None,
            round(lng, 4) if lng is not None else None,
            (it.get("name") or "").strip().lower(),
        )
        if key in seen:
            continue
        seen.add(key)
        out.append(it)
    return out


def owner_summary(owner_id: str, stations: list[dict]) -> dict:
    paid = collection("bookings").find(
        {"owner_id": owner_id, "payment_status": "paid"},
        {"amount": 1},
    )
    total_bookings = 0
    revenue = 0.0
    for b in paid:
        total_bookings += 1
        revenue += to_number(b.get("amount"), 0.0)
    ratings = [to_number(s.get("rating")) for s in stations if to_number(s.get("rating"))]
    return {
        "totalStations": len(stations),
        "totalBookings": total_bookings,
        "totalRevenue": round(revenue, 2),
        "averageRating": round(sum(ratings) / len(ratings), 2) if ratings else 0.0,
    }
