from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from evcharge.database.database import collection, to_object_id, utcnow
from evcharge.services.normalize import station_capacity, station_price, to_number

logger = logging.getLogger(__name__)

MIN_DURATION_MINS = 60
MAX_DURATION_MINS = 480
DEFAULT_RATE_PER_KWH = float(os.getenv("DEFAULT_RATE_PER_KWH", "12.5"))
KWH_PER_MINUTE = float(os.getenv("KWH_PER_MINUTE", "0.5"))
PAYMENT_TTL_MINUTES = int(os.getenv("BOOKING_PAYMENT_TTL_MINUTES", "30"))

# Reservas que ocupan plaza
HOLDING_STATUSES = ("pending_payment", "confirmed")
FINAL_STATUSES = ("completed", "refunded")
BOOKING_STATUSES = (
    "pending_payment",
    "confirmed",
    "payment_failed",
    "cancelled",
    "expired",
    "completed",
    "refunded",
)


class BookingError(Exception):
    def __init__(self, status_code: int, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.field = field


def parse_datetime(value: Any) -> Optional[datetime]:
    """ISO (con o sin zona), epoch en ms o datetime → datetime naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        dt = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def resolve_window(start_raw: Any, end_raw: Any, duration_raw: Any) -> tuple[datetime, datetime, int]:
    start = parse_datetime(start_raw)
    if start_raw in (None, ""):
        raise BookingError(400, "startTime is required", "startTime")
    if start is None:
        raise BookingError(400, "startTime is not a valid date", "startTime")

    end = parse_datetime(end_raw)
    if end is None:
        duration = to_number(duration_raw)
        if duration is None:
            raise BookingError(400, "endTime or durationMins is required", "endTime")
        end = start + timedelta(minutes=duration)

    minutes = (end - start).total_seconds() / 60.0
    if minutes < MIN_DURATION_MINS or minutes > MAX_DURATION_MINS:
        raise BookingError(400, "Duration must be 1–8 hours", "durationMins")
    return start, end, int(round(minutes))


def estimate_cost(duration_mins: int, rate: float) -> tuple[float, float]:
    kwh = round(duration_mins * KWH_PER_MINUTE, 2)
    return kwh, round(kwh * rate, 2)


def overlapping_count(station_id: str, start: datetime, end: datetime) -> int:
    return collection("bookings").count_documents(
        {
            "station_id": station_id,
            "status": {"$in": list(HOLDING_STATUSES)},
            "start_time": {"$lt": end},
            "end_time": {"$gt": start},
        }
    )


def create_booking(identity, body: dict, station: Optional[dict]) -> dict:
    """Valida y guarda una reserva pendiente de pago."""
    station_id = body.get("stationId")
    if not station_id:
        raise BookingError(400, "stationId is required", "stationId")
    start, end, duration = resolve_window(body.get("startTime"), body.get("endTime"), body.get("durationMins"))
    if station is None:
        raise BookingError(404, "Station not found")
    if station.get("status") != "active":
        raise BookingError(409, "Station is not accepting bookings")

    sid = str(station["_id"])
    if overlapping_count(sid, start, end) >= station_capacity(station):
        raise BookingError(409, "Selected slot not available")

    rate = station_price(station) or to_number(body.get("pricePerKwh")) or DEFAULT_RATE_PER_KWH
    kwh, amount = estimate_cost(duration, rate)
    now = utcnow()
    doc = {
        "user_id": identity.id,
        "user_email": identity.email,
        "owner_id": station.get("owner_id"),
        "station_id": sid,
        "station_name": station.get("name"),
        "start_time": start,
        "end_time": end,
        "duration_mins": duration,
        "vehicle_type": body.get("vehicleType") or "car",
        "connector_type": body.get("connectorType") or "type2",
        "notes": body.get("notes") or "",
        "base_rate": rate,
        "estimated_kwh": kwh,
        "amount": amount,
        "total_amount": amount,
        "currency": os.getenv("DEFAULT_CURRENCY", "INR"),
        "status": "pending_payment",
        "payment_status": "pending",
        "created_at": now,
        "updated_at": now,
    }
    result = collection("bookings").insert_one(doc)
    doc["_id"] = result.inserted_id
    # Dos altas simultáneas pueden pasar el conteo: se queda la más antigua
    holders = collection("bookings").find(
        {
            "station_id": sid,
            "status": {"$in": list(HOLDING_STATUSES)},
            "start_time": {"$lt": end},
            "end_time": {"$gt": start},
        },
        {"_id": 1},
    ).sort([("created_at", 1), ("_id", 1)])
    if doc["_id"] not in [h["_id"] for h in holders.limit(station_capacity(station))]:
        collection("bookings").delete_one({"_id": doc["_id"]})
        raise BookingError(409, "Selected slot not available")
    return doc


def get_booking(booking_id: str) -> Optional[dict]:
    oid = to_object_id(booking_id)
    if oid is None:
        return None
    return collection("bookings").find_one({"_id": oid})


def can_access(identity, booking: dict) -> bool:
    if identity.is_admin:
        return True
    if identity.is_owner:
        return str(booking.get("owner_id")) == identity.id
    return str(booking.get("user_id")) == identity.id


def list_bookings(query: dict, limit: int, offset: int) -> tuple[list[dict], int]:
    coll = collection("bookings")
    total = coll.count_documents(query)
    cursor = coll.find(query).sort("created_at", -1).skip(offset).limit(limit)
    return list(cursor), total


def update_booking(booking: dict, fields: dict) -> dict:
    fields["updated_at"] = utcnow()
    collection("bookings").update_one({"_id": booking["_id"]}, {"$set": fields})
    booking.update(fields)
    return booking


def cancel_booking(booking: dict) -> dict:
    if booking.get("status") in FINAL_STATUSES:
        raise BookingError(409, f"Booking already {booking['status']}")
    if booking.get("status") == "cancelled":
        return booking
    return update_booking(booking, {"status": "cancelled", "cancelled_at": utcnow()})


def expire_unpaid_bookings(ttl_minutes: Optional[int] = None) -> int:
    """Marca como expiradas las reservas sin pagar más antiguas que el TTL."""
    ttl = PAYMENT_TTL_MINUTES if ttl_minutes is None else ttl_minutes
    cutoff = utcnow() - timedelta(minutes=ttl)
    result = collection("bookings").update_many(
        {"status": "pending_payment", "created_at": {"$lt": cutoff}},
        {"$set": {"status": "expired", "payment_status": "expired", "updated_at": utcnow()}},
    )
    if result.modified_count:
        logger.info("Reservas expiradas: %s", result.modified_count)
    return result.modified_count
