from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from evcharge.auth.deps import Identity, current_identity
from evcharge.models.models import BookingBody, BookingUpdateBody
from evcharge.services import bookings as svc
from evcharge.services.normalize import normalize_booking
from evcharge.services.notifications import notify
from evcharge.services.stations import get_station

router = APIRouter()


def _error(exc) -> HTTPException:
    detail = {"message": exc.message, "field": exc.field} if exc.field else exc.message
    return HTTPException(status_code=exc.status_code, detail=detail)


def _accessible(booking_id: str, identity: Identity) -> dict:
    booking = svc.get_booking(booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    if not svc.can_access(identity, booking):
        raise HTTPException(status_code=403, detail="Access denied")
    return booking


def list_for(identity: Identity, status: Optional[str], limit: int, offset: int) -> dict:
    limit = max(1, min(limit, 100))
    offset = max(0, offset)
    field = "owner_id" if identity.is_owner else "user_id"
    query: dict = {} if identity.is_admin else {field: identity.id}
    if status:
        query["status"] = status
    items, total = svc.list_bookings(query, limit, offset)
    out = [normalize_booking(b) for b in items]
    next_offset = offset + len(out) if offset + len(out) < total else None
    return {"success": True, "items": out, "bookings": out, "total": total, "nextOffset": next_offset}


@router.post("/bookings", status_code=201)  # /api/bookings
def create_booking(body: BookingBody, identity: Identity = Depends(current_identity)):
    if identity.role != "user":
        raise HTTPException(status_code=403, detail="Only users can create bookings")
    data = body.model_dump()
    station = get_station(data["stationId"]) if data.get("stationId") else None
    try:
        booking = svc.create_booking(identity, data, station)
    except svc.BookingError as exc:
        raise _error(exc)
    notify(
        identity.id,
        "Booking created",
        f"Your booking at {booking.get('station_name') or 'the station'} is awaiting payment.",
        "booking",
        {"bookingId": str(booking["_id"])},
    )
    bid = str(booking["_id"])
    return {
        "success": True,
        "booking": normalize_booking(booking),
        "paymentRequired": True,
        "paymentAmount": booking["amount"],
        "paymentUrl": f"/payment?bookingId={bid}",
        "nextStep": "payment",
        "estimatedCost": booking["amount"],
        "chargingDuration": booking["duration_mins"],
        "chargingRate": booking["base_rate"],
    }


@router.get("/bookings")  # /api/bookings
def list_bookings(status: Optional[str] = None, limit: int = 10, offset: int = 0, identity: Identity = Depends(current_identity)):
    return list_for(identity, status, limit, offset)


@router.get("/bookings/{booking_id}")  # /api/bookings/{id}
def get_booking(booking_id: str, identity: Identity = Depends(current_identity)):
    booking = _accessible(booking_id, identity)
    return {"success": True, "booking": normalize_booking(booking)}


@router.patch("/bookings/{booking_id}")  # /api/bookings/{id}
def update_booking(booking_id: str, body: BookingUpdateBody, identity: Identity = Depends(current_identity)):
    booking = _accessible(booking_id, identity)
    fields = {}
    if body.notes is not None:
        fields["notes"] = body.notes
    if body.status is not None:
        if body.status not in svc.BOOKING_STATUSES:
            raise HTTPException(status_code=400, detail="Unknown booking status")
        if not identity.is_admin and body.status != "cancelled":
            raise HTTPException(status_code=403, detail="Only cancellation is allowed")
    if not fields and body.status is None:
        raise HTTPException(status_code=400, detail="No fields to update")
    try:
        if body.status == "cancelled":
            svc.cancel_booking(booking)
        elif body.status is not None:
            fields["status"] = body.status
    except svc.BookingError as exc:
        raise _error(exc)
    if fields:
        svc.update_booking(booking, fields)
    return {"success": True, "booking": normalize_booking(booking)}


@router.delete("/bookings/{booking_id}")  # /api/bookings/{id}
def cancel_booking(booking_id: str, identity: Identity = Depends(current_identity)):
    booking = _accessible(booking_id, identity)
    try:
        svc.cancel_booking(booking)
    except svc.BookingError as exc:
        raise _error(exc)
    return {"success": True, "booking": normalize_booking(booking)}
