"""Flujo de reserva del portal de usuario: validar, reservar y pasar a pago."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from evcharge.client.api_client import EVChargeClient

MIN_HOURS = 1
MAX_HOURS = 8


class BookingValidationError(ValueError):
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


@dataclass
class BookingOutcome:
    booking: dict
    payment_url: Optional[str] = None
    amount: Optional[float] = None

    @property
    def payment_required(self) -> bool:
        return self.payment_url is not None


def _parse_start(value: Union[str, datetime, None]) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        raise BookingValidationError("Start time is required", "startTime")
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise BookingValidationError("Invalid start time", "startTime")


def validate_booking_form(station_id: Optional[str], start: Union[str, datetime, None], hours) -> dict:
    """Valida el formulario y devuelve el cuerpo para ``POST /bookings``."""
    if not station_id:
        raise BookingValidationError("Station is required", "stationId")
    start_dt = _parse_start(start)
    try:
        hours_value = float(hours)
    except (TypeError, ValueError):
        raise BookingValidationError("Duration must be 1–8 hours", "duration")
    if not hours_value.is_integer() or not MIN_HOURS <= hours_value <= MAX_HOURS:
        raise BookingValidationError("Duration must be 1–8 hours", "duration")
    return {
        "stationId": station_id,
        "startTime": start_dt.isoformat(),
        "durationMins": int(hours_value) * 60,
    }


def book_and_pay(client: EVChargeClient, station_id: Optional[str], start, hours,
                 vehicle_type: str = "car", connector_type: str = "type2",
                 notes: Optional[str] = None) -> BookingOutcome:
    """Crea la reserva y, si el servidor pide pago, abre el checkout."""
    body = validate_booking_form(station_id, start, hours)
    body.update({"vehicleType": vehicle_type, "connectorType": connector_type, "notes": notes})
    data = client.create_booking(body)
    booking = data.get("booking") or {}
    if not data.get("paymentRequired"):
        return BookingOutcome(booking=booking)
    checkout = client.start_checkout(booking.get("id") or booking.get("bookingId"))
    return BookingOutcome(
        booking=booking,
        payment_url=checkout.get("paymentUrl") or data.get("paymentUrl"),
        amount=checkout.get("amount", data.get("paymentAmount")),
    )
