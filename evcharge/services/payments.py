"""Pasarela de pago simulada.

Las tarjetas de prueba fijan el resultado de la confirmación; sin tarjeta el
pago se aprueba salvo que ``PAYMENT_SIMULATE_RANDOM=true`` (85/10/5 %).
Un pago aprobado se reparte entre plataforma y owner y queda en
``transactions``; las ganancias del owner y los totales de la plataforma se
actualizan con ``$inc`` una sola vez por intent.
"""
from __future__ import annotations

import logging
import os
import random
import uuid
from typing import Optional

from evcharge.database.database import collection, serialize, to_object_id, utcnow
from evcharge.services.bookings import overlapping_count
from evcharge.services.normalize import booking_amount, station_capacity, to_number
from evcharge.services.notifications import notify

logger = logging.getLogger(__name__)

PLATFORM_FEE_PERCENT = float(os.getenv("PLATFORM_FEE_PERCENT", "10"))
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "INR")
SIMULATE_RANDOM = os.getenv("PAYMENT_SIMULATE_RANDOM", "false").lower() == "true"
PAYMENT_PAGE_URL = os.getenv("PAYMENT_PAGE_URL", "/checkout")

TEST_CARDS = {
    "success": "4242424242424242",
    "failure": "4000000000000002",
    "pending": "4000000000000077",
}
OPEN_STATUSES = ("requires_payment_method", "requires_action")
# Estados de reserva que aún admiten cobro
PAYABLE_BOOKING_STATUSES = ("pending_payment", "payment_failed")


class PaymentError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def platform_fee_percent() -> float:
    """Comisión vigente: documento `settings.platform` o PLATFORM_FEE_PERCENT."""
    doc = collection("settings").find_one({"_id": "platform"}) or {}
    pct = to_number(doc.get("platform_fee_percent"))
    return PLATFORM_FEE_PERCENT if pct is None else pct


def split_amount(amount: float, percent: Optional[float] = None) -> dict:
    pct = platform_fee_percent() if percent is None else percent
    fee = round(amount * pct / 100.0, 2)
    return {
        "total_amount": round(amount, 2),
        "platform_fee": fee,
        "owner_amount": round(amount - fee, 2),
        "platform_fee_percentage": pct,
    }


def breakdown_view(breakdown: dict) -> dict:
    return {
        "totalAmount": breakdown["total_amount"],
        "platformFee": breakdown["platform_fee"],
        "ownerAmount": breakdown["owner_amount"],
        "platformFeePercentage": breakdown["platform_fee_percentage"],
    }


def get_payment(payment_id: str) -> Optional[dict]:
    if not payment_id:
        return None
    return collection("payments").find_one({"_id": payment_id})


def find_open_intent(booking_id: str) -> Optional[dict]:
    return collection("payments").find_one(
        {"booking_id": booking_id, "status": {"$in": list(OPEN_STATUSES)}},
        sort=[("created_at", -1)],
    )


def create_intent(
    booking: dict,
    amount: Optional[float] = None,
    currency: str = DEFAULT_CURRENCY,
    payment_method: str = "card",
    customer: Optional[dict] = None,
) -> dict:
    ensure_payable(booking)
    value = to_number(amount)
    if value is None or value <= 0:
        value = booking_amount(booking)
    if value is None or value <= 0:
        raise PaymentError(400, "Invalid payment amount")

    payment_id = f"pi_dummy_{uuid.uuid4().hex}"
    now = utcnow()
    doc = {
        "_id": payment_id,
        "booking_id": str(booking["_id"]),
        "user_id": booking.get("user_id"),
        "owner_id": booking.get("owner_id"),
        "station_id": booking.get("station_id"),
        "amount": round(value, 2),
        "currency": currency or DEFAULT_CURRENCY,
        "status": "requires_payment_method",
        "payment_method": payment_method,
        "customer": customer or {},
        "gateway": "dummy",
        "breakdown": split_amount(value),
        "client_secret": f"{payment_id}_secret_{uuid.uuid4().hex[:12]}",
        "created_at": now,
        "updated_at": now,
    }
    collection("payments").insert_one(doc)
    collection("bookings").update_one(
        {"_id": booking["_id"]},
        {"$set": {"payment_intent_id": payment_id, "payment_status": "requires_payment_method", "updated_at": now}},
    )
    return doc


def intent_view(payment: dict) -> dict:
    return {
        "id": payment["_id"],
        "clientSecret": payment.get("client_secret"),
        "amount": payment.get("amount"),
        "currency": payment.get("currency"),
        "status": payment.get("status"),
        "gateway": payment.get("gateway"),
        "bookingId": payment.get("booking_id"),
        "confirmation": {"type": "redirect", "url": f"/payments/confirm/{payment['_id']}"},
        "nextAction": payment.get("next_action"),
        "testCards": TEST_CARDS,
        "breakdown": breakdown_view(payment["breakdown"]),
        "demoMode": True,
    }


def checkout_url(payment_id: str, booking_id: str) -> str:
    return f"{PAYMENT_PAGE_URL}?paymentId={payment_id}&bookingId={booking_id}"


def decide_outcome(card_number: Optional[str] = None) -> str:
    card = "".join(ch for ch in str(card_number or "") if ch.isdigit())
    if card == TEST_CARDS["failure"]:
        return "failure"
    if card == TEST_CARDS["pending"]:
        return "pending"
    if card or not SIMULATE_RANDOM:
        return "success"
    roll = random.random()
    if roll < 0.85:
        return "success"
    if roll < 0.95:
        return "failure"
    return "pending"


def ensure_payable(booking: dict) -> None:
    """La reserva sigue esperando cobro y conserva su plaza."""
    if booking.get("payment_status") == "paid":
        raise PaymentError(409, "Booking already paid")
    status = booking.get("status")
    if status not in PAYABLE_BOOKING_STATUSES:
        raise PaymentError(409, f"Booking is {status}")
    if status == "payment_failed":
        # payment_failed no ocupa plaza: otra reserva pudo tomarla
        station = collection("stations").find_one({"_id": to_object_id(booking.get("station_id"))}) or {}
        if overlapping_count(booking.get("station_id"), booking["start_time"], booking["end_time"]) >= station_capacity(station):
            raise PaymentError(409, "Selected slot not available")


def _payable_booking(payment: dict) -> dict:
    """Reserva del intent; si ya no admite cobro el intent se cancela."""
    booking = collection("bookings").find_one({"_id": to_object_id(payment.get("booking_id"))})
    if booking is None:
        raise PaymentError(404, "Booking not found")
    try:
        ensure_payable(booking)
    except PaymentError:
        _set_payment(payment, {"status": "canceled", "next_action": None, "cancellation_reason": f"booking_{booking.get('status')}"})
        raise
    return booking


def _set_payment(payment: dict, fields: dict) -> dict:
    fields["updated_at"] = utcnow()
    collection("payments").update_one({"_id": payment["_id"]}, {"$set": fields})
    payment.update(fields)
    return payment


def _set_booking(payment: dict, fields: dict, only_from: Optional[tuple] = None) -> None:
    oid = to_object_id(payment.get("booking_id"))
    if oid is None:
        return
    query: dict = {"_id": oid}
    if only_from:
        query["status"] = {"$in": list(only_from)}
    fields["updated_at"] = utcnow()
    collection("bookings").update_one(query, {"$set": fields})


def confirm_payment(payment: dict, card_number: Optional[str] = None) -> tuple[dict, str]:
    if payment.get("status") not in OPEN_STATUSES:
        raise PaymentError(409, f"Payment already {payment.get('status')}")
    _payable_booking(payment)
    outcome = decide_outcome(card_number)
    if outcome == "success":
        mark_succeeded(payment)
    elif outcome == "failure":
        mark_failed(payment, "card_declined")
    else:
        _set_payment(
            payment,
            {
                "status": "requires_action",
                "next_action": {"type": "3ds_authentication", "url": f"/payments/3ds/{payment['_id']}"},
            },
        )
    return payment, outcome


def complete_3ds(payment: dict) -> dict:
    if payment.get("status") != "requires_action":
        raise PaymentError(409, "Payment does not require authentication")
    _payable_booking(payment)
    return mark_succeeded(payment)


def mark_succeeded(payment: dict) -> dict:
    if payment.get("status") not in OPEN_STATUSES:
        raise PaymentError(409, f"Payment already {payment.get('status')}")
    now = utcnow()
    _set_payment(
        payment,
        {
            "status": "succeeded",
            "next_action": None,
            "gateway_transaction_id": payment.get("gateway_transaction_id") or f"txn_{uuid.uuid4().hex[:16]}",
            "paid_at": now,
        },
    )
    _set_booking(
        payment,
        {"status": "confirmed", "payment_status": "paid", "paid_at": now, "payment_intent_id": payment["_id"]},
    )
    if record_split(payment) and payment.get("user_id"):
        notify(
            payment["user_id"],
            "Payment successful",
            f"Your payment of {payment['amount']} {payment['currency']} was received.",
            "payment",
            {"paymentId": payment["_id"], "bookingId": payment.get("booking_id")},
        )
    return payment


def mark_failed(payment: dict, reason: str) -> dict:
    _set_payment(payment, {"status": "failed", "failure_reason": reason, "next_action": None})
    _set_booking(payment, {"status": "payment_failed", "payment_status": "failed"}, only_from=PAYABLE_BOOKING_STATUSES)
    return payment


def record_split(payment: dict) -> bool:
    """Escribe la transacción del pago y acumula ganancias. False si ya estaba registrado."""
    txns = collection("transactions")
    if txns.find_one({"txn_id": payment["_id"], "type": "payment"}):
        return False
    b = payment["breakdown"]
    now = utcnow()
    txns.insert_one(
        {
            "type": "payment",
            "txn_id": payment["_id"],
            "booking_id": payment.get("booking_id"),
            "owner_id": payment.get("owner_id"),
            "user_id": payment.get("user_id"),
            "station_id": payment.get("station_id"),
            "total_amount": b["total_amount"],
            "platform_fee": b["platform_fee"],
            "owner_amount": b["owner_amount"],
            "currency": payment.get("currency"),
            "status": "completed",
            "payout_status": "pending",
            "created_at": now,
        }
    )
    _apply_owner_delta(payment.get("owner_id"), b["owner_amount"], transactions=1)
    collection("platform_stats").update_one(
        {"_id": "financials"},
        {
            "$inc": {
                "total_revenue": b["total_amount"],
                "platform_fees": b["platform_fee"],
                "owner_payouts": b["owner_amount"],
                "total_transactions": 1,
            },
            "$set": {"updated_at": now},
        },
        upsert=True,
    )
    return True


def _apply_owner_delta(owner_id: Optional[str], amount: float, transactions: int = 0) -> None:
    oid = to_object_id(owner_id)
    if oid is None:
        logger.warning("Pago sin owner asociado; no se actualizan ganancias")
        return
    collection("owners").update_one(
        {"_id": oid},
        {
            "$inc": {
                "earnings.total_earnings": amount,
                "earnings.pending_payout": amount,
                "earnings.total_transactions": transactions,
            },
            "$set": {"earnings.last_updated": utcnow()},
        },
    )


def refund_booking(booking: dict, admin_id: Optional[str] = None, reason: Optional[str] = None) -> dict:
    """Revierte el reparto de un pago y marca pago y reserva como reembolsados."""
    if booking.get("payment_status") != "paid":
        raise PaymentError(409, "Only paid bookings can be refunded")
    payment = get_payment(booking.get("payment_intent_id"))
    if payment is not None and payment.get("status") == "refunded":
        raise PaymentError(409, "Payment already refunded")
    if payment is not None:
        b = payment["breakdown"]
    else:
        b = split_amount(booking_amount(booking) or 0.0)
    now = utcnow()
    refund = {
        "type": "refund",
        "txn_id": f"re_{uuid.uuid4().hex[:16]}",
        "payment_id": payment["_id"] if payment else None,
        "booking_id": str(booking["_id"]),
        "owner_id": booking.get("owner_id"),
        "user_id": booking.get("user_id"),
        "total_amount": b["total_amount"],
        "platform_fee": b["platform_fee"],
        "owner_amount": b["owner_amount"],
        "currency": booking.get("currency", DEFAULT_CURRENCY),
        "status": "completed",
        "reason": reason,
        "processed_by": admin_id,
        "created_at": now,
    }
    collection("transactions").insert_one(refund)
    _apply_owner_delta(booking.get("owner_id"), -b["owner_amount"])
    collection("platform_stats").update_one(
        {"_id": "financials"},
        {
            "$inc": {
                "refunds": b["total_amount"],
                "total_revenue": -b["total_amount"],
                "platform_fees": -b["platform_fee"],
                "owner_payouts": -b["owner_amount"],
            },
            "$set": {"updated_at": now},
        },
        upsert=True,
    )
    if payment is not None:
        _set_payment(payment, {"status": "refunded", "refunded_at": now})
    collection("bookings").update_one(
        {"_id": booking["_id"]},
        {"$set": {"status": "refunded", "payment_status": "refunded", "refunded_at": now, "updated_at": now}},
    )
    booking.update({"status": "refunded", "payment_status": "refunded", "refunded_at": now})
    return refund


def handle_webhook(event: dict) -> dict:
    kind = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    payment = get_payment(obj.get("id"))
    if kind not in ("payment_intent.succeeded", "payment_intent.payment_failed"):
        logger.info("Webhook no manejado: %s", kind)
        return {"received": True, "handled": False}
    # Solo los intents abiertos cambian de estado
    if payment is None or payment.get("status") not in OPEN_STATUSES:
        return {"received": True, "handled": False}
    if kind == "payment_intent.payment_failed":
        mark_failed(payment, obj.get("failure_reason") or "gateway_failure")
        return {"received": True, "handled": True}
    try:
        _payable_booking(payment)
        mark_succeeded(payment)
    except PaymentError as exc:
        logger.warning("Webhook ignorado para %s: %s", payment["_id"], exc.message)
        return {"received": True, "handled": False}
    return {"received": True, "handled": True}


def payment_view(payment: dict) -> dict:
    out = serialize(payment)
    out["id"] = payment["_id"]
    out["breakdown"] = breakdown_view(payment["breakdown"])
    out.pop("client_secret", None)
    return out
