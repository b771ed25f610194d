import hashlib
import hmac
import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from evcharge.auth.deps import Identity, current_identity
from evcharge.database.database import collection
from evcharge.models.models import CheckoutBody, ConfirmBody, IntentBody, VerifyBody
from evcharge.services import payments as svc
from evcharge.services.bookings import get_booking

router = APIRouter()
logger = logging.getLogger(__name__)

WEBHOOK_SECRET = os.getenv("PAYMENT_WEBHOOK_SECRET")


def _own_booking(booking_id: str, identity: Identity) -> dict:
    booking = get_booking(booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    if not identity.is_admin and str(booking.get("user_id")) != identity.id:
        raise HTTPException(status_code=403, detail="Access denied")
    return booking


def _own_payment(payment_id: str, identity: Identity) -> dict:
    payment = svc.get_payment(payment_id)
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")
    allowed = (
        identity.is_admin
        or str(payment.get("user_id")) == identity.id
        or (identity.is_owner and str(payment.get("owner_id")) == identity.id)
    )
    if not allowed:
        raise HTTPException(status_code=403, detail="Access denied")
    return payment


def _confirm(payment: dict, card_number: Optional[str]) -> dict:
    try:
        payment, outcome = svc.confirm_payment(payment, card_number)
    except svc.PaymentError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    logger.info("Pago %s → %s", payment["_id"], outcome)
    messages = {
        "success": "Payment successful",
        "failure": "Payment declined",
        "pending": "Additional authentication required",
    }
    return {
        "success": outcome != "failure",
        "outcome": outcome,
        "status": payment["status"],
        "message": messages[outcome],
        "paymentIntent": svc.intent_view(payment),
    }


@router.post("/payments/create-intent")  # /api/payments/create-intent
def create_intent(body: IntentBody, identity: Identity = Depends(current_identity)):
    booking = _own_booking(body.bookingId, identity)
    customer = {"email": body.customerEmail or identity.email, "name": body.customerName}
    try:
        payment = svc.create_intent(booking, body.amount, body.currency, body.paymentMethod, customer)
    except svc.PaymentError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    return {"success": True, "paymentIntent": svc.intent_view(payment)}


@router.post("/payments/checkout")  # /api/payments/checkout
def checkout(body: CheckoutBody, identity: Identity = Depends(current_identity)):
    booking = _own_booking(body.bookingId, identity)
    try:
        svc.ensure_payable(booking)
    except svc.PaymentError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    payment = svc.find_open_intent(str(booking["_id"]))
    if payment is None:
        try:
            payment = svc.create_intent(booking, customer={"email": identity.email})
        except svc.PaymentError as exc:
            raise HTTPException(status_code=exc.status_code, detail=exc.message)
    return {
        "success": True,
        "paymentId": payment["_id"],
        "bookingId": payment["booking_id"],
        "amount": payment["amount"],
        "currency": payment["currency"],
        "status": payment["status"],
        "paymentUrl": svc.checkout_url(payment["_id"], payment["booking_id"]),
    }


@router.post("/payments/confirm/{payment_id}")  # /api/payments/confirm/{id}
def confirm(payment_id: str, body: Optional[ConfirmBody] = None, identity: Identity = Depends(current_identity)):
    payment = _own_payment(payment_id, identity)
    return _confirm(payment, body.cardNumber if body else None)


@router.post("/payments/verify")  # /api/payments/verify
def verify(body: VerifyBody, identity: Identity = Depends(current_identity)):
    payment = _own_payment(body.paymentId, identity)
    if body.bookingId and body.bookingId != payment.get("booking_id"):
        raise HTTPException(status_code=400, detail="Payment does not belong to this booking")
    card = (body.payload or {}).get("cardNumber")
    return _confirm(payment, card)


@router.post("/payments/3ds/{payment_id}")  # /api/payments/3ds/{id}
def three_ds(payment_id: str, identity: Identity = Depends(current_identity)):
    payment = _own_payment(payment_id, identity)
    try:
        svc.complete_3ds(payment)
    except svc.PaymentError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    return {"success": True, "status": payment["status"], "paymentIntent": svc.intent_view(payment)}


@router.post("/payments/webhook")  # /api/payments/webhook
async def webhook(request: Request):
    raw = await request.body()
    if WEBHOOK_SECRET:
        expected = hmac.new(WEBHOOK_SECRET.encode(), raw, hashlib.sha256).hexdigest()
        given = request.headers.get("x-webhook-signature") or ""
        if not hmac.compare_digest(expected, given):
            raise HTTPException(status_code=401, detail="Invalid webhook signature")
    try:
        event = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid event")
    return svc.handle_webhook(event)


@router.get("/payments/{payment_id}")  # /api/payments/{id}
def get_payment(payment_id: str, identity: Identity = Depends(current_identity)):
    payment = _own_payment(payment_id, identity)
    return {"success": True, "payment": svc.payment_view(payment)}


@router.get("/payments")  # /api/payments
def list_payments(status: Optional[str] = None, limit: int = 20, offset: int = 0, identity: Identity = Depends(current_identity)):
    limit = max(1, min(limit, 100))
    offset = max(0, offset)
    query: dict = {}
    if identity.is_owner:
        query["owner_id"] = identity.id
    elif not identity.is_admin:
        query["user_id"] = identity.id
    if status:
        query["status"] = status
    coll = collection("payments")
    total = coll.count_documents(query)
    items = [svc.payment_view(p) for p in coll.find(query).sort("created_at", -1).skip(offset).limit(limit)]
    return {"success": True, "payments": items, "total": total, "hasMore": offset + len(items) < total}
