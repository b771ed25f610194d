from __future__ import annotations

import logging
import os
import re
from datetime import datetime, timedelta
from typing import Optional

from evcharge.database.database import collection, serialize, to_object_id, utcnow
from evcharge.services.bookings import parse_datetime
from evcharge.services.normalize import to_number

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "INR")

PAID_STATUSES = ("paid", "succeeded", "completed", "success", "settled")
REFUND_STATUSES = ("refunded", "refund", "chargeback")


class FinanceError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def parse_range(value: Optional[str], default_days: int = 30, max_days: int = 366) -> int:
    """'30d', '12w', '6m' o un número de días."""
    if not value:
        return default_days
    m = re.fullmatch(r"\s*(\d+)\s*([dwmy]?)\s*", str(value).lower())
    if not m:
        return default_days
    n = int(m.group(1))
    factor = {"": 1, "d": 1, "w": 7, "m": 30, "y": 365}[m.group(2)]
    return max(1, min(n * factor, max_days))


def period_bounds(period: Optional[str] = None, start: Optional[str] = None, end: Optional[str] = None) -> tuple[datetime, datetime]:
    now = utcnow()
    to_dt = parse_datetime(end) or now
    from_dt = parse_datetime(start)
    if from_dt is None:
        from_dt = to_dt - timedelta(days=parse_range(period))
    return from_dt, to_dt


def _day_buckets(days: int) -> dict[str, float]:
    today = utcnow().date()
    return {(today - timedelta(days=i)).isoformat(): 0.0 for i in range(days - 1, -1, -1)}


def is_paid(status: Optional[str]) -> bool:
    return (status or "").lower() in PAID_STATUSES


def is_refunded(status: Optional[str]) -> bool:
    return (status or "").lower() in REFUND_STATUSES


# ============ owner ============

def _owner_transactions(owner_id: str) -> list[dict]:
    return list(collection("transactions").find({"owner_id": owner_id}))


def owner_summary(owner_id: str) -> dict:
    """Resumen financiero del owner a partir de su libro de transacciones."""
    owner = collection("owners").find_one({"_id": to_object_id(owner_id)}) or {}
    earnings = owner.get("earnings") or {}
    since = utcnow() - timedelta(days=30)
    total = month = refunds = 0.0
    bookings = 0
    for t in _owner_transactions(owner_id):
        amount = to_number(t.get("owner_amount"), 0.0)
        if t.get("type") == "payment" and is_paid(t.get("status")):
            total += amount
            bookings += 1
            if t.get("created_at") and t["created_at"] >= since:
                month += amount
        elif t.get("type") == "refund" or is_refunded(t.get("status")):
            refunds += amount
    return {
        "totalRevenue": round(total - refunds, 2),
        "monthRevenue": round(month, 2),
        "totalBookings": bookings,
        "pendingPayout": round(to_number(earnings.get("pending_payout"), 0.0), 2),
        "paidOut": round(to_number(earnings.get("paid_out"), 0.0), 2),
        "refunds": round(refunds, 2),
        "currency": owner.get("currency") or DEFAULT_CURRENCY,
    }


def owner_revenue_series(owner_id: str, days: int = 30) -> list[dict]:
    buckets = _day_buckets(days)
    since = datetime.fromisoformat(next(iter(buckets)))
    cursor = collection("transactions").find(
        {"owner_id": owner_id, "type": "payment", "created_at": {"$gte": since}}
    )
    for t in cursor:
        if not is_paid(t.get("status")):
            continue
        key = t["created_at"].date().isoformat()
        if key in buckets:
            buckets[key] += to_number(t.get("owner_amount"), 0.0)
    return [{"date": d, "amount": round(a, 2)} for d, a in buckets.items()]


def owner_payouts(owner_id: str, limit: int = 100) -> list[dict]:
    cursor = collection("payouts").find({"owner_id": owner_id}).sort("created_at", -1).limit(limit)
    return [serialize(p) for p in cursor]


def available_for_payout(owner_id: str) -> float:
    owner = collection("owners").find_one({"_id": to_object_id(owner_id)}) or {}
    pending = to_number((owner.get("earnings") or {}).get("pending_payout"), 0.0)
    scheduled = sum(
        to_number(p.get("amount"), 0.0)
        for p in collection("payouts").find({"owner_id": owner_id, "status": "scheduled"})
    )
    return round(pending - scheduled, 2)


def request_payout(owner_id: str, amount) -> dict:
    value = to_number(amount)
    if value is None or value <= 0:
        raise FinanceError(400, "Amount must be greater than 0")
    available = available_for_payout(owner_id)
    if value > available:
        raise FinanceError(400, f"Amount exceeds available balance ({available})")
    now = utcnow()
    payout = {
        "owner_id": owner_id,
        "amount": round(value, 2),
        "currency": DEFAULT_CURRENCY,
        "status": "scheduled",
        "created_at": now,
        "updated_at": now,
    }
    payout["_id"] = collection("payouts").insert_one(payout).inserted_id
    collection("transactions").insert_one(
        {
            "type": "payout_request",
            "txn_id": str(payout["_id"]),
            "owner_id": owner_id,
            "owner_amount": payout["amount"],
            "total_amount": payout["amount"],
            "currency": DEFAULT_CURRENCY,
            "status": "scheduled",
            "created_at": now,
        }
    )
    return payout


def owner_finance_overview(owner_id: str, limit: int = 50) -> dict:
    summary = owner_summary(owner_id)
    completed = sum(
        to_number(p.get("amount"), 0.0) for p in collection("payouts").find({"owner_id": owner_id, "status": "paid"})
    )
    cursor = collection("transactions").find({"owner_id": owner_id}).sort("created_at", -1).limit(limit)
    return {
        "totalEarnings": summary["totalRevenue"],
        "pendingPayouts": summary["pendingPayout"],
        "completedPayouts": round(completed, 2),
        "currency": summary["currency"],
        "transactions": [serialize(t) for t in cursor],
    }


# ============ plataforma ============

def financial_analytics(start: datetime, end: datetime) -> dict:
    """Análisis de pagos en el rango; usa el reparto real guardado en cada transacción."""
    revenue = fees = owners = 0.0
    paid = 0
    for t in collection("transactions").find({"type": "payment", "created_at": {"$gte": start, "$lte": end}}):
        if not is_paid(t.get("status")):
            continue
        paid += 1
        revenue += to_number(t.get("total_amount"), 0.0)
        fees += to_number(t.get("platform_fee"), 0.0)
        owners += to_number(t.get("owner_amount"), 0.0)
    bookings = collection("bookings").count_documents({"created_at": {"$gte": start, "$lte": end}})
    return {
        "totalRevenue": round(revenue, 2),
        "platformProfit": round(fees, 2),
        "ownerPayouts": round(owners, 2),
        "profitMargin": round(fees / revenue * 100.0, 2) if revenue > 0 else 0.0,
        "totalBookings": bookings,
        "paidCount": paid,
        "averageBookingValue": round(revenue / paid, 2) if paid else 0.0,
        "currency": DEFAULT_CURRENCY,
        "from": start.isoformat(),
        "to": end.isoformat(),
    }


def compute_finance_summary() -> dict:
    """Resumen financiero global para el panel de administración."""
    revenue = fees = owners = refunds = 0.0
    count = 0
    for t in collection("transactions").find({"type": {"$in": ["payment", "refund"]}}):
        if t["type"] == "payment" and is_paid(t.get("status")):
            count += 1
            revenue += to_number(t.get("total_amount"), 0.0)
            fees += to_number(t.get("platform_fee"), 0.0)
            owners += to_number(t.get("owner_amount"), 0.0)
        elif t["type"] == "refund":
            refunds += to_number(t.get("total_amount"), 0.0)
            fees -= to_number(t.get("platform_fee"), 0.0)
            owners -= to_number(t.get("owner_amount"), 0.0)
    pending = paid_out = 0.0
    for p in collection("payouts").find({}, {"amount": 1, "status": 1}):
        if p.get("status") == "paid":
            paid_out += to_number(p.get("amount"), 0.0)
        else:
            pending += to_number(p.get("amount"), 0.0)
    return {
        "scope": "global",
        "totalRevenue": round(revenue, 2),
        "netRevenue": round(revenue - refunds, 2),
        "platformFees": round(fees, 2),
        "ownerEarnings": round(owners, 2),
        "refunds": round(refunds, 2),
        "pendingPayouts": round(pending, 2),
        "paidPayouts": round(paid_out, 2),
        "transactions": count,
        "currency": DEFAULT_CURRENCY,
        "generatedAt": utcnow().isoformat(),
    }


def store_finance_snapshot(summary: dict) -> dict:
    doc = {**summary, "timestamp": utcnow()}
    doc["_id"] = collection("finance_snapshots").insert_one(doc).inserted_id
    return doc


def latest_finance_snapshot() -> Optional[dict]:
    return collection("finance_snapshots").find_one({"scope": "global"}, sort=[("timestamp", -1)])


def materialize_finance_snapshot() -> dict:
    """Recalcula y guarda el resumen (lo ejecuta el scheduler)."""
    return store_finance_snapshot(compute_finance_summary())


def pending_payouts() -> dict:
    items = [serialize(p) for p in collection("payouts").find({"status": "scheduled"}).sort("created_at", 1)]
    return {
        "payouts": items,
        "summary": {
            "totalPayoutAmount": round(sum(to_number(p.get("amount"), 0.0) for p in items), 2),
            "ownerCount": len({p.get("owner_id") for p in items}),
            "count": len(items),
        },
    }


def process_payouts(payout_id: Optional[str] = None, owner_id: Optional[str] = None, admin_id: Optional[str] = None) -> list[dict]:
    """Marca como pagados los payouts programados y mueve el saldo del owner."""
    query: dict = {"status": "scheduled"}
    if payout_id:
        query["_id"] = to_object_id(payout_id)
    if owner_id:
        query["owner_id"] = owner_id
    processed = []
    now = utcnow()
    for p in list(collection("payouts").find(query)):
        amount = to_number(p.get("amount"), 0.0)
        result = collection("payouts").update_one(
            {"_id": p["_id"], "status": "scheduled"},
            {"$set": {"status": "paid", "processed_at": now, "processed_by": admin_id, "updated_at": now}},
        )
        if not result.modified_count:
            # otro proceso ya lo pagó
            continue
        collection("owners").update_one(
            {"_id": to_object_id(p.get("owner_id"))},
            {"$inc": {"earnings.pending_payout": -amount, "earnings.paid_out": amount}},
        )
        collection("transactions").insert_one(
            {
                "type": "payout",
                "txn_id": str(p["_id"]),
                "owner_id": p.get("owner_id"),
                "owner_amount": amount,
                "total_amount": amount,
                "currency": p.get("currency", DEFAULT_CURRENCY),
                "status": "completed",
                "processed_by": admin_id,
                "created_at": now,
            }
        )
        p.update({"status": "paid", "processed_at": now, "processed_by": admin_id})
        processed.append(serialize(p))
    if processed:
        logger.info("Payouts procesados: %s", len(processed))
    return processed
