from __future__ import annotations

import os
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Optional

from evcharge.database.database import collection, utcnow
from evcharge.services.finance import compute_finance_summary, is_paid
from evcharge.services.normalize import to_number

DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "INR")


def overview() -> dict:
    stations = collection("stations")
    return {
        "totalStations": stations.count_documents({"status": {"$ne": "deleted"}}),
        "activeStations": stations.count_documents({"status": "active"}),
        "pendingStations": stations.count_documents({"status": "pending"}),
        "totalUsers": collection("users").count_documents({}),
        "totalOwners": collection("owners").count_documents({}),
        "totalBookings": collection("bookings").count_documents({}),
    }


def dashboard(period: Optional[str] = None) -> dict:
    """Vista general del panel admin: conteos + ingresos según el reparto real."""
    summary = compute_finance_summary()
    revenue = summary["totalRevenue"]
    fees = summary["platformFees"]
    return {
        "overview": overview(),
        "revenue": {
            "totalRevenue": revenue,
            "platformProfit": fees,
            "ownerPayouts": summary["ownerEarnings"],
            "refunds": summary["refunds"],
            "profitMargin": round(fees / revenue * 100.0, 2) if revenue > 0 else 0.0,
            "currency": summary["currency"],
        },
        "period": period or "all",
        "generatedAt": utcnow().isoformat(),
    }


def kpis() -> dict:
    since = utcnow() - timedelta(days=30)
    users = collection("users")
    all_time = last_30 = 0.0
    for t in collection("transactions").find({"type": "payment"}):
        if not is_paid(t.get("status")):
            continue
        amount = to_number(t.get("total_amount"), 0.0)
        all_time += amount
        if t.get("created_at") and t["created_at"] >= since:
            last_30 += amount
    return {
        "totalUsers": users.count_documents({}),
        "activeUsers": users.count_documents({"last_login_at": {"$gte": since}}),
        "totalStations": collection("stations").count_documents({"status": {"$ne": "deleted"}}),
        "totalBookings": collection("bookings").count_documents({}),
        "revenueAllTime": round(all_time, 2),
        "revenue30d": round(last_30, 2),
        "currency": DEFAULT_CURRENCY,
    }


def booking_analytics(start: datetime, end: datetime) -> dict:
    hourly = [0] * 24
    daily: dict[str, int] = defaultdict(int)
    statuses: Counter = Counter()
    total = 0
    for b in collection("bookings").find({"created_at": {"$gte": start, "$lte": end}}):
        total += 1
        statuses[b.get("status") or "unknown"] += 1
        start_time = b.get("start_time") or b["created_at"]
        hourly[start_time.hour] += 1
        daily[b["created_at"].date().isoformat()] += 1
    return {
        "totalBookings": total,
        "statusBreakdown": dict(statuses),
        "patterns": {"hourly": hourly, "daily": dict(sorted(daily.items()))},
        "from": start.isoformat(),
        "to": end.isoformat(),
    }


def _daily_counts(coll: str, query: dict, field: str, days: int) -> list[tuple[str, int]]:
    since = utcnow() - timedelta(days=days)
    counts: dict[str, int] = defaultdict(int)
    for doc in collection(coll).find({**query, field: {"$gte": since}}, {field: 1}):
        counts[doc[field].date().isoformat()] += 1
    return sorted(counts.items())


def signup_trends(days: int = 30) -> list[dict]:
    return [{"date": d, "users": n} for d, n in _daily_counts("users", {}, "created_at", days)]


def error_trends(days: int = 14) -> list[dict]:
    return [{"date": d, "count": n} for d, n in _daily_counts("admin_logs", {"action": "ERROR"}, "timestamp", days)]


def _station_rollup(query: dict) -> dict[str, dict]:
    rollup: dict[str, dict] = {}
    for b in collection("bookings").find(query):
        sid = b.get("station_id")
        if not sid:
            continue
        r = rollup.setdefault(sid, {"id": sid, "name": b.get("station_name"), "bookings": 0, "revenue": 0.0})
        r["bookings"] += 1
        if b.get("payment_status") == "paid":
            r["revenue"] += to_number(b.get("amount"), 0.0)
    for r in rollup.values():
        r["revenue"] = round(r["revenue"], 2)
    return rollup


def top_stations(limit: int = 10) -> list[dict]:
    rows = sorted(_station_rollup({}).values(), key=lambda r: (r["bookings"], r["revenue"]), reverse=True)
    return rows[:limit]


def owner_station_analytics(owner_id: str) -> dict:
    rollup = _station_rollup({"owner_id": owner_id})
    for s in collection("stations").find({"owner_id": owner_id, "status": {"$ne": "deleted"}}, {"name": 1}):
        sid = str(s["_id"])
        rollup.setdefault(sid, {"id": sid, "name": s.get("name"), "bookings": 0, "revenue": 0.0})
    stations = sorted(rollup.values(), key=lambda r: r["revenue"], reverse=True)
    return {
        "stations": stations,
        "totals": {
            "bookings": sum(r["bookings"] for r in stations),
            "revenue": round(sum(r["revenue"] for r in stations), 2),
        },
    }


def station_analytics(station: dict, days: int = 30) -> dict:
    sid = str(station["_id"])
    since = utcnow() - timedelta(days=days)
    hourly = [0] * 24
    statuses: Counter = Counter()
    revenue = 0.0
    kwh = 0.0
    for b in collection("bookings").find({"station_id": sid, "created_at": {"$gte": since}}):
        statuses[b.get("status") or "unknown"] += 1
        hourly[(b.get("start_time") or b["created_at"]).hour] += 1
        if b.get("payment_status") == "paid":
            revenue += to_number(b.get("amount"), 0.0)
            kwh += to_number(b.get("estimated_kwh"), 0.0)
    return {
        "stationId": sid,
        "name": station.get("name"),
        "days": days,
        "bookings": sum(statuses.values()),
        "statusBreakdown": dict(statuses),
        "revenue": round(revenue, 2),
        "energyKwh": round(kwh, 2),
        "hourly": hourly,
    }
