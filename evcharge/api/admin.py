from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from evcharge.auth.deps import ROLE_COLLECTIONS, Identity, require_admin
from evcharge.database.database import collection, ping, serialize, to_object_id, utcnow
from evcharge.models.models import (
    AdminBookingUpdateBody,
    AdminUserUpdateBody,
    BulkUpdateBody,
    FeatureBody,
    ProcessPayoutBody,
    ProfileBody,
    ReasonBody,
    RoleBody,
    SettingsBody,
    StationBody,
)
from evcharge.services import analytics, finance
from evcharge.services import bookings as booking_svc
from evcharge.services import stations as station_svc
from evcharge.services.audit import log_admin_action
from evcharge.services.normalize import normalize_booking, normalize_station, station_location
from evcharge.services.notifications import notify
from evcharge.services.payments import PLATFORM_FEE_PERCENT, PaymentError, refund_booking

router = APIRouter()

STATION_SORT_FIELDS = {"name": "name", "createdAt": "created_at", "rating": "rating", "status": "status"}
USER_STATUSES = ("active", "banned", "suspended")


def _page(limit: int, offset: int, maximum: int = 100) -> tuple[int, int]:
    return max(1, min(limit, maximum)), max(0, offset)


def _paginated(key: str, items: list, total: int, limit: int, offset: int) -> dict:
    return {
        "success": True,
        key: items,
        "pagination": {"total": total, "limit": limit, "offset": offset, "hasMore": offset + len(items) < total},
    }


# ============ dashboard & analytics ============

@router.get("/admin/dashboard", tags=["admin"])  # /api/admin/dashboard
@router.get("/admin/summary", tags=["admin"])  # /api/admin/summary
def dashboard(period: Optional[str] = None, identity: Identity = Depends(require_admin)):
    return {"success": True, **analytics.dashboard(period)}


@router.get("/admin/analytics/kpis", tags=["admin"])  # /api/admin/analytics/kpis
def kpis(identity: Identity = Depends(require_admin)):
    return analytics.kpis()


@router.get("/admin/analytics/financial", tags=["admin"])  # /api/admin/analytics/financial
def financial(
    period: str = "30d",
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = None,
    identity: Identity = Depends(require_admin),
):
    start, end = finance.period_bounds(period, from_, to)
    return {"success": True, "summary": finance.financial_analytics(start, end)}


@router.get("/admin/analytics/bookings", tags=["admin"])  # /api/admin/analytics/bookings
def booking_stats(period: Optional[str] = None, range: Optional[str] = None, identity: Identity = Depends(require_admin)):
    start, end = finance.period_bounds(period or range)
    return {"success": True, "analytics": analytics.booking_analytics(start, end)}


@router.get("/admin/analytics/users", tags=["admin"])  # /api/admin/analytics/users
def user_trends(range: str = "30d", identity: Identity = Depends(require_admin)):
    return analytics.signup_trends(finance.parse_range(range))


@router.get("/admin/analytics/top-stations", tags=["admin"])  # /api/admin/analytics/top-stations
def top_stations(limit: int = 10, identity: Identity = Depends(require_admin)):
    return analytics.top_stations(max(1, min(limit, 50)))


@router.get("/admin/analytics/errors", tags=["admin"])  # /api/admin/analytics/errors
def error_trends(range: str = "14d", identity: Identity = Depends(require_admin)):
    return analytics.error_trends(finance.parse_range(range, default_days=14))


# ============ finance ============

@router.get("/admin/finance/summary", tags=["admin"])  # /api/admin/finance/summary
def finance_summary(materialized: bool = False, identity: Identity = Depends(require_admin)):
    if materialized:
        doc = finance.latest_finance_snapshot()
        if doc:
            doc.pop("_id", None)
            doc["timestamp"] = doc["timestamp"].isoformat()
            return doc
        # sin snapshot: cálculo en vivo
    return finance.compute_finance_summary()


@router.get("/admin/finance/transactions", tags=["admin"])  # /api/admin/finance/transactions
def finance_transactions(
    type: Optional[str] = None,
    ownerId: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    identity: Identity = Depends(require_admin),
):
    limit, offset = _page(limit, offset)
    query: dict = {}
    if type:
        query["type"] = type
    if ownerId:
        query["owner_id"] = ownerId
    coll = collection("transactions")
    total = coll.count_documents(query)
    items = [serialize(t) for t in coll.find(query).sort("created_at", -1).skip(offset).limit(limit)]
    return _paginated("transactions", items, total, limit, offset)


@router.get("/admin/finance/payouts", tags=["admin"])  # /api/admin/finance/payouts
@router.get("/admin/payouts/history", tags=["admin"])  # /api/admin/payouts/history
def finance_payouts(status: Optional[str] = None, limit: int = 50, offset: int = 0, identity: Identity = Depends(require_admin)):
    limit, offset = _page(limit, offset)
    query = {"status": status} if status else {}
    coll = collection("payouts")
    total = coll.count_documents(query)
    items = [serialize(p) for p in coll.find(query).sort("created_at", -1).skip(offset).limit(limit)]
    return _paginated("payouts", items, total, limit, offset)


@router.get("/admin/payouts/pending", tags=["admin"])  # /api/admin/payouts/pending
def payouts_pending(identity: Identity = Depends(require_admin)):
    return {"success": True, **finance.pending_payouts()}


@router.post("/admin/payouts/process", tags=["admin"])  # /api/admin/payouts/process
def payouts_process(body: ProcessPayoutBody, identity: Identity = Depends(require_admin)):
    processed = finance.process_payouts(body.payoutId, body.ownerId, identity.id)
    log_admin_action(identity.id, "PROCESS_PAYOUTS", {"count": len(processed), "payoutId": body.payoutId, "ownerId": body.ownerId})
    return {"success": True, "processed": processed, "count": len(processed)}


# ============ stations (alias /bunks) ============

def _station_or_404(station_id: str) -> dict:
    station = station_svc.get_station(station_id, include_deleted=True)
    if not station:
        raise HTTPException(status_code=404, detail="Station not found")
    return station


@router.get("/admin/stations", tags=["admin"])  # /api/admin/stations
@router.get("/admin/bunks", tags=["admin"])
def list_stations(
    status: Optional[str] = None,
    ownerId: Optional[str] = None,
    featured: Optional[bool] = None,
    q: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    sortBy: str = "createdAt",
    sortOrder: str = "desc",
    identity: Identity = Depends(require_admin),
):
    limit, offset = _page(limit, offset)
    query = station_svc.text_query(q)
    query["status"] = status if status else {"$ne": "deleted"}
    if ownerId:
        query["owner_id"] = ownerId
    if featured is not None:
        query["featured"] = featured
    sort = [(STATION_SORT_FIELDS.get(sortBy, "created_at"), 1 if sortOrder == "asc" else -1)]
    items, total = station_svc.list_stations(query, limit, offset, sort)
    return _paginated("stations", items, total, limit, offset)


@router.post("/admin/stations", status_code=201, tags=["admin"])  # /api/admin/stations
@router.post("/admin/bunks", status_code=201, tags=["admin"])
def create_station(body: StationBody, identity: Identity = Depends(require_admin)):
    data = body.model_dump(exclude_none=True)
    if not data.get("name"):
        raise HTTPException(status_code=400, detail="name is required")
    if station_location(data) is None:
        raise HTTPException(status_code=400, detail="location with lat and lng is required")
    station = station_svc.create_station(data, data.get("ownerId"), approved=True)
    log_admin_action(identity.id, "CREATE_STATION", {"stationId": str(station["_id"])})
    return {"success": True, "station": normalize_station(station)}


@router.post("/admin/stations/bulk-update", tags=["admin"])  # /api/admin/stations/bulk-update
@router.post("/admin/bunks/bulk-update", tags=["admin"])
def bulk_update(body: BulkUpdateBody, identity: Identity = Depends(require_admin)):
    ids = [oid for oid in (to_object_id(s) for s in body.stationIds) if oid]
    if not ids:
        raise HTTPException(status_code=400, detail="stationIds is required")
    fields = station_svc.station_fields_from_body(body.updates)
    for key in ("status", "featured", "approved"):
        if key in body.updates:
            fields[key] = body.updates[key]
    if not fields:
        raise HTTPException(status_code=400, detail="No valid updates")
    fields["updated_at"] = utcnow()
    result = collection("stations").update_many({"_id": {"$in": ids}}, {"$set": fields})
    log_admin_action(identity.id, "BULK_UPDATE_STATIONS", {"count": result.modified_count, "fields": sorted(fields)})
    return {"success": True, "matched": result.matched_count, "modified": result.modified_count}


@router.get("/admin/stations/{station_id}", tags=["admin"])  # /api/admin/stations/{id}
@router.get("/admin/bunks/{station_id}", tags=["admin"])
def get_station(station_id: str, identity: Identity = Depends(require_admin)):
    return {"success": True, "station": normalize_station(_station_or_404(station_id))}


@router.patch("/admin/stations/{station_id}", tags=["admin"])  # /api/admin/stations/{id}
@router.put("/admin/stations/{station_id}", tags=["admin"])
@router.patch("/admin/bunks/{station_id}", tags=["admin"])
@router.put("/admin/bunks/{station_id}", tags=["admin"])
def update_station(station_id: str, body: StationBody, identity: Identity = Depends(require_admin)):
    station = _station_or_404(station_id)
    data = body.model_dump(exclude_none=True)
    fields = station_svc.station_fields_from_body(data)
    for key in ("status", "featured", "approved"):
        if key in data:
            fields[key] = data[key]
    if "ownerId" in data:
        fields["owner_id"] = data["ownerId"]
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    station_svc.update_station(station, fields)
    log_admin_action(identity.id, "UPDATE_STATION", {"stationId": station_id, "fields": sorted(fields)})
    return {"success": True, "station": normalize_station(station)}


@router.delete("/admin/stations/{station_id}", tags=["admin"])  # /api/admin/stations/{id}
@router.delete("/admin/bunks/{station_id}", tags=["admin"])
def delete_station(station_id: str, permanent: bool = False, identity: Identity = Depends(require_admin)):
    station = _station_or_404(station_id)
    if permanent:
        collection("stations").delete_one({"_id": station["_id"]})
    else:
        station_svc.soft_delete(station)
    log_admin_action(identity.id, "DELETE_STATION", {"stationId": station_id, "permanent": permanent})
    return {"success": True, "permanent": permanent}


def _notify_owner(station: dict, title: str, message: str) -> None:
    if station.get("owner_id"):
        notify(station["owner_id"], title, message, "station", {"stationId": str(station["_id"])})


@router.post("/admin/stations/{station_id}/approve", tags=["admin"])  # /api/admin/stations/{id}/approve
@router.post("/admin/bunks/{station_id}/approve", tags=["admin"])
def approve_station(station_id: str, identity: Identity = Depends(require_admin)):
    station = _station_or_404(station_id)
    station_svc.update_station(
        station, {"status": "active", "approved": True, "approved_at": utcnow(), "approved_by": identity.id}
    )
    _notify_owner(station, "Station approved", f"{station.get('name')} is now live.")
    log_admin_action(identity.id, "APPROVE_STATION", {"stationId": station_id})
    return {"success": True, "station": normalize_station(station)}


@router.post("/admin/stations/{station_id}/reject", tags=["admin"])  # /api/admin/stations/{id}/reject
@router.post("/admin/bunks/{station_id}/reject", tags=["admin"])
def reject_station(station_id: str, body: Optional[ReasonBody] = None, identity: Identity = Depends(require_admin)):
    station = _station_or_404(station_id)
    reason = body.reason if body else None
    station_svc.update_station(station, {"status": "rejected", "approved": False, "rejection_reason": reason})
    _notify_owner(station, "Station rejected", reason or f"{station.get('name')} was not approved.")
    log_admin_action(identity.id, "REJECT_STATION", {"stationId": station_id, "reason": reason})
    return {"success": True, "station": normalize_station(station)}


@router.patch("/admin/stations/{station_id}/feature", tags=["admin"])  # /api/admin/stations/{id}/feature
@router.patch("/admin/bunks/{station_id}/feature", tags=["admin"])
def feature_station(station_id: str, body: Optional[FeatureBody] = None, identity: Identity = Depends(require_admin)):
    station = _station_or_404(station_id)
    featured = body.featured if body and body.featured is not None else not station.get("featured", False)
    station_svc.update_station(station, {"featured": featured})
    log_admin_action(identity.id, "FEATURE_STATION", {"stationId": station_id, "featured": featured})
    return {"success": True, "featured": featured}


# ============ users ============

def _find_account(user_id: str) -> tuple[str, dict]:
    oid = to_object_id(user_id)
    if oid is not None:
        for role, name in ROLE_COLLECTIONS.items():
            record = collection(name).find_one({"_id": oid})
            if record:
                return role, record
    raise HTTPException(status_code=404, detail="User not found")


def _account_view(role: str, record: dict) -> dict:
    out = serialize(record)
    out["role"] = role
    return out


def _change_role(current: str, record: dict, new_role: str) -> dict:
    """Mueve la cuenta a la colección del nuevo rol conservando su `_id`."""
    if new_role not in ROLE_COLLECTIONS:
        raise HTTPException(status_code=400, detail="Invalid role")
    if new_role == current:
        return record
    moved = {**record, "role": new_role, "updated_at": utcnow()}
    if new_role == "owner":
        moved.setdefault("earnings", {"total_earnings": 0.0, "pending_payout": 0.0, "paid_out": 0.0, "total_transactions": 0})
        moved.setdefault("display_name", record.get("name"))
    if new_role == "admin":
        moved.setdefault("permissions", ["all"])
    collection(ROLE_COLLECTIONS[new_role]).insert_one(moved)
    collection(ROLE_COLLECTIONS[current]).delete_one({"_id": record["_id"]})
    return moved


@router.get("/admin/users", tags=["admin"])  # /api/admin/users
def list_users(
    role: str = "user",
    status: Optional[str] = None,
    q: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    identity: Identity = Depends(require_admin),
):
    if role not in ROLE_COLLECTIONS:
        raise HTTPException(status_code=400, detail="Invalid role")
    limit, offset = _page(limit, offset)
    query = station_svc.text_query(q, ("email", "name", "display_name", "phone"))
    if status:
        query["status"] = status
    coll = collection(ROLE_COLLECTIONS[role])
    total = coll.count_documents(query)
    items = [_account_view(role, u) for u in coll.find(query, {"password_hash": 0}).sort("created_at", -1).skip(offset).limit(limit)]
    return _paginated("users", items, total, limit, offset)


@router.get("/admin/users/{user_id}", tags=["admin"])  # /api/admin/users/{id}
def get_user(user_id: str, identity: Identity = Depends(require_admin)):
    role, record = _find_account(user_id)
    return {"success": True, "user": _account_view(role, record)}


@router.patch("/admin/users/{user_id}", tags=["admin"])  # /api/admin/users/{id}
def update_user(user_id: str, body: AdminUserUpdateBody, identity: Identity = Depends(require_admin)):
    role, record = _find_account(user_id)
    fields = {}
    if body.status is not None:
        if body.status not in USER_STATUSES:
            raise HTTPException(status_code=400, detail="Invalid status")
        fields["status"] = body.status
    if body.verified is not None:
        fields["verified"] = body.verified
    if body.active is not None:
        fields["status"] = "active" if body.active else "suspended"
    if not fields and body.role is None:
        raise HTTPException(status_code=400, detail="No fields to update")
    if fields:
        fields["updated_at"] = utcnow()
        collection(ROLE_COLLECTIONS[role]).update_one({"_id": record["_id"]}, {"$set": fields})
        record.update(fields)
    if body.role is not None:
        record = _change_role(role, record, body.role)
        role = body.role
    log_admin_action(identity.id, "UPDATE_USER", {"userId": user_id, **body.model_dump(exclude_none=True)})
    return {"success": True, "user": _account_view(role, record)}


@router.patch("/admin/users/{user_id}/role", tags=["admin"])  # /api/admin/users/{id}/role
def update_role(user_id: str, body: RoleBody, identity: Identity = Depends(require_admin)):
    role, record = _find_account(user_id)
    if record["_id"] == identity.record["_id"]:
        raise HTTPException(status_code=400, detail="Cannot change your own role")
    record = _change_role(role, record, body.role)
    log_admin_action(identity.id, "CHANGE_ROLE", {"userId": user_id, "from": role, "to": body.role})
    return {"success": True, "user": _account_view(body.role, record)}


@router.post("/admin/users/{user_id}/ban", tags=["admin"])  # /api/admin/users/{id}/ban
def ban_user(user_id: str, body: Optional[ReasonBody] = None, identity: Identity = Depends(require_admin)):
    role, record = _find_account(user_id)
    if role == "admin":
        raise HTTPException(status_code=400, detail="Admins cannot be banned")
    reason = body.reason if body else None
    fields = {"status": "banned", "banned_at": utcnow(), "ban_reason": reason, "updated_at": utcnow()}
    collection(ROLE_COLLECTIONS[role]).update_one({"_id": record["_id"]}, {"$set": fields})
    log_admin_action(identity.id, "BAN_USER", {"userId": user_id, "reason": reason})
    return {"success": True, "status": "banned"}


@router.post("/admin/users/{user_id}/unban", tags=["admin"])  # /api/admin/users/{id}/unban
def unban_user(user_id: str, identity: Identity = Depends(require_admin)):
    role, record = _find_account(user_id)
    collection(ROLE_COLLECTIONS[role]).update_one(
        {"_id": record["_id"]}, {"$set": {"status": "active", "updated_at": utcnow()}, "$unset": {"ban_reason": ""}}
    )
    log_admin_action(identity.id, "UNBAN_USER", {"userId": user_id})
    return {"success": True, "status": "active"}


# ============ bookings ============

@router.get("/admin/bookings", tags=["admin"])  # /api/admin/bookings
def list_bookings(
    status: Optional[str] = None,
    paymentStatus: Optional[str] = None,
    stationId: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    identity: Identity = Depends(require_admin),
):
    limit, offset = _page(limit, offset)
    query: dict = {}
    if status:
        query["status"] = status
    if paymentStatus:
        query["payment_status"] = paymentStatus
    if stationId:
        query["station_id"] = stationId
    items, total = booking_svc.list_bookings(query, limit, offset)
    return _paginated("bookings", [normalize_booking(b) for b in items], total, limit, offset)


def _booking_or_404(booking_id: str) -> dict:
    booking = booking_svc.get_booking(booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


@router.patch("/admin/bookings/{booking_id}", tags=["admin"])  # /api/admin/bookings/{id}
def update_booking(booking_id: str, body: AdminBookingUpdateBody, identity: Identity = Depends(require_admin)):
    booking = _booking_or_404(booking_id)
    if body.status not in booking_svc.BOOKING_STATUSES:
        raise HTTPException(status_code=400, detail="Unknown booking status")
    if body.status == "refunded":
        raise HTTPException(status_code=400, detail="Use the refund endpoint")
    try:
        if body.status == "cancelled":
            booking_svc.cancel_booking(booking)
        else:
            booking_svc.update_booking(booking, {"status": body.status})
    except booking_svc.BookingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    log_admin_action(identity.id, "UPDATE_BOOKING", {"bookingId": booking_id, "status": body.status})
    return {"success": True, "booking": normalize_booking(booking)}


@router.post("/admin/bookings/{booking_id}/refund", tags=["admin"])  # /api/admin/bookings/{id}/refund
def refund(booking_id: str, body: Optional[ReasonBody] = None, identity: Identity = Depends(require_admin)):
    booking = _booking_or_404(booking_id)
    reason = body.reason if body else None
    try:
        txn = refund_booking(booking, identity.id, reason)
    except PaymentError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    if booking.get("user_id"):
        notify(booking["user_id"], "Booking refunded", f"A refund of {txn['total_amount']} was issued.", "payment")
    log_admin_action(identity.id, "REFUND_BOOKING", {"bookingId": booking_id, "amount": txn["total_amount"]})
    return {"success": True, "refund": serialize(txn), "booking": normalize_booking(booking)}


# ============ settings, profile, logs ============

def _settings_view() -> dict:
    doc = collection("settings").find_one({"_id": "platform"}) or {}
    return {
        "platformFeePercent": doc.get("platform_fee_percent", PLATFORM_FEE_PERCENT),
        "currency": doc.get("currency", finance.DEFAULT_CURRENCY),
        "supportEmail": doc.get("support_email"),
        "updatedAt": doc["updated_at"].isoformat() if doc.get("updated_at") else None,
    }


@router.get("/admin/settings", tags=["admin"])  # /api/admin/settings
def get_settings(identity: Identity = Depends(require_admin)):
    return {"success": True, "settings": _settings_view()}


@router.patch("/admin/settings", tags=["admin"])  # /api/admin/settings
def update_settings(body: SettingsBody, identity: Identity = Depends(require_admin)):
    mapping = {"platformFeePercent": "platform_fee_percent", "currency": "currency", "supportEmail": "support_email"}
    fields = {mapping[k]: v for k, v in body.model_dump(exclude_none=True).items()}
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    fields["updated_at"] = utcnow()
    fields["updated_by"] = identity.id
    collection("settings").update_one({"_id": "platform"}, {"$set": fields}, upsert=True)
    log_admin_action(identity.id, "UPDATE_SETTINGS", body.model_dump(exclude_none=True))
    return {"success": True, "settings": _settings_view()}


@router.get("/admin/profile", tags=["admin"])  # /api/admin/profile
def get_profile(identity: Identity = Depends(require_admin)):
    return {"success": True, "admin": _account_view("admin", identity.record)}


@router.patch("/admin/profile", tags=["admin"])  # /api/admin/profile
def update_profile(body: ProfileBody, identity: Identity = Depends(require_admin)):
    fields = {k: v for k, v in {"name": body.name or body.displayName, "phone": body.phone}.items() if v is not None}
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    fields["updated_at"] = utcnow()
    collection("admins").update_one({"_id": identity.record["_id"]}, {"$set": fields})
    identity.record.update(fields)
    return {"success": True, "admin": _account_view("admin", identity.record)}


@router.get("/admin/logs", tags=["admin"])  # /api/admin/logs
def list_logs(
    action: Optional[str] = None,
    adminId: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    identity: Identity = Depends(require_admin),
):
    limit, offset = _page(limit, offset, maximum=200)
    query: dict = {}
    if action:
        query["action"] = action
    if adminId:
        query["admin_id"] = adminId
    coll = collection("admin_logs")
    total = coll.count_documents(query)
    items = [serialize(d) for d in coll.find(query).sort("timestamp", -1).skip(offset).limit(limit)]
    return _paginated("logs", items, total, limit, offset)


@router.get("/admin/health", tags=["admin"])  # /api/admin/health
def health(identity: Identity = Depends(require_admin)):
    return {
        "success": True,
        "database": "connected" if ping() else "unavailable",
        "pendingStations": collection("stations").count_documents({"status": "pending"}),
        "pendingPayouts": collection("payouts").count_documents({"status": "scheduled"}),
        "timestamp": utcnow().isoformat(),
    }
