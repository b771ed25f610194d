from fastapi import APIRouter, Depends, HTTPException

from evcharge.auth.deps import Identity, require_owner
from evcharge.services import analytics as svc
from evcharge.services.finance import owner_revenue_series, parse_range
from evcharge.services.stations import can_manage, get_station

router = APIRouter()


@router.get("/analytics/owner", tags=["analytics"])  # /api/analytics/owner
def owner_analytics(identity: Identity = Depends(require_owner)):
    return {"success": True, **svc.owner_station_analytics(identity.id)}


@router.get("/analytics/station/{station_id}", tags=["analytics"])  # /api/analytics/station/{id}
def station_analytics(station_id: str, range: str = "30d", identity: Identity = Depends(require_owner)):
    station = get_station(station_id)
    if not station:
        raise HTTPException(status_code=404, detail="Station not found")
    if not can_manage(station, identity):
        raise HTTPException(status_code=403, detail="Not your station")
    return {"success": True, "analytics": svc.station_analytics(station, parse_range(range))}


@router.get("/analytics/revenue", tags=["analytics"])  # /api/analytics/revenue
def revenue(range: str = "30d", identity: Identity = Depends(require_owner)):
    return owner_revenue_series(identity.id, parse_range(range))
