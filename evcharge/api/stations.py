import logging
import os
import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from evcharge.auth.deps import Identity, require_owner
from evcharge.client.maps_client import get_maps_client
from evcharge.database.database import collection
from evcharge.models.models import LocationBody, StationBody
from evcharge.services import stations as svc
from evcharge.services.normalize import normalize_station

router = APIRouter()
logger = logging.getLogger(__name__)

UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", "uploads"))
MAX_UPLOAD_MB = float(os.getenv("MAX_UPLOAD_MB", "5"))
IMAGE_TYPES = {"image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp", "image/gif": ".gif"}
UPLOAD_CHUNK_BYTES = 256 * 1024


def clamp(limit: int, offset: int = 0, maximum: int = 100) -> tuple[int, int]:
    return max(1, min(limit, maximum)), max(0, offset)


def _managed_station(station_id: str, identity: Identity) -> dict:
    station = svc.get_station(station_id)
    if not station:
        raise HTTPException(status_code=404, detail="Station not found")
    if not svc.can_manage(station, identity):
        raise HTTPException(status_code=403, detail="Not your station")
    return station


@router.get("/stations")  # /api/stations
def list_stations(
    q: Optional[str] = None,
    status: str = "active",
    ownerId: Optional[str] = None,
    featured: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
):
    limit, offset = clamp(limit, offset)
    query = svc.text_query(q)
    # Las eliminadas nunca se listan públicamente
    query["status"] = {"$ne": "deleted"} if status in ("all", "deleted") else status
    if ownerId:
        query["owner_id"] = ownerId
    if featured is not None:
        query["featured"] = featured
    items, total = svc.list_stations(query, limit, offset)
    return {"success": True, "stations": items, "count": len(items), "total": total, "hasMore": offset + len(items) < total}


@router.get("/stations/search")  # /api/stations/search
def search_stations(
    q: Optional[str] = None,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    radius: Optional[float] = None,
    status: str = "active",
    limit: int = 50,
):
    limit, _ = clamp(limit)
    if lat is not None and lng is not None and not svc.valid_coordinates(lat, lng):
        raise HTTPException(status_code=400, detail="Invalid coordinates")
    items = svc.search_stations(q=q, lat=lat, lng=lng, radius_km=radius, status=status, limit=limit)
    return {"success": True, "stations": items, "count": len(items)}


@router.get("/stations/mine")  # /api/stations/mine
def my_stations(status: Optional[str] = None, limit: int = 50, offset: int = 0, identity: Identity = Depends(require_owner)):
    limit, offset = clamp(limit, offset)
    query: dict = {"owner_id": identity.id, "status": status or {"$ne": "deleted"}}
    items, total = svc.list_stations(query, limit, offset)
    all_mine = [normalize_station(d) for d in collection("stations").find({"owner_id": identity.id, "status": {"$ne": "deleted"}})]
    return {
        "success": True,
        "stations": items,
        "count": len(items),
        "total": total,
        "summary": svc.owner_summary(identity.id, all_mine),
        "hasMore": offset + len(items) < total,
    }


@router.post("/stations", status_code=201)  # /api/stations
def create_station(body: StationBody, identity: Identity = Depends(require_owner)):
    data = body.model_dump(exclude_none=True)
    name = (data.get("name") or "").strip()
    if not (3 <= len(name) <= 100):
        raise HTTPException(status_code=400, detail="Station name must be 3-100 characters")
    owner_id = identity.id if identity.is_owner else data.get("ownerId")
    approved = True if identity.is_admin else None
    station = svc.create_station(data, owner_id, approved=approved)
    logger.info("Estación creada %s por %s", station["_id"], identity.id)
    return {"success": True, "station": normalize_station(station)}


@router.get("/stations/{station_id}")  # /api/stations/{id}
def get_station(station_id: str):
    station = svc.get_station(station_id)
    if not station:
        raise HTTPException(status_code=404, detail="Station not found")
    return {"success": True, "station": normalize_station(station)}


@router.patch("/stations/{station_id}")  # /api/stations/{id}
def update_station(station_id: str, body: StationBody, identity: Identity = Depends(require_owner)):
    station = _managed_station(station_id, identity)
    fields = svc.station_fields_from_body(body.model_dump(exclude_none=True))
    if identity.is_admin and body.status:
        fields["status"] = body.status
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    svc.update_station(station, fields)
    return {"success": True, "station": normalize_station(station)}


@router.delete("/stations/{station_id}")  # /api/stations/{id}
def delete_station(station_id: str, identity: Identity = Depends(require_owner)):
    station = _managed_station(station_id, identity)
    svc.soft_delete(station)
    return {"success": True, "message": "Station deleted"}


@router.post("/stations/{station_id}/images", status_code=201)  # /api/stations/{id}/images
def upload_image(station_id: str, image: UploadFile = File(...), identity: Identity = Depends(require_owner)):
    station = _managed_station(station_id, identity)
    ext = IMAGE_TYPES.get(image.content_type or "")
    if not ext:
        raise HTTPException(status_code=400, detail="Only image uploads are allowed")
    max_bytes = int(MAX_UPLOAD_MB * 1024 * 1024)
    folder = UPLOAD_DIR / "stations" / str(station["_id"])
    folder.mkdir(parents=True, exist_ok=True)
    filename = f"{uuid.uuid4().hex}{ext}"
    path = folder / filename
    size = 0
    # Se corta en cuanto supera el límite
    with path.open("wb") as out:
        while True:
            chunk = image.file.read(UPLOAD_CHUNK_BYTES)
            if not chunk:
                break
            size += len(chunk)
            if size > max_bytes:
                break
            out.write(chunk)
    if size > max_bytes:
        path.unlink(missing_ok=True)
        raise HTTPException(status_code=413, detail=f"Image larger than {MAX_UPLOAD_MB:g} MB")
    url = f"/uploads/stations/{station['_id']}/{filename}"
    collection("stations").update_one({"_id": station["_id"]}, {"$push": {"images": url}})
    return {"success": True, "url": url, "images": (station.get("images") or []) + [url]}


@router.post("/stations/{station_id}/location")  # /api/stations/{id}/location
@router.patch("/stations/{station_id}/location")
def set_location(station_id: str, body: LocationBody, identity: Identity = Depends(require_owner)):
    station = _managed_station(station_id, identity)
    if body.lat is None or body.lng is None:
        raise HTTPException(status_code=400, detail="lat and lng are required")
    if not svc.valid_coordinates(body.lat, body.lng):
        raise HTTPException(status_code=400, detail="Coordinates out of range")
    address = body.address or get_maps_client().reverse(body.lat, body.lng)
    svc.update_station(station, {"location": {"lat": body.lat, "lng": body.lng}, "address": address})
    return {"success": True, "station": normalize_station(station)}
