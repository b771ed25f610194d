from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pymongo.errors import DuplicateKeyError

from evcharge.api.bookings import list_for
from evcharge.auth.deps import Identity, require_user
from evcharge.database.database import collection, to_object_id, utcnow
from evcharge.models.models import FavoriteBody, UserUpdateBody
from evcharge.services import accounts
from evcharge.services.normalize import normalize_station
from evcharge.services.stations import get_station

router = APIRouter()


def _favorite_ids(user_id: str) -> list[str]:
    return [f["station_id"] for f in collection("favorites").find({"user_id": user_id}).sort("created_at", -1)]


def _add_favorite(user_id: str, station_id: str) -> bool:
    if not get_station(station_id):
        raise HTTPException(status_code=404, detail="Station not found")
    favorites = collection("favorites")
    if favorites.find_one({"user_id": user_id, "station_id": station_id}):
        return False
    try:
        favorites.insert_one({"user_id": user_id, "station_id": station_id, "created_at": utcnow()})
    except DuplicateKeyError:
        return False
    return True


def _remove_favorite(user_id: str, station_id: str) -> bool:
    return collection("favorites").delete_one({"user_id": user_id, "station_id": station_id}).deleted_count > 0


@router.get("/users/me")  # /api/users/me
def get_me(identity: Identity = Depends(require_user)):
    return {"success": True, "user": accounts.session_payload(identity.record, "user")}


@router.patch("/users/me")  # /api/users/me
def update_me(body: UserUpdateBody, identity: Identity = Depends(require_user)):
    fields = body.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    fields["updated_at"] = utcnow()
    collection("users").update_one({"_id": identity.record["_id"]}, {"$set": fields})
    identity.record.update(fields)
    return {"success": True, "user": accounts.session_payload(identity.record, "user")}


@router.get("/users/me/bookings")  # /api/users/me/bookings
def my_bookings(status: Optional[str] = None, limit: int = 10, offset: int = 0, identity: Identity = Depends(require_user)):
    return list_for(identity, status, limit, offset)


@router.get("/users/me/favorites")  # /api/users/me/favorites
@router.get("/users/stations/favorites")
def list_favorites(identity: Identity = Depends(require_user)):
    ids = [oid for oid in (to_object_id(s) for s in _favorite_ids(identity.id)) if oid]
    docs = {d["_id"]: d for d in collection("stations").find({"_id": {"$in": ids}, "status": {"$ne": "deleted"}})}
    stations = [normalize_station(docs[oid]) for oid in ids if oid in docs]
    return {"success": True, "favorites": stations, "stations": stations, "count": len(stations)}


@router.post("/users/me/favorites", status_code=201)  # /api/users/me/favorites
def add_favorite(body: FavoriteBody, identity: Identity = Depends(require_user)):
    added = _add_favorite(identity.id, body.stationId)
    return {"success": True, "added": added, "stationId": body.stationId}


@router.post("/users/stations/{station_id}/favorite", status_code=201)  # /api/users/stations/{id}/favorite
def add_favorite_alias(station_id: str, identity: Identity = Depends(require_user)):
    added = _add_favorite(identity.id, station_id)
    return {"success": True, "added": added, "stationId": station_id}


@router.post("/users/me/favorites/toggle")  # /api/users/me/favorites/toggle
def toggle_favorite(body: FavoriteBody, identity: Identity = Depends(require_user)):
    if _remove_favorite(identity.id, body.stationId):
        return {"success": True, "toggled": "removed", "stationId": body.stationId}
    _add_favorite(identity.id, body.stationId)
    return {"success": True, "toggled": "added", "stationId": body.stationId}


@router.delete("/users/me/favorites/{station_id}")  # /api/users/me/favorites/{id}
@router.delete("/users/stations/{station_id}/favorite")
def remove_favorite(station_id: str, identity: Identity = Depends(require_user)):
    if not _remove_favorite(identity.id, station_id):
        raise HTTPException(status_code=404, detail="Favorite not found")
    return {"success": True, "removed": True, "stationId": station_id}
