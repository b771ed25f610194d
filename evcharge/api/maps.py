import os
from typing import Optional

from fastapi import APIRouter, HTTPException

from evcharge.client.maps_client import get_maps_client
from evcharge.services.stations import dedupe_places, haversine_km, search_stations, valid_coordinates

router = APIRouter()

AVG_SPEED_KMH = float(os.getenv("AVG_SPEED_KMH", "40"))


def _check_coords(lat: float, lng: float) -> None:
    if not valid_coordinates(lat, lng):
        raise HTTPException(status_code=400, detail="Invalid coordinates")


@router.get("/maps/reverse", tags=["maps"])  # /api/maps/reverse
def reverse(lat: float, lng: float):
    _check_coords(lat, lng)
    return {"lat": lat, "lng": lng, "address": get_maps_client().reverse(lat, lng)}


@router.get("/maps/locate", tags=["maps"])  # /api/maps/locate
def locate(q: str):
    place = get_maps_client().locate(q)
    if not place:
        raise HTTPException(status_code=404, detail="Location not found")
    return place


@router.get("/maps/places-suggestions", tags=["maps"])  # /api/maps/places-suggestions
async def places_suggestions(q: str, limit: int = 5):
    places = await get_maps_client().search_async(q, max(1, min(limit, 10)))
    return {"success": True, "places": dedupe_places(places)}


@router.get("/maps/nearby", tags=["maps"])  # /api/maps/nearby
def nearby(lat: float, lng: float, radius: float = 25000, limit: int = 50):
    _check_coords(lat, lng)
    stations = search_stations(lat=lat, lng=lng, radius_km=radius / 1000.0, limit=max(1, min(limit, 100)))
    return {"success": True, "stations": stations, "count": len(stations)}


@router.get("/maps/text", tags=["maps"])  # /api/maps/text
def text_search(
    q: str,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    radius: Optional[float] = None,
    limit: int = 20,
):
    if lat is not None and lng is not None:
        _check_coords(lat, lng)
    radius_km = radius / 1000.0 if radius else None
    stations = search_stations(q=q, lat=lat, lng=lng, radius_km=radius_km, limit=max(1, min(limit, 100)))
    return {"success": True, "stations": dedupe_places(stations)}


@router.get("/maps/distance", tags=["maps"])  # /api/maps/distance
def distance(fromLat: float, fromLng: float, toLat: float, toLng: float):
    _check_coords(fromLat, fromLng)
    _check_coords(toLat, toLng)
    km = haversine_km(fromLat, fromLng, toLat, toLng)
    return {"distanceKm": round(km, 2), "durationMins": round(km / AVG_SPEED_KMH * 60.0, 1)}
