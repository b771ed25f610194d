import logging
import os
from typing import Optional

import httpx
from dotenv import load_dotenv

load_dotenv()

MAPS_BASE_URL = os.getenv("MAPS_BASE_URL", "https://nominatim.openstreetmap.org")
MAPS_API_KEY = os.getenv("MAPS_API_KEY")
MAPS_USER_AGENT = os.getenv("MAPS_USER_AGENT", "evcharge-backend/1.0")
MAPS_TIMEOUT = float(os.getenv("MAPS_TIMEOUT", "10"))

HEADERS = {"User-Agent": MAPS_USER_AGENT, "Accept": "application/json"}
logger = logging.getLogger(__name__)


def fallback_address(lat: float, lng: float) -> str:
    return f"{lat}, {lng}"


def _place(item: dict) -> Optional[dict]:
    try:
        lat = float(item.get("lat"))
        lng = float(item.get("lon", item.get("lng")))
    except (TypeError, ValueError):
        return None
    address = item.get("display_name") or item.get("address") or ""
    if isinstance(address, dict):
        address = ", ".join(str(v) for v in address.values())
    name = item.get("name") or (address.split(",")[0] if address else "")
    return {"name": name, "address": address, "lat": lat, "lng": lng, "type": item.get("type")}


class MapsClient:
    """Cliente del proveedor de geocodificación (API compatible con Nominatim).

    - ``MAPS_BASE_URL`` apunta al servidor; ``MAPS_API_KEY`` se envía como ``key``
      cuando el proveedor lo exige.
    - Los fallos del proveedor nunca se propagan: búsquedas vacías y, para el
      reverse, la dirección ``"lat, lng"``.
    """

    def __init__(self, *, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.BaseTransport] = None,
                 async_transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or MAPS_BASE_URL).rstrip("/")
        self.timeout = timeout or MAPS_TIMEOUT
        self.headers = HEADERS
        self.transport = transport
        self.async_transport = async_transport

    def _params(self, **params) -> dict:
        params = {k: v for k, v in params.items() if v is not None}
        params["format"] = "json"
        if MAPS_API_KEY:
            params["key"] = MAPS_API_KEY
        return params

    def _get(self, path: str, params: dict):
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                resp = client.get(f"{self.base_url}{path}", params=self._params(**params), headers=self.headers)
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPStatusError as exc:
            logger.debug("Maps %s → HTTP %s", path, exc.response.status_code)
        except Exception as exc:  # pragma: no cover - red de terceros
            logger.debug("Fallo consultando proveedor de mapas %s: %s", path, exc)
        return None

    def search(self, q: str, limit: int = 5) -> list[dict]:
        if not q or not q.strip():
            return []
        data = self._get("/search", {"q": q.strip(), "limit": limit})
        if not isinstance(data, list):
            return []
        return [p for p in (_place(item) for item in data) if p]

    def locate(self, q: str) -> Optional[dict]:
        results = self.search(q, limit=1)
        return results[0] if results else None

    def reverse(self, lat: float, lng: float) -> str:
        data = self._get("/reverse", {"lat": lat, "lon": lng})
        if isinstance(data, dict) and data.get("display_name"):
            return data["display_name"]
        return fallback_address(lat, lng)

    async def search_async(self, q: str, limit: int = 5) -> list[dict]:
        """Igual que ``search`` pero con ``httpx.AsyncClient``."""
        if not q or not q.strip():
            return []
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.async_transport) as client:
                resp = await client.get(
                    f"{self.base_url}/search",
                    params=self._params(q=q.strip(), limit=limit),
                    headers=self.headers,
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.debug("Maps search → HTTP %s", exc.response.status_code)
            return []
        except Exception as exc:  # pragma: no cover - red de terceros
            logger.debug("Fallo consultando proveedor de mapas: %s", exc)
            return []
        if not isinstance(data, list):
            return []
        return [p for p in (_place(item) for item in data) if p]


_default_client: Optional[MapsClient] = None


def get_maps_client() -> MapsClient:
    global _default_client
    if _default_client is None:
        _default_client = MapsClient()
    return _default_client


def set_maps_client(client: Optional[MapsClient]) -> None:
    global _default_client
    _default_client = client
