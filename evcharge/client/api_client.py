import logging
import os
from typing import Any, Optional

import httpx
from dotenv import load_dotenv

from evcharge.client.session import Session, normalize_session

load_dotenv()

API_URL = os.getenv("EVCHARGE_API_URL", "http://localhost:8000/api")
API_TIMEOUT = float(os.getenv("EVCHARGE_API_TIMEOUT", "15"))

LOGIN_PATHS = {"user": "/auth/login", "owner": "/owners/login", "admin": "/admin/auth/login"}
logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status_code: int, message: str, payload: Optional[dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.payload = payload or {}


def _error_message(resp: httpx.Response) -> tuple[str, dict]:
    try:
        data = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}", {}
    if not isinstance(data, dict):
        return f"HTTP {resp.status_code}", {}
    message = data.get("error") or data.get("detail") or data.get("message") or f"HTTP {resp.status_code}"
    return str(message), data


class EVChargeClient:
    """Capa de servicio sobre la API REST ``/api``.

    Guarda dos credenciales: el token de usuario/propietario (``Authorization:
    Bearer``) y el token de administrador, que se envía como ``X-Admin-Token``
    en las rutas ``/admin/``. Cualquier respuesta no 2xx lanza ``ApiError`` con
    el mensaje del servidor.
    """

    def __init__(self, base_url: Optional[str] = None, *, http: Optional[httpx.Client] = None,
                 timeout: Optional[float] = None, token: Optional[str] = None,
                 admin_token: Optional[str] = None):
        self.base_url = (base_url or API_URL).rstrip("/")
        self.http = http or httpx.Client(timeout=timeout or API_TIMEOUT)
        self.token = token
        self.admin_token = admin_token

    def close(self) -> None:
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ============ transporte ============

    def _headers(self, path: str) -> dict:
        headers = {"Accept": "application/json"}
        if path.startswith("/admin") and self.admin_token:
            headers["X-Admin-Token"] = self.admin_token
        elif self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def request(self, method: str, path: str, *, params: Optional[dict] = None, json: Any = None) -> Any:
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        resp = self.http.request(method, f"{self.base_url}{path}", params=params, json=json, headers=self._headers(path))
        if resp.status_code >= 400:
            message, payload = _error_message(resp)
            logger.debug("API %s %s → %s %s", method, path, resp.status_code, message)
            raise ApiError(resp.status_code, message, payload)
        if not resp.content:
            return None
        return resp.json()

    def get(self, path: str, **params) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: Any = None) -> Any:
        return self.request("POST", path, json=json if json is not None else {})

    def patch(self, path: str, json: Any = None) -> Any:
        return self.request("PATCH", path, json=json if json is not None else {})

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)

    # ============ auth ============

    def login(self, email: str, password: str, role: str = "user", remember_me: bool = False) -> Session:
        """Inicia sesión en el portal del rol y devuelve la sesión que informa el servidor."""
        if role not in LOGIN_PATHS:
            raise ValueError(f"Unknown role: {role}")
        body = {"email": email, "password": password}
        if role == "admin":
            body["rememberMe"] = remember_me
        data = self.post(LOGIN_PATHS[role], body)
        if role == "admin":
            self.admin_token = data["tokens"]["accessToken"]
            return normalize_session({**data["admin"], "isAdmin": True}, "admin")
        self.token = data.get("token")
        return normalize_session(data, role)

    def register(self, email: str, password: str, role: str = "user", **fields) -> dict:
        if role == "owner":
            return self.post("/owners/register", {"email": email, "password": password, **fields})
        data = self.post("/auth/register", {"email": email, "password": password, **fields})
        self.token = data.get("token")
        return data

    def logout(self) -> None:
        try:
            if self.admin_token:
                self.post("/admin/auth/logout")
            if self.token:
                self.post("/auth/logout")
        finally:
            self.token = None
            self.admin_token = None

    def me(self) -> dict:
        return self.get("/auth/me")

    def resolve_session(self) -> Session:
        """Prueba los endpoints "quién soy" en orden admin → owner → user."""
        probes = [("owner", "/owners/me"), ("user", "/users/me")]
        if self.admin_token:
            probes.insert(0, ("admin", "/admin/auth/me"))
        for role, path in probes:
            try:
                data = self.get(path)
            except (ApiError, httpx.HTTPError) as exc:
                logger.debug("Sin sesión %s: %s", role, exc)
                continue
            return normalize_session(data, role)
        return Session()

    # ============ estaciones ============

    def list_stations(self, **params) -> dict:
        return self.get("/stations", **params)

    def search_stations(self, q: Optional[str] = None, lat: Optional[float] = None, lng: Optional[float] = None,
                        radius: Optional[float] = None, **params) -> dict:
        return self.get("/stations/search", q=q, lat=lat, lng=lng, radius=radius, **params)

    def get_station(self, station_id: str) -> dict:
        return self.get(f"/stations/{station_id}")

    def my_stations(self) -> dict:
        return self.get("/stations/mine")

    def create_station(self, data: dict) -> dict:
        return self.post("/stations", data)

    def update_station(self, station_id: str, data: dict) -> dict:
        return self.patch(f"/stations/{station_id}", data)

    def delete_station(self, station_id: str) -> dict:
        return self.delete(f"/stations/{station_id}")

    # ============ reservas y pagos ============

    def create_booking(self, data: dict) -> dict:
        return self.post("/bookings", data)

    def list_bookings(self, status: Optional[str] = None, limit: int = 10, offset: int = 0) -> dict:
        return self.get("/bookings", status=status, limit=limit, offset=offset)

    def get_booking(self, booking_id: str) -> dict:
        return self.get(f"/bookings/{booking_id}")

    def cancel_booking(self, booking_id: str) -> dict:
        return self.delete(f"/bookings/{booking_id}")

    def start_checkout(self, booking_id: str) -> dict:
        return self.post("/payments/checkout", {"bookingId": booking_id})

    def verify_payment(self, payment_id: str, booking_id: Optional[str] = None, card_number: Optional[str] = None) -> dict:
        payload = {"cardNumber": card_number} if card_number else None
        return self.post("/payments/verify", {"paymentId": payment_id, "bookingId": booking_id, "payload": payload})

    def get_payment(self, payment_id: str) -> dict:
        return self.get(f"/payments/{payment_id}")

    # ============ usuario ============

    def favorites(self) -> list[dict]:
        return self.get("/users/me/favorites").get("favorites", [])

    def add_favorite(self, station_id: str) -> dict:
        return self.post("/users/me/favorites", {"stationId": station_id})

    def remove_favorite(self, station_id: str) -> dict:
        return self.delete(f"/users/me/favorites/{station_id}")

    def notifications(self) -> dict:
        return self.get("/notifications")

    def mark_notification_read(self, notification_id: str) -> dict:
        return self.patch(f"/notifications/{notification_id}/read")

    # ============ propietario ============

    def owner_finance_summary(self) -> dict:
        return self.get("/owner/finance/summary")

    def owner_revenue(self, range: str = "30d") -> dict:
        return self.get("/owner/finance/revenue", range=range)

    def request_payout(self, amount: float) -> dict:
        return self.post("/owner/finance/payouts", {"amount": amount})

    # ============ admin ============

    def admin_summary(self) -> dict:
        return self.get("/admin/summary")

    def admin_stations(self, **params) -> dict:
        return self.get("/admin/stations", **params)

    def admin_finance_summary(self) -> dict:
        return self.get("/admin/finance/summary")

    def approve_station(self, station_id: str) -> dict:
        return self.post(f"/admin/stations/{station_id}/approve")

    def refund_booking(self, booking_id: str, reason: Optional[str] = None) -> dict:
        return self.post(f"/admin/bookings/{booking_id}/refund", {"reason": reason})
