"""Resolución de identidad y guards de rol para los routers.

El token se busca en este orden: cabecera ``X-Admin-Token``, cabecera
``X-Owner-Token``, ``Authorization: Bearer`` y por último la cookie
``access_token``. El claim ``role`` indica la colección de la cuenta.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, HTTPException, Request

from evcharge.auth.security import verify_access_token
from evcharge.database.database import collection, to_object_id

ROLE_COLLECTIONS = {"user": "users", "owner": "owners", "admin": "admins"}
BLOCKED_STATUSES = ("banned", "disabled", "suspended")


@dataclass
class Identity:
    id: str
    role: str
    email: Optional[str] = None
    record: dict = field(default_factory=dict)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_owner(self) -> bool:
        return self.role == "owner"


def extract_token(request: Request) -> Optional[str]:
    for header in ("x-admin-token", "x-owner-token"):
        value = request.headers.get(header)
        if value:
            return value.strip()
    auth = request.headers.get("authorization") or ""
    if auth.lower().startswith("bearer "):
        token = auth[7:].strip()
        if token:
            return token
    return request.cookies.get("access_token")


def load_identity(token: Optional[str]) -> Optional[Identity]:
    claims = verify_access_token(token or "")
    if not claims:
        return None
    role = claims["role"]
    oid = to_object_id(claims["sub"])
    if oid is None:
        return None
    record = collection(ROLE_COLLECTIONS[role]).find_one({"_id": oid}, {"password_hash": 0})
    if not record:
        return None
    return Identity(id=str(oid), role=role, email=record.get("email"), record=record)


def is_blocked(record: dict) -> bool:
    return record.get("status") in BLOCKED_STATUSES or record.get("active") is False


def optional_identity(request: Request) -> Optional[Identity]:
    identity = load_identity(extract_token(request))
    if identity is None or is_blocked(identity.record):
        return None
    request.state.identity = identity
    return identity


def current_identity(request: Request) -> Identity:
    identity = load_identity(extract_token(request))
    if identity is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if is_blocked(identity.record):
        raise HTTPException(status_code=403, detail="Account disabled")
    request.state.identity = identity
    return identity


def require_user(identity: Identity = Depends(current_identity)) -> Identity:
    # Owners y admins tienen su propio portal
    if identity.role != "user":
        raise HTTPException(status_code=403, detail="User access only")
    return identity


def require_owner(identity: Identity = Depends(current_identity)) -> Identity:
    if identity.role not in ("owner", "admin"):
        raise HTTPException(status_code=403, detail="Owner access required")
    return identity


def require_admin(identity: Identity = Depends(current_identity)) -> Identity:
    if identity.role != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return identity
