"""Sesión resuelta y reglas de navegación por rol."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

ROLES = ("user", "owner", "admin")

LANDING_PATHS = {"admin": "/admin", "owner": "/owner/dashboard", "user": "/"}
LOGIN_PATHS = {"admin": "/admin/login", "owner": "/owner/login", "user": "/login"}


@dataclass
class Session:
    role: Optional[str] = None
    user: dict = field(default_factory=dict)

    @property
    def authenticated(self) -> bool:
        return self.role in ROLES

    @property
    def uid(self) -> Optional[str]:
        return self.user.get("uid") or self.user.get("id")


def normalize_role(payload: dict, fallback: Optional[str] = None) -> Optional[str]:
    if payload.get("isAdmin"):
        return "admin"
    if payload.get("isOwner"):
        return "owner"
    role = (payload.get("role") or "").lower()
    if role in ROLES:
        return role
    return fallback


def normalize_session(payload: Optional[dict], probed_role: Optional[str] = None) -> Session:
    """Acepta las tres formas de respuesta de los endpoints "quién soy"."""
    if not isinstance(payload, dict):
        return Session()
    body = payload.get("user") or payload.get("owner") or payload.get("admin") or payload
    if not isinstance(body, dict):
        body = {}
    profile = body.get("profile") if isinstance(body.get("profile"), dict) else {}
    role = normalize_role(payload) or normalize_role(body) or probed_role
    user = {
        **profile,
        "uid": body.get("uid") or body.get("id") or profile.get("uid") or payload.get("uid"),
        "email": body.get("email") or profile.get("email") or payload.get("email"),
        "name": body.get("name") or body.get("displayName") or profile.get("name") or profile.get("display_name"),
        "role": role,
    }
    return Session(role=role, user=user)


def landing_path(role: Optional[str]) -> str:
    return LANDING_PATHS.get(role or "", "/login")


def login_path(required_role: Optional[str] = None) -> str:
    return LOGIN_PATHS.get(required_role or "user", "/login")


def guard(session: Session, *allowed_roles: str) -> Optional[str]:
    """None si la sesión puede ver la ruta; si no, la ruta a la que redirigir."""
    if not session.authenticated:
        return login_path(allowed_roles[0] if allowed_roles else None)
    if allowed_roles and session.role not in allowed_roles:
        return landing_path(session.role)
    return None


def redirect_if_authed(session: Session) -> Optional[str]:
    # Las páginas de login no se muestran a quien ya tiene sesión
    return landing_path(session.role) if session.authenticated else None
