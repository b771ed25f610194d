import hashlib
import os
import time
import uuid
from typing import Optional

import jwt
from passlib.context import CryptContext


JWT_SECRET = os.getenv("JWT_SECRET", "change-me-please")
JWT_ALG = os.getenv("JWT_ALG", "HS256")
ACCESS_TTL = int(os.getenv("JWT_ACCESS_TTL", "86400"))  # 24h
REFRESH_TTL = int(os.getenv("JWT_REFRESH_TTL", "604800"))  # 7d
ADMIN_REMEMBER_TTL = int(os.getenv("ADMIN_REMEMBER_TTL", "2592000"))  # 30d
ADMIN_REFRESH_TTL = int(os.getenv("ADMIN_REFRESH_TTL", "7776000"))  # 90d
RESET_TTL = int(os.getenv("RESET_TOKEN_TTL", "3600"))  # 1h
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

ROLES = ("user", "owner", "admin")

pctx = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)


def hash_password(password: str) -> str:
    return pctx.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return pctx.verify(password, hashed)
    except Exception:
        return False


def _make_token(sub: str, role: str, ttl: int, scope: str, extra: Optional[dict] = None) -> str:
    now = int(time.time())
    payload = {"sub": sub, "role": role, "iat": now, "exp": now + ttl, "scope": scope}
    if extra:
        payload.update(extra)
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def make_access_token(user_id: str, role: str = "user", ttl: Optional[int] = None, extra: Optional[dict] = None) -> str:
    return _make_token(user_id, role, ttl or ACCESS_TTL, "access", extra)


def make_refresh_token(user_id: str, role: str = "user", ttl: Optional[int] = None) -> str:
    return _make_token(user_id, role, ttl or REFRESH_TTL, "refresh")


def make_reset_token(user_id: str, role: str) -> str:
    # jti para que dos solicitudes seguidas no generen el mismo token
    return _make_token(user_id, role, RESET_TTL, "reset", {"jti": uuid.uuid4().hex})


def decode_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except Exception:
        return None


def _verify(token: str, scope: str) -> Optional[dict]:
    data = decode_token(token)
    if not data or data.get("scope") != scope or data.get("role") not in ROLES:
        return None
    if not data.get("sub"):
        return None
    return data


def verify_access_token(token: str) -> Optional[dict]:
    return _verify(token, "access")


def verify_refresh_token(token: str) -> Optional[dict]:
    return _verify(token, "refresh")


def verify_reset_token(token: str) -> Optional[dict]:
    return _verify(token, "reset")


def token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def cookie_settings() -> dict:
    # Secure for https in prod. SameSite Lax for CSRF protection while allowing navigation.
    secure = os.getenv("COOKIE_SECURE", "false").lower() == "true"
    return dict(
        httponly=True,
        secure=secure,
        samesite="lax",
        path="/",
    )
