from __future__ import annotations

import logging
import os
from datetime import timedelta
from typing import Optional

from fastapi import Request, Response

from evcharge.auth.deps import ROLE_COLLECTIONS
from evcharge.auth.security import (
    RESET_TTL,
    cookie_settings,
    hash_password,
    make_access_token,
    make_refresh_token,
    make_reset_token,
    token_digest,
    verify_reset_token,
)
from evcharge.database.database import collection, insert_document, serialize, to_object_id, utcnow

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "INR")


def normalize_email(email: str) -> str:
    return (email or "").lower().strip()


def find_by_email(role: str, email: str) -> Optional[dict]:
    return collection(ROLE_COLLECTIONS[role]).find_one({"email": normalize_email(email)})


def find_by_id(role: str, uid) -> Optional[dict]:
    oid = to_object_id(uid)
    if oid is None:
        return None
    return collection(ROLE_COLLECTIONS[role]).find_one({"_id": oid})


def email_owner_role(email: str) -> Optional[str]:
    """Rol de la cuenta que ya usa ese email, si existe."""
    for role in ("admin", "owner", "user"):
        if find_by_email(role, email):
            return role
    return None


def create_account(role: str, email: str, password: str, **fields) -> dict:
    doc = {
        "email": normalize_email(email),
        "password_hash": hash_password(password),
        "role": role,
        "status": "active",
        "verified": False,
    }
    if role == "owner":
        doc["earnings"] = {"total_earnings": 0.0, "pending_payout": 0.0, "paid_out": 0.0, "total_transactions": 0}
        doc["currency"] = DEFAULT_CURRENCY
    if role == "admin":
        doc["permissions"] = fields.pop("permissions", ["all"])
        doc["login_count"] = 0
    if role == "user":
        doc["favorite_stations"] = []
    doc.update({k: v for k, v in fields.items() if v is not None})
    return insert_document(ROLE_COLLECTIONS[role], doc)


def public_profile(record: dict) -> dict:
    out = serialize(record)
    out["uid"] = out.get("id")
    return out


def session_payload(record: dict, role: str) -> dict:
    return {
        "uid": str(record["_id"]),
        "email": record.get("email"),
        "role": role,
        "isOwner": role == "owner",
        "isAdmin": role == "admin",
        "profile": public_profile(record),
    }


def issue_tokens(record: dict, role: str, ttl: Optional[int] = None, refresh_ttl: Optional[int] = None) -> tuple[str, str]:
    uid = str(record["_id"])
    extra = None
    if role == "admin":
        extra = {"email": record.get("email"), "permissions": record.get("permissions", [])}
    return make_access_token(uid, role, ttl, extra), make_refresh_token(uid, role, refresh_ttl)


def set_auth_cookies(response: Response, access: str, refresh: Optional[str] = None) -> None:
    ck = cookie_settings()
    response.set_cookie("access_token", access, **ck)
    if refresh:
        response.set_cookie("refresh_token", refresh, **ck)


def clear_auth_cookies(response: Response) -> None:
    ck = cookie_settings()
    response.delete_cookie("access_token", path=ck["path"])
    response.delete_cookie("refresh_token", path=ck["path"])


def touch_login(role: str, record: dict, request: Request) -> None:
    update = {
        "last_login_at": utcnow(),
        "last_login_ip": request.client.host if request.client else None,
        "last_login_user_agent": request.headers.get("user-agent"),
    }
    ops = {"$set": update}
    if role == "admin":
        ops["$inc"] = {"login_count": 1}
    collection(ROLE_COLLECTIONS[role]).update_one({"_id": record["_id"]}, ops)


def set_password(role: str, record_id, password: str) -> None:
    collection(ROLE_COLLECTIONS[role]).update_one(
        {"_id": record_id},
        {"$set": {"password_hash": hash_password(password), "updated_at": utcnow()}},
    )


def start_password_reset(email: str, role: Optional[str] = None) -> Optional[str]:
    """Genera y guarda (hasheado) un token de reset. None si la cuenta no existe."""
    roles = [role] if role in ROLE_COLLECTIONS else ["user", "owner", "admin"]
    for r in roles:
        record = find_by_email(r, email)
        if not record:
            continue
        token = make_reset_token(str(record["_id"]), r)
        collection("password_resets").insert_one(
            {
                "email": record["email"],
                "role": r,
                "account_id": record["_id"],
                "token_hash": token_digest(token),
                "expires_at": utcnow() + timedelta(seconds=RESET_TTL),
                "used": False,
                "created_at": utcnow(),
            }
        )
        # No hay proveedor de email: se deja constancia en el log
        logger.info("Reset de contraseña solicitado para %s (%s)", record["email"], r)
        return token
    return None


def complete_password_reset(token: str, new_password: str) -> bool:
    if not verify_reset_token(token):
        return False
    resets = collection("password_resets")
    entry = resets.find_one({"token_hash": token_digest(token), "used": False})
    if not entry or entry["expires_at"] < utcnow():
        return False
    set_password(entry["role"], entry["account_id"], new_password)
    resets.update_one({"_id": entry["_id"]}, {"$set": {"used": True, "used_at": utcnow()}})
    return True
