import os
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from evcharge.auth.deps import Identity, ROLE_COLLECTIONS, current_identity, is_blocked, optional_identity, require_admin
from evcharge.auth.security import (
    ACCESS_TTL,
    ADMIN_REFRESH_TTL,
    ADMIN_REMEMBER_TTL,
    verify_password,
    verify_refresh_token,
    make_access_token,
)
from evcharge.database.database import collection, utcnow
from evcharge.models.models import (
    AdminLoginBody,
    ChangePasswordBody,
    LoginBody,
    ProfileBody,
    RefreshBody,
    RegisterBody,
    ResetPasswordBody,
    SendResetBody,
)
from evcharge.services import accounts
from evcharge.services.audit import log_admin_action

router = APIRouter()

EXPOSE_RESET_TOKENS = os.getenv("EXPOSE_RESET_TOKENS", "false").lower() == "true"


def _check_credentials(role: str, email: str, password: str) -> dict:
    record = accounts.find_by_email(role, email)
    if not record or not verify_password(password, record.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if is_blocked(record):
        raise HTTPException(status_code=403, detail="Account disabled")
    return record


@router.post("/auth/register", status_code=201)  # /api/auth/register
def register(body: RegisterBody, response: Response):
    taken = accounts.email_owner_role(body.email)
    if taken:
        raise HTTPException(status_code=409, detail=f"Email already registered as {taken}")
    user = accounts.create_account(
        "user", body.email, body.password, name=body.name, phone=body.phone, address=body.address
    )
    access, refresh = accounts.issue_tokens(user, "user")
    accounts.set_auth_cookies(response, access, refresh)
    payload = accounts.session_payload(user, "user")
    return {"ok": True, "uid": payload["uid"], "user": payload, "token": access}


@router.post("/auth/login")  # /api/auth/login
def login(body: LoginBody, request: Request, response: Response):
    if not accounts.find_by_email("user", body.email):
        other = accounts.email_owner_role(body.email)
        if other == "owner":
            raise HTTPException(status_code=403, detail="This email is registered as an owner. Use owner login.")
        if other == "admin":
            raise HTTPException(status_code=403, detail="Admins must use the admin login.")
    user = _check_credentials("user", body.email, body.password)
    accounts.touch_login("user", user, request)
    access, refresh = accounts.issue_tokens(user, "user")
    accounts.set_auth_cookies(response, access, refresh)
    return {
        "ok": True,
        "uid": str(user["_id"]),
        "role": "user",
        "isOwner": False,
        "isAdmin": False,
        "profile": accounts.public_profile(user),
        "token": access,
        "refreshToken": refresh,
        "expiresIn": ACCESS_TTL,
    }


@router.post("/auth/logout")  # /api/auth/logout
def logout(response: Response):
    accounts.clear_auth_cookies(response)
    return {"ok": True}


@router.post("/auth/refresh")  # /api/auth/refresh
def refresh(request: Request, response: Response, body: Optional[RefreshBody] = None):
    token = request.cookies.get("refresh_token") or (body.refreshToken if body else None)
    claims = verify_refresh_token(token or "")
    if not claims:
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    record = accounts.find_by_id(claims["role"], claims["sub"])
    if not record or is_blocked(record):
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    access, _ = accounts.issue_tokens(record, claims["role"])
    accounts.set_auth_cookies(response, access)
    return {"ok": True, "token": access, "expiresIn": ACCESS_TTL}


@router.get("/auth/me")  # /api/auth/me
def me(identity: Identity = Depends(current_identity)):
    return accounts.session_payload(identity.record, identity.role)


@router.post("/auth/change-password")  # /api/auth/change-password
def change_password(body: ChangePasswordBody, identity: Identity = Depends(current_identity)):
    record = collection(ROLE_COLLECTIONS[identity.role]).find_one({"_id": identity.record["_id"]})
    if not verify_password(body.currentPassword, record.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Current password is incorrect")
    accounts.set_password(identity.role, record["_id"], body.newPassword)
    return {"ok": True, "message": "Password updated"}


@router.put("/auth/profile")  # /api/auth/profile
def update_profile(body: ProfileBody, identity: Identity = Depends(current_identity)):
    fields = body.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    if identity.role == "owner" and "name" in fields:
        fields.setdefault("display_name", fields.pop("name"))
    if "displayName" in fields:
        fields["display_name"] = fields.pop("displayName")
    fields["updated_at"] = utcnow()
    coll = collection(ROLE_COLLECTIONS[identity.role])
    coll.update_one({"_id": identity.record["_id"]}, {"$set": fields})
    record = coll.find_one({"_id": identity.record["_id"]})
    return {"ok": True, "profile": accounts.public_profile(record)}


@router.delete("/auth/account")  # /api/auth/account
def delete_account(response: Response, identity: Identity = Depends(current_identity)):
    if identity.is_admin:
        raise HTTPException(status_code=403, detail="Admin accounts cannot be deleted here")
    collection(ROLE_COLLECTIONS[identity.role]).delete_one({"_id": identity.record["_id"]})
    collection("favorites").delete_many({"user_id": identity.id})
    accounts.clear_auth_cookies(response)
    return {"ok": True}


@router.post("/auth/send-reset")  # /api/auth/send-reset
def send_reset(body: SendResetBody):
    token = accounts.start_password_reset(body.email, body.role)
    out = {"ok": True, "message": "If the account exists, a reset link has been sent."}
    if token and EXPOSE_RESET_TOKENS:
        out["resetToken"] = token
    return out


@router.post("/auth/reset-password")  # /api/auth/reset-password
def reset_password(body: ResetPasswordBody):
    if not accounts.complete_password_reset(body.token, body.newPassword):
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")
    return {"ok": True, "message": "Password updated"}


# ============ admin auth ============

def _admin_view(record: dict) -> dict:
    return {
        "id": str(record["_id"]),
        "email": record.get("email"),
        "name": record.get("name"),
        "role": "admin",
        "permissions": record.get("permissions", []),
        "lastLogin": record.get("last_login_at").isoformat() if record.get("last_login_at") else None,
    }


@router.post("/admin/auth/login")  # /api/admin/auth/login
def admin_login(body: AdminLoginBody, request: Request, response: Response):
    record = accounts.find_by_email("admin", body.email)
    if (
        not record
        or record.get("status", "active") != "active"
        or not verify_password(body.password, record.get("password_hash", ""))
    ):
        raise HTTPException(status_code=401, detail="INVALID_LOGIN_CREDENTIALS")
    ttl = ADMIN_REMEMBER_TTL if body.rememberMe else ACCESS_TTL
    access, refresh = accounts.issue_tokens(record, "admin", ttl=ttl, refresh_ttl=ADMIN_REFRESH_TTL)
    accounts.touch_login("admin", record, request)
    accounts.set_auth_cookies(response, access, refresh)
    log_admin_action(str(record["_id"]), "LOGIN", {"rememberMe": body.rememberMe})
    return {
        "success": True,
        "admin": _admin_view(record),
        "tokens": {"accessToken": access, "refreshToken": refresh, "expiresIn": ttl},
    }


@router.post("/admin/auth/logout")  # /api/admin/auth/logout
def admin_logout(response: Response, identity: Optional[Identity] = Depends(optional_identity)):
    accounts.clear_auth_cookies(response)
    log_admin_action(identity.id if identity else None, "LOGOUT")
    return {"success": True}


@router.post("/admin/auth/refresh")  # /api/admin/auth/refresh
def admin_refresh(body: RefreshBody, request: Request):
    token = body.refreshToken or request.cookies.get("refresh_token")
    claims = verify_refresh_token(token or "")
    if not claims or claims["role"] != "admin":
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    record = accounts.find_by_id("admin", claims["sub"])
    if not record or record.get("status", "active") != "active":
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    access = make_access_token(
        str(record["_id"]), "admin", extra={"email": record.get("email"), "permissions": record.get("permissions", [])}
    )
    return {"success": True, "tokens": {"accessToken": access, "expiresIn": ACCESS_TTL}}


@router.get("/admin/auth/me")  # /api/admin/auth/me
def admin_me(identity: Identity = Depends(require_admin)):
    return accounts.session_payload(identity.record, "admin")


@router.get("/admin/auth/verify")  # /api/admin/auth/verify
def admin_verify(identity: Identity = Depends(require_admin)):
    return {"success": True, "valid": True, "admin": _admin_view(identity.record)}
