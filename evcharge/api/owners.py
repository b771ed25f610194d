from fastapi import APIRouter, Depends, HTTPException, Request, Response

from evcharge.auth.deps import Identity, is_blocked, require_owner
from evcharge.auth.security import ACCESS_TTL, verify_password
from evcharge.database.database import collection, utcnow
from evcharge.models.models import LoginBody, OwnerRegisterBody, ProfileBody
from evcharge.services import accounts

router = APIRouter()


def _owner_view(record: dict) -> dict:
    out = accounts.public_profile(record)
    out["displayName"] = record.get("display_name")
    return out


@router.post("/owners/register", status_code=201)  # /api/owners/register
@router.post("/auth/owner/register", status_code=201)  # /api/auth/owner/register
def owner_register(body: OwnerRegisterBody):
    taken = accounts.email_owner_role(body.email)
    if taken:
        raise HTTPException(status_code=409, detail=f"Email already registered as {taken}")
    owner = accounts.create_account(
        "owner", body.email, body.password, display_name=body.displayName, phone=body.phone
    )
    return {"uid": str(owner["_id"]), "email": owner["email"], "message": "Owner account created"}


@router.post("/owners/login")  # /api/owners/login
@router.post("/auth/owner/login")  # /api/auth/owner/login
def owner_login(body: LoginBody, request: Request, response: Response):
    owner = accounts.find_by_email("owner", body.email)
    if not owner:
        if accounts.find_by_email("user", body.email):
            raise HTTPException(status_code=403, detail="Owner account not found")
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not verify_password(body.password, owner.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if is_blocked(owner):
        raise HTTPException(status_code=403, detail="Account disabled")
    accounts.touch_login("owner", owner, request)
    access, refresh = accounts.issue_tokens(owner, "owner")
    accounts.set_auth_cookies(response, access, refresh)
    return {
        "ok": True,
        "uid": str(owner["_id"]),
        "role": "owner",
        "isOwner": True,
        "isAdmin": False,
        "owner": _owner_view(owner),
        "token": access,
        "refreshToken": refresh,
        "expiresIn": ACCESS_TTL,
    }


@router.get("/owners/me")  # /api/owners/me
def owner_me(identity: Identity = Depends(require_owner)):
    if not identity.is_owner:
        raise HTTPException(status_code=403, detail="Owner account not found")
    return {"ok": True, "uid": identity.id, "role": "owner", "isOwner": True, "owner": _owner_view(identity.record)}


@router.put("/owners/profile")  # /api/owners/profile
def owner_profile(body: ProfileBody, identity: Identity = Depends(require_owner)):
    if not identity.is_owner:
        raise HTTPException(status_code=403, detail="Owner account not found")
    fields = {}
    name = body.displayName or body.name
    if name is not None:
        fields["display_name"] = name
    if body.phone is not None:
        fields["phone"] = body.phone
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    fields["updated_at"] = utcnow()
    collection("owners").update_one({"_id": identity.record["_id"]}, {"$set": fields})
    identity.record.update(fields)
    return {"ok": True, "owner": _owner_view(identity.record)}
