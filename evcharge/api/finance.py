"""Finanzas del owner.

Las mismas rutas se montan bajo ``/owner/finance``, ``/owners/finance`` y
``/finance`` (ver ``evcharge.api``).
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from evcharge.auth.deps import Identity, require_owner
from evcharge.database.database import serialize
from evcharge.models.models import PayoutBody
from evcharge.services import finance as svc

router = APIRouter()
legacy_router = APIRouter()


def _owner_id(identity: Identity, ownerId: Optional[str]) -> str:
    # El admin puede consultar cualquier owner con ?ownerId=
    if identity.is_admin:
        if not ownerId:
            raise HTTPException(status_code=400, detail="ownerId is required for admins")
        return ownerId
    return identity.id


@router.get("")
def finance_overview(ownerId: Optional[str] = None, identity: Identity = Depends(require_owner)):
    return {"success": True, "finance": svc.owner_finance_overview(_owner_id(identity, ownerId))}


@router.get("/summary")
def finance_summary(ownerId: Optional[str] = None, identity: Identity = Depends(require_owner)):
    return svc.owner_summary(_owner_id(identity, ownerId))


@router.get("/revenue")
@router.get("/earnings")
def finance_revenue(range: str = "30d", ownerId: Optional[str] = None, identity: Identity = Depends(require_owner)):
    return svc.owner_revenue_series(_owner_id(identity, ownerId), svc.parse_range(range))


@router.get("/payouts")
def finance_payouts(ownerId: Optional[str] = None, identity: Identity = Depends(require_owner)):
    return svc.owner_payouts(_owner_id(identity, ownerId))


@router.post("/payouts", status_code=201)
def request_payout(body: PayoutBody, identity: Identity = Depends(require_owner)):
    if not identity.is_owner:
        raise HTTPException(status_code=403, detail="Only owners can request payouts")
    try:
        payout = svc.request_payout(identity.id, body.amount)
    except svc.FinanceError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    return {"success": True, "payout": serialize(payout)}


@legacy_router.get("/owners/me/finance/summary")  # /api/owners/me/finance/summary
def legacy_summary(identity: Identity = Depends(require_owner)):
    return svc.owner_summary(identity.id)
