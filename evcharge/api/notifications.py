from fastapi import APIRouter, Depends, HTTPException

from evcharge.auth.deps import Identity, current_identity, require_admin
from evcharge.database.database import serialize
from evcharge.models.models import NotificationSendBody
from evcharge.services import notifications as svc
from evcharge.services.audit import log_admin_action

router = APIRouter()


@router.get("/notifications")  # /api/notifications
def list_notifications(identity: Identity = Depends(current_identity)):
    return {"success": True, **svc.list_for(identity.id)}


@router.patch("/notifications/read-all")  # /api/notifications/read-all
def read_all(identity: Identity = Depends(current_identity)):
    return {"success": True, "updated": svc.mark_all_read(identity.id)}


@router.patch("/notifications/{notification_id}/read")  # /api/notifications/{id}/read
def read_one(notification_id: str, identity: Identity = Depends(current_identity)):
    doc = svc.get(notification_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Notification not found")
    if doc.get("user_id") != identity.id:
        raise HTTPException(status_code=403, detail="Access denied")
    return {"success": True, "notification": serialize(svc.mark_read(doc))}


@router.post("/notifications/send")  # /api/notifications/send
def send(body: NotificationSendBody, identity: Identity = Depends(require_admin)):
    if not body.title or not body.message:
        raise HTTPException(status_code=400, detail="title and message are required")
    count = svc.broadcast(body.title, body.message, body.type, body.targetUsers)
    log_admin_action(identity.id, "SEND_NOTIFICATION", {"title": body.title, "recipients": count})
    return {"success": True, "recipientCount": count}
