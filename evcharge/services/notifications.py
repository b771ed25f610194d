from __future__ import annotations

import logging
from typing import Iterable, Optional

from evcharge.database.database import collection, serialize, to_object_id, utcnow

logger = logging.getLogger(__name__)

LIST_LIMIT = 50


def notify(user_id, title: str, message: str, type: str = "info", data: Optional[dict] = None) -> Optional[dict]:
    """Crea una notificación. Los fallos se registran y no cortan el flujo principal."""
    doc = {
        "user_id": str(user_id),
        "title": title,
        "message": message,
        "type": type,
        "data": data or {},
        "read": False,
        "created_at": utcnow(),
    }
    try:
        result = collection("notifications").insert_one(doc)
    except Exception as e:
        logger.warning("Notificación no guardada para %s: %s", user_id, e)
        return None
    doc["_id"] = result.inserted_id
    return doc


def list_for(user_id: str, limit: int = LIST_LIMIT) -> dict:
    coll = collection("notifications")
    cursor = coll.find({"user_id": str(user_id)}).sort("created_at", -1).limit(limit)
    items = [serialize(d) for d in cursor]
    unread = coll.count_documents({"user_id": str(user_id), "read": False})
    return {"notifications": items, "unreadCount": unread}


def get(notification_id: str) -> Optional[dict]:
    oid = to_object_id(notification_id)
    if oid is None:
        return None
    return collection("notifications").find_one({"_id": oid})


def mark_read(doc: dict) -> dict:
    now = utcnow()
    collection("notifications").update_one({"_id": doc["_id"]}, {"$set": {"read": True, "read_at": now}})
    doc.update({"read": True, "read_at": now})
    return doc


def mark_all_read(user_id: str) -> int:
    result = collection("notifications").update_many(
        {"user_id": str(user_id), "read": False},
        {"$set": {"read": True, "read_at": utcnow()}},
    )
    return result.modified_count


def broadcast(title: str, message: str, type: str = "system", targets: Optional[Iterable[str]] = None) -> int:
    """Envía a los usuarios indicados o, si no hay destinatarios, a todos los usuarios."""
    if targets:
        recipients = [str(t) for t in targets if t]
    else:
        recipients = [str(u["_id"]) for u in collection("users").find({}, {"_id": 1})]
    now = utcnow()
    docs = [
        {"user_id": uid, "title": title, "message": message, "type": type, "data": {}, "read": False, "created_at": now}
        for uid in recipients
    ]
    if docs:
        collection("notifications").insert_many(docs)
    return len(docs)
