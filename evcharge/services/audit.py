from __future__ import annotations

import logging
from typing import Optional

from evcharge.database.database import collection, utcnow

logger = logging.getLogger(__name__)


def log_admin_action(admin_id: Optional[str], action: str, metadata: Optional[dict] = None) -> None:
    """Registra una acción en `admin_logs`. Nunca interrumpe la petición."""
    try:
        collection("admin_logs").insert_one(
            {
                "admin_id": admin_id,
                "action": action,
                "metadata": metadata or {},
                "timestamp": utcnow(),
            }
        )
    except Exception as e:
        logger.warning("No se pudo registrar acción %s: %s", action, e)


def record_error(path: str, error: str, request_id: Optional[str] = None) -> None:
    log_admin_action(None, "ERROR", {"path": path, "error": error, "requestId": request_id})
