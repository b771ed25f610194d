"""Crea los índices de MongoDB.

    python -m evcharge.scripts.init_db
"""
from pymongo import ASCENDING, DESCENDING

from evcharge.database.database import collection

INDEXES = {
    "users": [([("email", ASCENDING)], {"unique": True})],
    "owners": [([("email", ASCENDING)], {"unique": True})],
    "admins": [([("email", ASCENDING)], {"unique": True})],
    "favorites": [([("user_id", ASCENDING), ("station_id", ASCENDING)], {"unique": True})],
    "stations": [([("owner_id", ASCENDING)], {}), ([("status", ASCENDING)], {})],
    "bookings": [
        ([("station_id", ASCENDING), ("start_time", ASCENDING)], {}),
        ([("user_id", ASCENDING), ("created_at", DESCENDING)], {}),
        ([("owner_id", ASCENDING)], {}),
    ],
    "payments": [([("booking_id", ASCENDING)], {})],
    "transactions": [([("txn_id", ASCENDING)], {}), ([("owner_id", ASCENDING), ("created_at", DESCENDING)], {})],
    "notifications": [([("user_id", ASCENDING), ("created_at", DESCENDING)], {})],
    "admin_logs": [([("timestamp", DESCENDING)], {})],
}


def init_db() -> int:
    created = 0
    for name, specs in INDEXES.items():
        for keys, options in specs:
            collection(name).create_index(keys, **options)
            created += 1
    print(f"✅ Índices creados correctamente ({created})")
    return created


if __name__ == "__main__":
    init_db()
