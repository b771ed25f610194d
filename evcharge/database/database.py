from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote_plus

import certifi
from bson import ObjectId
from dotenv import load_dotenv
from pymongo import MongoClient

# Carga variables desde .env si está presente
load_dotenv()

logger = logging.getLogger(__name__)

DB_NAME = os.getenv("DB_NAME", "evcharge")
MONGO_TIMEOUT_MS = int(os.getenv("MONGO_TIMEOUT_MS", "5000"))


def build_mongo_uri() -> str:
    """URI de MongoDB; se puede construir desde componentes para manejar passwords con encoding."""
    uri = os.getenv("MONGO_URI")
    if uri:
        return uri
    user = os.getenv("MONGO_USER")
    password = os.getenv("MONGO_PASSWORD")
    host = os.getenv("MONGO_HOST")  # p.ej. cluster0.abcde.mongodb.net
    if not host:
        return "mongodb://localhost:27017"
    params = os.getenv("MONGO_OPTIONS", "retryWrites=true&w=majority")
    app_name = os.getenv("MONGO_APP_NAME")
    if app_name:
        params += f"&appName={quote_plus(app_name)}"
    auth_source = os.getenv("MONGO_AUTH_SOURCE")
    if auth_source:
        params += f"&authSource={quote_plus(auth_source)}"
    if user and password:
        return f"mongodb+srv://{quote_plus(user)}:{quote_plus(password)}@{host}/?{params}"
    return f"mongodb+srv://{host}/?{params}"


_client: Optional[MongoClient] = None
_db = None


def get_db():
    """Devuelve la base de datos activa; el cliente se crea en el primer uso."""
    global _client, _db
    if _db is None:
        uri = build_mongo_uri()
        kwargs: dict[str, Any] = {"serverSelectionTimeoutMS": MONGO_TIMEOUT_MS}
        if uri.startswith("mongodb+srv://") or os.getenv("MONGO_TLS", "false").lower() == "true":
            kwargs["tlsCAFile"] = certifi.where()  # cadena de certificados válida para Atlas
        _client = MongoClient(uri, **kwargs)
        _db = _client[DB_NAME]
    return _db


def set_database(database) -> None:
    """Reemplaza la base activa (scripts y tests)."""
    global _db
    _db = database


def ping() -> bool:
    try:
        get_db().client.admin.command("ping")
        return True
    except Exception as e:
        logger.debug("MongoDB ping falló: %s", e)
        return False


def collection(name: str):
    """Devuelve una colección de MongoDB por nombre"""
    return get_db()[name]


def utcnow() -> datetime:
    # Fechas naive en UTC, como las devuelve pymongo
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(str(value)):
        return None
    return ObjectId(str(value))


def _plain(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def serialize(doc: Optional[dict]) -> Optional[dict]:
    """Documento listo para JSON: `_id` pasa a `id`, ObjectId y fechas a texto, sin hashes."""
    if doc is None:
        return None
    out = {k: _plain(v) for k, v in doc.items() if k not in ("_id", "password_hash")}
    if "_id" in doc:
        out["id"] = str(doc["_id"])
    return out


def insert_document(name: str, document: dict) -> dict:
    """Inserta un documento con marcas de tiempo y lo devuelve con su `_id`."""
    now = utcnow()
    document.setdefault("created_at", now)
    document.setdefault("updated_at", now)
    result = collection(name).insert_one(document)
    document["_id"] = result.inserted_id
    return document


def update_document(name: str, query: dict, update: dict):
    """Actualiza un documento ($set) tocando `updated_at`."""
    return collection(name).update_one(query, {"$set": {**update, "updated_at": utcnow()}})
