"""Aplicación FastAPI.

    uvicorn evcharge.main:app --reload --port 8000
"""
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from evcharge.api import router as api_router
from evcharge.database.database import ping, utcnow
from evcharge.services.audit import record_error
from evcharge.services.bookings import expire_unpaid_bookings
from evcharge.services.finance import materialize_finance_snapshot

VERSION = "1.0.0"

# ==== Logging policy (silence logs in production) ====
LOG_LEVEL_NAME = os.getenv("LOG_LEVEL", "WARNING").upper()
LOG_LEVEL = getattr(logging, LOG_LEVEL_NAME, logging.WARNING)
logging.basicConfig(level=LOG_LEVEL)

# Reduce noisy third‑party loggers
for name in (
    "httpx",
    "apscheduler",
    "apscheduler.scheduler",
    "apscheduler.executors.default",
    "pymongo",
    "uvicorn",
    "uvicorn.error",
):
    logging.getLogger(name).setLevel(LOG_LEVEL)

# Access log (HTTP request per line) can leak info; disable by default
if os.getenv("ACCESS_LOG_DISABLED", "true").lower() == "true":
    al = logging.getLogger("uvicorn.access")
    al.setLevel(logging.CRITICAL)
    al.propagate = False
    al.disabled = True
    al.handlers = []

logger = logging.getLogger(__name__)

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
EXPIRY_INTERVAL_MINUTES = int(os.getenv("BOOKING_EXPIRY_INTERVAL_MINUTES", "5"))
SNAPSHOT_INTERVAL_MINUTES = int(os.getenv("FINANCE_SNAPSHOT_INTERVAL_MINUTES", "15"))
UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", "uploads"))
DEBUG = os.getenv("DEBUG", "false").lower() == "true"

STARTED_AT = time.time()


# ============ Scheduler ============

def expire_bookings_job():
    """Libera las plazas de reservas que no se pagaron a tiempo."""
    try:
        expire_unpaid_bookings()
    except Exception as e:
        logging.error(f"❌ Error expirando reservas: {e}")


def finance_snapshot_job():
    """Materializa el resumen financiero del panel admin."""
    try:
        materialize_finance_snapshot()
        logging.info("✅ Snapshot financiero actualizado")
    except Exception as e:
        logging.error(f"❌ Error materializando finanzas: {e}")


def build_scheduler() -> BackgroundScheduler:
    scheduler = BackgroundScheduler()
    scheduler.add_job(expire_bookings_job, "interval", minutes=EXPIRY_INTERVAL_MINUTES)
    scheduler.add_job(finance_snapshot_job, "interval", minutes=SNAPSHOT_INTERVAL_MINUTES)
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Arranca el scheduler sin bloquear el inicio; lo detiene al apagar."""
    scheduler = None
    if SCHEDULER_ENABLED:
        scheduler = build_scheduler()
        scheduler.start()
        logging.info("🚀 Scheduler iniciado")
    app.state.scheduler = scheduler
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)


# ============ Errors ============

def _request_id(request: Request):
    return getattr(request.state, "request_id", None)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    content = {"success": False, "error": detail, "requestId": _request_id(request)}
    if isinstance(detail, dict):
        content["error"] = detail.get("message")
        content["field"] = detail.get("field")
    elif exc.status_code == 404 and detail == "Not Found":
        content["error"] = f"Route {request.method} {request.url.path} not found"
    return JSONResponse(content, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        {"success": False, "error": "Validation Error", "details": details, "requestId": _request_id(request)},
        status_code=400,
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Error no controlado en %s %s", request.method, request.url.path)
    record_error(request.url.path, repr(exc), _request_id(request))
    message = str(exc) if DEBUG else "Internal server error"
    return JSONResponse({"success": False, "error": message, "requestId": _request_id(request)}, status_code=500)


def create_app() -> FastAPI:
    application = FastAPI(title="EV Charge API", version=VERSION, lifespan=lifespan)

    # CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    @application.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        # Respuestas de la API nunca se cachean
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, proxy-revalidate"
            response.headers["Pragma"] = "no-cache"
            response.headers["Expires"] = "0"
        return response

    application.add_exception_handler(StarletteHTTPException, http_error_handler)
    application.add_exception_handler(RequestValidationError, validation_error_handler)
    application.add_exception_handler(Exception, unhandled_error_handler)

    application.include_router(api_router, prefix="/api")

    @application.get("/")
    def root(request: Request):
        return {
            "message": "EV Charge API",
            "version": VERSION,
            "status": "running",
            "timestamp": utcnow().isoformat(),
            "requestId": _request_id(request),
        }

    @application.get("/api/health")
    def health():
        return {
            "status": "ok",
            "uptime": round(time.time() - STARTED_AT, 1),
            "timestamp": utcnow().isoformat(),
            "version": VERSION,
            "services": {"database": "connected" if ping() else "unavailable"},
        }

    @application.get("/api/status")
    def status(request: Request):
        return {
            "server": "running",
            "database": "connected" if ping() else "unavailable",
            "timestamp": utcnow().isoformat(),
            "requestId": _request_id(request),
        }

    @application.get("/api/docs")
    def api_index():
        """Listado de endpoints disponibles."""
        endpoints = []
        for route in application.routes:
            methods = sorted(getattr(route, "methods", None) or [])
            path = getattr(route, "path", "")
            if path.startswith("/api/") and methods:
                endpoints.append({"path": path, "methods": methods})
        return {"version": VERSION, "count": len(endpoints), "endpoints": endpoints}

    # Imágenes de estaciones
    UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    application.mount("/uploads", StaticFiles(directory=str(UPLOAD_DIR)), name="uploads")

    return application


app = create_app()
