from fastapi import APIRouter

from .auth_api import router as auth_router
from .owners import router as owners_router
from .users import router as users_router
from .stations import router as stations_router
from .bookings import router as bookings_router
from .payments import router as payments_router
from .finance import router as finance_router
from .finance import legacy_router as finance_legacy_router
from .analytics import router as analytics_router
from .admin import router as admin_router
from .notifications import router as notifications_router
from .maps import router as maps_router

router = APIRouter()
router.include_router(auth_router)
router.include_router(owners_router)
router.include_router(users_router)
router.include_router(stations_router)
router.include_router(bookings_router)
router.include_router(payments_router)
for prefix in ("/owner/finance", "/owners/finance", "/finance"):
    router.include_router(finance_router, prefix=prefix, tags=["finance"])
router.include_router(finance_legacy_router)
router.include_router(analytics_router)
router.include_router(admin_router)
router.include_router(notifications_router)
router.include_router(maps_router)
