from fastapi import APIRouter
from slotkeeper.api.v1.routes.bookings import router as bookings_router
from slotkeeper.api.v1.routes.catalog import router as catalog_router
from slotkeeper.api.v1.routes.consistency import router as consistency_router
from slotkeeper.api.v1.routes.holds import router as holds_router
from slotkeeper.api.v1.routes.slots import router as slots_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(catalog_router)
api_router.include_router(slots_router)
api_router.include_router(bookings_router)
api_router.include_router(holds_router)
api_router.include_router(consistency_router)
