from fastapi import APIRouter

from listings_api.api.v1.endpoints.health import router as health_router
from listings_api.api.v1.endpoints.listings import router as listings_router


router = APIRouter(prefix="/v1")
router.include_router(health_router, tags=["health"])
router.include_router(listings_router, tags=["listings"])
