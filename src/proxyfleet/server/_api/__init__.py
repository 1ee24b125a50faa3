from fastapi import APIRouter

from ._events import router as events_router
from ._health import router as health_router
from ._instances import router as instances_router

router = APIRouter(prefix="/api")

router.include_router(health_router)
router.include_router(instances_router)
router.include_router(events_router)

__all__ = ["router"]
