from fastapi import APIRouter

from .endpoints import (
    health,
    jobs,
    loyalty,
    notifications,
    observability,
    orders,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(orders.router)
router.include_router(loyalty.router)
router.include_router(notifications.router)
router.include_router(jobs.router)
router.include_router(observability.router)
