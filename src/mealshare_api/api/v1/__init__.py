from fastapi import APIRouter

from .endpoints import (
    credentials,
    health,
    notifications,
    points,
    requests,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(requests.router)
router.include_router(credentials.router)
router.include_router(points.router)
router.include_router(notifications.router)
