from fastapi import APIRouter

from .health import health_router
from .notifications import notifications_router
from .preferences import preferences_router

shared_router = APIRouter()

# Include sub-routers
shared_router.include_router(
    health_router, prefix="/health", tags=["Health Checks"]
)
shared_router.include_router(
    notifications_router, prefix="/notifications", tags=["Notifications"]
)
shared_router.include_router(
    preferences_router, prefix="/preferences", tags=["Preferences"]
)
