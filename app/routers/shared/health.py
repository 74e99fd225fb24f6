from fastapi import APIRouter, Request

from app.config.settings import settings
from app.utils.responses import ResponseBuilder

health_router = APIRouter()


@health_router.get("")
async def health_check(request: Request):
    """
    Basic health check endpoint

    Returns application status and whether the notification scheduler is running
    """
    service = getattr(request.app.state, "notification_service", None)

    return ResponseBuilder.success(
        request=request,
        data={
            "status": "healthy",
            "service": settings.NAME,
            "version": settings.VERSION,
            "schedulerRunning": bool(service and service.scheduler.is_running),
        },
        message="Service is running",
    )
