from typing import Annotated, Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import NotificationKind
from app.db.session import get_async_session
from app.middlewares.auth_middleware import AuthState, get_current_user
from app.schemas.notification_schemas import (
    ClearHistoryRequest,
    ClearHistoryResponse,
    NotificationHistoryItem,
    NotificationStatsResponse,
    SchedulerStatusResponse,
    SendTestNotificationRequest,
    SendTestNotificationResponse,
    SubscribeRequest,
)
from app.services.notification_service import (
    NotificationService,
    get_notification_service,
)
from app.services.notifications.preference_store import PreferenceStore
from app.utils.errors import (
    BusinessLogicError,
    DeliveryFailure,
    InvalidNotificationKindError,
    UserNotFoundError,
)
from app.utils.logging import get_logger
from app.utils.responses import ResponseBuilder

notifications_router = APIRouter()
logger = get_logger()

TESTABLE_KINDS = [kind.value for kind in NotificationKind]


@notifications_router.get("/history")
async def get_notification_history(
    request: Request,
    current_user: Annotated[AuthState, Depends(get_current_user)],
    service: Annotated[NotificationService, Depends(get_notification_service)],
    limit: int = Query(
        default=50,
        ge=1,
        le=100,
        description="Maximum number of records to return",
    ),
    offset: int = Query(default=0, ge=0, description="Offset for pagination"),
):
    """
    Get the notification history of the current user, newest first.

    Records whose task has since been deleted come back with `task` set to null.
    """
    history = await service.get_history(current_user.user_id, limit, offset)
    items = [
        NotificationHistoryItem.from_record(record).model_dump(by_alias=True)
        for record in history.records
    ]

    return ResponseBuilder.paginated(
        request=request,
        data=items,
        total=history.total,
        limit=limit,
        offset=offset,
        message=f"Retrieved {len(items)} notifications",
    )


@notifications_router.get("/stats")
async def get_notification_stats(
    request: Request,
    current_user: Annotated[AuthState, Depends(get_current_user)],
    service: Annotated[NotificationService, Depends(get_notification_service)],
):
    """Counts by kind, channel and status, all time and for the last 30 days."""
    stats = await service.get_stats(current_user.user_id)

    return ResponseBuilder.success(
        request=request,
        data=NotificationStatsResponse(**stats).model_dump(by_alias=True),
        message="Notification statistics retrieved",
    )


@notifications_router.post("/test")
async def send_test_notification(
    request: Request,
    payload: SendTestNotificationRequest,
    current_user: Annotated[AuthState, Depends(get_current_user)],
    service: Annotated[NotificationService, Depends(get_notification_service)],
):
    """Send one notification of the given type to the current user right away."""
    if payload.type not in TESTABLE_KINDS:
        raise InvalidNotificationKindError(
            f"Invalid notification type. Must be one of: {', '.join(TESTABLE_KINDS)}"
        )

    logger.info(f"Test {payload.type} notification requested by user {current_user.user_id}")
    result = await service.send_test_notification(current_user.user_id, payload.type)

    if not result["success"]:
        if result["error"] == UserNotFoundError.default_message:
            raise UserNotFoundError()
        raise DeliveryFailure(f"Failed to send test notification: {result['error']}")

    return ResponseBuilder.success(
        request=request,
        data=SendTestNotificationResponse(
            message_id=result.get("message_id")
        ).model_dump(by_alias=True),
        message=f"Test {payload.type} notification sent successfully",
    )


@notifications_router.post("/subscribe")
async def subscribe_to_browser_notifications(
    request: Request,
    payload: SubscribeRequest,
    current_user: Annotated[AuthState, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_async_session)],
):
    """
    Register a browser push subscription.

    Only the preference flag is stored; the other preference fields keep
    their current values, or the defaults when the user has no row yet.
    """
    if payload.subscription is None or not payload.subscription.endpoint:
        raise BusinessLogicError("Invalid subscription data", "INVALID_SUBSCRIPTION")

    await PreferenceStore(db).update(current_user.user_id, browser_enabled=True)
    logger.info(f"User {current_user.user_id} subscribed to browser notifications")

    return ResponseBuilder.success(
        request=request,
        message="Successfully subscribed to browser notifications",
    )


@notifications_router.delete("/history")
async def clear_notification_history(
    request: Request,
    current_user: Annotated[AuthState, Depends(get_current_user)],
    service: Annotated[NotificationService, Depends(get_notification_service)],
    payload: Optional[ClearHistoryRequest] = None,
):
    """
    Clear the current user's notification history.

    With `olderThanDays` only records older than that many days are removed.
    """
    older_than_days = payload.older_than_days if payload else None
    result = await service.clear_history(current_user.user_id, older_than_days)

    return ResponseBuilder.success(
        request=request,
        data=ClearHistoryResponse(**result).model_dump(by_alias=True),
        message=f"Cleared {result['cleared_count']} notification records",
    )


@notifications_router.get("/scheduler")
async def get_scheduler_status(
    request: Request,
    current_user: Annotated[AuthState, Depends(get_current_user)],
    service: Annotated[NotificationService, Depends(get_notification_service)],
):
    """Whether the scheduler is running and when each job fires next."""
    return ResponseBuilder.success(
        request=request,
        data=SchedulerStatusResponse(**service.scheduler.status()).model_dump(
            by_alias=True
        ),
        message="Scheduler status retrieved",
    )
