from typing import Annotated
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import NotificationPreference
from app.db.session import get_async_session
from app.middlewares.auth_middleware import AuthState, get_current_user
from app.schemas.preference_schemas import PreferenceResponse, UpdatePreferenceRequest
from app.services.notifications.preference_store import (
    EffectivePreferences,
    PreferenceStore,
)
from app.utils.responses import ResponseBuilder

preferences_router = APIRouter()


def _to_response(preference: NotificationPreference) -> dict:
    effective = EffectivePreferences.from_model(preference)
    return PreferenceResponse(
        email_enabled=effective.email_enabled,
        browser_enabled=effective.browser_enabled,
        lead_time_hours=effective.lead_time_hours,
        digest_frequency=effective.digest_frequency,
    ).model_dump(by_alias=True)


@preferences_router.get("")
async def get_preferences(
    request: Request,
    current_user: Annotated[AuthState, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_async_session)],
):
    """Get the current user's notification preferences, creating the defaults on first access."""
    preference = await PreferenceStore(db).get_or_create(current_user.user_id)

    return ResponseBuilder.success(
        request=request,
        data=_to_response(preference),
        message="Preferences retrieved",
    )


@preferences_router.put("")
async def update_preferences(
    request: Request,
    payload: UpdatePreferenceRequest,
    current_user: Annotated[AuthState, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_async_session)],
):
    """Partially update the current user's notification preferences."""
    preference = await PreferenceStore(db).update(
        current_user.user_id, **payload.model_dump(exclude_none=True)
    )

    return ResponseBuilder.success(
        request=request,
        data=_to_response(preference),
        message="Preferences updated",
    )
