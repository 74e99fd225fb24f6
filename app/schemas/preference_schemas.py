from typing import Optional
from pydantic import Field

from app.db.models import DigestFrequency
from app.schemas.camel_base_model import CamelCaseBaseModel as BaseModel


class PreferenceResponse(BaseModel):
    """Response schema for a user's notification preferences"""

    email_enabled: bool = Field(..., description="Email notifications enabled")
    browser_enabled: bool = Field(..., description="Browser notifications enabled")
    lead_time_hours: int = Field(
        ..., description="Hours before the due date a reminder is sent"
    )
    digest_frequency: DigestFrequency = Field(..., description="Digest cadence")


class UpdatePreferenceRequest(BaseModel):
    """Partial update; omitted fields keep their current value"""

    email_enabled: Optional[bool] = Field(None, description="Email notifications enabled")
    browser_enabled: Optional[bool] = Field(
        None, description="Browser notifications enabled"
    )
    lead_time_hours: Optional[int] = Field(
        None, ge=1, le=168, description="Reminder lead time in hours (1-168)"
    )
    digest_frequency: Optional[DigestFrequency] = Field(
        None, description="daily, weekly or never"
    )
