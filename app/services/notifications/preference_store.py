from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.settings import settings
from app.db.models import DigestFrequency, NotificationPreference, User
from app.services.notifications.task_source import Recipient
from app.utils.errors import BusinessLogicError, UserNotFoundError
from app.utils.logging import get_logger

logger = get_logger()

MIN_LEAD_TIME_HOURS = 1
MAX_LEAD_TIME_HOURS = 168

UPDATABLE_FIELDS = (
    "email_enabled",
    "browser_enabled",
    "lead_time_hours",
    "digest_frequency",
)


@dataclass(frozen=True)
class EffectivePreferences:
    """Preferences as the engine sees them, with defaults filled in for users without a row."""

    user_id: str
    email_enabled: bool = True
    browser_enabled: bool = True
    lead_time_hours: int = 24
    digest_frequency: DigestFrequency = DigestFrequency.DAILY

    @classmethod
    def defaults(cls, user_id: str) -> "EffectivePreferences":
        return cls(user_id=user_id, lead_time_hours=settings.DEFAULT_LEAD_TIME_HOURS)

    @classmethod
    def from_model(cls, preference: NotificationPreference) -> "EffectivePreferences":
        return cls(
            user_id=preference.user_id,
            email_enabled=preference.email_enabled,
            browser_enabled=preference.browser_enabled,
            lead_time_hours=preference.lead_time_hours,
            digest_frequency=preference.digest_frequency,
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "email_enabled": self.email_enabled,
            "browser_enabled": self.browser_enabled,
            "lead_time_hours": self.lead_time_hours,
            "digest_frequency": self.digest_frequency.value,
        }


def validate_preference_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a partial preference update and normalise its values.

    Raises:
        BusinessLogicError: unknown field or value out of range
    """
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise BusinessLogicError(
            f"Unknown preference field(s): {', '.join(sorted(unknown))}",
            "INVALID_PREFERENCE_FIELD",
        )

    cleaned: Dict[str, Any] = {}
    for field, value in changes.items():
        if value is None:
            continue

        if field in ("email_enabled", "browser_enabled"):
            if not isinstance(value, bool):
                raise BusinessLogicError(
                    f"{field} must be a boolean", "INVALID_PREFERENCE_VALUE"
                )
        elif field == "lead_time_hours":
            if isinstance(value, bool) or not isinstance(value, int):
                raise BusinessLogicError(
                    "lead_time_hours must be an integer", "INVALID_PREFERENCE_VALUE"
                )
            if not MIN_LEAD_TIME_HOURS <= value <= MAX_LEAD_TIME_HOURS:
                raise BusinessLogicError(
                    f"lead_time_hours must be between {MIN_LEAD_TIME_HOURS} and {MAX_LEAD_TIME_HOURS}",
                    "INVALID_PREFERENCE_VALUE",
                )
        elif field == "digest_frequency":
            if not isinstance(value, DigestFrequency):
                try:
                    value = DigestFrequency(value)
                except ValueError:
                    allowed = ", ".join(f.value for f in DigestFrequency)
                    raise BusinessLogicError(
                        f"digest_frequency must be one of: {allowed}",
                        "INVALID_PREFERENCE_VALUE",
                    )

        cleaned[field] = value

    return cleaned


class PreferenceStore:
    """Per-user notification preferences."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def _get(self, user_id: str) -> Optional[NotificationPreference]:
        result = await self.db.execute(
            select(NotificationPreference).where(
                NotificationPreference.user_id == user_id
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, user_id: str) -> NotificationPreference:
        """
        Return the stored row, inserting the defaults on first access.

        Raises:
            UserNotFoundError: no such user
        """
        preference = await self._get(user_id)
        if preference:
            return preference

        if await self.db.get(User, user_id) is None:
            raise UserNotFoundError()

        defaults = EffectivePreferences.defaults(user_id)
        preference = NotificationPreference(
            user_id=user_id,
            email_enabled=defaults.email_enabled,
            browser_enabled=defaults.browser_enabled,
            lead_time_hours=defaults.lead_time_hours,
            digest_frequency=defaults.digest_frequency,
        )
        self.db.add(preference)
        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent request inserted the row first
            await self.db.rollback()
            existing = await self._get(user_id)
            if existing is None:
                raise
            return existing
        await self.db.refresh(preference)

        logger.info(f"Created default notification preferences for user {user_id}")
        return preference

    async def get_effective(self, user_id: str) -> EffectivePreferences:
        """Read-only lookup; never writes a row."""
        preference = await self._get(user_id)
        if preference is None:
            return EffectivePreferences.defaults(user_id)
        return EffectivePreferences.from_model(preference)

    async def update(self, user_id: str, **changes: Any) -> NotificationPreference:
        """Apply a partial update. Fields not passed keep their current value."""
        cleaned = validate_preference_changes(changes)
        preference = await self.get_or_create(user_id)

        for field, value in cleaned.items():
            setattr(preference, field, value)

        await self.db.commit()
        await self.db.refresh(preference)

        logger.info(
            f"Updated notification preferences for user {user_id}: {sorted(cleaned)}"
        )
        return preference

    async def list_email_recipients(
        self, digest_frequency: Optional[DigestFrequency] = None
    ) -> List[Tuple[Recipient, EffectivePreferences]]:
        """
        Users with email notifications enabled, paired with their effective preferences.

        Users without a preference row count as enabled with default settings.
        When `digest_frequency` is given only users on that cadence are returned.
        """
        query = (
            select(User, NotificationPreference)
            .outerjoin(
                NotificationPreference, NotificationPreference.user_id == User.id
            )
            .where(
                or_(
                    NotificationPreference.id.is_(None),
                    NotificationPreference.email_enabled.is_(True),
                )
            )
            .order_by(User.created_at.asc(), User.id.asc())
        )

        result = await self.db.execute(query)

        recipients = []
        for user, preference in result.all():
            effective = (
                EffectivePreferences.from_model(preference)
                if preference
                else EffectivePreferences.defaults(user.id)
            )
            if digest_frequency and effective.digest_frequency != digest_frequency:
                continue
            recipients.append((Recipient.from_model(user), effective))

        return recipients

