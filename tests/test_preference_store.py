import pytest
from sqlalchemy import func, select

from app.db.models import DigestFrequency, NotificationPreference
from app.services.notifications import EffectivePreferences, PreferenceStore
from app.services.notifications.preference_store import validate_preference_changes
from app.utils.errors import BusinessLogicError, UserNotFoundError


async def _preference_rows(db_session) -> int:
    result = await db_session.execute(select(func.count(NotificationPreference.id)))
    return result.scalar_one()


class TestEffectivePreferences:
    @pytest.mark.asyncio
    async def test_defaults_without_row_and_no_write(self, db_session, make_user):
        user = await make_user()

        effective = await PreferenceStore(db_session).get_effective(user.id)

        assert effective == EffectivePreferences(
            user_id=user.id,
            email_enabled=True,
            browser_enabled=True,
            lead_time_hours=24,
            digest_frequency=DigestFrequency.DAILY,
        )
        assert await _preference_rows(db_session) == 0

    @pytest.mark.asyncio
    async def test_stored_row_wins(self, db_session, make_user):
        user = await make_user(lead_time_hours=6, digest_frequency=DigestFrequency.NEVER)

        effective = await PreferenceStore(db_session).get_effective(user.id)

        assert effective.lead_time_hours == 6
        assert effective.digest_frequency == DigestFrequency.NEVER
        assert effective.as_dict()["digest_frequency"] == "never"


class TestGetOrCreate:
    @pytest.mark.asyncio
    async def test_creates_defaults_once(self, db_session, make_user):
        user = await make_user()
        store = PreferenceStore(db_session)

        first = await store.get_or_create(user.id)
        second = await store.get_or_create(user.id)

        assert first.id == second.id
        assert first.email_enabled is True
        assert first.lead_time_hours == 24
        assert await _preference_rows(db_session) == 1

    @pytest.mark.asyncio
    async def test_losing_a_concurrent_insert_returns_the_winner(
        self, db_session, session_factory, make_user, monkeypatch
    ):
        """Both requests saw no row; the second insert hits the unique user_id."""
        user = await make_user()
        async with session_factory() as other:
            winner = await PreferenceStore(other).get_or_create(user.id)

        real_get = PreferenceStore._get
        reads = []

        async def stale_first_read(self, user_id):
            reads.append(user_id)
            if len(reads) == 1:
                return None
            return await real_get(self, user_id)

        monkeypatch.setattr(PreferenceStore, "_get", stale_first_read)

        preference = await PreferenceStore(db_session).get_or_create(user.id)

        assert preference.id == winner.id
        assert len(reads) == 2
        assert await _preference_rows(db_session) == 1

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session):
        with pytest.raises(UserNotFoundError):
            await PreferenceStore(db_session).get_or_create("no-such-user")

        assert await _preference_rows(db_session) == 0


class TestUpdate:
    @pytest.mark.asyncio
    async def test_partial_update_keeps_other_fields(self, db_session, make_user):
        user = await make_user()
        store = PreferenceStore(db_session)

        await store.update(user.id, lead_time_hours=48)
        preference = await store.update(user.id, digest_frequency="weekly")

        assert preference.lead_time_hours == 48
        assert preference.digest_frequency == DigestFrequency.WEEKLY
        assert preference.email_enabled is True

    @pytest.mark.asyncio
    async def test_none_values_are_ignored(self, db_session, make_user):
        user = await make_user(email_enabled=False)

        preference = await PreferenceStore(db_session).update(
            user.id, email_enabled=None, browser_enabled=False
        )

        assert preference.email_enabled is False
        assert preference.browser_enabled is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "changes",
        [
            {"lead_time_hours": 0},
            {"lead_time_hours": 169},
            {"lead_time_hours": "12"},
            {"email_enabled": "yes"},
            {"digest_frequency": "hourly"},
            {"sms_enabled": True},
        ],
    )
    async def test_rejects_invalid_changes(self, db_session, make_user, changes):
        user = await make_user(lead_time_hours=12)

        with pytest.raises(BusinessLogicError):
            await PreferenceStore(db_session).update(user.id, **changes)

        effective = await PreferenceStore(db_session).get_effective(user.id)
        assert effective.lead_time_hours == 12

    @pytest.mark.asyncio
    async def test_update_for_unknown_user(self, db_session):
        with pytest.raises(UserNotFoundError):
            await PreferenceStore(db_session).update("no-such-user", lead_time_hours=2)


class TestValidatePreferenceChanges:
    def test_boundaries_accepted(self):
        assert validate_preference_changes({"lead_time_hours": 1}) == {"lead_time_hours": 1}
        assert validate_preference_changes({"lead_time_hours": 168}) == {"lead_time_hours": 168}

    def test_digest_string_normalised(self):
        cleaned = validate_preference_changes({"digest_frequency": "never"})
        assert cleaned == {"digest_frequency": DigestFrequency.NEVER}

    def test_error_code_for_unknown_field(self):
        with pytest.raises(BusinessLogicError) as exc_info:
            validate_preference_changes({"timezone": "UTC"})
        assert exc_info.value.error_code == "INVALID_PREFERENCE_FIELD"


class TestEmailRecipients:
    """Who the passes visit."""

    @pytest.mark.asyncio
    async def test_disabled_users_excluded(self, db_session, make_user):
        default_user = await make_user(email="default@example.com")
        await make_user(email="muted@example.com", email_enabled=False)
        explicit = await make_user(email="explicit@example.com", email_enabled=True)

        recipients = await PreferenceStore(db_session).list_email_recipients()

        emails = [recipient.email for recipient, _ in recipients]
        assert emails == ["default@example.com", "explicit@example.com"]
        prefs = {recipient.id: effective for recipient, effective in recipients}
        assert prefs[default_user.id].lead_time_hours == 24
        assert prefs[explicit.id].email_enabled is True

    @pytest.mark.asyncio
    async def test_filter_by_digest_frequency(self, db_session, make_user):
        await make_user(email="implicit-daily@example.com")
        await make_user(email="daily@example.com", digest_frequency=DigestFrequency.DAILY)
        await make_user(email="weekly@example.com", digest_frequency=DigestFrequency.WEEKLY)
        await make_user(email="never@example.com", digest_frequency=DigestFrequency.NEVER)

        recipients = await PreferenceStore(db_session).list_email_recipients(
            digest_frequency=DigestFrequency.DAILY
        )

        assert sorted(recipient.email for recipient, _ in recipients) == [
            "daily@example.com",
            "implicit-daily@example.com",
        ]
