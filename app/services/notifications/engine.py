import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config.settings import settings
from app.db.models import DigestFrequency, NotificationKind
from app.services.notifications.delivery import (
    DeliveryChannel,
    DeliveryResult,
    MessageTemplate,
    digest_payload,
    task_payload,
)
from app.services.notifications.notification_log import NotificationLog
from app.services.notifications.preference_store import (
    EffectivePreferences,
    PreferenceStore,
)
from app.services.notifications.task_source import Recipient, TaskSnapshot, TaskSource
from app.utils.datetime_utils import naive_utc_now
from app.utils.errors import InvalidNotificationKindError, StorageFailure, UserNotFoundError
from app.utils.logging import get_logger

# Tasks embedded in a digest count as "due soon" inside this many hours
DIGEST_DUE_SOON_HOURS = 24

PASS_KINDS = (
    NotificationKind.DUE_SOON,
    NotificationKind.OVERDUE,
    NotificationKind.DAILY_DIGEST,
)

UserHandler = Callable[
    [AsyncSession, Recipient, EffectivePreferences, datetime, "PassReport"],
    Awaitable[None],
]


@dataclass
class PassReport:
    """Counters for one pass over all eligible users."""

    kind: str
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    users_processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0
    error_details: list = field(default_factory=list)

    def count(self, result: DeliveryResult) -> None:
        if result.success:
            self.sent += 1
        else:
            self.failed += 1

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class NotificationEngine:
    """
    Runs the due-soon, overdue and daily-digest passes.

    Every pass walks all users with email enabled, checks the notification
    log for an attempt inside the dedup window, delivers through the channel
    and appends the outcome. One user's failure never aborts the pass.
    Per-user work is fanned out up to `max_concurrency` at a time, each user
    on its own session. A pass never overlaps another run of itself.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        channel: DeliveryChannel,
        *,
        clock: Callable[[], datetime] = naive_utc_now,
        max_concurrency: int = settings.NOTIFICATION_MAX_CONCURRENCY,
        delivery_timeout: float = settings.DELIVERY_TIMEOUT_SECONDS,
        digest_task_limit: int = settings.DIGEST_TASK_LIMIT,
    ):
        self.session_factory = session_factory
        self.channel = channel
        self.clock = clock
        self.max_concurrency = max_concurrency
        self.delivery_timeout = delivery_timeout
        self.digest_task_limit = digest_task_limit
        self._pass_locks = {kind: asyncio.Lock() for kind in PASS_KINDS}

    # Passes

    async def run_due_soon_pass(self) -> PassReport:
        return await self._run_pass(NotificationKind.DUE_SOON, self._due_soon_for_user)

    async def run_overdue_pass(self) -> PassReport:
        return await self._run_pass(NotificationKind.OVERDUE, self._overdue_for_user)

    async def run_daily_digest_pass(self) -> PassReport:
        return await self._run_pass(
            NotificationKind.DAILY_DIGEST,
            self._digest_for_user,
            digest_frequency=DigestFrequency.DAILY,
        )

    async def _run_pass(
        self,
        kind: NotificationKind,
        handler: UserHandler,
        digest_frequency: Optional[DigestFrequency] = None,
    ) -> PassReport:
        logger = get_logger()

        async with self._pass_locks[kind]:
            now = self.clock()
            report = PassReport(kind=kind.value, started_at=now)
            logger.info(f"Starting {kind.value} notification pass")

            try:
                async with self.session_factory() as db:
                    recipients = await PreferenceStore(db).list_email_recipients(
                        digest_frequency=digest_frequency
                    )
            except SQLAlchemyError as e:
                report.errors += 1
                report.error_details.append(StorageFailure(str(e)).message)
                report.finished_at = self.clock()
                logger.exception(
                    f"{kind.value} pass could not load recipients: {e}"
                )
                return report

            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def _guarded(recipient: Recipient, prefs: EffectivePreferences):
                async with semaphore:
                    await self._process_user(handler, recipient, prefs, now, report)

            await asyncio.gather(
                *(_guarded(recipient, prefs) for recipient, prefs in recipients)
            )

            report.finished_at = self.clock()
            logger.info(
                f"{kind.value} notification pass completed",
                users_processed=report.users_processed,
                sent=report.sent,
                failed=report.failed,
                skipped=report.skipped,
                errors=report.errors,
            )
            return report

    async def _process_user(
        self,
        handler: UserHandler,
        recipient: Recipient,
        prefs: EffectivePreferences,
        now: datetime,
        report: PassReport,
    ) -> None:
        logger = get_logger()
        try:
            async with self.session_factory() as db:
                await handler(db, recipient, prefs, now, report)
            report.users_processed += 1
        except SQLAlchemyError as e:
            failure = StorageFailure(f"user {recipient.id}: {e}")
            report.errors += 1
            report.error_details.append(failure.message)
            logger.exception(
                f"Storage failure while processing user {recipient.id}: {e}"
            )
        except Exception as e:
            report.errors += 1
            report.error_details.append(f"user {recipient.id}: {e}")
            logger.exception(
                f"Error processing notifications for user {recipient.id}: {e}"
            )

    # Per-user handlers

    async def _due_soon_for_user(
        self,
        db: AsyncSession,
        recipient: Recipient,
        prefs: EffectivePreferences,
        now: datetime,
        report: PassReport,
    ) -> None:
        kind = NotificationKind.DUE_SOON.value
        log = NotificationLog(db)
        tasks = await TaskSource(db).due_within(recipient.id, now, prefs.lead_time_hours)
        window_start = now - timedelta(hours=prefs.lead_time_hours)

        for task in tasks:
            if await log.has_record_since(recipient.id, kind, window_start, task_id=task.id):
                report.skipped += 1
                get_logger().debug(
                    f"Skipping {kind} for task {task.id}: already notified in window"
                )
                continue

            await self._deliver_and_record(
                log, kind, MessageTemplate.DUE_REMINDER, recipient, task, report
            )

    async def _overdue_for_user(
        self,
        db: AsyncSession,
        recipient: Recipient,
        prefs: EffectivePreferences,
        now: datetime,
        report: PassReport,
    ) -> None:
        kind = NotificationKind.OVERDUE.value
        log = NotificationLog(db)
        tasks = await TaskSource(db).overdue(recipient.id, now)

        for task in tasks:
            if await log.has_record_on_day(recipient.id, kind, now, task_id=task.id):
                report.skipped += 1
                get_logger().debug(
                    f"Skipping {kind} for task {task.id}: already notified today"
                )
                continue

            await self._deliver_and_record(
                log, kind, MessageTemplate.OVERDUE_ALERT, recipient, task, report
            )

    async def _digest_for_user(
        self,
        db: AsyncSession,
        recipient: Recipient,
        prefs: EffectivePreferences,
        now: datetime,
        report: PassReport,
    ) -> None:
        kind = NotificationKind.DAILY_DIGEST.value
        log = NotificationLog(db)

        if await log.has_record_on_day(recipient.id, kind, now):
            report.skipped += 1
            get_logger().debug(
                f"Skipping {kind} for user {recipient.id}: already sent today"
            )
            return

        source = TaskSource(db)
        payload = digest_payload(
            now,
            await source.task_stats(recipient.id, now),
            await source.overdue(recipient.id, now, limit=self.digest_task_limit),
            await source.due_within(
                recipient.id, now, DIGEST_DUE_SOON_HOURS, limit=self.digest_task_limit
            ),
        )

        result = await self._deliver(MessageTemplate.DAILY_DIGEST, recipient, payload)
        await self._record(log, kind, recipient, result)
        report.count(result)

    # Delivery

    async def _deliver_and_record(
        self,
        log: NotificationLog,
        kind: str,
        template: MessageTemplate,
        recipient: Recipient,
        task: TaskSnapshot,
        report: PassReport,
    ) -> None:
        result = await self._deliver(template, recipient, {"task": task_payload(task)})
        await self._record(log, kind, recipient, result, task_id=task.id)
        report.count(result)

    async def _deliver(
        self,
        template: MessageTemplate,
        recipient: Recipient,
        payload: Dict[str, Any],
    ) -> DeliveryResult:
        """Call the channel under the delivery timeout; anything it raises becomes a failed result."""
        try:
            return await asyncio.wait_for(
                self.channel.send(template, recipient, payload),
                timeout=self.delivery_timeout,
            )
        except asyncio.TimeoutError:
            # An SMTP send running in the executor is not cancelled here; only the
            # socket timeout of the channel bounds it, so the message may still land.
            return DeliveryResult(
                success=False,
                error=(
                    f"Delivery timed out after {self.delivery_timeout:g}s; "
                    "outcome unknown"
                ),
            )
        except Exception as e:
            get_logger().exception(
                f"Delivery channel raised for {template.value}: {e}"
            )
            return DeliveryResult(success=False, error=str(e) or type(e).__name__)

    async def _record(
        self,
        log: NotificationLog,
        kind: str,
        recipient: Recipient,
        result: DeliveryResult,
        task_id: Optional[int] = None,
    ) -> None:
        logger = get_logger()
        await log.record(
            recipient.id,
            kind,
            success=result.success,
            channel=self.channel.name,
            task_id=task_id,
            message_id=result.message_id,
            error=result.error,
            created_at=self.clock(),
        )

        if result.success:
            logger.info(
                f"Sent {kind} notification to user {recipient.id}",
                task_id=task_id,
                message_id=result.message_id,
            )
        else:
            # No extra kwargs: loguru would str.format() the error text
            logger.warning(
                f"Failed to send {kind} notification to user {recipient.id} "
                f"(task {task_id}): {result.error}"
            )

    # Ad-hoc sends

    def _sample_task(self, kind: NotificationKind, now: datetime) -> TaskSnapshot:
        if kind == NotificationKind.DUE_SOON:
            return TaskSnapshot(
                id=0,
                user_id="",
                title="Test Task - Due Soon",
                description="This is a test notification for a task due soon.",
                due_date=now + timedelta(hours=24),
                completed=False,
                priority=2,
            )
        return TaskSnapshot(
            id=0,
            user_id="",
            title="Test Task - Overdue",
            description="This is a test notification for an overdue task.",
            due_date=now - timedelta(hours=24),
            completed=False,
            priority=3,
        )

    async def send_test_notification(
        self, user_id: str, kind: Union[NotificationKind, str]
    ) -> Dict[str, Any]:
        """
        Send one notification of `kind` to a user right away, skipping dedup.

        Task-scoped kinds use a synthetic task, the digest uses the user's real
        stats with empty task lists. The attempt is logged as `test_<kind>`.

        Returns:
            {"success": True, "message_id": ...} or {"success": False, "error": ...}
        """
        logger = get_logger()
        now = self.clock()

        try:
            async with self.session_factory() as db:
                source = TaskSource(db)
                recipient = await source.get_user(user_id)
                if recipient is None:
                    return {"success": False, "error": UserNotFoundError().message}

                try:
                    kind = NotificationKind(kind)
                except ValueError:
                    return {
                        "success": False,
                        "error": InvalidNotificationKindError().message,
                    }

                if kind in (NotificationKind.DUE_SOON, NotificationKind.OVERDUE):
                    template = (
                        MessageTemplate.DUE_REMINDER
                        if kind == NotificationKind.DUE_SOON
                        else MessageTemplate.OVERDUE_ALERT
                    )
                    payload = {"task": task_payload(self._sample_task(kind, now))}
                elif kind == NotificationKind.DAILY_DIGEST:
                    template = MessageTemplate.DAILY_DIGEST
                    payload = digest_payload(
                        now, await source.task_stats(user_id, now), [], []
                    )
                else:
                    template = MessageTemplate.WELCOME
                    payload = {}

                result = await self._deliver(template, recipient, payload)
                await self._record(NotificationLog(db), kind.test_marker, recipient, result)

        except SQLAlchemyError as e:
            logger.exception(f"Test notification for user {user_id} failed: {e}")
            return {"success": False, "error": StorageFailure().message}

        return result.as_dict()
