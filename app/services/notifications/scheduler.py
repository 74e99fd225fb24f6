import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.config.settings import settings
from app.services.notifications.engine import NotificationEngine
from app.utils.context import request_id_scope
from app.utils.datetime_utils import isoformat_or_none
from app.utils.logging import get_logger

logger = get_logger()


@dataclass(frozen=True)
class RecurringTrigger:
    """A cron cadence (CronTrigger fields) and the pass it fires."""

    job_id: str
    name: str
    cadence: Dict[str, Any]
    callback: Callable[[], Awaitable[Any]]


class NotificationScheduler:
    """
    Fires the engine's passes on their recurring cadences.

    Stopped -> Running on `start()`, which registers one job per trigger.
    Running -> Stopped on `stop()`, which removes every job. A pass that is
    already running when the scheduler stops is left to finish; `drain()`
    waits for it.
    """

    def __init__(
        self,
        engine: NotificationEngine,
        *,
        timezone: str = settings.SCHEDULER_TIMEZONE,
        due_soon_minute: int = settings.DUE_SOON_CRON_MINUTE,
        daily_digest_hour: int = settings.DAILY_DIGEST_HOUR,
        overdue_hour: int = settings.OVERDUE_HOUR,
    ):
        self.engine = engine
        self.timezone = timezone
        self.triggers = [
            RecurringTrigger(
                job_id="due_soon",
                name="Due-soon reminders (hourly)",
                cadence={"minute": due_soon_minute},
                callback=engine.run_due_soon_pass,
            ),
            RecurringTrigger(
                job_id="overdue",
                name="Overdue alerts (daily)",
                cadence={"hour": overdue_hour, "minute": 0},
                callback=engine.run_overdue_pass,
            ),
            RecurringTrigger(
                job_id="daily_digest",
                name="Daily digest",
                cadence={"hour": daily_digest_hour, "minute": 0},
                callback=engine.run_daily_digest_pass,
            ),
        ]
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._inflight: Dict[str, asyncio.Task] = {}

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> bool:
        """Register the recurring triggers. Returns False if already running."""
        if self.is_running:
            logger.info("Notification scheduler already running")
            return False

        # Must be called from the loop the passes should run on
        scheduler = AsyncIOScheduler(
            event_loop=asyncio.get_running_loop(), timezone=self.timezone
        )
        for trigger in self.triggers:
            scheduler.add_job(
                self._fire,
                CronTrigger(timezone=self.timezone, **trigger.cadence),
                args=[trigger],
                id=trigger.job_id,
                name=trigger.name,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=300,
            )
        scheduler.start()
        self._scheduler = scheduler

        logger.info(
            f"Notification scheduler started with {len(self.triggers)} jobs "
            f"(timezone {self.timezone})"
        )
        return True

    def stop(self) -> bool:
        """Remove all triggers. Returns False if already stopped."""
        if not self.is_running:
            return False

        self._scheduler.remove_all_jobs()
        self._scheduler.shutdown(wait=False)
        self._scheduler = None

        logger.info("Notification scheduler stopped")
        return True

    def jobs(self) -> List[Dict[str, Any]]:
        if not self.is_running:
            return []
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": isoformat_or_none(job.next_run_time),
            }
            for job in self._scheduler.get_jobs()
        ]

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "timezone": self.timezone,
            "jobs": self.jobs(),
        }

    async def _fire(self, trigger: RecurringTrigger) -> None:
        # The pass runs as its own task so shutting the scheduler down
        # does not cancel it
        running = self._inflight.get(trigger.job_id)
        if running is not None and not running.done():
            logger.warning(
                f"Skipping {trigger.job_id} trigger: previous run still in progress"
            )
            return

        self._inflight[trigger.job_id] = asyncio.create_task(self._run(trigger))

    async def _run(self, trigger: RecurringTrigger) -> None:
        with request_id_scope(trigger.job_id):
            try:
                await trigger.callback()
            except Exception as e:
                get_logger().exception(
                    f"Scheduled {trigger.job_id} pass crashed: {e}"
                )

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for passes started by the scheduler to finish."""
        pending = [task for task in self._inflight.values() if not task.done()]
        if pending:
            logger.info(f"Waiting for {len(pending)} in-flight notification pass(es)")
            await asyncio.wait(pending, timeout=timeout)
        self._inflight.clear()
