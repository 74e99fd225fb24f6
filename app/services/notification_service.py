from typing import Any, Callable, Dict, Optional

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.config.settings import Settings, settings
from app.db.db import create_tables
from app.db.session import engine as default_engine
from app.services.notifications import (
    DeliveryChannel,
    EmailDeliveryChannel,
    NotificationEngine,
    NotificationLog,
    NotificationScheduler,
)
from app.utils.datetime_utils import naive_utc_now
from app.utils.errors import LifecycleError
from app.utils.logging import get_logger

logger = get_logger()


class NotificationService:
    """
    Owns the notification engine, its scheduler and the storage they share.

    Built once at startup and kept on `app.state`; `initialize()` and
    `cleanup()` bracket the process lifetime.
    """

    def __init__(
        self,
        db_engine: Optional[AsyncEngine] = None,
        session_factory: Optional[async_sessionmaker] = None,
        channel: Optional[DeliveryChannel] = None,
        config: Settings = settings,
        clock: Callable = naive_utc_now,
    ):
        if db_engine is None:
            db_engine = default_engine

        self.config = config
        self.db_engine = db_engine
        self.session_factory = session_factory or async_sessionmaker(
            bind=db_engine, class_=AsyncSession, expire_on_commit=False
        )
        self.channel = channel or EmailDeliveryChannel(config)
        self.engine = NotificationEngine(
            self.session_factory,
            self.channel,
            clock=clock,
            max_concurrency=config.NOTIFICATION_MAX_CONCURRENCY,
            delivery_timeout=config.DELIVERY_TIMEOUT_SECONDS,
            digest_task_limit=config.DIGEST_TASK_LIMIT,
        )
        self.scheduler = NotificationScheduler(
            self.engine,
            timezone=config.SCHEDULER_TIMEZONE,
            due_soon_minute=config.DUE_SOON_CRON_MINUTE,
            daily_digest_hour=config.DAILY_DIGEST_HOUR,
            overdue_hour=config.OVERDUE_HOUR,
        )
        self._initialized = False
        self._closed = False

    @property
    def initialized(self) -> bool:
        return self._initialized and not self._closed

    async def initialize(self, start_scheduler: Optional[bool] = None) -> None:
        """Check the database, make sure the tables exist and start the scheduler."""
        if self._closed:
            raise LifecycleError("initialize() called after cleanup()")
        if self._initialized:
            logger.info("Notification service already initialized")
            return

        async with self.db_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        await create_tables(self.db_engine)

        if start_scheduler is None:
            start_scheduler = self.config.NOTIFICATIONS_ENABLED
        if start_scheduler:
            self.scheduler.start()
        else:
            logger.info("Notification scheduler disabled")

        self._initialized = True
        logger.info("Notification service initialized")

    async def cleanup(self) -> None:
        """Stop the scheduler, let running passes finish and release connections."""
        if self._closed:
            return

        self.scheduler.stop()
        await self.scheduler.drain()
        await self.db_engine.dispose()

        self._closed = True
        logger.info("Notification service shut down")

    shutdown = cleanup

    # Read API

    async def get_history(self, user_id: str, limit: int = 50, offset: int = 0):
        async with self.session_factory() as db:
            return await NotificationLog(db).get_history(user_id, limit, offset)

    async def get_stats(self, user_id: str) -> Dict[str, Any]:
        async with self.session_factory() as db:
            return await NotificationLog(db).get_stats(user_id, now=self.engine.clock())

    async def clear_history(
        self, user_id: str, older_than_days: Optional[int] = None
    ) -> Dict[str, int]:
        async with self.session_factory() as db:
            cleared = await NotificationLog(db).clear_history(
                user_id, older_than_days, now=self.engine.clock()
            )
        logger.info(f"Cleared {cleared} notification records for user {user_id}")
        return {"cleared_count": cleared}

    async def send_test_notification(self, user_id: str, kind: str) -> Dict[str, Any]:
        return await self.engine.send_test_notification(user_id, kind)


def get_notification_service(request: Request) -> NotificationService:
    """Dependency returning the service created in the application lifespan"""
    service = getattr(request.app.state, "notification_service", None)
    if service is None:
        raise LifecycleError("Notification service is not initialized")
    return service
