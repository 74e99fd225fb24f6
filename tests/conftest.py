import os

# Must be set before anything imports app.config.settings
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SMTP_HOST"] = ""
os.environ["NOTIFICATIONS_ENABLED"] = "false"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"

import asyncio
from datetime import datetime, timedelta
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models import (
    Base,
    DigestFrequency,
    NotificationPreference,
    NotificationRecord,
    NotificationStatus,
    Task,
    User,
)
from app.db.session import build_engine
from app.services.notifications import (
    DeliveryChannel,
    DeliveryResult,
    NotificationEngine,
    Recipient,
)


# Test database setup
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

FIXED_NOW = datetime(2025, 3, 10, 12, 0, 0)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingChannel(DeliveryChannel):
    """Delivery channel that records every send instead of delivering it."""

    name = "email"

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.fail_for: Dict[str, str] = {}
        self.raise_for: Dict[str, Exception] = {}
        self.delay: float = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def send(self, template, user: Recipient, payload: Dict[str, Any]) -> DeliveryResult:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            self.sent.append({"template": template, "user": user, "payload": payload})

            if user.email in self.raise_for:
                raise self.raise_for[user.email]
            if user.email in self.fail_for:
                return DeliveryResult(success=False, error=self.fail_for[user.email])
            return DeliveryResult(
                success=True, message_id=f"<test-{len(self.sent)}@todolist.test>"
            )
        finally:
            self.in_flight -= 1

    def sends_to(self, email: str) -> List[Dict[str, Any]]:
        return [s for s in self.sent if s["user"].email == email]


@pytest_asyncio.fixture
async def test_engine():
    """Create a fresh in-memory database per test."""
    engine = build_engine(TEST_DATABASE_URL)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def notification_engine(session_factory, channel, clock) -> NotificationEngine:
    # Sequential fan-out: in-memory SQLite shares a single connection
    return NotificationEngine(
        session_factory,
        channel,
        clock=clock,
        max_concurrency=1,
        delivery_timeout=1.0,
        digest_task_limit=10,
    )


# Test data factories
@pytest.fixture
def make_user(db_session: AsyncSession):
    """Factory creating a user, optionally with a stored preference row."""
    counter = {"n": 0}

    async def _make_user(
        email: Optional[str] = None,
        first_name: str = "Test",
        email_enabled: Optional[bool] = None,
        lead_time_hours: Optional[int] = None,
        digest_frequency: Optional[DigestFrequency] = None,
    ) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            first_name=first_name,
            last_name="User",
        )
        db_session.add(user)
        await db_session.flush()

        if any(
            value is not None
            for value in (email_enabled, lead_time_hours, digest_frequency)
        ):
            db_session.add(
                NotificationPreference(
                    user_id=user.id,
                    email_enabled=True if email_enabled is None else email_enabled,
                    browser_enabled=True,
                    lead_time_hours=lead_time_hours or 24,
                    digest_frequency=digest_frequency or DigestFrequency.DAILY,
                )
            )

        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_task(db_session: AsyncSession, clock: FixedClock):
    """Factory creating a task due `due_in_hours` from the fixed clock (None for no due date)."""

    async def _make_task(
        user: User,
        due_in_hours: Optional[float] = 12,
        title: str = "Write report",
        completed: bool = False,
        priority: int = 2,
    ) -> Task:
        task = Task(
            user_id=user.id,
            title=title,
            description=f"{title} description",
            completed=completed,
            priority=priority,
            due_date=(
                clock.now + timedelta(hours=due_in_hours)
                if due_in_hours is not None
                else None
            ),
        )
        db_session.add(task)
        await db_session.commit()
        await db_session.refresh(task)
        return task

    return _make_task


@pytest.fixture
def make_record(db_session: AsyncSession):
    """Factory inserting a notification record directly."""

    async def _make_record(
        user: User,
        kind: str = "due_soon",
        status: NotificationStatus = NotificationStatus.SENT,
        created_at: datetime = FIXED_NOW,
        task_id: Optional[int] = None,
        channel: str = "email",
    ) -> NotificationRecord:
        sent = status == NotificationStatus.SENT
        record = NotificationRecord(
            user_id=user.id,
            task_id=task_id,
            kind=kind,
            channel=channel,
            status=status,
            message_id="<seed@todolist.test>" if sent else None,
            sent_at=created_at if sent else None,
            error_detail=None if sent else "SMTP unavailable",
            created_at=created_at,
        )
        db_session.add(record)
        await db_session.commit()
        await db_session.refresh(record)
        return record

    return _make_record
