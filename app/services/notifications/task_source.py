from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Task, User


@dataclass(frozen=True)
class TaskSnapshot:
    """Read-only view of a task as seen by the notification engine."""

    id: int
    user_id: str
    title: str
    description: Optional[str]
    due_date: Optional[datetime]
    completed: bool
    priority: int

    @classmethod
    def from_model(cls, task: Task) -> "TaskSnapshot":
        return cls(
            id=task.id,
            user_id=task.user_id,
            title=task.title,
            description=task.description,
            due_date=task.due_date,
            completed=task.completed,
            priority=task.priority,
        )


@dataclass(frozen=True)
class Recipient:
    """The parts of a user a delivery channel needs."""

    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @classmethod
    def from_model(cls, user: User) -> "Recipient":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
        )

    @property
    def display_name(self) -> str:
        return self.first_name or self.email.split("@")[0]


@dataclass(frozen=True)
class TaskStats:
    total: int
    completed: int
    overdue: int
    due_soon: int

    def as_dict(self) -> dict:
        return {
            "total": self.total,
            "completed": self.completed,
            "overdue": self.overdue,
            "due_soon": self.due_soon,
        }


@dataclass
class TaskQuery:
    """
    Task query over a fixed set of optional predicates.

    Each predicate left as None is not applied. `due_from`/`due_until` are
    inclusive bounds, `due_before` is an exclusive upper bound.
    """

    user_id: str
    completed: Optional[bool] = None
    has_due_date: Optional[bool] = None
    due_from: Optional[datetime] = None
    due_until: Optional[datetime] = None
    due_before: Optional[datetime] = None
    order_by_due: bool = False
    limit: Optional[int] = None

    def _apply_filters(self, query: Select) -> Select:
        query = query.where(Task.user_id == self.user_id)

        if self.completed is not None:
            query = query.where(Task.completed.is_(self.completed))
        if self.has_due_date is True:
            query = query.where(Task.due_date.is_not(None))
        elif self.has_due_date is False:
            query = query.where(Task.due_date.is_(None))
        if self.due_from is not None:
            query = query.where(Task.due_date >= self.due_from)
        if self.due_until is not None:
            query = query.where(Task.due_date <= self.due_until)
        if self.due_before is not None:
            query = query.where(Task.due_date < self.due_before)

        return query

    def build(self) -> Select:
        query = self._apply_filters(select(Task))
        if self.order_by_due:
            query = query.order_by(Task.due_date.asc(), Task.id.asc())
        if self.limit is not None:
            query = query.limit(self.limit)
        return query

    def build_count(self) -> Select:
        return self._apply_filters(select(func.count(Task.id)))


def pending_due_between(
    user_id: str, start: datetime, end: datetime, limit: Optional[int] = None
) -> TaskQuery:
    """Incomplete tasks whose due date falls inside `[start, end]`."""
    return TaskQuery(
        user_id=user_id,
        completed=False,
        has_due_date=True,
        due_from=start,
        due_until=end,
        order_by_due=True,
        limit=limit,
    )


def pending_overdue(
    user_id: str, now: datetime, limit: Optional[int] = None
) -> TaskQuery:
    """Incomplete tasks whose due date is strictly before `now`."""
    return TaskQuery(
        user_id=user_id,
        completed=False,
        has_due_date=True,
        due_before=now,
        order_by_due=True,
        limit=limit,
    )


class TaskSource:
    """Read-only access to users and their tasks."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def get_user(self, user_id: str) -> Optional[Recipient]:
        user = await self.db.get(User, user_id)
        return Recipient.from_model(user) if user else None

    async def fetch(self, query: TaskQuery) -> List[TaskSnapshot]:
        result = await self.db.execute(query.build())
        return [TaskSnapshot.from_model(task) for task in result.scalars().all()]

    async def count(self, query: TaskQuery) -> int:
        result = await self.db.execute(query.build_count())
        return int(result.scalar_one())

    async def due_within(
        self, user_id: str, now: datetime, hours: int, limit: Optional[int] = None
    ) -> List[TaskSnapshot]:
        return await self.fetch(
            pending_due_between(user_id, now, now + timedelta(hours=hours), limit)
        )

    async def overdue(
        self, user_id: str, now: datetime, limit: Optional[int] = None
    ) -> List[TaskSnapshot]:
        return await self.fetch(pending_overdue(user_id, now, limit))

    async def task_stats(self, user_id: str, now: datetime) -> TaskStats:
        return TaskStats(
            total=await self.count(TaskQuery(user_id=user_id)),
            completed=await self.count(TaskQuery(user_id=user_id, completed=True)),
            overdue=await self.count(pending_overdue(user_id, now)),
            due_soon=await self.count(
                pending_due_between(user_id, now, now + timedelta(hours=24))
            ),
        )
