from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import NotificationRecord, NotificationStatus, Task
from app.utils.datetime_utils import naive_utc_now, utc_day_bounds
from app.utils.errors import BusinessLogicError

MAX_HISTORY_LIMIT = 100
DEFAULT_HISTORY_LIMIT = 50
RECENT_STATS_DAYS = 30


@dataclass
class NotificationHistory:
    records: List[Dict[str, Any]]
    total: int


class NotificationLog:
    """
    Append-only log of notification attempts.

    The engine writes one record per attempt and reads it back for
    deduplication. History, stats and clearing serve the read API.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def record(
        self,
        user_id: str,
        kind: str,
        *,
        success: bool,
        channel: str,
        task_id: Optional[int] = None,
        message_id: Optional[str] = None,
        error: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> NotificationRecord:
        """Append one attempt; the status is settled here and never updated afterwards."""
        created_at = created_at or naive_utc_now()
        record = NotificationRecord(
            user_id=user_id,
            task_id=task_id,
            kind=kind,
            channel=channel,
            status=NotificationStatus.SENT if success else NotificationStatus.FAILED,
            message_id=message_id if success else None,
            sent_at=created_at if success else None,
            error_detail=None if success else (error or "Unknown delivery error"),
            created_at=created_at,
        )
        self.db.add(record)
        await self.db.commit()
        return record

    def _scope(self, user_id: str, kind: str, task_id: Optional[int]):
        conditions = [
            NotificationRecord.user_id == user_id,
            NotificationRecord.kind == kind,
        ]
        if task_id is None:
            conditions.append(NotificationRecord.task_id.is_(None))
        else:
            conditions.append(NotificationRecord.task_id == task_id)
        return conditions

    async def has_record_since(
        self, user_id: str, kind: str, since: datetime, task_id: Optional[int] = None
    ) -> bool:
        """True if an attempt of `kind` was logged strictly after `since`."""
        result = await self.db.execute(
            select(NotificationRecord.id)
            .where(
                *self._scope(user_id, kind, task_id),
                NotificationRecord.created_at > since,
            )
            .limit(1)
        )
        return result.first() is not None

    async def has_record_on_day(
        self, user_id: str, kind: str, day: datetime, task_id: Optional[int] = None
    ) -> bool:
        """True if an attempt of `kind` was logged on the UTC calendar day of `day`."""
        day_start, day_end = utc_day_bounds(day)
        result = await self.db.execute(
            select(NotificationRecord.id)
            .where(
                *self._scope(user_id, kind, task_id),
                NotificationRecord.created_at >= day_start,
                NotificationRecord.created_at < day_end,
            )
            .limit(1)
        )
        return result.first() is not None

    async def get_history(
        self,
        user_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
        offset: int = 0,
    ) -> NotificationHistory:
        """Newest-first page of a user's records with the total count."""
        if not 1 <= limit <= MAX_HISTORY_LIMIT:
            raise BusinessLogicError(
                f"Limit must be between 1 and {MAX_HISTORY_LIMIT}", "INVALID_LIMIT"
            )
        if offset < 0:
            raise BusinessLogicError("Offset must be non-negative", "INVALID_OFFSET")

        # Task may have been deleted since; the record keeps its task_id either way
        result = await self.db.execute(
            select(NotificationRecord, Task.title)
            .outerjoin(Task, Task.id == NotificationRecord.task_id)
            .where(NotificationRecord.user_id == user_id)
            .order_by(NotificationRecord.created_at.desc(), NotificationRecord.id.desc())
            .limit(limit)
            .offset(offset)
        )

        records = [
            {
                "id": record.id,
                "kind": record.kind,
                "channel": record.channel,
                "status": record.status.value,
                "message_id": record.message_id,
                "sent_at": record.sent_at,
                "error_detail": record.error_detail,
                "created_at": record.created_at,
                "task_id": record.task_id,
                "task_title": task_title,
            }
            for record, task_title in result.all()
        ]

        total_result = await self.db.execute(
            select(func.count(NotificationRecord.id)).where(
                NotificationRecord.user_id == user_id
            )
        )

        return NotificationHistory(records=records, total=int(total_result.scalar_one()))

    async def _grouped_counts(
        self, user_id: str, since: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        query = select(
            NotificationRecord.kind,
            NotificationRecord.channel,
            NotificationRecord.status,
            func.count(NotificationRecord.id),
        ).where(NotificationRecord.user_id == user_id)

        if since is not None:
            query = query.where(NotificationRecord.created_at > since)

        query = query.group_by(
            NotificationRecord.kind,
            NotificationRecord.channel,
            NotificationRecord.status,
        ).order_by(
            NotificationRecord.kind,
            NotificationRecord.channel,
            NotificationRecord.status,
        )

        result = await self.db.execute(query)
        return [
            {
                "kind": kind,
                "channel": channel,
                "status": status.value,
                "count": count,
            }
            for kind, channel, status, count in result.all()
        ]

    async def get_stats(
        self, user_id: str, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Counts grouped by (kind, channel, status), all time and for the trailing 30 days."""
        now = now or naive_utc_now()

        all_time = await self._grouped_counts(user_id)
        last_30_days = await self._grouped_counts(
            user_id, since=now - timedelta(days=RECENT_STATS_DAYS)
        )

        total = sum(row["count"] for row in all_time)
        successful = sum(
            row["count"]
            for row in all_time
            if row["status"] == NotificationStatus.SENT.value
        )
        failed = sum(
            row["count"]
            for row in all_time
            if row["status"] == NotificationStatus.FAILED.value
        )

        return {
            "all_time": all_time,
            "last_30_days": last_30_days,
            "totals": {
                "total": total,
                "successful": successful,
                "failed": failed,
            },
            "success_rate": round(successful / total * 100, 2) if total else 0.0,
        }

    async def clear_history(
        self,
        user_id: str,
        older_than_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Delete a user's records, or only those created more than
        `older_than_days` days ago. Returns the number of rows removed.
        """
        query = delete(NotificationRecord).where(NotificationRecord.user_id == user_id)

        if older_than_days is not None:
            if (
                isinstance(older_than_days, bool)
                or not isinstance(older_than_days, int)
                or older_than_days < 1
            ):
                raise BusinessLogicError(
                    "older_than_days must be a positive integer", "INVALID_RETENTION"
                )
            cutoff = (now or naive_utc_now()) - timedelta(days=older_than_days)
            query = query.where(NotificationRecord.created_at < cutoff)

        result = await self.db.execute(query)
        await self.db.commit()
        return result.rowcount or 0
