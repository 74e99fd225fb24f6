from datetime import datetime
from typing import List, Optional
from pydantic import Field

from app.schemas.camel_base_model import CamelCaseBaseModel as BaseModel


class NotificationTaskRef(BaseModel):
    id: int = Field(..., description="Task ID")
    title: str = Field(..., description="Task title")


class NotificationHistoryItem(BaseModel):
    id: int = Field(..., description="Notification record ID")
    kind: str = Field(..., description="Notification kind, e.g. due_soon or test_overdue")
    channel: str = Field(..., description="Delivery channel")
    status: str = Field(..., description="pending, sent or failed")
    message_id: Optional[str] = Field(None, description="Channel message identifier")
    sent_at: Optional[datetime] = Field(None, description="Delivery timestamp (UTC)")
    error_detail: Optional[str] = Field(None, description="Failure reason")
    created_at: datetime = Field(..., description="Attempt timestamp (UTC)")
    task: Optional[NotificationTaskRef] = Field(
        None, description="Related task, null once the task is deleted"
    )

    @classmethod
    def from_record(cls, record: dict) -> "NotificationHistoryItem":
        task_id = record.pop("task_id", None)
        task_title = record.pop("task_title", None)
        # The title comes from the task join, so it is None when the task is gone
        task = (
            NotificationTaskRef(id=task_id, title=task_title)
            if task_id is not None and task_title is not None
            else None
        )
        return cls(**record, task=task)


class NotificationCountRow(BaseModel):
    kind: str = Field(..., description="Notification kind")
    channel: str = Field(..., description="Delivery channel")
    status: str = Field(..., description="Delivery status")
    count: int = Field(..., description="Number of records")


class NotificationTotals(BaseModel):
    total: int = Field(..., description="All records")
    successful: int = Field(..., description="Records with status sent")
    failed: int = Field(..., description="Records with status failed")


class NotificationStatsResponse(BaseModel):
    all_time: List[NotificationCountRow] = Field(..., description="All-time counts")
    last_30_days: List[NotificationCountRow] = Field(
        ..., description="Counts for the trailing 30 days"
    )
    totals: NotificationTotals = Field(..., description="Totals across all records")
    success_rate: float = Field(
        ..., description="Percentage of sent records, two decimals"
    )


class SendTestNotificationRequest(BaseModel):
    type: str = Field(
        ..., description="due_soon, overdue, daily_digest or welcome"
    )


class SendTestNotificationResponse(BaseModel):
    message_id: Optional[str] = Field(None, description="Channel message identifier")


class PushSubscription(BaseModel):
    endpoint: Optional[str] = Field(None, description="Push service endpoint URL")


class SubscribeRequest(BaseModel):
    subscription: Optional[PushSubscription] = Field(
        None, description="Browser push subscription"
    )


class ClearHistoryRequest(BaseModel):
    older_than_days: Optional[int] = Field(
        None, ge=1, description="Only clear records older than this many days"
    )


class ClearHistoryResponse(BaseModel):
    cleared_count: int = Field(..., description="Number of records removed")


class SchedulerJob(BaseModel):
    id: str = Field(..., description="Job ID")
    name: str = Field(..., description="Job name")
    next_run_time: Optional[str] = Field(None, description="Next fire time (ISO)")


class SchedulerStatusResponse(BaseModel):
    running: bool = Field(..., description="Whether the scheduler is running")
    timezone: str = Field(..., description="Scheduler timezone")
    jobs: List[SchedulerJob] = Field(default_factory=list, description="Registered jobs")
