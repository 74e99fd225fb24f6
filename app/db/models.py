from typing import List, Optional
from datetime import datetime
import enum
import uuid

from sqlalchemy import (
    String,
    Boolean,
    Integer,
    Text,
    ForeignKey,
    Enum,
    Index,
    CheckConstraint,
    DateTime,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.utils.datetime_utils import naive_utc_now


class Base(DeclarativeBase):
    pass


def _uuid_str() -> str:
    return str(uuid.uuid4())


# Enums
class NotificationKind(enum.Enum):
    DUE_SOON = "due_soon"
    OVERDUE = "overdue"
    DAILY_DIGEST = "daily_digest"
    WELCOME = "welcome"

    @property
    def test_marker(self) -> str:
        """Kind recorded for ad-hoc test sends, e.g. `test_due_soon`."""
        return f"test_{self.value}"


class NotificationChannel(enum.Enum):
    EMAIL = "email"


class NotificationStatus(enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class DigestFrequency(enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    NEVER = "never"


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, onupdate=naive_utc_now
    )


# Models
class User(Base, AuditMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))

    # Relationships
    tasks: Mapped[List["Task"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    notification_preference: Mapped[Optional["NotificationPreference"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    notifications: Mapped[List["NotificationRecord"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("idx_users_email", "email"),)


class Task(Base, AuditMixin):
    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # 1 low, 2 medium, 3 high, 4 urgent
    priority: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="tasks")

    __table_args__ = (
        Index("idx_tasks_user_id", "user_id"),
        Index("idx_tasks_user_completed_due", "user_id", "completed", "due_date"),
    )


class NotificationPreference(Base, AuditMixin):
    __tablename__ = "notification_preferences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    email_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    browser_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    lead_time_hours: Mapped[int] = mapped_column(Integer, default=24, nullable=False)
    digest_frequency: Mapped[DigestFrequency] = mapped_column(
        Enum(DigestFrequency), default=DigestFrequency.DAILY, nullable=False
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="notification_preference")

    __table_args__ = (
        CheckConstraint(
            "lead_time_hours >= 1 AND lead_time_hours <= 168",
            name="ck_notif_pref_lead_time_range",
        ),
    )


class NotificationRecord(Base):
    """Append-only log of every notification attempt."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    # No FK: history outlives deleted tasks
    task_id: Mapped[Optional[int]] = mapped_column(Integer)
    # Plain string so `test_<kind>` markers fit alongside NotificationKind values
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    channel: Mapped[str] = mapped_column(
        String(20), default=NotificationChannel.EMAIL.value, nullable=False
    )
    status: Mapped[NotificationStatus] = mapped_column(
        Enum(NotificationStatus), default=NotificationStatus.PENDING, nullable=False
    )
    message_id: Mapped[Optional[str]] = mapped_column(String(255))
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    error_detail: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="notifications")

    __table_args__ = (
        CheckConstraint(
            "sent_at IS NULL OR status = 'SENT'",
            name="ck_notif_sent_at_only_when_sent",
        ),
        Index("idx_notif_dedup", "user_id", "task_id", "kind", "created_at"),
        Index("idx_notif_user_created", "user_id", "created_at"),
        Index("idx_notif_status", "status"),
    )
