from .delivery import (
    DeliveryChannel,
    DeliveryResult,
    EmailDeliveryChannel,
    MessageTemplate,
)
from .engine import NotificationEngine, PassReport
from .notification_log import NotificationLog
from .preference_store import EffectivePreferences, PreferenceStore
from .scheduler import NotificationScheduler
from .task_source import Recipient, TaskQuery, TaskSnapshot, TaskSource

__all__ = [
    "DeliveryChannel",
    "DeliveryResult",
    "EmailDeliveryChannel",
    "MessageTemplate",
    "NotificationEngine",
    "PassReport",
    "NotificationLog",
    "EffectivePreferences",
    "PreferenceStore",
    "NotificationScheduler",
    "Recipient",
    "TaskQuery",
    "TaskSnapshot",
    "TaskSource",
]
