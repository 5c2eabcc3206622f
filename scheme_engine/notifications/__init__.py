"""Notification trigger: re-evaluation on corpus changes and deadline reminders.

This module provides:
- NotificationTrigger: consumes change events and emits notification requests
- NotificationRequest / DeliveryResult / TriggerReport: result types
- ProfileSource / NotificationSink: collaborator interfaces and bundled implementations
"""

from scheme_engine.domain.records import NotificationReason

from .collaborators import (
    LoggingNotificationSink,
    NotificationSink,
    ProfileSource,
    StaticProfileSource,
    YamlProfileSource,
)
from .models import DeliveryResult, NotificationError, NotificationRequest, TriggerReport
from .trigger import NotificationTrigger

__all__ = [
    "NotificationTrigger",
    "NotificationRequest",
    "NotificationReason",
    "DeliveryResult",
    "TriggerReport",
    "NotificationError",
    "ProfileSource",
    "StaticProfileSource",
    "YamlProfileSource",
    "NotificationSink",
    "LoggingNotificationSink",
]
