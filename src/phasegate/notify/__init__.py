"""Event notifiers."""

from phasegate.notify.base import CompositeNotifier, LoggingNotifier, MemoryNotifier, Notifier
from phasegate.notify.events import Event, JobEvent, RunEvent
from phasegate.notify.webhook import WebhookNotifier

__all__ = [
    "Notifier",
    "MemoryNotifier",
    "LoggingNotifier",
    "CompositeNotifier",
    "WebhookNotifier",
    "Event",
    "JobEvent",
    "RunEvent",
]
