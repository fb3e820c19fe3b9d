"""Notifier interface and in-process notifiers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from phasegate.notify.events import Event, JobEvent, RunEvent

logger = logging.getLogger("phasegate.notify")


class Notifier(ABC):
    """Append-only sink for run events. `emit` must not block."""

    @abstractmethod
    def emit(self, event: Event) -> None:
        ...

    async def aclose(self) -> None:
        """Flush pending deliveries."""


class MemoryNotifier(Notifier):
    """Records every event, in order."""

    def __init__(self):
        self.events: list[Event] = []

    def emit(self, event: Event) -> None:
        self.events.append(event)

    @property
    def job_events(self) -> list[JobEvent]:
        return [e for e in self.events if isinstance(e, JobEvent)]

    @property
    def run_events(self) -> list[RunEvent]:
        return [e for e in self.events if isinstance(e, RunEvent)]

    def transitions(self, job_id: str) -> list[tuple[str, str]]:
        return [
            (e.from_status.value, e.to_status.value)
            for e in self.job_events
            if e.job_id == job_id
        ]


class LoggingNotifier(Notifier):
    def __init__(self, name: str = "phasegate.events"):
        self.logger = logging.getLogger(name)

    def emit(self, event: Event) -> None:
        if isinstance(event, JobEvent):
            suffix = f" ({event.reason.value})" if event.reason else ""
            self.logger.info(
                f"[{event.run_id}] {event.job_id}: {event.from_status.value} → {event.to_status.value}{suffix}"
            )
        else:
            level = logging.INFO if event.decision.admitted else logging.WARNING
            self.logger.log(level, f"[{event.run_id}] decision: {event.decision}")


class CompositeNotifier(Notifier):
    """Fans events out; one failing notifier does not starve the others."""

    def __init__(self, notifiers: list[Notifier]):
        self.notifiers = list(notifiers)

    def emit(self, event: Event) -> None:
        for notifier in self.notifiers:
            try:
                notifier.emit(event)
            except Exception as e:
                logger.error(f"Notifier {type(notifier).__name__} failed on {event.name}: {e}")

    async def aclose(self) -> None:
        for notifier in self.notifiers:
            await notifier.aclose()
