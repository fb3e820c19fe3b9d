"""Run events emitted to notifiers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from phasegate.models.job import FailureReason, JobStatus

if TYPE_CHECKING:
    from phasegate.gate.quality import GateDecision
    from phasegate.results.aggregator import ResultSummary


@dataclass(frozen=True)
class JobEvent:
    run_id: str
    job_id: str
    from_status: JobStatus
    to_status: JobStatus
    timestamp: datetime
    attempt: int = 0
    reason: FailureReason | None = None

    @property
    def name(self) -> str:
        return f"job.{self.to_status.value}"

    def to_dict(self) -> dict:
        return {
            "event": self.name,
            "run_id": self.run_id,
            "job_id": self.job_id,
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "timestamp": self.timestamp.isoformat(),
            "attempt": self.attempt,
            "reason": self.reason.value if self.reason else None,
        }


@dataclass(frozen=True)
class RunEvent:
    run_id: str
    decision: "GateDecision"
    summary: "ResultSummary"
    timestamp: datetime

    @property
    def name(self) -> str:
        return "run.admitted" if self.decision.admitted else "run.blocked"

    def to_dict(self) -> dict:
        return {
            "event": self.name,
            "run_id": self.run_id,
            "timestamp": self.timestamp.isoformat(),
            **self.decision.to_dict(),
            "summary": self.summary.to_dict(),
        }


Event = JobEvent | RunEvent
