"""Job and pipeline-run state — the mutable side of a run, sealed when it finishes."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping

from phasegate.core.errors import RunSealedError
from phasegate.schemas.job import JobSpec

if TYPE_CHECKING:
    from phasegate.gate.quality import GateDecision


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.SKIPPED, JobStatus.CANCELLED})


class FailureReason(str, enum.Enum):
    EXIT_CODE = "ExitCode"
    RUNNER_ERROR = "RunnerError"
    TIMEOUT = "Timeout"
    CANCEL_TIMEOUT = "CancelTimeout"
    ARTIFACT_MISSING = "ArtifactMissing"
    UPSTREAM_FAILED = "UpstreamFailed"
    RUN_CANCELLED = "RunCancelled"
    FAIL_FAST = "FailFast"


class _Sealable:
    _sealed: bool = False

    def __setattr__(self, name: str, value: Any) -> None:
        if self._sealed:
            raise RunSealedError(f"Cannot modify '{name}' on a finished run")
        object.__setattr__(self, name, value)

    def _seal(self) -> None:
        object.__setattr__(self, "_sealed", True)


@dataclass(eq=False)
class JobState(_Sealable):
    """Live status of one job within a run."""

    spec: JobSpec
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_ms: int = 0
    reason: FailureReason | None = None
    error: str | None = None
    logs: list[str] = field(default_factory=list)
    # One step trace per attempt.
    traces: list[dict] = field(default_factory=list)
    artifacts: list[str] = field(default_factory=list)
    # A failed attempt with retries left is FAILED but not final.
    retry_pending: bool = False

    @property
    def job_id(self) -> str:
        return self.spec.id

    @property
    def is_final(self) -> bool:
        return self.status.is_terminal and not self.retry_pending

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "phase": self.spec.phase,
            "required": self.spec.required,
            "status": self.status.value,
            "attempts": self.attempts,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "reason": self.reason.value if self.reason else None,
            "error": self.error,
            "artifacts": list(self.artifacts),
            "traces": list(self.traces),
        }


@dataclass(eq=False)
class PipelineRun(_Sealable):
    """One execution of a graph. Owned by the scheduler until sealed."""

    run_id: str
    global_concurrency_cap: int
    jobs: Mapping[str, JobState] = field(default_factory=dict)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    failed: bool = False
    cancelled: bool = False
    decision: GateDecision | None = None

    @property
    def is_finished(self) -> bool:
        return self.finished_at is not None

    def finish(self, finished_at: datetime) -> None:
        """Set `finished_at` and make the run and its job states read-only.

        `decision` stays writable until it has been recorded once.
        """
        self.finished_at = finished_at
        self.jobs = MappingProxyType(dict(self.jobs))
        for state in self.jobs.values():
            state.logs = tuple(state.logs)
            state.artifacts = tuple(state.artifacts)
            state.traces = tuple(state.traces)
            state._seal()

    def record_decision(self, decision: GateDecision) -> None:
        if self.decision is not None:
            raise RunSealedError(f"Run {self.run_id} already has a decision")
        object.__setattr__(self, "decision", decision)
        self._seal()

    def statuses(self) -> dict[str, JobStatus]:
        return {job_id: state.status for job_id, state in self.jobs.items()}

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "global_concurrency_cap": self.global_concurrency_cap,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "decision": self.decision.to_dict() if self.decision else None,
            "jobs": {job_id: state.to_dict() for job_id, state in self.jobs.items()},
        }
