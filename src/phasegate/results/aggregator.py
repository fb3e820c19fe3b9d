"""Result aggregator — folds job outcomes into a run-level summary."""

from __future__ import annotations

import time
from dataclasses import dataclass

from phasegate.dag.graph import Graph
from phasegate.dag.planner import critical_path
from phasegate.models.job import JobStatus


@dataclass(frozen=True)
class ResultSummary:
    total: int
    succeeded: int
    failed_required: int
    failed_optional: int
    skipped: int
    cancelled: int
    pending: int
    success_rate: float
    wall_clock_ms: int
    critical_path_ms: int
    critical_path: tuple[str, ...]
    # required jobs whose final status is not SUCCEEDED
    required_unsuccessful: tuple[str, ...]
    optional_failed: tuple[str, ...]

    @property
    def failed(self) -> int:
        return self.failed_required + self.failed_optional

    @property
    def complete(self) -> bool:
        return self.pending == 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failed_required": self.failed_required,
            "failed_optional": self.failed_optional,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "pending": self.pending,
            "success_rate": self.success_rate,
            "wall_clock_ms": self.wall_clock_ms,
            "critical_path_ms": self.critical_path_ms,
            "critical_path": list(self.critical_path),
            "required_unsuccessful": list(self.required_unsuccessful),
            "optional_failed": list(self.optional_failed),
        }


class ResultAggregator:
    """Collects final job statuses as they arrive.

    `summarize()` may be called at any time for live progress; it is
    authoritative once the scheduler has finished and `stop()` was called.
    """

    def __init__(self, graph: Graph):
        self.graph = graph
        self._final: dict[str, JobStatus] = {}
        self._durations: dict[str, int] = {}
        self._t0: float | None = None
        self._t1: float | None = None

    def start(self) -> None:
        self._t0 = time.monotonic()

    def stop(self) -> None:
        self._t1 = time.monotonic()

    def observe(self, job_id: str, final_status: JobStatus, duration_ms: int) -> None:
        if not final_status.is_terminal:
            raise ValueError(f"Job '{job_id}' observed with non-terminal status {final_status.value}")
        self._final[job_id] = final_status
        self._durations[job_id] = duration_ms

    def status_of(self, job_id: str) -> JobStatus | None:
        return self._final.get(job_id)

    def _wall_clock_ms(self) -> int:
        if self._t0 is None:
            return 0
        end = self._t1 if self._t1 is not None else time.monotonic()
        return int((end - self._t0) * 1000)

    def summarize(self) -> ResultSummary:
        succeeded = failed_required = failed_optional = skipped = cancelled = 0
        required_succeeded = 0
        required_unsuccessful: list[str] = []
        optional_failed: list[str] = []

        for job in self.graph:
            status = self._final.get(job.id)
            if status is None:
                continue
            if status is JobStatus.SUCCEEDED:
                succeeded += 1
                if job.required:
                    required_succeeded += 1
                continue
            if status is JobStatus.FAILED:
                if job.required:
                    failed_required += 1
                else:
                    failed_optional += 1
                    optional_failed.append(job.id)
            elif status is JobStatus.SKIPPED:
                skipped += 1
            elif status is JobStatus.CANCELLED:
                cancelled += 1
            if job.required:
                required_unsuccessful.append(job.id)

        decided = required_succeeded + failed_required
        # No required job ran to a verdict: nothing measured, nothing below threshold.
        success_rate = required_succeeded / decided if decided else 1.0

        path = critical_path(self.graph, self._durations)
        return ResultSummary(
            total=len(self.graph),
            succeeded=succeeded,
            failed_required=failed_required,
            failed_optional=failed_optional,
            skipped=skipped,
            cancelled=cancelled,
            pending=len(self.graph) - len(self._final),
            success_rate=success_rate,
            wall_clock_ms=self._wall_clock_ms(),
            critical_path_ms=path.duration_ms,
            critical_path=path.job_ids,
            required_unsuccessful=tuple(required_unsuccessful),
            optional_failed=tuple(optional_failed),
        )
