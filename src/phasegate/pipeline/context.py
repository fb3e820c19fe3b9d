"""JobContext — the runtime context passed to every job runner and handler."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from phasegate.core.errors import ArtifactMissingError
from phasegate.execution.cancel import CancelToken


@dataclass
class StepTrace:
    name: str
    status: str = "pending"
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_ms: int | None = None
    error: dict | None = None


class JobContext:
    """Runtime context for one attempt of one job."""

    def __init__(
        self,
        job_id: str,
        run_id: str,
        attempt: int = 1,
        params: dict | None = None,
        inputs: dict[str, bytes] | None = None,
        cancel_token: CancelToken | None = None,
    ):
        self.job_id = job_id
        self.run_id = run_id
        self.attempt = attempt
        self.params = params or {}
        self.inputs = inputs or {}
        self.cancel_token = cancel_token or CancelToken()
        self.outputs: dict[str, bytes] = {}
        self._logs: list[str] = []
        self._steps: list[StepTrace] = []

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.cancelled

    def log(self, message: str) -> None:
        """Log a message (captured in the job's result)."""
        ts = datetime.now(tz=timezone.utc).isoformat()
        self._logs.append(f"[{ts}] {message}")

    def artifact(self, key: str) -> bytes:
        """Read a consumed artifact."""
        try:
            return self.inputs[key]
        except KeyError:
            raise ArtifactMissingError(self.job_id, key) from None

    def add_artifact(self, key: str, data: bytes | str) -> None:
        """Publish an artifact; stored only if the attempt succeeds."""
        self.outputs[key] = data.encode("utf-8") if isinstance(data, str) else data
        self.log(f"Artifact produced: {key} ({len(self.outputs[key])} bytes)")

    def step(self, name: str) -> "StepContext":
        """Start a named step for tracing."""
        return StepContext(self, name)

    def get_logs(self) -> list[str]:
        return list(self._logs)

    def get_trace(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "job_id": self.job_id,
            "attempt": self.attempt,
            "steps": [
                {
                    "name": s.name,
                    "status": s.status,
                    "started_at": s.started_at.isoformat() if s.started_at else None,
                    "finished_at": s.finished_at.isoformat() if s.finished_at else None,
                    "duration_ms": s.duration_ms,
                    "error": s.error,
                }
                for s in self._steps
            ],
            "log_lines": len(self._logs),
        }


class StepContext:
    """Context manager for steps inside a job handler."""

    def __init__(self, ctx: JobContext, name: str):
        self.ctx = ctx
        self.trace = StepTrace(name=name)

    async def __aenter__(self):
        self.trace.started_at = datetime.now(tz=timezone.utc)
        self.trace.status = "running"
        self.ctx._steps.append(self.trace)
        self.ctx.log(f"Step started: {self.trace.name}")
        return self.trace

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.trace.finished_at = datetime.now(tz=timezone.utc)
        self.trace.duration_ms = int(
            (self.trace.finished_at - self.trace.started_at).total_seconds() * 1000
        )
        if exc_type:
            self.trace.status = "failed"
            self.trace.error = {"type": exc_type.__name__, "message": str(exc_val)}
            self.ctx.log(f"Step failed: {self.trace.name} — {exc_val}")
        else:
            self.trace.status = "success"
            self.ctx.log(f"Step completed: {self.trace.name}")
        return False  # don't suppress exceptions
