"""Base job runner interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from phasegate.pipeline.context import JobContext
from phasegate.schemas.job import JobSpec


@dataclass
class RunnerOutcome:
    """What a runner reports for one attempt."""

    exit_code: int = 0
    logs: list[str] = field(default_factory=list)
    artifacts: dict[str, bytes] = field(default_factory=dict)
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class JobRunner(ABC):
    """Executes a job payload.

    Runners never enforce timeouts themselves: the executor cancels the
    `execute` task when the attempt runs out of time or the run is cancelled,
    so implementations must release their resources on `asyncio.CancelledError`.
    Raising any other exception counts as a failed attempt.
    """

    @abstractmethod
    async def execute(self, job: JobSpec, ctx: JobContext) -> RunnerOutcome:
        ...

    def validate(self, job: JobSpec) -> None:
        """Reject a job this runner can never execute (ConfigurationError)."""
