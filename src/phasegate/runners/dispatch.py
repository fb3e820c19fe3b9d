"""Dispatching runner — selects a runner by the job's payload kind."""

from __future__ import annotations

from phasegate.core.errors import ConfigurationError
from phasegate.pipeline.context import JobContext
from phasegate.pipeline.decorators import HandlerRegistry
from phasegate.runners.base import JobRunner, RunnerOutcome
from phasegate.runners.command import CommandRunner
from phasegate.runners.handler import HandlerRunner
from phasegate.runners.noop import NoopRunner
from phasegate.schemas.job import JobSpec


class DispatchRunner(JobRunner):
    """Routes each job to the runner registered for `job.payload.kind`."""

    def __init__(self, runners: dict[str, JobRunner] | None = None):
        self.runners: dict[str, JobRunner] = dict(runners or {})

    @classmethod
    def default(
        cls,
        registry: HandlerRegistry | None = None,
        base_dir: str = ".",
    ) -> "DispatchRunner":
        return cls({
            "command": CommandRunner(base_dir=base_dir),
            "handler": HandlerRunner(registry),
            "noop": NoopRunner(),
        })

    def register(self, kind: str, runner: JobRunner) -> None:
        self.runners[kind] = runner

    def _runner_for(self, job: JobSpec) -> JobRunner:
        runner = self.runners.get(job.payload.kind)
        if runner is None:
            raise ConfigurationError(f"No runner for payload kind '{job.payload.kind}' (job '{job.id}')")
        return runner

    def validate(self, job: JobSpec) -> None:
        self._runner_for(job).validate(job)

    async def execute(self, job: JobSpec, ctx: JobContext) -> RunnerOutcome:
        return await self._runner_for(job).execute(job, ctx)
