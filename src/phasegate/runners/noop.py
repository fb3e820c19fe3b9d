"""No-op runner — placeholder jobs such as phase markers."""

from __future__ import annotations

from phasegate.pipeline.context import JobContext
from phasegate.runners.base import JobRunner, RunnerOutcome
from phasegate.schemas.job import JobSpec, NoopPayload


class NoopRunner(JobRunner):
    async def execute(self, job: JobSpec, ctx: JobContext) -> RunnerOutcome:
        exit_code = job.payload.exit_code if isinstance(job.payload, NoopPayload) else 0
        ctx.log(f"noop (exit={exit_code})")
        return RunnerOutcome(exit_code=exit_code, logs=ctx.get_logs(), artifacts=dict(ctx.outputs))
