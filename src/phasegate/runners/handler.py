"""Handler runner — calls @handler-registered async functions in-process."""

from __future__ import annotations

import logging

from phasegate.core.errors import ConfigurationError
from phasegate.pipeline.context import JobContext
from phasegate.pipeline.decorators import HandlerRegistry, get_registry
from phasegate.runners.base import JobRunner, RunnerOutcome
from phasegate.schemas.job import HandlerPayload, JobSpec

logger = logging.getLogger("phasegate.runners.handler")


class HandlerRunner(JobRunner):
    """Runs `HandlerPayload` jobs.

    A handler receives the JobContext (and the payload params as keyword
    arguments). Returning None or True means success, False means exit 1, an
    int is used as the exit code; raising fails the attempt.
    """

    def __init__(self, registry: HandlerRegistry | None = None):
        self.registry = registry if registry is not None else get_registry()

    def validate(self, job: JobSpec) -> None:
        if not isinstance(job.payload, HandlerPayload):
            raise ConfigurationError(f"Job '{job.id}' has no handler payload")
        self.registry.get(job.payload.handler, job.id)

    async def execute(self, job: JobSpec, ctx: JobContext) -> RunnerOutcome:
        self.validate(job)
        meta = self.registry.get(job.payload.handler, job.id)
        logger.debug(f"Calling handler {meta.name} for {job.id} (attempt {ctx.attempt})")

        result = await meta.func(ctx, **job.payload.params)

        if result is None or result is True:
            exit_code = 0
        elif result is False:
            exit_code = 1
        elif isinstance(result, int):
            exit_code = result
        else:
            ctx.log(f"Handler returned: {result!r}")
            exit_code = 0

        return RunnerOutcome(exit_code=exit_code, logs=ctx.get_logs(), artifacts=dict(ctx.outputs))
