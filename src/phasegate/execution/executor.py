"""Executor adapter — runs one job attempt with timeout, cancellation, and artifact I/O."""

from __future__ import annotations

import asyncio
import enum
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from phasegate.artifacts.store import Artifact, ArtifactStore, MemoryArtifactStore
from phasegate.core.errors import ArtifactMissingError, ConfigurationError, JobRunnerError, JobTimeoutError
from phasegate.execution.cancel import CancelToken
from phasegate.models.job import FailureReason
from phasegate.pipeline.context import JobContext
from phasegate.runners.base import JobRunner, RunnerOutcome
from phasegate.schemas.job import HandlerPayload, JobSpec

logger = logging.getLogger("phasegate.executor")


class ExecutionOutcome(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ExecutionResult:
    job_id: str
    attempt: int
    outcome: ExecutionOutcome = ExecutionOutcome.FAILED
    reason: FailureReason | None = None
    error: str | None = None
    exit_code: int | None = None
    logs: list[str] = field(default_factory=list)
    trace: dict | None = None
    artifacts: list[str] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_ms: int = 0
    retryable: bool = True
    # Runner task that ignored cancellation and is still running.
    abandoned: asyncio.Task | None = field(default=None, repr=False, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.outcome is ExecutionOutcome.SUCCEEDED


class ExecutorAdapter:
    """Wraps a JobRunner with the per-attempt contract the scheduler relies on.

    - the attempt is bounded by `job.timeout_ms` (a timeout is a failure)
    - a fired cancel token stops the attempt
    - a runner that does not stop within `cancel_grace_seconds` (after a
      cancel or a timeout) is abandoned and reported as a non-retryable
      `CancelTimeout`; the still-running task is handed back in `abandoned`
    - produced artifacts are written to the store only on success
    """

    def __init__(
        self,
        runner: JobRunner,
        store: ArtifactStore | None = None,
        cancel_grace_seconds: float = 10.0,
        rng: random.Random | None = None,
    ):
        self.runner = runner
        self.store = store or MemoryArtifactStore()
        self.cancel_grace_seconds = cancel_grace_seconds
        self._rng = rng or random.Random()

    def validate(self, job: JobSpec) -> None:
        self.runner.validate(job)

    # ─── Retry policy ───

    def should_retry(self, job: JobSpec, result: ExecutionResult) -> bool:
        return (
            result.outcome is ExecutionOutcome.FAILED
            and result.retryable
            and result.attempt < job.retry.max_attempts
        )

    def retry_delay(self, job: JobSpec, attempt: int) -> float:
        """Seconds to wait before retrying after failed attempt `attempt`."""
        return job.retry.backoff_ms(attempt, self._rng) / 1000

    # ─── Artifacts ───

    async def load_inputs(self, run_id: str, job: JobSpec) -> dict[str, bytes]:
        """Read every consumed artifact. Raises ArtifactMissingError."""
        inputs: dict[str, bytes] = {}
        for key in job.artifacts_consumed:
            artifact = await self.store.get(run_id, key)
            if artifact is None:
                raise ArtifactMissingError(job.id, key)
            inputs[key] = artifact.data
        return inputs

    # ─── Execution ───

    async def execute(
        self,
        job: JobSpec,
        run_id: str,
        artifacts_in: dict[str, bytes] | None = None,
        attempt: int = 1,
        cancel_token: CancelToken | None = None,
    ) -> ExecutionResult:
        """Run one attempt. Never raises for job-level failures."""
        token = cancel_token or CancelToken()
        result = ExecutionResult(job_id=job.id, attempt=attempt)
        result.started_at = datetime.now(tz=timezone.utc)
        t0 = time.monotonic()

        ctx = JobContext(
            job_id=job.id,
            run_id=run_id,
            attempt=attempt,
            params=job.payload.params if isinstance(job.payload, HandlerPayload) else None,
            inputs=artifacts_in,
            cancel_token=token,
        )

        task = asyncio.create_task(self.runner.execute(job, ctx), name=f"job:{job.id}:{attempt}")
        try:
            await self._wait_attempt(job, task, token)
            if task.done():
                await self._collect(job, run_id, task, ctx, result)
            elif await self._stop(task):
                result.outcome = ExecutionOutcome.CANCELLED
                result.error = f"Cancelled: {token.reason}"
            else:
                self._abandon(task, result, f"Job did not stop within {self.cancel_grace_seconds}s of cancellation")
                logger.warning(f"{job.id} ignored cancellation (attempt {attempt})")
        except JobTimeoutError as e:
            result.reason = FailureReason.TIMEOUT
            result.error = str(e)
            ctx.log(f"TIMEOUT after {e.timeout_ms}ms")
            if not await self._stop(task):
                self._abandon(task, result, f"{e}; still running {self.cancel_grace_seconds}s after being stopped")
                logger.warning(f"{job.id} kept running after its timeout; abandoning attempt {attempt}")
        finally:
            result.finished_at = datetime.now(tz=timezone.utc)
            result.duration_ms = int((time.monotonic() - t0) * 1000)
            if not result.logs:
                result.logs = ctx.get_logs()
            result.trace = ctx.get_trace()

        return result

    async def _wait_attempt(self, job: JobSpec, task: asyncio.Task, token: CancelToken) -> None:
        """Wait until the runner finishes or the token fires. Raises JobTimeoutError."""
        cancel_wait = asyncio.create_task(token.wait())
        try:
            done, _ = await asyncio.wait(
                {task, cancel_wait},
                timeout=job.timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            cancel_wait.cancel()
        if not done:
            raise JobTimeoutError(job.id, job.timeout_ms)

    def _abandon(self, task: asyncio.Task, result: ExecutionResult, error: str) -> None:
        result.outcome = ExecutionOutcome.FAILED
        result.reason = FailureReason.CANCEL_TIMEOUT
        result.error = error
        result.retryable = False
        result.abandoned = task

    async def _collect(
        self,
        job: JobSpec,
        run_id: str,
        task: asyncio.Task,
        ctx: JobContext,
        result: ExecutionResult,
    ) -> None:
        try:
            outcome: RunnerOutcome = task.result()
        except asyncio.CancelledError:
            result.outcome = ExecutionOutcome.CANCELLED
            result.error = "Runner task was cancelled"
            return
        except ArtifactMissingError as e:
            result.reason = FailureReason.ARTIFACT_MISSING
            result.error = str(e)
            result.retryable = False
            return
        except ConfigurationError as e:
            result.reason = FailureReason.RUNNER_ERROR
            result.error = f"{type(e).__name__}: {e}"
            result.retryable = False
            return
        except JobRunnerError as e:
            result.reason = FailureReason.RUNNER_ERROR
            result.error = str(e)
            ctx.log(f"FAILED: {e}")
            return
        except Exception as e:
            result.reason = FailureReason.RUNNER_ERROR
            result.error = f"{type(e).__name__}: {e}"
            ctx.log(f"FAILED: {type(e).__name__}: {e}")
            return

        result.exit_code = outcome.exit_code
        result.logs = list(outcome.logs) or ctx.get_logs()
        if not outcome.succeeded:
            result.reason = FailureReason.EXIT_CODE
            result.error = outcome.error or f"exit code {outcome.exit_code}"
            return

        missing = [key for key in job.artifacts_produced if key not in outcome.artifacts]
        if missing:
            result.reason = FailureReason.ARTIFACT_MISSING
            result.error = f"Declared artifacts not produced: {', '.join(missing)}"
            return

        try:
            for key in job.artifacts_produced:
                await self.store.put(run_id, Artifact(key=key, producer_job_id=job.id, data=outcome.artifacts[key]))
        except Exception as e:
            result.reason = FailureReason.RUNNER_ERROR
            result.error = f"Artifact store write failed: {type(e).__name__}: {e}"
            return

        undeclared = sorted(set(outcome.artifacts) - set(job.artifacts_produced))
        if undeclared:
            logger.debug(f"{job.id} reported undeclared artifacts (not stored): {undeclared}")

        result.outcome = ExecutionOutcome.SUCCEEDED
        result.artifacts = list(job.artifacts_produced)

    async def _stop(self, task: asyncio.Task) -> bool:
        """Cancel the runner task and wait for it within the grace period."""
        task.cancel()
        done, _ = await asyncio.wait({task}, timeout=self.cancel_grace_seconds)
        if task in done:
            if not task.cancelled():
                task.exception()
            return True
        task.add_done_callback(_discard_result)
        return False


def _discard_result(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()
