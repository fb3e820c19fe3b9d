"""Scheduler — drives a job graph to completion under dependency, phase and concurrency rules.

All scheduling state (job statuses, ready queue, slot counters) is owned by the
single coordinator coroutine in `Scheduler.run()`. Job attempts run as separate
tasks and report back through the coordinator's inbox queue; backoff timers and
`cancel()` post to the same queue.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone

from phasegate.core.config import MAX_CONCURRENCY_CAP
from phasegate.core.errors import ArtifactMissingError, ConfigurationError
from phasegate.dag.graph import Graph
from phasegate.dag.planner import PhasePlan
from phasegate.execution.cancel import CancelToken
from phasegate.execution.executor import ExecutionOutcome, ExecutionResult, ExecutorAdapter
from phasegate.models.job import FailureReason, JobState, JobStatus, PipelineRun
from phasegate.notify.base import Notifier
from phasegate.notify.events import JobEvent
from phasegate.results.aggregator import ResultAggregator

logger = logging.getLogger("phasegate.scheduler")


@dataclass(frozen=True)
class _Finished:
    idx: int
    result: ExecutionResult


@dataclass(frozen=True)
class _RetryDue:
    idx: int


@dataclass(frozen=True)
class _Wake:
    pass


@dataclass(frozen=True)
class _Reclaimed:
    idx: int


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class Scheduler:
    """Runs every job of `graph` once (plus retries) and returns the sealed-able run."""

    def __init__(
        self,
        graph: Graph,
        plan: PhasePlan,
        executor: ExecutorAdapter,
        run_id: str | None = None,
        concurrency_cap: int = 8,
        fail_fast: bool = False,
        phase_grace_seconds: float = 60.0,
        notifier: Notifier | None = None,
        aggregator: ResultAggregator | None = None,
    ):
        if not 1 <= concurrency_cap <= MAX_CONCURRENCY_CAP:
            raise ConfigurationError(
                f"Concurrency cap must be between 1 and {MAX_CONCURRENCY_CAP}, got {concurrency_cap}"
            )
        self.graph = graph
        self.plan = plan
        self.executor = executor
        self.fail_fast = fail_fast
        self.phase_grace_seconds = phase_grace_seconds
        self.notifier = notifier
        self.aggregator = aggregator or ResultAggregator(graph)

        self._states = [JobState(spec=job) for job in graph]
        self.run = PipelineRun(
            run_id=run_id or uuid.uuid4().hex,
            global_concurrency_cap=concurrency_cap,
            jobs={state.job_id: state for state in self._states},
        )

        self._remaining = [len(graph.dependencies_of(i)) for i in range(len(graph))]
        self._ready: deque[int] = deque()
        self._held: dict[int, list[int]] = {}
        self._phase = 0
        self._grace_deadline: float | None = None

        self._running = 0
        self._running_in_group: dict[str, int] = {}
        self._in_flight: dict[int, asyncio.Task] = {}
        self._timers: dict[int, asyncio.TimerHandle] = {}
        self._lingering: dict[int, asyncio.Task] = {}
        self._final_count = 0

        self._cancel_token = CancelToken()
        self._aborted = False
        self._inbox: asyncio.Queue | None = None
        self._started = False
        self.peak_running = 0

    @property
    def run_id(self) -> str:
        return self.run.run_id

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_token.cancelled

    def cancel(self, reason: str = "cancelled") -> None:
        """Request run cancellation. Returns immediately."""
        if self.run.is_finished or self._cancel_token.cancelled:
            return
        logger.warning(f"[{self.run_id}] Cancellation requested: {reason}")
        self._cancel_token.cancel(reason)
        if self._inbox is not None:
            self._inbox.put_nowait(_Wake())

    # ─── Coordinator ───

    async def run_to_completion(self) -> PipelineRun:
        """Drive the run until every job is terminal."""
        if self._started:
            raise RuntimeError(f"Run {self.run_id} was already started")
        self._started = True
        self._inbox = asyncio.Queue()
        loop = asyncio.get_running_loop()

        self.run.started_at = _now()
        self.aggregator.start()
        logger.info(
            f"[{self.run_id}] Starting run: {len(self.graph)} jobs in "
            f"{len(self.plan.phases)} phases (cap={self.run.global_concurrency_cap})"
        )

        for idx in range(len(self.graph)):
            if self._remaining[idx] == 0:
                self._make_ready(idx)

        try:
            while self._final_count < len(self._states):
                if self._cancel_token.cancelled and not self.run.cancelled:
                    self._handle_cancel()
                self._advance_phases(loop.time())
                await self._dispatch()
                if self._final_count == len(self._states):
                    break

                if not self._in_flight and not self._timers and not self._lingering and self._grace_deadline is None:
                    stuck = [s.job_id for s in self._states if not s.is_final]
                    raise RuntimeError(f"Scheduler stalled with unresolved jobs: {stuck}")

                message = await self._next_message(loop)
                if isinstance(message, _Finished):
                    self._on_finished(message)
                elif isinstance(message, _RetryDue):
                    self._on_retry_due(message.idx)
                elif isinstance(message, _Reclaimed):
                    self._on_reclaimed(message.idx)
        except asyncio.CancelledError:
            self._cancel_token.cancel("scheduler task cancelled")
            for task in self._in_flight.values():
                task.cancel()
            raise
        finally:
            for handle in self._timers.values():
                handle.cancel()

        self.aggregator.stop()
        self.run.finish(_now())
        summary = self.aggregator.summarize()
        logger.info(
            f"[{self.run_id}] Run finished: {summary.succeeded}/{summary.total} succeeded, "
            f"{summary.failed} failed, {summary.skipped} skipped, {summary.cancelled} cancelled "
            f"({summary.wall_clock_ms}ms)"
        )
        return self.run

    async def _next_message(self, loop: asyncio.AbstractEventLoop):
        if self._grace_deadline is None:
            return await self._inbox.get()
        timeout = max(self._grace_deadline - loop.time(), 0)
        try:
            return await asyncio.wait_for(self._inbox.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return _Wake()

    # ─── Readiness and phases ───

    def _make_ready(self, idx: int) -> None:
        self._transition(idx, JobStatus.QUEUED)
        position = self.plan.phase_of(self._states[idx].job_id)
        if position <= self._phase:
            self._ready.append(idx)
        else:
            self._held.setdefault(position, []).append(idx)

    def _advance_phases(self, now: float) -> None:
        phases = self.plan.phases
        while self._phase < len(phases) - 1:
            phase = phases[self._phase]
            if any(not self.run.jobs[j].is_final for j in phase.required_ids):
                self._grace_deadline = None
                return
            open_optional = [j for j in phase.optional_ids if not self.run.jobs[j].is_final]
            if open_optional:
                if self._grace_deadline is None:
                    self._grace_deadline = now + self.phase_grace_seconds
                    logger.info(
                        f"[{self.run_id}] Phase {phase.number}: required jobs done, waiting up to "
                        f"{self.phase_grace_seconds}s for optional jobs {open_optional}"
                    )
                if now < self._grace_deadline:
                    return
                logger.warning(
                    f"[{self.run_id}] Phase {phase.number}: grace expired, advancing past "
                    f"unfinished optional jobs {open_optional}"
                )
            self._grace_deadline = None
            self._phase += 1
            released = self._held.pop(self._phase, [])
            self._ready.extend(released)
            logger.info(f"[{self.run_id}] Phase {phases[self._phase].number} opened ({len(released)} ready)")

    def _discard_pending_work(self, idx: int) -> None:
        if idx in self._ready:
            self._ready.remove(idx)
        for held in self._held.values():
            if idx in held:
                held.remove(idx)
        handle = self._timers.pop(idx, None)
        if handle is not None:
            handle.cancel()

    # ─── Dispatch ───

    def _slot_free(self, idx: int) -> bool:
        group = self._states[idx].spec.concurrency_group
        return group is None or self._running_in_group.get(group, 0) < 1

    def _reserve(self, idx: int) -> None:
        self._running += 1
        self.peak_running = max(self.peak_running, self._running)
        group = self._states[idx].spec.concurrency_group
        if group is not None:
            self._running_in_group[group] = self._running_in_group.get(group, 0) + 1

    def _release(self, idx: int, keep_group: bool = False) -> None:
        self._running -= 1
        group = self._states[idx].spec.concurrency_group
        if group is not None and not keep_group:
            self._running_in_group[group] -= 1

    def _hold_group(self, idx: int, task: asyncio.Task) -> None:
        """Keep the group slot of an abandoned attempt until its runner task really ends."""
        self._lingering[idx] = task
        logger.warning(
            f"[{self.run_id}] {self._states[idx].job_id} is still running after being abandoned; "
            f"holding group '{self._states[idx].spec.concurrency_group}' until it stops"
        )
        task.add_done_callback(lambda _: self._inbox.put_nowait(_Reclaimed(idx)))

    def _on_reclaimed(self, idx: int) -> None:
        if self._lingering.pop(idx, None) is None:
            return
        group = self._states[idx].spec.concurrency_group
        self._running_in_group[group] -= 1
        logger.info(f"[{self.run_id}] {self._states[idx].job_id} stopped; group '{group}' released")

    async def _dispatch(self) -> None:
        if self._aborted:
            return
        waiting: deque[int] = deque()
        while self._ready and not self._cancel_token.cancelled:
            idx = self._ready.popleft()
            if self._running >= self.run.global_concurrency_cap or not self._slot_free(idx):
                waiting.append(idx)
                continue
            await self._start(idx)
            if self._aborted:
                break
        waiting.extend(self._ready)
        self._ready = deque(i for i in waiting if not self._states[i].is_final)

    async def _start(self, idx: int) -> None:
        state = self._states[idx]
        spec = state.spec
        self._reserve(idx)
        try:
            inputs = await self.executor.load_inputs(self.run_id, spec)
        except ArtifactMissingError as e:
            self._release(idx)
            state.error = str(e)
            logger.error(f"[{self.run_id}] {spec.id}: {e}")
            self._settle(idx, JobStatus.FAILED, FailureReason.ARTIFACT_MISSING)
            return

        if self._cancel_token.cancelled:
            self._release(idx)
            self._ready.appendleft(idx)
            return

        state.attempts += 1
        if state.started_at is None:
            state.started_at = _now()
        self._transition(idx, JobStatus.RUNNING)
        logger.info(f"[{self.run_id}] Running {spec.id} (attempt {state.attempts}/{spec.retry.max_attempts})")
        self._in_flight[idx] = asyncio.create_task(
            self._work(idx, inputs, state.attempts),
            name=f"phasegate:{self.run_id}:{spec.id}",
        )

    async def _work(self, idx: int, inputs: dict[str, bytes], attempt: int) -> None:
        spec = self._states[idx].spec
        try:
            result = await self.executor.execute(spec, self.run_id, inputs, attempt, self._cancel_token)
        except Exception as e:
            logger.exception(f"[{self.run_id}] Executor error on {spec.id}")
            result = ExecutionResult(
                job_id=spec.id,
                attempt=attempt,
                reason=FailureReason.RUNNER_ERROR,
                error=f"{type(e).__name__}: {e}",
                retryable=False,
            )
        self._inbox.put_nowait(_Finished(idx, result))

    # ─── Completion ───

    def _on_finished(self, message: _Finished) -> None:
        idx, result = message.idx, message.result
        state = self._states[idx]
        spec = state.spec
        self._in_flight.pop(idx, None)
        lingering = (
            result.abandoned is not None
            and not result.abandoned.done()
            and spec.concurrency_group is not None
        )
        self._release(idx, keep_group=lingering)
        if lingering:
            self._hold_group(idx, result.abandoned)

        state.duration_ms += result.duration_ms
        state.logs.extend(result.logs)
        if result.trace is not None:
            state.traces.append(result.trace)

        if result.outcome is ExecutionOutcome.SUCCEEDED:
            state.artifacts = list(result.artifacts)
            state.error = None
            logger.info(f"[{self.run_id}] ✓ {spec.id} ({result.duration_ms}ms)")
            self._settle(idx, JobStatus.SUCCEEDED)
            return

        if result.outcome is ExecutionOutcome.CANCELLED:
            state.error = result.error
            self._settle(idx, JobStatus.CANCELLED, FailureReason.RUN_CANCELLED)
            return

        state.error = result.error
        if not self._aborted and not self._cancel_token.cancelled and self.executor.should_retry(spec, result):
            delay = self.executor.retry_delay(spec, result.attempt)
            state.retry_pending = True
            state.reason = result.reason
            self._transition(idx, JobStatus.FAILED, result.reason)
            logger.info(
                f"[{self.run_id}] {spec.id} failed attempt {result.attempt}/{spec.retry.max_attempts} "
                f"({result.error}); retrying in {delay:.2f}s"
            )
            loop = asyncio.get_running_loop()
            self._timers[idx] = loop.call_later(delay, self._inbox.put_nowait, _RetryDue(idx))
            return

        logger.error(f"[{self.run_id}] ✗ {spec.id}: {result.error}")
        self._settle(idx, JobStatus.FAILED, result.reason)

    def _on_retry_due(self, idx: int) -> None:
        self._timers.pop(idx, None)
        state = self._states[idx]
        if not state.retry_pending:
            return
        state.retry_pending = False
        state.reason = None
        self._transition(idx, JobStatus.QUEUED)
        self._ready.append(idx)

    def _settle(self, idx: int, status: JobStatus, reason: FailureReason | None = None) -> None:
        """Move a job to its final status and propagate the consequences."""
        state = self._states[idx]
        spec = state.spec
        state.retry_pending = False
        state.reason = reason
        state.finished_at = _now()
        self._transition(idx, status, reason)
        self._final_count += 1
        self.aggregator.observe(spec.id, status, state.duration_ms)

        if status is JobStatus.SUCCEEDED or not spec.required:
            for child in self.graph.dependents_of(idx):
                if self._states[child].status is JobStatus.PENDING:
                    self._remaining[child] -= 1
                    if self._remaining[child] == 0:
                        self._make_ready(child)
            return

        if status is JobStatus.FAILED:
            self.run.failed = True
            self._skip_downstream(idx)
            if self.fail_fast and not self._aborted:
                logger.warning(f"[{self.run_id}] fail-fast: {spec.id} failed, cancelling jobs not yet started")
                self._abort(FailureReason.FAIL_FAST)
        else:
            self._skip_downstream(idx)

    def _skip_downstream(self, idx: int) -> None:
        origin = self._states[idx]
        for child in self.graph.downstream_indices(idx):
            state = self._states[child]
            if state.status in (JobStatus.PENDING, JobStatus.QUEUED) and child not in self._in_flight:
                self._discard_pending_work(child)
                state.error = f"upstream '{origin.job_id}' {origin.status.value}"
                self._settle_quietly(child, JobStatus.SKIPPED, FailureReason.UPSTREAM_FAILED)

    def _settle_quietly(self, idx: int, status: JobStatus, reason: FailureReason) -> None:
        """Finalize without releasing or cascading (the caller covers the downstream set)."""
        state = self._states[idx]
        state.retry_pending = False
        state.reason = reason
        state.finished_at = _now()
        self._transition(idx, status, reason)
        self._final_count += 1
        self.aggregator.observe(state.job_id, status, state.duration_ms)

    # ─── Abort ───

    def _abort(self, reason: FailureReason) -> None:
        self._aborted = True
        for idx, state in enumerate(self._states):
            if state.is_final or idx in self._in_flight:
                continue
            self._discard_pending_work(idx)
            self._settle_quietly(idx, JobStatus.CANCELLED, reason)

    def _handle_cancel(self) -> None:
        self.run.cancelled = True
        in_flight = [self._states[i].job_id for i in self._in_flight]
        logger.warning(
            f"[{self.run_id}] Cancelling run ({self._cancel_token.reason}); "
            f"waiting on in-flight jobs {in_flight}"
        )
        self._abort(FailureReason.RUN_CANCELLED)
        self._grace_deadline = None

    # ─── Events ───

    def _transition(self, idx: int, to_status: JobStatus, reason: FailureReason | None = None) -> None:
        state = self._states[idx]
        from_status = state.status
        state.status = to_status
        logger.debug(f"[{self.run_id}] {state.job_id}: {from_status.value} → {to_status.value}")
        if self.notifier is None:
            return
        event = JobEvent(
            run_id=self.run_id,
            job_id=state.job_id,
            from_status=from_status,
            to_status=to_status,
            timestamp=_now(),
            attempt=state.attempts,
            reason=reason,
        )
        try:
            self.notifier.emit(event)
        except Exception as e:
            logger.error(f"[{self.run_id}] Notifier failed on {event.name}: {e}")
