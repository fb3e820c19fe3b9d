"""Orchestrator — validates a graph, runs it, and renders the quality-gate decision."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone

from phasegate.artifacts.store import ArtifactStore, FileSystemArtifactStore, MemoryArtifactStore
from phasegate.core.config import PhasegateSettings, get_settings
from phasegate.dag.graph import Graph
from phasegate.dag.planner import PhasePlan, plan
from phasegate.dag.scheduler import Scheduler
from phasegate.execution.executor import ExecutorAdapter
from phasegate.gate.quality import GateDecision, QualityGatePolicy, evaluate
from phasegate.models.job import PipelineRun
from phasegate.notify.base import CompositeNotifier, LoggingNotifier, Notifier
from phasegate.notify.events import RunEvent
from phasegate.notify.webhook import WebhookNotifier
from phasegate.results.aggregator import ResultSummary
from phasegate.runners.base import JobRunner
from phasegate.runners.dispatch import DispatchRunner

logger = logging.getLogger("phasegate.orchestrator")


@dataclass(frozen=True)
class RunOutcome:
    run: PipelineRun
    plan: PhasePlan
    summary: ResultSummary
    decision: GateDecision

    @property
    def run_id(self) -> str:
        return self.run.run_id

    @property
    def admitted(self) -> bool:
        return self.decision.admitted

    def to_dict(self) -> dict:
        return {
            "run": self.run.to_dict(),
            "plan": self.plan.to_dict(),
            "summary": self.summary.to_dict(),
            "decision": self.decision.to_dict(),
        }


class RunHandle:
    """A started run: cancel it, poll its summary, or await its outcome."""

    def __init__(self, scheduler: Scheduler, task: asyncio.Task):
        self._scheduler = scheduler
        self._task = task

    @property
    def run_id(self) -> str:
        return self._scheduler.run_id

    @property
    def run(self) -> PipelineRun:
        return self._scheduler.run

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel the run without waiting; `wait()` still returns its outcome."""
        self._scheduler.cancel(reason)

    def summarize(self) -> ResultSummary:
        """Live progress; final once the run is done."""
        return self._scheduler.aggregator.summarize()

    async def wait(self) -> RunOutcome:
        return await self._task


class Orchestrator:
    """Entry point for running pipelines.

    Usage:
        orchestrator = Orchestrator()
        handle = orchestrator.start_run(Graph.build(jobs))
        outcome = await handle.wait()
        if outcome.admitted:
            deploy()
    """

    def __init__(
        self,
        runner: JobRunner | None = None,
        artifact_store: ArtifactStore | None = None,
        notifier: Notifier | None = None,
        settings: PhasegateSettings | None = None,
        rng: random.Random | None = None,
    ):
        self.settings = settings or get_settings()
        self.runner = runner or DispatchRunner.default()
        if artifact_store is not None:
            self.store = artifact_store
        elif self.settings.artifacts_dir:
            self.store = FileSystemArtifactStore(self.settings.artifacts_dir, retain=self.settings.retain_artifacts)
        else:
            self.store = MemoryArtifactStore()
        self.notifier = notifier or self._default_notifier()
        self._rng = rng

    def _default_notifier(self) -> Notifier:
        if not self.settings.webhook_url:
            return LoggingNotifier()
        return CompositeNotifier([
            LoggingNotifier(),
            WebhookNotifier(
                self.settings.webhook_url,
                events=self.settings.webhook_events,
                secret=self.settings.webhook_secret,
            ),
        ])

    def default_policy(self) -> QualityGatePolicy:
        return QualityGatePolicy(
            min_success_rate=self.settings.min_success_rate,
            allow_optional_failures=self.settings.allow_optional_failures,
            max_wall_clock_ms=self.settings.max_wall_clock_ms,
        )

    def start_run(
        self,
        graph: Graph,
        policy: QualityGatePolicy | None = None,
        concurrency_cap: int | None = None,
        run_id: str | None = None,
        fail_fast: bool | None = None,
    ) -> RunHandle:
        """Validate and launch a run on the current event loop.

        Configuration errors (forward-phase dependency, unknown handler, bad
        cap) are raised here, before any job runs.
        """
        phase_plan = plan(graph)
        executor = ExecutorAdapter(
            self.runner,
            self.store,
            cancel_grace_seconds=self.settings.cancel_grace_seconds,
            rng=self._rng,
        )
        for job in graph:
            executor.validate(job)

        scheduler = Scheduler(
            graph,
            phase_plan,
            executor,
            run_id=run_id,
            concurrency_cap=self.settings.global_concurrency_cap if concurrency_cap is None else concurrency_cap,
            fail_fast=self.settings.fail_fast if fail_fast is None else fail_fast,
            phase_grace_seconds=self.settings.phase_grace_seconds,
            notifier=self.notifier,
        )
        task = asyncio.get_running_loop().create_task(
            self._drive(scheduler, phase_plan, policy or self.default_policy()),
            name=f"phasegate-run:{scheduler.run_id}",
        )
        return RunHandle(scheduler, task)

    async def run(
        self,
        graph: Graph,
        policy: QualityGatePolicy | None = None,
        concurrency_cap: int | None = None,
        run_id: str | None = None,
        fail_fast: bool | None = None,
    ) -> RunOutcome:
        """Start a run and wait for its outcome."""
        handle = self.start_run(graph, policy, concurrency_cap, run_id=run_id, fail_fast=fail_fast)
        return await handle.wait()

    async def _drive(self, scheduler: Scheduler, phase_plan: PhasePlan, policy: QualityGatePolicy) -> RunOutcome:
        try:
            run = await scheduler.run_to_completion()
        finally:
            await self.store.clear(scheduler.run_id)

        summary = scheduler.aggregator.summarize()
        decision = evaluate(summary, policy)
        run.record_decision(decision)

        if decision.admitted:
            logger.info(f"[{run.run_id}] Quality gate: Admit")
        else:
            logger.warning(f"[{run.run_id}] Quality gate: {decision} — {decision.detail}")

        event = RunEvent(
            run_id=run.run_id,
            decision=decision,
            summary=summary,
            timestamp=datetime.now(tz=timezone.utc),
        )
        try:
            self.notifier.emit(event)
        except Exception as e:
            logger.error(f"[{run.run_id}] Notifier failed on {event.name}: {e}")

        return RunOutcome(run=run, plan=phase_plan, summary=summary, decision=decision)

    async def aclose(self) -> None:
        await self.notifier.aclose()
