"""Shared test fixtures for Phasegate tests."""

import asyncio
import random

import pytest

from phasegate.artifacts.store import MemoryArtifactStore
from phasegate.core.config import PhasegateSettings
from phasegate.dag.graph import Graph
from phasegate.dag.planner import plan
from phasegate.dag.scheduler import Scheduler
from phasegate.execution.executor import ExecutorAdapter
from phasegate.notify.base import MemoryNotifier
from phasegate.runners.base import JobRunner, RunnerOutcome


class ScriptedRunner(JobRunner):
    """Plays back per-job attempt scripts and records what ran when.

    A script is a list of `(delay_seconds, exit_code_or_exception)` steps, one
    per attempt; the last step repeats. Jobs without a script succeed after
    `default_delay`. Jobs marked with `ignore_cancel` swallow cancellation and
    keep running for `linger` seconds.
    """

    def __init__(self, default_delay: float = 0.01):
        self.default_delay = default_delay
        self.scripts: dict[str, list] = {}
        self.produces: dict[str, dict[str, bytes]] = {}
        self.lingers: dict[str, float] = {}
        self.started: list[str] = []
        self.finished: list[str] = []
        self.inputs: dict[str, dict[str, bytes]] = {}
        self.active: set[str] = set()
        self.snapshots: list[frozenset[str]] = []
        self.peak = 0

    def script(self, job_id: str, *steps) -> None:
        self.scripts[job_id] = list(steps)

    def produce(self, job_id: str, **artifacts: bytes) -> None:
        self.produces[job_id] = artifacts

    def ignore_cancel(self, job_id: str, linger: float) -> None:
        self.lingers[job_id] = linger

    async def execute(self, job, ctx):
        steps = self.scripts.get(job.id) or [(self.default_delay, 0)]
        delay, result = steps[min(ctx.attempt, len(steps)) - 1]

        self.started.append(job.id)
        self.inputs[job.id] = dict(ctx.inputs)
        self.active.add(job.id)
        self.snapshots.append(frozenset(self.active))
        self.peak = max(self.peak, len(self.active))
        try:
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                if job.id not in self.lingers:
                    raise
                await asyncio.sleep(self.lingers[job.id])
        finally:
            self.active.discard(job.id)
        self.finished.append(job.id)

        if isinstance(result, BaseException):
            raise result
        for key, data in self.produces.get(job.id, {}).items():
            ctx.add_artifact(key, data)
        ctx.log(f"{job.id} attempt {ctx.attempt} exit {result}")
        return RunnerOutcome(exit_code=result, logs=ctx.get_logs(), artifacts=dict(ctx.outputs))


@pytest.fixture
def runner():
    return ScriptedRunner()


@pytest.fixture
def notifier():
    return MemoryNotifier()


@pytest.fixture
def store():
    return MemoryArtifactStore()


@pytest.fixture
def settings():
    """Settings isolated from the environment and any phasegate.toml."""
    return PhasegateSettings(
        _env_file=None,
        phase_grace_seconds=1.0,
        cancel_grace_seconds=0.5,
    )


@pytest.fixture
def make_scheduler(runner, notifier, store):
    """Factory: `make_scheduler(jobs, cap=..., fail_fast=...)` -> Scheduler."""

    def _make(
        jobs,
        cap: int = 8,
        fail_fast: bool = False,
        phase_grace_seconds: float = 1.0,
        cancel_grace_seconds: float = 0.5,
    ) -> Scheduler:
        graph = Graph.build(jobs)
        executor = ExecutorAdapter(
            runner,
            store,
            cancel_grace_seconds=cancel_grace_seconds,
            rng=random.Random(0),
        )
        return Scheduler(
            graph,
            plan(graph),
            executor,
            run_id="test-run",
            concurrency_cap=cap,
            fail_fast=fail_fast,
            phase_grace_seconds=phase_grace_seconds,
            notifier=notifier,
        )

    return _make
