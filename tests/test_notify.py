"""Tests for notifiers and webhook delivery."""

import json
import logging
from datetime import datetime, timezone

import httpx
import pytest

from phasegate.dag.graph import Graph
from phasegate.gate.quality import BlockReason, GateDecision
from phasegate.models.job import FailureReason, JobStatus
from phasegate.notify import CompositeNotifier, LoggingNotifier, MemoryNotifier, Notifier, WebhookNotifier
from phasegate.notify.events import JobEvent, RunEvent
from phasegate.results.aggregator import ResultAggregator
from phasegate.schemas.job import JobSpec

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def job_event(job_id="build", to_status=JobStatus.FAILED, reason=FailureReason.EXIT_CODE):
    return JobEvent(
        run_id="run-1",
        job_id=job_id,
        from_status=JobStatus.RUNNING,
        to_status=to_status,
        timestamp=NOW,
        attempt=1,
        reason=reason,
    )


def run_event(decision):
    summary = ResultAggregator(Graph.build([JobSpec(id="build")])).summarize()
    return RunEvent(run_id="run-1", decision=decision, summary=summary, timestamp=NOW)


class TestEvents:
    def test_job_event_name(self):
        assert job_event().name == "job.failed"
        assert job_event(to_status=JobStatus.RUNNING, reason=None).name == "job.running"

    def test_run_event_name(self):
        assert run_event(GateDecision.admit()).name == "run.admitted"
        assert run_event(GateDecision.block(BlockReason.REQUIRED_JOB_FAILED)).name == "run.blocked"

    def test_to_dict(self):
        data = job_event().to_dict()
        assert data["event"] == "job.failed"
        assert data["reason"] == "ExitCode"
        assert data["timestamp"] == NOW.isoformat()

        data = run_event(GateDecision.block(BlockReason.WALL_CLOCK_EXCEEDED, "slow")).to_dict()
        assert data["decision"] == "block"
        assert data["reason"] == "wall_clock_exceeded"
        assert data["summary"]["total"] == 1


class TestInProcessNotifiers:
    def test_memory_notifier(self):
        notifier = MemoryNotifier()
        notifier.emit(job_event())
        notifier.emit(run_event(GateDecision.admit()))
        assert len(notifier.job_events) == 1
        assert len(notifier.run_events) == 1
        assert notifier.transitions("build") == [("running", "failed")]

    def test_logging_notifier(self, caplog):
        with caplog.at_level(logging.INFO, logger="phasegate.events"):
            LoggingNotifier().emit(job_event())
        assert "build: running → failed (ExitCode)" in caplog.text

    def test_composite_isolates_failures(self, caplog):
        class Broken(Notifier):
            def emit(self, event):
                raise RuntimeError("sink down")

        memory = MemoryNotifier()
        CompositeNotifier([Broken(), memory]).emit(job_event())
        assert len(memory.events) == 1
        assert "sink down" in caplog.text


class TestWebhookNotifier:
    @pytest.mark.asyncio
    async def test_posts_matching_events(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        notifier = WebhookNotifier("https://ci.example.com/hook", events=["run.blocked"], secret="s3cret", client=client)

        notifier.emit(run_event(GateDecision.admit()))
        notifier.emit(run_event(GateDecision.block(BlockReason.REQUIRED_JOB_FAILED, "build")))
        await notifier.aclose()
        await client.aclose()

        assert len(requests) == 1
        body = json.loads(requests[0].content)
        assert body["event"] == "run.blocked"
        assert body["payload"]["reason"] == "required_job_failed"
        assert requests[0].headers["X-Phasegate-Secret"] == "s3cret"
        assert notifier.delivered == [("run.blocked", 200)]

    @pytest.mark.asyncio
    async def test_glob_patterns(self):
        notifier = WebhookNotifier("https://ci.example.com/hook", events=["job.*"])
        assert notifier.wants("job.failed")
        assert not notifier.wants("run.blocked")

    @pytest.mark.asyncio
    async def test_delivery_errors_are_logged(self, caplog):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        notifier = WebhookNotifier("https://ci.example.com/hook", events=["*"], client=client)

        notifier.emit(job_event())
        await notifier.aclose()
        await client.aclose()

        assert notifier.delivered == []
        assert "Webhook failed" in caplog.text
