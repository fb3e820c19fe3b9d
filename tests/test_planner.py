"""Tests for phase planning and critical path estimation."""

import pytest

from phasegate.core.errors import ForwardDependencyError
from phasegate.dag.graph import Graph
from phasegate.dag.planner import critical_path, plan
from phasegate.schemas.job import JobSpec


def job(job_id, *deps, **kwargs):
    return JobSpec(id=job_id, depends_on=list(deps), **kwargs)


class TestPhases:
    def test_phases_sorted_by_number(self):
        graph = Graph.build([job("report", phase=4), job("build", phase=1), job("smoke", phase=2)])
        phase_plan = plan(graph)
        assert [p.number for p in phase_plan.phases] == [1, 2, 4]
        assert phase_plan.phase_of("report") == 2

    def test_required_and_optional_split(self):
        graph = Graph.build([job("a", phase=1), job("b", phase=1, required=False)])
        phase = plan(graph).phases[0]
        assert phase.job_ids == ("a", "b")
        assert phase.required_ids == ("a",)
        assert phase.optional_ids == ("b",)

    def test_concurrency_groups(self):
        graph = Graph.build([
            job("firefox", phase=3, concurrency_group="browser"),
            job("edge", phase=3, concurrency_group="browser"),
            job("auth", phase=3),
        ])
        phase = plan(graph).phases[0]
        assert phase.groups["browser"] == ("firefox", "edge")
        assert phase.groups[None] == ("auth",)

    def test_same_phase_dependency_allowed(self):
        graph = Graph.build([job("install", phase=1), job("build", "install", phase=1)])
        assert len(plan(graph).phases) == 1

    def test_forward_dependency_rejected(self):
        graph = Graph.build([job("early", "late", phase=1), job("late", phase=2)])
        with pytest.raises(ForwardDependencyError) as exc:
            plan(graph)
        assert exc.value.job_id == "early"
        assert exc.value.dependency == "late"
        assert exc.value.dependency_phase == 2

    def test_to_dict(self):
        graph = Graph.build([job("a", phase=1, estimated_ms=100)])
        data = plan(graph).to_dict()
        assert data["phases"][0]["jobs"] == ["a"]
        assert data["critical_path"] == {"jobs": ["a"], "duration_ms": 100}


class TestCriticalPath:
    def test_longest_chain_by_estimate(self):
        graph = Graph.build([
            job("build", estimated_ms=100),
            job("fast", "build", estimated_ms=10),
            job("slow", "build", estimated_ms=500),
            job("report", "fast", "slow", estimated_ms=20),
        ])
        path = plan(graph).critical_path
        assert path.job_ids == ("build", "slow", "report")
        assert path.duration_ms == 620

    def test_estimate_bounded_by_timeout(self):
        graph = Graph.build([job("a", estimated_ms=10_000, timeout_ms=2_000)])
        assert plan(graph).critical_path.duration_ms == 2_000

    def test_missing_estimate_falls_back_to_timeout(self):
        graph = Graph.build([job("a", timeout_ms="90s")])
        assert plan(graph).critical_path.duration_ms == 90_000

    def test_actual_durations(self):
        graph = Graph.build([job("a"), job("b", "a"), job("c")])
        path = critical_path(graph, {"a": 5, "b": 5, "c": 50})
        assert path.job_ids == ("c",)
        assert path.duration_ms == 50

    def test_empty_graph(self):
        path = critical_path(Graph.build([]), {})
        assert path.job_ids == ()
        assert path.duration_ms == 0
