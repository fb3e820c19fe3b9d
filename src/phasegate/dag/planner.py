"""Phase planner — ordered barrier phases, concurrency groups, critical path."""

from __future__ import annotations

from dataclasses import dataclass, field

from phasegate.core.errors import ForwardDependencyError
from phasegate.dag.graph import Graph


@dataclass(frozen=True)
class Phase:
    """Jobs sharing a phase number. Phases run as strict barriers in ascending order."""

    number: int
    job_ids: tuple[str, ...]
    required_ids: tuple[str, ...]
    optional_ids: tuple[str, ...]
    # concurrency group label -> job ids; ungrouped jobs are under None
    groups: dict[str | None, tuple[str, ...]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "phase": self.number,
            "jobs": list(self.job_ids),
            "required": list(self.required_ids),
            "optional": list(self.optional_ids),
            "groups": {
                (label if label is not None else ""): list(ids)
                for label, ids in self.groups.items()
            },
        }


@dataclass(frozen=True)
class CriticalPath:
    job_ids: tuple[str, ...]
    duration_ms: int

    def to_dict(self) -> dict:
        return {"jobs": list(self.job_ids), "duration_ms": self.duration_ms}


@dataclass(frozen=True)
class PhasePlan:
    phases: tuple[Phase, ...]
    critical_path: CriticalPath
    _phase_index: dict[str, int] = field(default_factory=dict, repr=False)

    def phase_of(self, job_id: str) -> int:
        """Position of the job's phase within `phases` (not the phase number)."""
        return self._phase_index[job_id]

    def to_dict(self) -> dict:
        return {
            "phases": [p.to_dict() for p in self.phases],
            "critical_path": self.critical_path.to_dict(),
        }


def plan(graph: Graph) -> PhasePlan:
    """Partition the graph into ordered phases and estimate the critical path.

    Raises ForwardDependencyError if a job depends on a job in a later phase.
    """
    for job in graph:
        for dep in job.depends_on:
            dep_phase = graph.job(dep).phase
            if dep_phase > job.phase:
                raise ForwardDependencyError(job.id, job.phase, dep, dep_phase)

    by_number: dict[int, list[str]] = {}
    for job in graph:
        by_number.setdefault(job.phase, []).append(job.id)

    phases: list[Phase] = []
    phase_index: dict[str, int] = {}
    for position, number in enumerate(sorted(by_number)):
        ids = by_number[number]
        groups: dict[str | None, list[str]] = {}
        for job_id in ids:
            groups.setdefault(graph.job(job_id).concurrency_group, []).append(job_id)
            phase_index[job_id] = position
        phases.append(
            Phase(
                number=number,
                job_ids=tuple(ids),
                required_ids=tuple(i for i in ids if graph.job(i).required),
                optional_ids=tuple(i for i in ids if not graph.job(i).required),
                groups={label: tuple(members) for label, members in groups.items()},
            )
        )

    return PhasePlan(
        phases=tuple(phases),
        critical_path=critical_path(graph, {job.id: job.estimate_ms for job in graph}),
        _phase_index=phase_index,
    )


def critical_path(graph: Graph, durations: dict[str, int]) -> CriticalPath:
    """Longest chain of `durations` along dependency edges.

    Jobs missing from `durations` count as zero.
    """
    if len(graph) == 0:
        return CriticalPath(job_ids=(), duration_ms=0)

    finish: list[int] = [0] * len(graph)
    via: list[int | None] = [None] * len(graph)
    for idx in graph.topological_indices():
        best_dep = None
        start = 0
        for dep in graph.dependencies_of(idx):
            if best_dep is None or finish[dep] > start:
                start = finish[dep]
                best_dep = dep
        finish[idx] = start + durations.get(graph.job_at(idx).id, 0)
        via[idx] = best_dep

    end = max(range(len(graph)), key=lambda i: finish[i])
    chain: list[str] = []
    node: int | None = end
    while node is not None:
        chain.append(graph.job_at(node).id)
        node = via[node]
    chain.reverse()
    return CriticalPath(job_ids=tuple(chain), duration_ms=finish[end])
