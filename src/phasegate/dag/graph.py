"""Job graph — immutable DAG arena with validation and adjacency lookup."""

from __future__ import annotations

from collections import deque
from typing import Iterable, Iterator

from phasegate.core.errors import CycleDetectedError, DuplicateIdError, UnknownDependencyError
from phasegate.schemas.job import JobSpec


class Graph:
    """Jobs indexed by integer position with forward and reverse edge lists.

    Build with `Graph.build(jobs)`; the result cannot be modified.
    """

    __slots__ = ("_jobs", "_index", "_dependents", "_dependencies", "_order")

    def __init__(
        self,
        jobs: tuple[JobSpec, ...],
        index: dict[str, int],
        dependents: tuple[tuple[int, ...], ...],
        dependencies: tuple[tuple[int, ...], ...],
        order: tuple[int, ...],
    ):
        object.__setattr__(self, "_jobs", jobs)
        object.__setattr__(self, "_index", index)
        object.__setattr__(self, "_dependents", dependents)
        object.__setattr__(self, "_dependencies", dependencies)
        object.__setattr__(self, "_order", order)

    def __setattr__(self, name, value):
        raise AttributeError("Graph is immutable")

    @classmethod
    def build(cls, jobs: Iterable[JobSpec]) -> "Graph":
        """Validate job specs and precompute adjacency.

        Raises DuplicateIdError, UnknownDependencyError or CycleDetectedError.
        """
        specs = tuple(jobs)
        index: dict[str, int] = {}
        for i, job in enumerate(specs):
            if job.id in index:
                raise DuplicateIdError(job.id)
            index[job.id] = i

        dependents: list[list[int]] = [[] for _ in specs]
        dependencies: list[list[int]] = [[] for _ in specs]
        for i, job in enumerate(specs):
            for dep in job.depends_on:
                if dep not in index:
                    raise UnknownDependencyError(job.id, dep)
                dependencies[i].append(index[dep])
                dependents[index[dep]].append(i)

        order = _topological_order(dependents, dependencies)
        if len(order) != len(specs):
            raise CycleDetectedError(_find_cycle(specs, dependencies, set(order)))

        return cls(
            specs,
            index,
            tuple(tuple(d) for d in dependents),
            tuple(tuple(d) for d in dependencies),
            tuple(order),
        )

    # ─── Lookup ───

    def __len__(self) -> int:
        return len(self._jobs)

    def __iter__(self) -> Iterator[JobSpec]:
        return iter(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._index

    @property
    def jobs(self) -> tuple[JobSpec, ...]:
        return self._jobs

    @property
    def ids(self) -> list[str]:
        return [job.id for job in self._jobs]

    def index_of(self, job_id: str) -> int:
        return self._index[job_id]

    def job(self, job_id: str) -> JobSpec:
        return self._jobs[self._index[job_id]]

    def job_at(self, idx: int) -> JobSpec:
        return self._jobs[idx]

    def dependents_of(self, idx: int) -> tuple[int, ...]:
        """Direct dependents (forward edges) of the job at `idx`."""
        return self._dependents[idx]

    def dependencies_of(self, idx: int) -> tuple[int, ...]:
        """Direct dependencies (reverse edges) of the job at `idx`."""
        return self._dependencies[idx]

    def topological_order(self) -> list[str]:
        """Job ids in dependency order (dependencies first), stable by declaration."""
        return [self._jobs[i].id for i in self._order]

    def topological_indices(self) -> tuple[int, ...]:
        return self._order

    def get_upstream(self, job_id: str) -> set[str]:
        """Get all transitive dependencies."""
        return {self._jobs[i].id for i in self._walk(self._index[job_id], self._dependencies)}

    def get_downstream(self, job_id: str) -> set[str]:
        """Get all transitive dependents."""
        return {self._jobs[i].id for i in self._walk(self._index[job_id], self._dependents)}

    def downstream_indices(self, idx: int) -> list[int]:
        """Transitive dependents of `idx` in breadth-first order."""
        return self._walk(idx, self._dependents)

    @staticmethod
    def _walk(start: int, edges: tuple[tuple[int, ...], ...]) -> list[int]:
        seen = {start}
        found: list[int] = []
        queue = deque(edges[start])
        while queue:
            node = queue.popleft()
            if node in seen:
                continue
            seen.add(node)
            found.append(node)
            queue.extend(edges[node])
        return found

    def to_dict(self) -> dict:
        """Serialize the graph for JSON output."""
        return {
            "nodes": self.ids,
            "edges": [
                {"upstream": dep, "downstream": job.id}
                for job in self._jobs
                for dep in job.depends_on
            ],
        }


def _topological_order(
    dependents: list[list[int]],
    dependencies: list[list[int]],
) -> list[int]:
    in_degree = [len(deps) for deps in dependencies]
    queue = deque(i for i, d in enumerate(in_degree) if d == 0)
    order: list[int] = []
    while queue:
        node = queue.popleft()
        order.append(node)
        for child in dependents[node]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                queue.append(child)
    return order


def _find_cycle(
    specs: tuple[JobSpec, ...],
    dependencies: list[list[int]],
    resolved: set[int],
) -> list[str]:
    """Walk unresolved dependencies until a node repeats; that loop is a cycle.

    Every node left over by Kahn's algorithm has at least one unresolved
    dependency, so the walk cannot dead-end.
    """
    start = next(i for i in range(len(specs)) if i not in resolved)
    path: list[int] = []
    position: dict[int, int] = {}
    node = start
    while node not in position:
        position[node] = len(path)
        path.append(node)
        node = next(d for d in dependencies[node] if d not in resolved)
    # `path` follows dependency edges; report it in execution direction.
    loop = path[position[node]:]
    loop.reverse()
    ids = [specs[i].id for i in loop]
    return ids + [ids[0]]
