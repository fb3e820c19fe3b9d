"""Pydantic schema for a whole pipeline definition file."""

from __future__ import annotations

from pydantic import BaseModel, Field

from phasegate.core.config import MAX_CONCURRENCY_CAP
from phasegate.dag.graph import Graph
from phasegate.gate.quality import QualityGatePolicy
from phasegate.schemas.job import JobSpec


class PipelineDefinition(BaseModel):
    name: str = "pipeline"
    description: str | None = None
    concurrency_cap: int | None = Field(default=None, ge=1, le=MAX_CONCURRENCY_CAP, alias="concurrencyCap")
    fail_fast: bool | None = Field(default=None, alias="failFast")
    gate: QualityGatePolicy | None = None
    # Python files (relative to the definition) whose @handler functions jobs may call
    handlers: list[str] = Field(default_factory=list)
    jobs: list[JobSpec] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    def build_graph(self) -> Graph:
        return Graph.build(self.jobs)
