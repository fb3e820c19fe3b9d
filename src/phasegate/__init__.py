"""Phasegate — phased CI job orchestration with a quality gate."""

__version__ = "0.1.0"

from phasegate.dag.graph import Graph
from phasegate.dag.planner import PhasePlan, plan
from phasegate.gate.quality import GateDecision, QualityGatePolicy, evaluate
from phasegate.orchestrator import Orchestrator, RunHandle, RunOutcome
from phasegate.pipeline.context import JobContext
from phasegate.pipeline.decorators import handler
from phasegate.schemas.job import JobSpec, RetryPolicy

__all__ = [
    "handler",
    "JobContext",
    "JobSpec",
    "RetryPolicy",
    "Graph",
    "PhasePlan",
    "plan",
    "QualityGatePolicy",
    "GateDecision",
    "evaluate",
    "Orchestrator",
    "RunHandle",
    "RunOutcome",
    "__version__",
]
