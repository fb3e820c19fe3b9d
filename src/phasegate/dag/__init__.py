"""Job graph and phase planning. The scheduler lives in `phasegate.dag.scheduler`."""

from phasegate.dag.graph import Graph
from phasegate.dag.planner import CriticalPath, Phase, PhasePlan, plan

__all__ = ["Graph", "Phase", "PhasePlan", "CriticalPath", "plan"]
