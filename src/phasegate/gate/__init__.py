"""Quality gate evaluation."""

from phasegate.gate.quality import BlockReason, GateDecision, QualityGatePolicy, evaluate

__all__ = ["BlockReason", "GateDecision", "QualityGatePolicy", "evaluate"]
