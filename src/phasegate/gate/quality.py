"""Quality gate — admit/block decision over a run summary."""

from __future__ import annotations

import enum
from dataclasses import dataclass

from pydantic import BaseModel, Field

from phasegate.results.aggregator import ResultSummary


class BlockReason(str, enum.Enum):
    SUCCESS_RATE_BELOW_THRESHOLD = "success_rate_below_threshold"
    REQUIRED_JOB_FAILED = "required_job_failed"
    WALL_CLOCK_EXCEEDED = "wall_clock_exceeded"
    OPTIONAL_JOB_FAILED = "optional_job_failed"


class QualityGatePolicy(BaseModel):
    min_success_rate: float = Field(default=0.95, ge=0.0, le=1.0, alias="minSuccessRate")
    allow_optional_failures: bool = Field(default=True, alias="allowOptionalFailures")
    max_wall_clock_ms: int | None = Field(default=None, gt=0, alias="maxWallClockMs")

    model_config = {"populate_by_name": True, "frozen": True}


@dataclass(frozen=True)
class GateDecision:
    admitted: bool
    reason: BlockReason | None = None
    detail: str | None = None

    @classmethod
    def admit(cls) -> "GateDecision":
        return cls(admitted=True)

    @classmethod
    def block(cls, reason: BlockReason, detail: str | None = None) -> "GateDecision":
        return cls(admitted=False, reason=reason, detail=detail)

    @property
    def kind(self) -> str:
        return "admit" if self.admitted else "block"

    def __str__(self) -> str:
        if self.admitted:
            return "Admit"
        return f"Block({self.reason.value})"

    def to_dict(self) -> dict:
        return {
            "decision": self.kind,
            "reason": self.reason.value if self.reason else None,
            "detail": self.detail,
        }


def evaluate(summary: ResultSummary, policy: QualityGatePolicy) -> GateDecision:
    """Return the first matching block reason, or Admit."""
    if summary.success_rate < policy.min_success_rate:
        return GateDecision.block(
            BlockReason.SUCCESS_RATE_BELOW_THRESHOLD,
            f"success rate {summary.success_rate:.2%} < {policy.min_success_rate:.2%}",
        )

    if summary.required_unsuccessful:
        return GateDecision.block(
            BlockReason.REQUIRED_JOB_FAILED,
            f"required jobs not succeeded: {', '.join(summary.required_unsuccessful)}",
        )

    if policy.max_wall_clock_ms is not None and summary.wall_clock_ms > policy.max_wall_clock_ms:
        return GateDecision.block(
            BlockReason.WALL_CLOCK_EXCEEDED,
            f"wall clock {summary.wall_clock_ms}ms > {policy.max_wall_clock_ms}ms",
        )

    if not policy.allow_optional_failures and summary.optional_failed:
        return GateDecision.block(
            BlockReason.OPTIONAL_JOB_FAILED,
            f"optional jobs failed: {', '.join(summary.optional_failed)}",
        )

    return GateDecision.admit()
