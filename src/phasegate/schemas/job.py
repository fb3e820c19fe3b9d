"""Pydantic schemas for job specifications."""

from __future__ import annotations

import random
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, field_validator

from phasegate.pipeline.decorators import parse_duration_ms

DEFAULT_TIMEOUT_MS = 30 * 60 * 1000


class RetryPolicy(BaseModel):
    """Per-job retry budget and backoff curve."""

    max_attempts: int = Field(default=1, ge=1, alias="maxAttempts")
    backoff_base_ms: int = Field(default=1000, ge=0, alias="backoffBaseMs")
    backoff_factor: float = Field(default=2.0, ge=1.0, alias="backoffFactor")
    backoff_max_ms: int = Field(default=60_000, ge=0, alias="backoffMaxMs")
    jitter: float = Field(default=0.1, ge=0.0, le=1.0)

    model_config = {"populate_by_name": True, "frozen": True}

    def backoff_ms(self, attempt: int, rng: random.Random | None = None) -> float:
        """Delay before the retry that follows failed attempt number `attempt` (1-based)."""
        delay = self.backoff_base_ms * self.backoff_factor ** max(attempt - 1, 0)
        delay = min(delay, self.backoff_max_ms)
        if self.jitter and delay:
            spread = delay * self.jitter
            delay += (rng or random).uniform(-spread, spread)
        return max(delay, 0.0)


# ─── Payload variants ───


class CommandPayload(BaseModel):
    """Run a shell command; artifacts are read from files after success."""

    kind: Literal["command"] = "command"
    command: str
    cwd: str | None = None
    env: dict[str, str] = Field(default_factory=dict)
    artifact_paths: dict[str, str] = Field(default_factory=dict, alias="artifactPaths")

    model_config = {"populate_by_name": True, "frozen": True}


class HandlerPayload(BaseModel):
    """Call a registered async handler."""

    kind: Literal["handler"] = "handler"
    handler: str
    params: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class NoopPayload(BaseModel):
    """Do nothing and exit with `exit_code`."""

    kind: Literal["noop"] = "noop"
    exit_code: int = Field(default=0, alias="exitCode")

    model_config = {"populate_by_name": True, "frozen": True}


Payload = Annotated[
    Union[CommandPayload, HandlerPayload, NoopPayload],
    Field(discriminator="kind"),
]


class JobSpec(BaseModel):
    """A schedulable unit of work."""

    id: str = Field(min_length=1)
    phase: int = 0
    depends_on: list[str] = Field(default_factory=list, alias="dependsOn")
    concurrency_group: str | None = Field(default=None, alias="concurrencyGroup")
    required: bool = True
    retry: RetryPolicy = Field(default_factory=RetryPolicy, alias="retryPolicy")
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0, alias="timeoutMs")
    estimated_ms: int | None = Field(default=None, ge=0, alias="estimatedMs")
    artifacts_produced: list[str] = Field(default_factory=list, alias="artifactsProduced")
    artifacts_consumed: list[str] = Field(default_factory=list, alias="artifactsConsumed")
    payload: Payload = Field(default_factory=NoopPayload)
    description: str | None = None
    tags: list[str] = Field(default_factory=list)

    model_config = {"populate_by_name": True, "frozen": True}

    @field_validator("timeout_ms", "estimated_ms", mode="before")
    @classmethod
    def _parse_duration(cls, value):
        if isinstance(value, str):
            return parse_duration_ms(value)
        return value

    @field_validator("depends_on", "artifacts_produced", "artifacts_consumed")
    @classmethod
    def _dedupe(cls, values: list[str]) -> list[str]:
        return list(dict.fromkeys(values))

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    @property
    def estimate_ms(self) -> int:
        """Duration estimate for critical-path reporting, bounded by the timeout."""
        if self.estimated_ms is None:
            return self.timeout_ms
        return min(self.estimated_ms, self.timeout_ms)
