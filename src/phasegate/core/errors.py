"""Phasegate exception hierarchy."""

from __future__ import annotations


class PhasegateError(Exception):
    """Base class for all Phasegate errors."""


# ─── Configuration errors (fatal, raised before any job runs) ───


class ConfigurationError(PhasegateError):
    """The pipeline definition cannot be executed as declared."""


class DuplicateIdError(ConfigurationError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Duplicate job id: '{job_id}'")


class UnknownDependencyError(ConfigurationError):
    def __init__(self, job_id: str, dependency: str):
        self.job_id = job_id
        self.dependency = dependency
        super().__init__(f"Job '{job_id}' depends on unknown job '{dependency}'")


class CycleDetectedError(ConfigurationError):
    """Raised when a dependency cycle is detected."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Dependency cycle detected: {' → '.join(cycle)}")


class ForwardDependencyError(ConfigurationError):
    """A job depends on a job scheduled in a strictly later phase."""

    def __init__(self, job_id: str, job_phase: int, dependency: str, dependency_phase: int):
        self.job_id = job_id
        self.job_phase = job_phase
        self.dependency = dependency
        self.dependency_phase = dependency_phase
        super().__init__(
            f"Job '{job_id}' (phase {job_phase}) depends on '{dependency}' "
            f"in later phase {dependency_phase}"
        )


class DefinitionError(ConfigurationError):
    """A pipeline definition file could not be parsed or validated."""


class UnknownHandlerError(ConfigurationError):
    def __init__(self, handler: str, job_id: str | None = None):
        self.handler = handler
        self.job_id = job_id
        where = f" (job '{job_id}')" if job_id else ""
        super().__init__(f"No handler registered under '{handler}'{where}")


# ─── Job-level errors (absorbed by the scheduler) ───


class JobTimeoutError(PhasegateError):
    def __init__(self, job_id: str, timeout_ms: int):
        self.job_id = job_id
        self.timeout_ms = timeout_ms
        super().__init__(f"Job '{job_id}' timed out after {timeout_ms}ms")


class JobRunnerError(PhasegateError):
    """The job runner failed to execute a job payload."""


class ArtifactMissingError(PhasegateError):
    def __init__(self, job_id: str, key: str):
        self.job_id = job_id
        self.key = key
        super().__init__(f"Job '{job_id}' requires missing artifact '{key}'")


# ─── Run lifecycle ───


class RunSealedError(PhasegateError):
    """A finished pipeline run was mutated."""
