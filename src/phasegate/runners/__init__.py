"""Job runners — execute job payloads for the executor."""

from phasegate.runners.base import JobRunner, RunnerOutcome
from phasegate.runners.command import CommandRunner
from phasegate.runners.dispatch import DispatchRunner
from phasegate.runners.handler import HandlerRunner
from phasegate.runners.noop import NoopRunner

__all__ = [
    "JobRunner",
    "RunnerOutcome",
    "CommandRunner",
    "DispatchRunner",
    "HandlerRunner",
    "NoopRunner",
]
