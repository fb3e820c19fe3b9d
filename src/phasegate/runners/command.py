"""Command runner — runs a shell command as a subprocess."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import tempfile
from pathlib import Path

from phasegate.core.errors import ConfigurationError, JobRunnerError
from phasegate.pipeline.context import JobContext
from phasegate.runners.base import JobRunner, RunnerOutcome
from phasegate.schemas.job import CommandPayload, JobSpec

logger = logging.getLogger("phasegate.runners.command")

# Output kept per attempt, like the tail of a CI log.
MAX_OUTPUT_CHARS = 8000


def _input_filename(key: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "_", key)


class CommandRunner(JobRunner):
    """Runs `CommandPayload` jobs with `asyncio.create_subprocess_shell`.

    Consumed artifacts are written to a temporary directory exposed as
    `PHASEGATE_INPUTS_DIR` (one file per key, unsafe characters replaced by
    `_`). After a zero exit, each `artifact_paths` entry is read back as the
    artifact of that key.
    """

    def __init__(self, base_dir: str | Path = ".", kill_grace_seconds: float = 5.0):
        self.base_dir = Path(base_dir)
        self.kill_grace_seconds = kill_grace_seconds

    def validate(self, job: JobSpec) -> None:
        if not isinstance(job.payload, CommandPayload):
            raise ConfigurationError(f"Job '{job.id}' has no command payload")

    async def execute(self, job: JobSpec, ctx: JobContext) -> RunnerOutcome:
        self.validate(job)
        payload: CommandPayload = job.payload
        cwd = (self.base_dir / (payload.cwd or ".")).resolve()
        if not cwd.is_dir():
            raise ConfigurationError(f"Job '{job.id}' working directory not found: {cwd}")

        with tempfile.TemporaryDirectory(prefix=f"phasegate-{job.id}-") as inputs_dir:
            for key, data in ctx.inputs.items():
                (Path(inputs_dir) / _input_filename(key)).write_bytes(data)

            env = os.environ.copy()
            env.update(payload.env)
            env.update({
                "PHASEGATE_RUN_ID": ctx.run_id,
                "PHASEGATE_JOB_ID": job.id,
                "PHASEGATE_ATTEMPT": str(ctx.attempt),
                "PHASEGATE_INPUTS_DIR": inputs_dir,
            })

            ctx.log(f"$ {payload.command}")
            try:
                proc = await asyncio.create_subprocess_shell(
                    payload.command,
                    cwd=str(cwd),
                    env=env,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                )
            except OSError as e:
                raise JobRunnerError(f"Could not start command for '{job.id}': {e}") from e
            try:
                stdout, _ = await proc.communicate()
            except asyncio.CancelledError:
                await self._terminate(proc, job.id)
                raise

        output = stdout.decode("utf-8", errors="replace")[-MAX_OUTPUT_CHARS:]
        for line in output.splitlines():
            ctx.log(line)

        if proc.returncode != 0:
            return RunnerOutcome(
                exit_code=proc.returncode,
                logs=ctx.get_logs(),
                error=f"command exited with {proc.returncode}",
            )

        for key, rel_path in payload.artifact_paths.items():
            path = cwd / rel_path
            if path.is_file():
                ctx.add_artifact(key, path.read_bytes())
            else:
                ctx.log(f"Artifact file not found for '{key}': {path}")

        return RunnerOutcome(exit_code=0, logs=ctx.get_logs(), artifacts=dict(ctx.outputs))

    async def _terminate(self, proc: asyncio.subprocess.Process, job_id: str) -> None:
        if proc.returncode is not None:
            return
        logger.info(f"Terminating process for {job_id} (pid={proc.pid})")
        proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.kill_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Killing process for {job_id} (pid={proc.pid})")
            proc.kill()
            await proc.wait()
