"""Handlers for handler_pipeline.toml."""

import asyncio
import json

from phasegate import JobContext, handler


@handler(description="Write the release manifest")
async def compile_manifest(ctx: JobContext, version: str):
    manifest = {"version": version, "run": ctx.run_id}
    ctx.add_artifact("manifest", json.dumps(manifest))
    ctx.log(f"Compiled manifest for {version}")


@handler(description="Run a check suite; fails the first `flaky_attempts` attempts")
async def run_checks(ctx: JobContext, suite: str, flaky_attempts: int = 0):
    async with ctx.step(suite):
        await asyncio.sleep(0.1)
        if ctx.attempt <= flaky_attempts:
            raise RuntimeError(f"{suite}: flaky failure on attempt {ctx.attempt}")
    return True


@handler(description="Slow optional job; times out")
async def build_docs(ctx: JobContext):
    await asyncio.sleep(5)


@handler()
async def publish(ctx: JobContext):
    manifest = json.loads(ctx.artifact("manifest"))
    ctx.log(f"Publishing {manifest['version']}")
    return 0
