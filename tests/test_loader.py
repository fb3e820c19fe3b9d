"""Tests for loading pipeline definitions and handler files."""

import json

import pytest

from phasegate.core.errors import CycleDetectedError, DefinitionError
from phasegate.pipeline.decorators import HandlerRegistry
from phasegate.pipeline.loader import load_definition, load_handlers_from_file, load_pipeline

PIPELINE_TOML = """
name = "checks"
concurrencyCap = 3
failFast = true
handlers = ["handlers.py"]

[gate]
minSuccessRate = 0.9

[[jobs]]
id = "build"
phase = 1
timeoutMs = "5m"
artifactsProduced = ["dist"]
payload = { kind = "command", command = "make", artifactPaths = { dist = "out/dist.tgz" } }

[[jobs]]
id = "unit"
phase = 2
dependsOn = ["build"]
retryPolicy = { maxAttempts = 2 }
payload = { kind = "handler", handler = "unit_tests", params = { shard = 1 } }

[[jobs]]
id = "marker"
phase = 2
required = false
"""

HANDLERS_PY = '''
from phasegate import handler


@handler()
async def unit_tests(ctx, shard):
    ctx.log(f"shard {shard}")


@handler(name="lint")
async def run_lint(ctx):
    return True


def not_a_handler():
    pass
'''


@pytest.fixture
def pipeline_dir(tmp_path):
    (tmp_path / "pipeline.toml").write_text(PIPELINE_TOML)
    (tmp_path / "handlers.py").write_text(HANDLERS_PY)
    return tmp_path


class TestLoadDefinition:
    def test_toml(self, pipeline_dir):
        definition = load_definition(pipeline_dir / "pipeline.toml")
        assert definition.name == "checks"
        assert definition.concurrency_cap == 3
        assert definition.fail_fast is True
        assert definition.gate.min_success_rate == 0.9

        build, unit, marker = definition.jobs
        assert build.timeout_ms == 300_000
        assert build.payload.kind == "command"
        assert build.payload.artifact_paths == {"dist": "out/dist.tgz"}
        assert unit.depends_on == ["build"]
        assert unit.retry.max_attempts == 2
        assert unit.payload.params == {"shard": 1}
        assert marker.payload.kind == "noop"
        assert marker.required is False

    def test_json(self, tmp_path):
        path = tmp_path / "pipeline.json"
        path.write_text(json.dumps({"name": "j", "jobs": [{"id": "a"}, {"id": "b", "dependsOn": ["a"]}]}))
        graph = load_definition(path).build_graph()
        assert graph.topological_order() == ["a", "b"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(DefinitionError, match="not found"):
            load_definition(tmp_path / "nope.toml")

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "pipeline.yaml"
        path.write_text("jobs: []")
        with pytest.raises(DefinitionError, match="Unsupported"):
            load_definition(path)

    def test_parse_error(self, tmp_path):
        path = tmp_path / "pipeline.toml"
        path.write_text("[[jobs]\nid = ")
        with pytest.raises(DefinitionError, match="Cannot parse"):
            load_definition(path)

    def test_validation_error(self, tmp_path):
        path = tmp_path / "pipeline.toml"
        path.write_text('[[jobs]]\nid = "a"\npayload = { kind = "teleport" }\n')
        with pytest.raises(DefinitionError, match="Invalid pipeline definition"):
            load_definition(path)

    def test_graph_errors_surface_on_build(self, tmp_path):
        path = tmp_path / "pipeline.json"
        path.write_text(json.dumps({"jobs": [{"id": "a", "dependsOn": ["b"]}, {"id": "b", "dependsOn": ["a"]}]}))
        with pytest.raises(CycleDetectedError):
            load_definition(path).build_graph()


class TestLoadHandlers:
    def test_registers_decorated_functions(self, pipeline_dir):
        registry = HandlerRegistry()
        found = load_handlers_from_file(pipeline_dir / "handlers.py", registry)
        assert sorted(meta.name for meta in found) == ["lint", "unit_tests"]
        assert registry.names() == ["lint", "unit_tests"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(DefinitionError):
            load_handlers_from_file(tmp_path / "missing.py", HandlerRegistry())

    def test_load_pipeline_resolves_handlers_relative_to_definition(self, pipeline_dir):
        registry = HandlerRegistry()
        definition = load_pipeline(pipeline_dir / "pipeline.toml", registry)
        assert definition.name == "checks"
        assert "unit_tests" in registry
