"""Load pipeline definitions (TOML/JSON) and handler modules from files."""

from __future__ import annotations

import importlib.util
import json
import sys
import tomllib
from pathlib import Path

from pydantic import ValidationError

from phasegate.core.errors import DefinitionError
from phasegate.pipeline.decorators import HandlerMetadata, HandlerRegistry
from phasegate.schemas.definition import PipelineDefinition


def load_definition(file_path: str | Path) -> PipelineDefinition:
    """Parse and validate a `.toml` or `.json` pipeline definition."""
    file_path = Path(file_path)
    if not file_path.exists():
        raise DefinitionError(f"Pipeline definition not found: {file_path}")

    try:
        if file_path.suffix == ".toml":
            with file_path.open("rb") as f:
                raw = tomllib.load(f)
        elif file_path.suffix == ".json":
            raw = json.loads(file_path.read_text())
        else:
            raise DefinitionError(f"Unsupported definition format '{file_path.suffix}' (use .toml or .json)")
    except (tomllib.TOMLDecodeError, json.JSONDecodeError) as e:
        raise DefinitionError(f"Cannot parse {file_path}: {e}") from e

    try:
        return PipelineDefinition.model_validate(raw)
    except ValidationError as e:
        raise DefinitionError(f"Invalid pipeline definition {file_path}:\n{e}") from e


def load_handlers_from_file(file_path: str | Path, registry: HandlerRegistry) -> list[HandlerMetadata]:
    """Import a Python file and register every @handler function it defines."""
    file_path = Path(file_path)
    if not file_path.exists():
        raise DefinitionError(f"Handler file not found: {file_path}")

    module_name = f"phasegate_handlers_{file_path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, file_path)
    if spec is None or spec.loader is None:
        raise DefinitionError(f"Cannot load module from {file_path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    finally:
        del sys.modules[module_name]

    found: list[HandlerMetadata] = []
    for attr_name in dir(module):
        attr = getattr(module, attr_name)
        if callable(attr) and hasattr(attr, "_phasegate_handler"):
            meta = attr._phasegate_handler
            registry.register(meta)
            found.append(meta)
    return found


def load_pipeline(file_path: str | Path, registry: HandlerRegistry) -> PipelineDefinition:
    """Load a definition and the handler modules it references."""
    file_path = Path(file_path)
    definition = load_definition(file_path)
    for rel in definition.handlers:
        load_handlers_from_file(file_path.parent / rel, registry)
    return definition
