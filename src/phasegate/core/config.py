"""Phasegate configuration — reads from phasegate.toml, env vars, and CLI args."""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger("phasegate.config")

# Platform limit on concurrent runner slots; the engine stays below it.
MAX_CONCURRENCY_CAP = 20


class PhasegateSettings(BaseSettings):
    """Engine settings."""

    # Quality gate
    min_success_rate: float = Field(default=0.95, ge=0.0, le=1.0)
    allow_optional_failures: bool = True
    max_wall_clock_ms: int | None = Field(default=None, gt=0)

    # Scheduling
    global_concurrency_cap: int = Field(default=8, ge=1, le=MAX_CONCURRENCY_CAP)
    fail_fast: bool = False
    phase_grace_seconds: float = Field(default=60.0, ge=0.0)
    cancel_grace_seconds: float = Field(default=10.0, ge=0.0)

    # Artifacts
    artifacts_dir: str | None = None
    retain_artifacts: bool = False

    # Notifications
    webhook_url: str | None = None
    webhook_events: list[str] = Field(default_factory=lambda: ["run.blocked"])
    webhook_secret: str | None = None

    log_level: str = "info"

    model_config = {"env_prefix": "PHASEGATE_", "env_file": ".env", "extra": "ignore"}


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Ignoring unreadable config file {path}: {e}")
        return {}


def _load_toml_config() -> Dict[str, Any]:
    """Load configuration from phasegate.toml files.

    Searches for phasegate.toml in:
    1. PHASEGATE_HOME (~/.phasegate/phasegate.toml by default)
    2. Current directory (./phasegate.toml)

    Returns:
        Combined configuration dict, local values taking precedence
    """
    config: Dict[str, Any] = {}

    home = Path(os.environ.get("PHASEGATE_HOME", "~/.phasegate")).expanduser()
    global_config_path = home / "phasegate.toml"
    if global_config_path.exists():
        config.update(_read_toml(global_config_path))

    local_config_path = Path("phasegate.toml")
    if local_config_path.exists():
        config.update(_read_toml(local_config_path))

    return config


def get_settings(**overrides: Any) -> PhasegateSettings:
    """Resolve settings: explicit overrides > env vars > phasegate.toml > defaults."""
    toml_config = {
        key: value
        for key, value in _load_toml_config().items()
        if key in PhasegateSettings.model_fields
    }

    from_env = PhasegateSettings()
    merged = {
        **toml_config,
        **from_env.model_dump(include=from_env.model_fields_set),
        **{k: v for k, v in overrides.items() if v is not None},
    }
    return PhasegateSettings(**merged)
