"""Run configuration loaded from ``stencil.yaml``."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import RecipeError
from .runner import FailurePolicy
from .tools.external import DEFAULT_TOOL_TIMEOUT

DEFAULT_CONFIG_NAME = "stencil.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "project": {
        "root": ".",
        "app_name": "",
    },
    "run": {
        "failure_policy": FailurePolicy.KEEP.value,
        "tool_timeout": DEFAULT_TOOL_TIMEOUT,
        "dry_run": False,
    },
    "checkpoint": {
        "enabled": True,
        "author_name": "Stencil",
        "author_email": "stencil@example.com",
        "initial_message": "Initial commit",
    },
    "paths": {
        "logs": ".stencil/logs",
    },
    "rails": {
        "run_tools": True,
        "docker": False,
        "devise": True,
    },
}


class ConfigModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ProjectSettings(ConfigModel):
    root: str = "."
    app_name: str = ""


class RunSettings(ConfigModel):
    failure_policy: FailurePolicy = FailurePolicy.KEEP
    tool_timeout: Optional[float] = Field(default=DEFAULT_TOOL_TIMEOUT, gt=0)
    dry_run: bool = False


class CheckpointSettings(ConfigModel):
    enabled: bool = True
    author_name: str = "Stencil"
    author_email: str = "stencil@example.com"
    initial_message: Optional[str] = "Initial commit"


class PathSettings(ConfigModel):
    logs: str = ".stencil/logs"


class RailsSettings(ConfigModel):
    run_tools: bool = True
    docker: bool = False
    devise: bool = True


class StencilConfig(ConfigModel):
    """Validated contents of ``stencil.yaml``."""

    project: ProjectSettings = Field(default_factory=ProjectSettings)
    run: RunSettings = Field(default_factory=RunSettings)
    checkpoint: CheckpointSettings = Field(default_factory=CheckpointSettings)
    paths: PathSettings = Field(default_factory=PathSettings)
    rails: RailsSettings = Field(default_factory=RailsSettings)

    def project_root(self, base_dir: Path) -> Path:
        root = Path(self.project.root)
        if not root.is_absolute():
            root = base_dir / root
        return root.resolve()

    def logs_dir(self, project_root: Path) -> Path:
        logs = Path(self.paths.logs)
        if not logs.is_absolute():
            logs = project_root / logs
        return logs


def copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def write_config(config_path: Path, config_data: Dict[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config_data, handle, sort_keys=False)


def load_config(config_path: Path | None) -> StencilConfig:
    """Load ``config_path``; a missing default file yields the defaults."""
    if config_path is None:
        return StencilConfig()
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError as error:
        raise RecipeError(f"Config file not found: {config_path}") from error
    except yaml.YAMLError as error:
        raise RecipeError(f"Failed to parse config {config_path}: {error}") from error

    if not isinstance(data, dict):
        raise RecipeError("Configuration must be a mapping at the top level.")
    try:
        return StencilConfig.model_validate(data)
    except ValidationError as error:
        raise RecipeError(
            f"Config {config_path} is invalid: {error.error_count()} error(s)",
            details={"errors": [f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}" for item in error.errors()]},
        ) from error


__all__ = [
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "StencilConfig",
    "copy_config_template",
    "load_config",
    "write_config",
]
