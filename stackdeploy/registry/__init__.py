from __future__ import annotations

from .project import (
    BackendSettings,
    ProjectConfig,
    TerraformSettings,
    load_project_config,
    parse_project_config,
    resolve_project_config_path,
)
from .stacks import StackRegistry

__all__ = [
    "BackendSettings",
    "ProjectConfig",
    "TerraformSettings",
    "load_project_config",
    "parse_project_config",
    "resolve_project_config_path",
    "StackRegistry",
]
