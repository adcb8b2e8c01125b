from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import jsonschema
import yaml

from ..infra.errors import ValidationError
from ..infra.models import SLOT_VALUES, EnvironmentSpec, HealthCheckSpec
from ..utils.yamlio import read_yaml


DEFAULT_CONFIG_REL_PATH = Path("stackdeploy.yml")
DEFAULT_VAR_FILE_TEMPLATE = "envs/{environment}/{slot}.tfvars"
DEFAULT_KEY_TEMPLATE = "{application_id}/{environment}/terraform.tfstate"

NAME_RE = re.compile(r"^[a-z][a-z0-9_-]{0,62}$")
SECRET_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Placeholders accepted by templates. Anything else is rejected at load time.
TEMPLATE_FIELDS: Tuple[str, ...] = ("application_id", "environment", "slot")
_PLACEHOLDER_RE = re.compile(r"\{([^{}]*)\}")


@dataclass(frozen=True)
class TerraformSettings:
    working_dir: str = "."
    binary: str = "terraform"
    var_file_template: str = DEFAULT_VAR_FILE_TEMPLATE
    timeout_s: Optional[float] = None


@dataclass(frozen=True)
class BackendSettings:
    bucket: str
    region: str = ""
    key_template: str = DEFAULT_KEY_TEMPLATE
    dynamodb_table: str = ""
    workspace_per_slot: bool = True


@dataclass(frozen=True)
class ProjectConfig:
    application_id: str
    terraform: TerraformSettings
    backend: BackendSettings
    environments: List[EnvironmentSpec] = field(default_factory=list)
    secrets: Tuple[str, ...] = ()
    source_path: str = ""


def _project_schema() -> Dict[str, Any]:
    name = {"type": "string", "pattern": NAME_RE.pattern}
    secret_list = {
        "type": "array",
        "items": {"type": "string", "pattern": SECRET_NAME_RE.pattern},
        "uniqueItems": True,
    }
    health_check = {
        "type": "object",
        "required": ["url"],
        "properties": {
            "url": {"type": "string", "minLength": 1},
            "expected_status": {"type": "integer", "minimum": 100, "maximum": 599},
            "retries": {"type": "integer", "minimum": 1},
            "interval_s": {"type": "number", "minimum": 0},
            "timeout_s": {"type": "number", "exclusiveMinimum": 0},
        },
        "additionalProperties": False,
    }
    environment = {
        "type": "object",
        "required": ["name"],
        "properties": {
            "name": name,
            "slots": {
                "type": "array",
                "items": {"type": "string", "enum": list(SLOT_VALUES)},
                "minItems": 1,
                "uniqueItems": True,
            },
            "variables": {"type": "object"},
            "secrets": secret_list,
            "health_check": health_check,
        },
        "additionalProperties": False,
    }
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "required": ["application_id", "backend", "environments"],
        "properties": {
            "application_id": name,
            "description": {"type": "string"},
            "terraform": {
                "type": "object",
                "properties": {
                    "working_dir": {"type": "string", "minLength": 1},
                    "binary": {"type": "string", "minLength": 1},
                    "var_file_template": {"type": "string", "minLength": 1},
                    "timeout_s": {"type": "number", "exclusiveMinimum": 0},
                },
                "additionalProperties": False,
            },
            "backend": {
                "type": "object",
                "required": ["bucket"],
                "properties": {
                    "bucket": {"type": "string", "minLength": 1},
                    "region": {"type": "string"},
                    "key_template": {"type": "string", "minLength": 1},
                    "dynamodb_table": {"type": "string"},
                    "workspace_per_slot": {"type": "boolean"},
                },
                "additionalProperties": False,
            },
            "secrets": secret_list,
            "environments": {"type": "array", "minItems": 1, "items": environment},
        },
        "additionalProperties": False,
    }


def _check_template(template: str, what: str) -> None:
    for ph in _PLACEHOLDER_RE.findall(template):
        if ph not in TEMPLATE_FIELDS:
            raise ValidationError(f"{what} has unknown placeholder {{{ph}}} (allowed: {list(TEMPLATE_FIELDS)})")


def render_template(template: str, **values: str) -> str:
    return template.format(**{k: values.get(k, "") for k in TEMPLATE_FIELDS})


def resolve_project_config_path(repo_root: Path, cli_path: Optional[str] = None) -> Path:
    """Resolve the project config path.

    Precedence:
      1) CLI flag --config
      2) STACKDEPLOY_CONFIG
      3) <repo_root>/stackdeploy.yml
    """
    if cli_path and str(cli_path).strip():
        return Path(str(cli_path).strip()).expanduser().resolve()

    env_path = str(os.environ.get("STACKDEPLOY_CONFIG", "") or "").strip()
    if env_path:
        return Path(env_path).expanduser().resolve()

    return (repo_root / DEFAULT_CONFIG_REL_PATH).resolve()


def parse_project_config(data: Dict[str, Any], source_path: str = "") -> ProjectConfig:
    """Validate a raw config mapping and build a ProjectConfig."""
    try:
        jsonschema.validate(instance=data, schema=_project_schema())
    except jsonschema.ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ValidationError(f"project config invalid at {where}: {e.message}")

    tf_raw = data.get("terraform") or {}
    terraform = TerraformSettings(
        working_dir=str(tf_raw.get("working_dir") or "."),
        binary=str(tf_raw.get("binary") or "terraform"),
        var_file_template=str(tf_raw.get("var_file_template") or DEFAULT_VAR_FILE_TEMPLATE),
        timeout_s=float(tf_raw["timeout_s"]) if "timeout_s" in tf_raw else None,
    )
    _check_template(terraform.var_file_template, "terraform.var_file_template")

    be_raw = data["backend"]
    backend = BackendSettings(
        bucket=str(be_raw["bucket"]),
        region=str(be_raw.get("region") or ""),
        key_template=str(be_raw.get("key_template") or DEFAULT_KEY_TEMPLATE),
        dynamodb_table=str(be_raw.get("dynamodb_table") or ""),
        workspace_per_slot=bool(be_raw.get("workspace_per_slot", True)),
    )
    _check_template(backend.key_template, "backend.key_template")

    environments: List[EnvironmentSpec] = []
    seen: set = set()
    for env_raw in data["environments"]:
        name = str(env_raw["name"])
        if name in seen:
            raise ValidationError(f"duplicate environment name: {name!r}")
        seen.add(name)

        hc_raw = env_raw.get("health_check")
        health_check = None
        if hc_raw:
            health_check = HealthCheckSpec(
                url=str(hc_raw["url"]),
                expected_status=int(hc_raw["expected_status"]) if "expected_status" in hc_raw else None,
                retries=int(hc_raw.get("retries", 10)),
                interval_s=float(hc_raw.get("interval_s", 5.0)),
                timeout_s=float(hc_raw.get("timeout_s", 10.0)),
            )

        # Keep the canonical blue, green order regardless of how slots are listed.
        slots_raw = env_raw.get("slots") or list(SLOT_VALUES)
        slots = tuple(s for s in SLOT_VALUES if s in slots_raw)

        environments.append(
            EnvironmentSpec(
                name=name,
                slots=slots,
                variables=dict(env_raw.get("variables") or {}),
                secrets=tuple(env_raw.get("secrets") or ()),
                health_check=health_check,
            )
        )

    return ProjectConfig(
        application_id=str(data["application_id"]),
        terraform=terraform,
        backend=backend,
        environments=environments,
        secrets=tuple(data.get("secrets") or ()),
        source_path=source_path,
    )


def load_project_config(repo_root: Path, cli_path: Optional[str] = None) -> ProjectConfig:
    """Load and validate the project config (stackdeploy.yml).

    Raises:
        ValidationError: if the file is missing or invalid.
    """
    path = resolve_project_config_path(repo_root, cli_path)
    if not path.exists():
        raise ValidationError(f"project config not found: {path}")
    try:
        data = read_yaml(path)
    except (ValueError, yaml.YAMLError) as e:
        raise ValidationError(f"project config unreadable: {path} ({e})")
    return parse_project_config(data, source_path=str(path))
