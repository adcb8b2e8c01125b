from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import jsonschema
import yaml

from ..utils.yamlio import read_yaml
from .errors import ValidationError


# Adapter kind enums are intentionally strict. Any unknown kind is rejected.
ALLOWED_ADAPTER_KINDS: Dict[str, Tuple[str, ...]] = {
    "slot_state_store": ("csv_local", "s3"),
    "run_state_store": ("csv_local",),
    "executor": ("terraform_cli",),
}

REQUIRED_ADAPTER_KEYS = (
    "slot_state_store",
    "run_state_store",
    "executor",
)

DEFAULT_PROFILE_NAME = "local"


@dataclass(frozen=True)
class AdapterSpec:
    kind: str
    settings: Dict[str, Any]


@dataclass(frozen=True)
class RuntimeProfile:
    profile_name: str
    adapters: Dict[str, AdapterSpec]


def default_runtime_profile() -> RuntimeProfile:
    """Built-in profile used when no runtime profile file exists: everything local."""
    return RuntimeProfile(
        profile_name=DEFAULT_PROFILE_NAME,
        adapters={
            "slot_state_store": AdapterSpec(kind="csv_local", settings={}),
            "run_state_store": AdapterSpec(kind="csv_local", settings={}),
            "executor": AdapterSpec(kind="terraform_cli", settings={}),
        },
    )


def resolve_runtime_profile_path(repo_root: Path, cli_path: Optional[str] = None) -> Path:
    """Resolve the runtime profile YAML path.

    Precedence:
      1) CLI flag --runtime-profile
      2) STACKDEPLOY_RUNTIME_PROFILE
      3) <repo_root>/config/runtime_profile.yml
    """
    if cli_path and str(cli_path).strip():
        return Path(str(cli_path).strip()).expanduser().resolve()

    env_path = str(os.environ.get("STACKDEPLOY_RUNTIME_PROFILE", "") or "").strip()
    if env_path:
        return Path(env_path).expanduser().resolve()

    return (repo_root / "config" / "runtime_profile.yml").resolve()


def _adapter_schema_for_kind(allowed_kinds: Tuple[str, ...]) -> Dict[str, Any]:
    # Fresh dict per adapter key so enum constraints are never shared.
    return {
        "type": "object",
        "required": ["kind"],
        "properties": {
            "kind": {"type": "string", "enum": list(allowed_kinds)},
            "settings": {"type": "object"},
        },
        "additionalProperties": False,
    }


def _adapters_schema() -> Dict[str, Any]:
    return {
        "type": "object",
        "required": list(REQUIRED_ADAPTER_KEYS),
        "properties": {k: _adapter_schema_for_kind(ALLOWED_ADAPTER_KINDS[k]) for k in REQUIRED_ADAPTER_KEYS},
        "additionalProperties": False,
    }


def _profile_schema_single() -> Dict[str, Any]:
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "required": ["profile_name", "adapters"],
        "properties": {
            "profile_name": {"type": "string", "minLength": 1},
            "description": {"type": "string"},
            "adapters": _adapters_schema(),
        },
        "additionalProperties": False,
    }


def _profile_schema_multi() -> Dict[str, Any]:
    """Schema for a multi-profile YAML file.

    Shape:
      default_profile: local
      profiles:
        local:
          adapters: { ... }
        ci:
          adapters: { ... }
    """
    profile_obj = {
        "type": "object",
        "required": ["adapters"],
        "properties": {
            "description": {"type": "string"},
            "adapters": _adapters_schema(),
        },
        "additionalProperties": False,
    }
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "required": ["profiles"],
        "properties": {
            "default_profile": {"type": "string"},
            "profiles": {
                "type": "object",
                "minProperties": 1,
                "additionalProperties": profile_obj,
            },
        },
        "additionalProperties": False,
    }


def _validate_dict(data: Dict[str, Any]) -> None:
    last_err: Optional[Exception] = None
    for sch in (_profile_schema_single(), _profile_schema_multi()):
        try:
            jsonschema.validate(instance=data, schema=sch)
            return
        except jsonschema.ValidationError as e:
            last_err = e
    raise ValidationError(f"runtime profile schema validation failed: {last_err}")


def _select_profile(data: Dict[str, Any], path: Path) -> Tuple[str, Dict[str, Any]]:
    if "profile_name" in data and "adapters" in data:
        return str(data["profile_name"]).strip(), data

    profiles = data["profiles"]
    wanted = str(os.environ.get("STACKDEPLOY_PROFILE_NAME", "") or "").strip()
    default_profile = str(data.get("default_profile", "") or "").strip()

    if wanted:
        if wanted not in profiles:
            raise ValidationError(f"STACKDEPLOY_PROFILE_NAME={wanted!r} not found in profiles: {path}")
        return wanted, profiles[wanted]

    if default_profile:
        if default_profile not in profiles:
            raise ValidationError(f"default_profile={default_profile!r} not found in profiles: {path}")
        return default_profile, profiles[default_profile]

    # Deterministic fallback: first key by sorted name.
    first = sorted(profiles.keys())[0]
    return first, profiles[first]


def load_runtime_profile(repo_root: Path, cli_path: Optional[str] = None) -> RuntimeProfile:
    """Load and validate a runtime profile.

    A missing default file yields the built-in local profile. An explicitly
    requested file (CLI flag or env var) that does not exist is an error.

    Environment overrides:
      - STACKDEPLOY_RUNTIME_PROFILE (file path)
      - STACKDEPLOY_PROFILE_NAME (select profile when YAML contains multiple profiles)
    """
    path = resolve_runtime_profile_path(repo_root, cli_path)
    explicit = bool((cli_path or "").strip() or str(os.environ.get("STACKDEPLOY_RUNTIME_PROFILE", "") or "").strip())
    if not path.exists():
        if explicit:
            raise ValidationError(f"runtime profile not found: {path}")
        return default_runtime_profile()

    try:
        data = read_yaml(path)
    except (ValueError, yaml.YAMLError) as e:
        raise ValidationError(f"runtime profile unreadable: {path} ({e})")
    _validate_dict(data)

    profile_name, profile_dict = _select_profile(data, path)

    adapters: Dict[str, AdapterSpec] = {}
    for k in REQUIRED_ADAPTER_KEYS:
        spec = profile_dict["adapters"][k]
        adapters[k] = AdapterSpec(kind=str(spec["kind"]).strip(), settings=dict(spec.get("settings") or {}))

    return RuntimeProfile(profile_name=profile_name, adapters=adapters)
