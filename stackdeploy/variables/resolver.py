from __future__ import annotations

import json
import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from ..infra.errors import MissingSecretsError, NotFoundError, ValidationError
from ..infra.models import Stack
from ..registry.stacks import StackRegistry
from ..secretstore.loader import SecretStore
from ..secretstore.requirements import lookup_secret
from ..utils.redact import MIN_REDACT_LEN

TF_VAR_PREFIX = "TF_VAR_"

_TFVARS_KEY_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_-]*)\s*=")
_HCL_STRING_RE = re.compile(r'"(?:\\.|[^"\\])*"')


@dataclass(frozen=True)
class ResolvedVariables:
    """Everything the executor needs to parameterize one stack.

    ``env`` holds TF_VAR_* bindings, secrets included. It is meant for the child
    process environment only. ``secret_values`` is kept so output can be redacted.
    """

    stack_id: str
    var_file: str
    variables: Dict[str, Any] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict, repr=False)
    secret_names: List[str] = field(default_factory=list)
    secret_values: List[str] = field(default_factory=list, repr=False)

    def describe(self) -> Dict[str, Any]:
        """Loggable view: variable names and values, secret names only."""
        return {
            "stack_id": self.stack_id,
            "var_file": self.var_file,
            "variables": dict(self.variables),
            "secrets": list(self.secret_names),
        }


def tf_var_name(name: str) -> str:
    """Binding for a plain variable. Terraform variable names are case-sensitive."""
    return TF_VAR_PREFIX + str(name).strip()


def tf_secret_var_name(name: str) -> str:
    """Binding for a secret: DB_PASSWORD is exported as TF_VAR_db_password."""
    return TF_VAR_PREFIX + str(name).strip().lower()


def encode_tf_value(value: Any) -> str:
    """Encode a value for a TF_VAR_ binding. Complex values go as JSON, which Terraform parses as HCL."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def declared_tfvars_keys(var_file: Path) -> Set[str]:
    """Top-level keys assigned in a .tfvars file (HCL or JSON).

    Keys nested inside maps or lists are not variables and are skipped.
    Heredoc bodies are not parsed.
    """
    text = var_file.read_text(encoding="utf-8")
    if var_file.suffix == ".json":
        data = json.loads(text or "{}")
        return set(data.keys()) if isinstance(data, dict) else set()

    keys: Set[str] = set()
    depth = 0
    for line in text.splitlines():
        if depth == 0:
            m = _TFVARS_KEY_RE.match(line)
            if m:
                keys.add(m.group(1))
        code = _HCL_STRING_RE.sub('""', line)
        code = re.split(r"#|//", code, maxsplit=1)[0]
        depth += code.count("{") + code.count("[") - code.count("}") - code.count("]")
        depth = max(depth, 0)
    return keys


class VariableResolver:
    """Merges non-sensitive per-stack configuration with secrets from the secret store.

    Non-sensitive sources, lowest precedence first:
      1) implicit application_id / environment / slot
      2) ``vars`` from the secret store (shared, then per environment)
      3) inline ``variables`` from the environment config
      4) the stack's var file (passed to Terraform via -var-file, which beats TF_VAR_*)

    Secrets are looked up by name only and exported as TF_VAR_<lower-cased name>. A secret
    that also appears as a key in the var file is rejected so secrets are never
    persisted next to plain variables.
    """

    def __init__(self, *, registry: StackRegistry, store: SecretStore, env: Optional[Dict[str, str]] = None):
        self.registry = registry
        self.store = store
        self.env = env

    def _process_env(self) -> Dict[str, str]:
        return self.env if self.env is not None else dict(os.environ)

    def resolve(self, stack: Stack, *, require_var_file: bool = True) -> ResolvedVariables:
        env_spec = self.registry.environment(stack.environment)

        variables: Dict[str, Any] = {
            "application_id": stack.application_id,
            "environment": stack.environment,
            "slot": stack.slot,
        }
        variables.update(self.store.vars_for(stack.environment))
        variables.update(env_spec.variables)

        var_file = Path(stack.var_file)
        file_keys: Set[str] = set()
        if var_file.exists():
            file_keys = declared_tfvars_keys(var_file)
        elif require_var_file:
            raise NotFoundError(f"var file not found for stack {stack.stack_id!r}: {var_file}")

        process_env = self._process_env()
        secret_names = self.registry.required_secrets(stack.environment)
        secrets: Dict[str, str] = {}
        missing: List[str] = []
        for name in secret_names:
            value = lookup_secret(name, store=self.store, environment=stack.environment, env=process_env)
            if not value.strip():
                missing.append(name)
                continue
            if len(value) < MIN_REDACT_LEN:
                print(
                    f"[secretstore] WARNING: secret {name} for {stack.environment} is shorter than "
                    f"{MIN_REDACT_LEN} characters and cannot be redacted from output",
                    file=sys.stderr,
                )
            secrets[name] = value
        if missing:
            raise MissingSecretsError({stack.environment: missing})

        leaked = sorted(n for n in secret_names if n.lower() in {k.lower() for k in file_keys})
        if leaked:
            raise ValidationError(
                f"var file {var_file} assigns secret variable(s) {leaked}; secrets must come from the secret store"
            )
        clashing = sorted(n for n in secret_names if n.lower() in {k.lower() for k in variables})
        if clashing:
            raise ValidationError(f"secret name(s) {clashing} collide with plain variables for {stack.stack_id!r}")

        tf_env: Dict[str, str] = {tf_var_name(k): encode_tf_value(v) for k, v in variables.items()}
        for name, value in secrets.items():
            tf_env[tf_secret_var_name(name)] = value

        return ResolvedVariables(
            stack_id=stack.stack_id,
            var_file=str(var_file),
            variables=variables,
            env=tf_env,
            secret_names=list(secrets.keys()),
            secret_values=list(secrets.values()),
        )
