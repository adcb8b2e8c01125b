from __future__ import annotations

import os
from typing import Dict, Iterable, List, Optional

from ..registry.stacks import StackRegistry
from .loader import SecretStore


def lookup_secret(name: str, *, store: SecretStore, environment: str, env: Dict[str, str]) -> str:
    """Resolve a secret by name: process environment first, then the secret store.

    Environment-scoped process variables (``<NAME>_<ENV>`` upper-cased, as CI
    platforms commonly expose per-environment secrets) take precedence over the
    plain name.
    """
    scoped = f"{name}_{environment}".upper().replace("-", "_")
    for candidate in (scoped, name):
        v = str(env.get(candidate, "") or "")
        if v.strip():
            return v
    return str(store.secrets_for(environment).get(name, "") or "")


def missing_secrets_by_environment(
    *,
    registry: StackRegistry,
    store: SecretStore,
    environments: Iterable[str],
    env: Optional[Dict[str, str]] = None,
    offline_ok: bool = False,
) -> Dict[str, List[str]]:
    """Return missing required secret names per environment.

    When offline_ok is True, this returns an empty dict.
    """
    if offline_ok:
        return {}

    env_map = env if env is not None else dict(os.environ)
    missing_by_env: Dict[str, List[str]] = {}
    for name in environments:
        missing = [
            s
            for s in registry.required_secrets(name)
            if not lookup_secret(s, store=store, environment=name, env=env_map).strip()
        ]
        if missing:
            missing_by_env[name] = missing
    return missing_by_env
