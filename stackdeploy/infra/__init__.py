from __future__ import annotations

from .models import (
    SLOT_VALUES,
    CommandResult,
    EnvironmentSpec,
    HealthCheckSpec,
    SlotRecord,
    Stack,
    StackRunRecord,
    StateLocation,
    other_slot,
)

from .errors import (
    StackDeployError,
    NotFoundError,
    ValidationError,
    RetryableError,
    ConflictError,
    NotConfiguredError,
    SecretStoreError,
    MissingSecretsError,
    ExecutionError,
    HealthCheckError,
)

from .contracts import (
    CommandRunner,
    RunStateStore,
    SlotStateStore,
)

from .config import (
    RuntimeProfile,
    AdapterSpec,
    load_runtime_profile,
    resolve_runtime_profile_path,
)

__all__ = [
    "SLOT_VALUES",
    "CommandResult",
    "EnvironmentSpec",
    "HealthCheckSpec",
    "SlotRecord",
    "Stack",
    "StackRunRecord",
    "StateLocation",
    "other_slot",
    "StackDeployError",
    "NotFoundError",
    "ValidationError",
    "RetryableError",
    "ConflictError",
    "NotConfiguredError",
    "SecretStoreError",
    "MissingSecretsError",
    "ExecutionError",
    "HealthCheckError",
    "CommandRunner",
    "RunStateStore",
    "SlotStateStore",
    "RuntimeProfile",
    "AdapterSpec",
    "load_runtime_profile",
    "resolve_runtime_profile_path",
]
