from __future__ import annotations

from typing import Dict, List, Optional

from .models import CommandResult


class StackDeployError(Exception):
    """Base class for stackdeploy errors."""


class NotFoundError(StackDeployError):
    """Raised when a requested environment, stack, or record cannot be found."""


class ValidationError(StackDeployError):
    """Raised when a config, contract, or input fails validation."""


class RetryableError(StackDeployError):
    """Raised when an operation may succeed if retried."""


class ConflictError(StackDeployError):
    """Raised when an operation conflicts with existing state."""


class NotConfiguredError(StackDeployError):
    """Raised when a requested adapter is declared but not wired for the current runtime."""


class SecretStoreError(StackDeployError):
    """Raised when the encrypted secret store cannot be decrypted or parsed."""


class MissingSecretsError(StackDeployError):
    """Raised when required secrets are not available. Carries names only, never values."""

    def __init__(self, missing: Dict[str, List[str]]):
        self.missing = {k: list(v) for k, v in missing.items()}
        parts = [f"{env}: {', '.join(names)}" for env, names in sorted(self.missing.items())]
        super().__init__("missing required secrets (" + "; ".join(parts) + ")")


class ExecutionError(StackDeployError):
    """Raised when a provisioning tool invocation exits unsuccessfully."""

    def __init__(self, message: str, result: Optional[CommandResult] = None):
        super().__init__(message)
        self.result = result


class HealthCheckError(StackDeployError):
    """Raised when a slot does not become healthy within its retry budget."""
