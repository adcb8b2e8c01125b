from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

# Canonical slot names, in deployment order.
SLOT_VALUES: Tuple[str, ...] = ("blue", "green")

STACK_RUN_STATUSES: Tuple[str, ...] = ("RUNNING", "SUCCEEDED", "NO_CHANGES", "FAILED")


def is_valid_slot(value: Any) -> bool:
    return str(value or "").strip() in SLOT_VALUES


def other_slot(slot: str) -> str:
    s = str(slot or "").strip()
    if s == "blue":
        return "green"
    if s == "green":
        return "blue"
    raise ValueError(f"Invalid slot: {slot!r} (allowed: {list(SLOT_VALUES)})")


@dataclass(frozen=True)
class StateLocation:
    """Where a stack's remote state lives.

    Both slots of one environment share ``key``; the Terraform workspace keeps
    them apart. ``(key, workspace)`` is unique per stack.
    """

    bucket: str
    key: str
    region: str = ""
    workspace: str = ""
    dynamodb_table: str = ""

    def backend_config(self) -> Dict[str, str]:
        cfg = {"bucket": self.bucket, "key": self.key}
        if self.region:
            cfg["region"] = self.region
        if self.dynamodb_table:
            cfg["dynamodb_table"] = self.dynamodb_table
        return cfg


@dataclass(frozen=True)
class HealthCheckSpec:
    url: str
    # None accepts any 2xx.
    expected_status: Optional[int] = None
    retries: int = 10
    interval_s: float = 5.0
    timeout_s: float = 10.0

    def url_for(self, slot: str) -> str:
        return self.url.replace("{slot}", slot)


@dataclass(frozen=True)
class EnvironmentSpec:
    """One environment as declared in the project config (declaration order = promotion order)."""

    name: str
    slots: Tuple[str, ...] = SLOT_VALUES
    variables: Dict[str, Any] = field(default_factory=dict)
    secrets: Tuple[str, ...] = ()
    health_check: Optional[HealthCheckSpec] = None


@dataclass(frozen=True)
class Stack:
    """A single deployable unit: one environment/slot combination."""

    application_id: str
    environment: str
    slot: str
    working_dir: str
    var_file: str
    state: StateLocation

    @property
    def stack_id(self) -> str:
        return f"{self.environment}/{self.slot}"


@dataclass(frozen=True)
class SlotRecord:
    """Append-only record of a live-slot change. The latest row per environment wins."""

    environment: str
    live_slot: str
    previous_slot: str = ""
    action: str = "cutover"
    changed_at: str = ""
    run_id: str = ""
    note: str = ""


@dataclass(frozen=True)
class CommandResult:
    """A single provisioning-tool invocation. stdout/stderr are already redacted."""

    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class StackRunRecord:
    """One plan/apply attempt of a stack. In the CSV store, the latest row by run_id is authoritative."""

    run_id: str
    stack_id: str
    environment: str
    slot: str
    action: str = "deploy"

    status: str = ""
    started_at: str = ""
    ended_at: str = ""

    reason_code: str = ""
    plan_path: str = ""
    exit_code: Optional[int] = None

    metadata: Dict[str, Any] = field(default_factory=dict)
