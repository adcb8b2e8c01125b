from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from .models import CommandResult, SlotRecord, StackRunRecord


class SlotStateStore(Protocol):
    def latest(self, environment: str) -> Optional[SlotRecord]:
        raise NotImplementedError

    def history(self, environment: str) -> List[SlotRecord]:
        raise NotImplementedError

    def append(self, record: SlotRecord, *, expected_live: Optional[str] = None) -> SlotRecord:
        """Persist a slot change.

        When ``expected_live`` is given, the write must fail with ConflictError
        if the currently live slot differs (someone else cut over meanwhile).
        """
        raise NotImplementedError


class RunStateStore(Protocol):
    def start_stack_run(
        self,
        *,
        run_id: str,
        stack_id: str,
        environment: str,
        slot: str,
        action: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StackRunRecord:
        raise NotImplementedError

    def finish_stack_run(
        self,
        run_id: str,
        *,
        status: str,
        reason_code: str = "",
        exit_code: Optional[int] = None,
        plan_path: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StackRunRecord:
        raise NotImplementedError

    def get_stack_run(self, run_id: str) -> StackRunRecord:
        raise NotImplementedError

    def list_stack_runs(self, *, environment: Optional[str] = None) -> List[StackRunRecord]:
        raise NotImplementedError


class CommandRunner(Protocol):
    def __call__(
        self,
        args: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
        timeout_s: Optional[float] = None,
    ) -> CommandResult:
        raise NotImplementedError
