from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from ...utils.csvio import append_row, ensure_csv, read_rows
from ...utils.time import utcnow_iso
from ..contracts import RunStateStore
from ..errors import NotFoundError, ValidationError
from ..models import STACK_RUN_STATUSES, StackRunRecord

STACK_RUNS_LOG_HEADERS = [
    "run_id",
    "stack_id",
    "environment",
    "slot",
    "action",
    "status",
    "started_at",
    "ended_at",
    "reason_code",
    "plan_path",
    "exit_code",
    "metadata_json",
]


def _safe_json_load(s: str) -> Dict[str, Any]:
    ss = str(s or "").strip()
    if not ss:
        return {}
    try:
        data = json.loads(ss)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _normalize_row(row: Dict[str, str]) -> StackRunRecord:
    exit_code_s = str(row.get("exit_code", "") or "").strip()
    return StackRunRecord(
        run_id=str(row.get("run_id", "")),
        stack_id=str(row.get("stack_id", "")),
        environment=str(row.get("environment", "")),
        slot=str(row.get("slot", "")),
        action=str(row.get("action", "")),
        status=str(row.get("status", "")),
        started_at=str(row.get("started_at", "")),
        ended_at=str(row.get("ended_at", "")),
        reason_code=str(row.get("reason_code", "")),
        plan_path=str(row.get("plan_path", "")),
        exit_code=int(exit_code_s) if exit_code_s.lstrip("-").isdigit() else None,
        metadata=_safe_json_load(row.get("metadata_json", "")),
    )


def _row_from_record(rec: StackRunRecord) -> Dict[str, Any]:
    return {
        "run_id": rec.run_id,
        "stack_id": rec.stack_id,
        "environment": rec.environment,
        "slot": rec.slot,
        "action": rec.action,
        "status": rec.status,
        "started_at": rec.started_at,
        "ended_at": rec.ended_at,
        "reason_code": rec.reason_code,
        "plan_path": rec.plan_path,
        "exit_code": "" if rec.exit_code is None else str(rec.exit_code),
        "metadata_json": json.dumps(rec.metadata, ensure_ascii=False, sort_keys=True, separators=(",", ":")),
    }


class CsvRunStateStore(RunStateStore):
    """RunStateStore backed by an append-only CSV (stack_runs_log.csv).

    Status transitions are append-only. The latest row wins per run_id.
    Metadata must already be free of secret values; callers pass names only.
    """

    def __init__(self, state_dir: Path):
        self.state_dir = state_dir
        self.stack_runs_log = state_dir / "stack_runs_log.csv"
        self._lock = threading.Lock()
        ensure_csv(self.stack_runs_log, STACK_RUNS_LOG_HEADERS)

    def describe(self) -> Dict[str, Any]:
        return {"class": self.__class__.__name__, "path": str(self.stack_runs_log)}

    def _latest_by_id(self) -> Dict[str, StackRunRecord]:
        latest: Dict[str, StackRunRecord] = {}
        for r in read_rows(self.stack_runs_log):
            rid = str(r.get("run_id", "") or "")
            if rid:
                latest[rid] = _normalize_row(r)
        return latest

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
        rec = StackRunRecord(
            run_id=run_id,
            stack_id=stack_id,
            environment=environment,
            slot=slot,
            action=action,
            status="RUNNING",
            started_at=utcnow_iso(),
            metadata=dict(metadata or {}),
        )
        append_row(self.stack_runs_log, STACK_RUNS_LOG_HEADERS, _row_from_record(rec))
        return rec

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
        st = str(status or "").strip().upper()
        if st not in STACK_RUN_STATUSES or st == "RUNNING":
            raise ValidationError(f"invalid terminal status: {status!r}")
        with self._lock:
            cur = self.get_stack_run(run_id)
            meta = dict(cur.metadata)
            meta.update(metadata or {})
            rec = StackRunRecord(
                run_id=cur.run_id,
                stack_id=cur.stack_id,
                environment=cur.environment,
                slot=cur.slot,
                action=cur.action,
                status=st,
                started_at=cur.started_at,
                ended_at=utcnow_iso(),
                reason_code=reason_code,
                plan_path=plan_path or cur.plan_path,
                exit_code=exit_code,
                metadata=meta,
            )
            append_row(self.stack_runs_log, STACK_RUNS_LOG_HEADERS, _row_from_record(rec))
        return rec

    def get_stack_run(self, run_id: str) -> StackRunRecord:
        rec = self._latest_by_id().get(run_id)
        if rec is None:
            raise NotFoundError(f"stack run not found: {run_id}")
        return rec

    def list_stack_runs(self, *, environment: Optional[str] = None) -> List[StackRunRecord]:
        out = list(self._latest_by_id().values())
        if environment is not None:
            out = [r for r in out if r.environment == environment]
        return sorted(out, key=lambda r: (r.started_at, r.run_id))
