from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from ...utils.csvio import append_row, ensure_csv, read_rows
from ..contracts import SlotStateStore
from ..errors import ConflictError
from ..models import SlotRecord

SLOT_LOG_HEADERS = [
    "environment",
    "live_slot",
    "previous_slot",
    "action",
    "changed_at",
    "run_id",
    "note",
]


def _normalize_row(row: Dict[str, str]) -> SlotRecord:
    return SlotRecord(
        environment=str(row.get("environment", "")),
        live_slot=str(row.get("live_slot", "")),
        previous_slot=str(row.get("previous_slot", "")),
        action=str(row.get("action", "")),
        changed_at=str(row.get("changed_at", "")),
        run_id=str(row.get("run_id", "")),
        note=str(row.get("note", "")),
    )


class CsvSlotStateStore(SlotStateStore):
    """SlotStateStore backed by an append-only CSV (slot_log.csv).

    Every cutover/rollback appends one row; the last row for an environment is
    authoritative, so exactly one slot is live per environment by construction.
    """

    def __init__(self, state_dir: Path):
        self.state_dir = state_dir
        self.slot_log = state_dir / "slot_log.csv"
        self._lock = threading.Lock()
        ensure_csv(self.slot_log, SLOT_LOG_HEADERS)

    def describe(self) -> Dict[str, Any]:
        return {"class": self.__class__.__name__, "path": str(self.slot_log)}

    def history(self, environment: str) -> List[SlotRecord]:
        return [_normalize_row(r) for r in read_rows(self.slot_log) if str(r.get("environment", "")) == environment]

    def latest(self, environment: str) -> Optional[SlotRecord]:
        hist = self.history(environment)
        return hist[-1] if hist else None

    def append(self, record: SlotRecord, *, expected_live: Optional[str] = None) -> SlotRecord:
        with self._lock:
            if expected_live is not None:
                cur = self.latest(record.environment)
                cur_live = cur.live_slot if cur is not None else ""
                if cur_live != expected_live:
                    raise ConflictError(
                        f"live slot for {record.environment!r} changed concurrently: "
                        f"expected {expected_live or '<none>'!r}, found {cur_live or '<none>'!r}"
                    )
            append_row(
                self.slot_log,
                SLOT_LOG_HEADERS,
                {
                    "environment": record.environment,
                    "live_slot": record.live_slot,
                    "previous_slot": record.previous_slot,
                    "action": record.action,
                    "changed_at": record.changed_at,
                    "run_id": record.run_id,
                    "note": record.note,
                },
            )
        return record
