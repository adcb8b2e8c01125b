from __future__ import annotations

import csv
import threading
from pathlib import Path
from typing import Any, Dict, List

# Appends from the orchestrator's worker threads go through this lock so rows
# never interleave within a process.
_APPEND_LOCK = threading.Lock()


def ensure_csv(path: Path, headers: List[str]) -> None:
    if path.exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=headers, lineterminator="\n")
        w.writeheader()


def append_row(path: Path, headers: List[str], row: Dict[str, Any]) -> None:
    with _APPEND_LOCK:
        ensure_csv(path, headers)
        with path.open("a", encoding="utf-8", newline="") as f:
            w = csv.DictWriter(f, fieldnames=headers, extrasaction="ignore", lineterminator="\n")
            w.writerow({h: ("" if row.get(h) is None else row.get(h)) for h in headers})


def read_rows(path: Path) -> List[Dict[str, str]]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        return [dict(r) for r in reader]
