from __future__ import annotations

from typing import Dict


def reduce_run_status(stack_statuses: Dict[str, str]) -> str:
    """Compute the overall status of a deploy run from its stack statuses.

    Canonical outputs:
      - CREATED: no stacks started
      - RUNNING: any stack still running
      - SUCCEEDED: every stack succeeded or had no changes
      - FAILED: every stack failed
      - PARTIAL: some stacks failed, others succeeded
    """
    statuses = [str(s or "").upper() for s in stack_statuses.values()]
    if not statuses:
        return "CREATED"

    if any(s == "RUNNING" for s in statuses):
        return "RUNNING"

    ok = [s in ("SUCCEEDED", "NO_CHANGES") for s in statuses]
    if all(ok):
        return "SUCCEEDED"
    if not any(ok):
        return "FAILED"
    return "PARTIAL"
