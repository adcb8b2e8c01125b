from __future__ import annotations

from ..utils.hashing import short_hash


def key_deploy_run(*, application_id: str, environments: list, started_at: str, ref: str = "") -> str:
    return "run_" + short_hash([application_id, ",".join(sorted(environments)), started_at, ref], 16)


def key_stack_run(*, run_id: str, stack_id: str, action: str) -> str:
    return "stack_run_" + short_hash([run_id, stack_id, action])
