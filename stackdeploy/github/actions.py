from __future__ import annotations

import json
import os
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..infra.models import Stack
from ..utils.redact import MIN_REDACT_LEN


def in_github_actions(env: Optional[Dict[str, str]] = None) -> bool:
    e = env if env is not None else os.environ
    return str(e.get("GITHUB_ACTIONS", "") or "").strip().lower() == "true"


def build_matrix(stacks: Iterable[Stack]) -> Dict[str, List[Dict[str, str]]]:
    """Matrix for ``strategy.matrix`` via ``fromJSON``: one entry per stack."""
    return {
        "include": [
            {"environment": st.environment, "slot": st.slot, "stack_id": st.stack_id}
            for st in stacks
        ]
    }


def set_output(name: str, value: Any, *, env: Optional[Dict[str, str]] = None) -> bool:
    """Append a step output to $GITHUB_OUTPUT. Returns False outside Actions."""
    e = env if env is not None else os.environ
    path = str(e.get("GITHUB_OUTPUT", "") or "").strip()
    if not path:
        return False
    text = value if isinstance(value, str) else json.dumps(value, separators=(",", ":"))
    with Path(path).open("a", encoding="utf-8") as f:
        if "\n" in text:
            # Multiline values use the heredoc form with a random delimiter.
            delim = f"ghadelim_{uuid.uuid4().hex}"
            f.write(f"{name}<<{delim}\n{text}\n{delim}\n")
        else:
            f.write(f"{name}={text}\n")
    return True


def append_step_summary(markdown: str, *, env: Optional[Dict[str, str]] = None) -> bool:
    e = env if env is not None else os.environ
    path = str(e.get("GITHUB_STEP_SUMMARY", "") or "").strip()
    if not path:
        return False
    with Path(path).open("a", encoding="utf-8") as f:
        f.write(markdown.rstrip("\n") + "\n")
    return True


def mask_values(values: Iterable[str], *, env: Optional[Dict[str, str]] = None, stream: Any = None) -> int:
    """Register values with the Actions log masker. No-op outside Actions."""
    if not in_github_actions(env):
        return 0
    out = stream if stream is not None else sys.stdout
    n = 0
    for v in values:
        if not v or len(v) < MIN_REDACT_LEN:
            continue
        for line in str(v).splitlines():
            if line.strip():
                out.write(f"::add-mask::{line}\n")
                n += 1
    out.flush()
    return n


def render_run_summary(result: Dict[str, Any]) -> str:
    lines = [
        f"### stackdeploy run `{result.get('run_id', '')}`: {result.get('status', '')}",
        "",
        "| stack | status | changes | live slot | reason |",
        "|---|---|---|---|---|",
    ]
    for s in result.get("stacks") or []:
        changes = {True: "yes", False: "no"}.get(s.get("has_changes"), "-")
        lines.append(
            f"| {s.get('stack_id', '')} | {s.get('status', '')} | {changes} | {s.get('live_slot') or '-'} | {s.get('reason_code') or ''} |"
        )
    return "\n".join(lines) + "\n"
