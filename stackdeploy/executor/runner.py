from __future__ import annotations

import subprocess
import time
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Sequence

from ..infra.models import CommandResult
from ..utils.redact import redact


class SubprocessRunner:
    """CommandRunner that shells out and captures output.

    Output is redacted of ``secret_values`` before it leaves this object; the raw
    text is never stored.
    """

    def __init__(self, secret_values: Iterable[str] = ()):
        self.secret_values: List[str] = [s for s in secret_values if s]

    def __call__(
        self,
        args: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
        timeout_s: Optional[float] = None,
    ) -> CommandResult:
        started = time.monotonic()
        try:
            cp = subprocess.run(
                list(args),
                cwd=str(cwd),
                env=dict(env),
                check=False,
                text=True,
                capture_output=True,
                timeout=timeout_s,
            )
        except subprocess.TimeoutExpired as e:
            out = e.stdout.decode("utf-8", errors="replace") if isinstance(e.stdout, bytes) else (e.stdout or "")
            return CommandResult(
                args=list(args),
                returncode=-1,
                stdout=redact(out, self.secret_values),
                stderr=f"timed out after {timeout_s}s",
                duration_s=time.monotonic() - started,
            )
        except FileNotFoundError as e:
            return CommandResult(args=list(args), returncode=127, stderr=str(e), duration_s=time.monotonic() - started)

        return CommandResult(
            args=list(args),
            returncode=cp.returncode,
            stdout=redact(cp.stdout or "", self.secret_values),
            stderr=redact(cp.stderr or "", self.secret_values),
            duration_s=time.monotonic() - started,
        )
