from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ..infra.contracts import CommandRunner
from ..infra.errors import ExecutionError
from ..infra.models import CommandResult, Stack
from ..utils.redact import redact
from ..variables.resolver import ResolvedVariables
from .runner import SubprocessRunner

# terraform plan -detailed-exitcode
PLAN_NO_CHANGES = 0
PLAN_CHANGES = 2

# Environment variables passed through to Terraform. Everything else in the
# parent environment is dropped so unrelated secrets do not leak into providers.
PASSTHROUGH_ENV_PREFIXES = ("AWS_", "TF_", "GOOGLE_", "ARM_", "HTTP", "NO_PROXY", "SSL_", "GITHUB_", "ACTIONS_")
PASSTHROUGH_ENV_KEYS = ("PATH", "HOME", "USER", "TMPDIR", "LANG", "LC_ALL", "SYSTEMROOT")


@dataclass(frozen=True)
class PlanOutcome:
    result: CommandResult
    plan_path: str
    has_changes: bool


def base_env(parent: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    src = parent if parent is not None else os.environ
    out: Dict[str, str] = {}
    for k, v in src.items():
        if k in PASSTHROUGH_ENV_KEYS or k.startswith(PASSTHROUGH_ENV_PREFIXES):
            # Drop inherited TF_VAR_*: variables come from the resolver only.
            if k.startswith("TF_VAR_"):
                continue
            out[k] = v
    return out


class TerraformExecutor:
    """Runs Terraform for one stack at a time: init, workspace, plan, apply, output.

    Every stack gets its own TF_DATA_DIR under ``data_root`` so stacks sharing a
    working directory can run in parallel without clobbering ``.terraform/``.
    """

    def __init__(
        self,
        *,
        binary: str = "terraform",
        data_root: Path,
        runner: Optional[CommandRunner] = None,
        timeout_s: Optional[float] = None,
        parent_env: Optional[Mapping[str, str]] = None,
        echo: bool = True,
    ):
        self.binary = binary
        self.data_root = data_root
        self.runner = runner if runner is not None else SubprocessRunner()
        self.timeout_s = timeout_s
        self.parent_env = parent_env
        self.echo = echo

    def describe(self) -> Dict[str, Any]:
        return {"class": self.__class__.__name__, "binary": self.binary, "data_root": str(self.data_root)}

    def data_dir(self, stack: Stack) -> Path:
        return self.data_root / stack.environment / stack.slot

    def plan_path(self, stack: Stack) -> Path:
        return self.data_dir(stack) / "tfplan"

    def _env(self, stack: Stack, resolved: Optional[ResolvedVariables]) -> Dict[str, str]:
        env = base_env(self.parent_env)
        env["TF_IN_AUTOMATION"] = "1"
        env["TF_INPUT"] = "0"
        env["TF_DATA_DIR"] = str(self.data_dir(stack))
        if resolved is not None:
            env.update(resolved.env)
        return env

    def _run(
        self,
        stack: Stack,
        args: List[str],
        *,
        resolved: Optional[ResolvedVariables] = None,
        ok_codes: tuple = (0,),
    ) -> CommandResult:
        self.data_dir(stack).mkdir(parents=True, exist_ok=True)
        cmd = [self.binary] + args
        if self.echo:
            print(f"[executor] INFO: {stack.stack_id}: {' '.join(cmd)}", file=sys.stderr)
        result = self.runner(cmd, cwd=Path(stack.working_dir), env=self._env(stack, resolved), timeout_s=self.timeout_s)
        # Custom runners may not redact; make sure secrets never leave this method.
        if resolved is not None and resolved.secret_values:
            result = CommandResult(
                args=result.args,
                returncode=result.returncode,
                stdout=redact(result.stdout, resolved.secret_values),
                stderr=redact(result.stderr, resolved.secret_values),
                duration_s=result.duration_s,
            )
        if result.returncode not in ok_codes:
            tail = (result.stderr or result.stdout or "").strip()[-2000:]
            raise ExecutionError(
                f"{stack.stack_id}: '{args[0]}' failed with exit code {result.returncode}: {tail}",
                result=result,
            )
        return result

    def init(self, stack: Stack, resolved: Optional[ResolvedVariables] = None) -> CommandResult:
        args = ["init", "-input=false", "-no-color", "-reconfigure"]
        for k, v in stack.state.backend_config().items():
            args.append(f"-backend-config={k}={v}")
        return self._run(stack, args, resolved=resolved)

    def select_workspace(self, stack: Stack, resolved: Optional[ResolvedVariables] = None) -> CommandResult:
        ws = stack.state.workspace or "default"
        return self._run(stack, ["workspace", "select", "-or-create", ws], resolved=resolved)

    def plan(self, stack: Stack, resolved: ResolvedVariables) -> PlanOutcome:
        plan_path = self.plan_path(stack)
        args = [
            "plan",
            "-input=false",
            "-no-color",
            "-detailed-exitcode",
            f"-var-file={resolved.var_file}",
            f"-out={plan_path}",
        ]
        result = self._run(stack, args, resolved=resolved, ok_codes=(PLAN_NO_CHANGES, PLAN_CHANGES))
        return PlanOutcome(result=result, plan_path=str(plan_path), has_changes=result.returncode == PLAN_CHANGES)

    def apply(self, stack: Stack, plan_path: str, resolved: Optional[ResolvedVariables] = None) -> CommandResult:
        if not Path(plan_path).exists():
            raise ExecutionError(f"{stack.stack_id}: plan file not found: {plan_path}")
        return self._run(
            stack,
            ["apply", "-input=false", "-no-color", "-auto-approve", plan_path],
            resolved=resolved,
        )

    def output(self, stack: Stack, resolved: Optional[ResolvedVariables] = None) -> Dict[str, Any]:
        result = self._run(stack, ["output", "-json", "-no-color"], resolved=resolved)
        text = (result.stdout or "").strip()
        if not text:
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ExecutionError(f"{stack.stack_id}: terraform output is not JSON: {e}", result=result)
        return data if isinstance(data, dict) else {}
