from __future__ import annotations

import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..executor.terraform import TerraformExecutor
from ..infra.contracts import RunStateStore
from ..infra.errors import (
    ConflictError,
    ExecutionError,
    HealthCheckError,
    MissingSecretsError,
    StackDeployError,
    ValidationError,
)
from ..infra.models import SlotRecord, Stack
from ..promotion.promoter import BlueGreenPromoter
from ..registry.stacks import StackRegistry
from ..utils.time import utcnow_iso
from ..variables.resolver import VariableResolver
from .idempotency import key_deploy_run, key_stack_run
from .status_reducer import reduce_run_status


@dataclass(frozen=True)
class DeployOptions:
    environments: List[str]
    slot: Optional[str] = None
    plan_only: bool = False
    auto_cutover: bool = False
    skip_health_check: bool = False
    max_workers: Optional[int] = None
    ref: str = ""
    note: str = ""


@dataclass
class StackOutcome:
    stack_id: str
    environment: str
    slot: str
    stack_run_id: str = ""
    status: str = ""
    reason_code: str = ""
    message: str = ""
    has_changes: Optional[bool] = None
    plan_path: str = ""
    exit_code: Optional[int] = None
    cutover: Optional[SlotRecord] = None

    @property
    def ok(self) -> bool:
        return self.status in ("SUCCEEDED", "NO_CHANGES")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stack_id": self.stack_id,
            "environment": self.environment,
            "slot": self.slot,
            "stack_run_id": self.stack_run_id,
            "status": self.status,
            "reason_code": self.reason_code,
            "message": self.message,
            "has_changes": self.has_changes,
            "plan_path": self.plan_path,
            "exit_code": self.exit_code,
            "live_slot": self.cutover.live_slot if self.cutover is not None else None,
        }


@dataclass
class DeployResult:
    run_id: str
    status: str
    outcomes: List[StackOutcome] = field(default_factory=list)

    @property
    def failed(self) -> List[StackOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def to_dict(self) -> Dict[str, Any]:
        return {"run_id": self.run_id, "status": self.status, "stacks": [o.to_dict() for o in self.outcomes]}


class Orchestrator:
    """Fans a deployment out over environments, one stack per environment.

    Environments run independently in a thread pool. A failure in one
    environment is recorded against its stack and never stops the others.
    """

    def __init__(
        self,
        *,
        registry: StackRegistry,
        resolver: VariableResolver,
        executor: TerraformExecutor,
        run_state: RunStateStore,
        promoter: BlueGreenPromoter,
    ):
        self.registry = registry
        self.resolver = resolver
        self.executor = executor
        self.run_state = run_state
        self.promoter = promoter

    @classmethod
    def from_infra(cls, infra: Any) -> "Orchestrator":
        return cls(
            registry=infra.registry,
            resolver=infra.resolver,
            executor=infra.executor,
            run_state=infra.run_state_store,
            promoter=infra.promoter,
        )

    def target_stack(self, environment: str, slot: Optional[str] = None) -> Stack:
        if slot:
            stack = self.registry.get_stack(environment, slot)
            if self.promoter.live_slot(environment) == slot:
                print(f"[orchestrator] WARNING: {stack.stack_id} is the live slot; deploying in place", file=sys.stderr)
            return stack
        return self.registry.get_stack(environment, self.promoter.idle_slot(environment))

    def deploy(self, opts: DeployOptions) -> DeployResult:
        envs: List[str] = []
        for name in opts.environments or self.registry.environments():
            self.registry.environment(name)
            if name not in envs:
                envs.append(name)
        if opts.auto_cutover and opts.plan_only:
            raise ValidationError("auto_cutover cannot be combined with plan_only")

        # Resolve every target before starting so a bad slot fails the whole request up front.
        stacks = [self.target_stack(e, opts.slot) for e in envs]

        run_id = key_deploy_run(
            application_id=self.registry.config.application_id,
            environments=envs,
            started_at=utcnow_iso(),
            ref=opts.ref,
        )
        action = "plan" if opts.plan_only else "deploy"
        print(
            f"[orchestrator] INFO: run_id={run_id} action={action} stacks={[s.stack_id for s in stacks]}",
            file=sys.stderr,
        )

        workers = opts.max_workers or len(stacks) or 1
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="stackdeploy") as pool:
            futures = [pool.submit(self.deploy_stack, run_id, st, opts) for st in stacks]
            outcomes = [f.result() for f in futures]

        status = reduce_run_status({o.stack_id: o.status for o in outcomes})
        result = DeployResult(run_id=run_id, status=status, outcomes=outcomes)
        self._print_summary(result)
        return result

    def deploy_stack(self, run_id: str, stack: Stack, opts: DeployOptions) -> StackOutcome:
        action = "plan" if opts.plan_only else "deploy"
        stack_run_id = key_stack_run(run_id=run_id, stack_id=stack.stack_id, action=action)
        outcome = StackOutcome(stack_id=stack.stack_id, environment=stack.environment, slot=stack.slot, stack_run_id=stack_run_id)

        self.run_state.start_stack_run(
            run_id=stack_run_id,
            stack_id=stack.stack_id,
            environment=stack.environment,
            slot=stack.slot,
            action=action,
            metadata={
                "deploy_run_id": run_id,
                "var_file": stack.var_file,
                "state_key": stack.state.key,
                "workspace": stack.state.workspace,
                "ref": opts.ref,
                "note": opts.note,
            },
        )

        step = "resolve"
        try:
            resolved = self.resolver.resolve(stack)
            step = "init"
            self.executor.init(stack, resolved)
            step = "workspace"
            self.executor.select_workspace(stack, resolved)
            step = "plan"
            planned = self.executor.plan(stack, resolved)
            outcome.has_changes = planned.has_changes
            outcome.plan_path = planned.plan_path
            outcome.exit_code = planned.result.returncode

            if not opts.plan_only and planned.has_changes:
                step = "apply"
                applied = self.executor.apply(stack, planned.plan_path, resolved)
                outcome.exit_code = applied.returncode

            if opts.auto_cutover:
                step = "cutover"
                outcome.cutover = self.promoter.cutover(
                    stack.environment,
                    stack.slot,
                    run_id=stack_run_id,
                    note=opts.note,
                    skip_health_check=opts.skip_health_check,
                )

            outcome.status = "SUCCEEDED" if planned.has_changes else "NO_CHANGES"
        except MissingSecretsError as e:
            outcome.status, outcome.reason_code, outcome.message = "FAILED", "missing_secrets", str(e)
        except ExecutionError as e:
            outcome.status, outcome.reason_code, outcome.message = "FAILED", f"{step}_failed", str(e)
            if e.result is not None:
                outcome.exit_code = e.result.returncode
        except HealthCheckError as e:
            outcome.status, outcome.reason_code, outcome.message = "FAILED", "health_check_failed", str(e)
        except ConflictError as e:
            outcome.status, outcome.reason_code, outcome.message = "FAILED", "slot_conflict", str(e)
        except StackDeployError as e:
            outcome.status, outcome.reason_code, outcome.message = "FAILED", f"{step}_error", str(e)
        except Exception as e:
            # Recorded against this stack; other environments keep going.
            outcome.status, outcome.reason_code = "FAILED", "unexpected_error"
            outcome.message = f"{e.__class__.__name__}: {e}"

        if outcome.status == "FAILED":
            print(f"[orchestrator][FAILED] {stack.stack_id} reason_code={outcome.reason_code}: {outcome.message}", file=sys.stderr)

        self.run_state.finish_stack_run(
            stack_run_id,
            status=outcome.status,
            reason_code=outcome.reason_code,
            exit_code=outcome.exit_code,
            plan_path=outcome.plan_path,
            metadata={"message": outcome.message[-2000:]} if outcome.message else None,
        )
        return outcome

    def _print_summary(self, result: DeployResult) -> None:
        print("\nSTACKDEPLOY RUN SUMMARY", file=sys.stderr)
        print(f"run_id: {result.run_id}", file=sys.stderr)
        print(f"status: {result.status}", file=sys.stderr)
        for o in result.outcomes:
            extra = f" ({o.reason_code})" if o.reason_code else ""
            live = f" live={o.cutover.live_slot}" if o.cutover is not None else ""
            print(f" - {o.stack_id}: {o.status}{extra}{live}", file=sys.stderr)
