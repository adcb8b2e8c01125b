from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .github.actions import append_step_summary, build_matrix, mask_values, render_run_summary, set_output
from .infra.errors import StackDeployError
from .infra.factory import InfraBundle, build_infra
from .orchestration.orchestrator import DeployOptions, Orchestrator
from .secretstore.requirements import lookup_secret, missing_secrets_by_environment


def _repo_root(args: argparse.Namespace) -> Path:
    raw = str(getattr(args, "repo_root", "") or "").strip()
    return Path(raw).expanduser().resolve() if raw else Path.cwd().resolve()


def _infra(args: argparse.Namespace) -> InfraBundle:
    return build_infra(
        _repo_root(args),
        config_path=getattr(args, "config", None),
        runtime_profile_path=getattr(args, "runtime_profile", None),
    )


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _mask_secrets(infra: InfraBundle, environments: List[str]) -> None:
    values: List[str] = []
    env = dict(os.environ)
    for name in environments:
        for secret in infra.registry.required_secrets(name):
            v = lookup_secret(secret, store=infra.secret_store, environment=name, env=env)
            if v:
                values.append(v)
    # Workflow commands are read from stderr too; stdout stays JSON.
    mask_values(values, stream=sys.stderr)


def cmd_describe(args: argparse.Namespace) -> int:
    _print_json(_infra(args).describe())
    return 0


def cmd_stacks(args: argparse.Namespace) -> int:
    infra = _infra(args)
    out: List[Dict[str, Any]] = []
    for st in infra.registry.list_stacks(args.env or None):
        out.append(
            {
                "stack_id": st.stack_id,
                "environment": st.environment,
                "slot": st.slot,
                "var_file": st.var_file,
                "state_bucket": st.state.bucket,
                "state_key": st.state.key,
                "workspace": st.state.workspace,
                "next_environment": infra.registry.next_environment(st.environment),
            }
        )
    _print_json(out)
    return 0


def cmd_matrix(args: argparse.Namespace) -> int:
    infra = _infra(args)
    if args.idle_only:
        envs = args.env or infra.registry.environments()
        stacks = [infra.registry.get_stack(e, infra.promoter.idle_slot(e)) for e in envs]
    else:
        stacks = infra.registry.list_stacks(args.env or None)
    matrix = build_matrix(stacks)
    set_output("matrix", matrix)
    print(json.dumps(matrix, separators=(",", ":")))
    return 0


def _run_deploy(args: argparse.Namespace, *, plan_only: bool) -> int:
    infra = _infra(args)
    envs = args.env or infra.registry.environments()
    _mask_secrets(infra, envs)
    opts = DeployOptions(
        environments=envs,
        slot=args.slot,
        plan_only=plan_only,
        auto_cutover=bool(getattr(args, "cutover", False)),
        skip_health_check=bool(getattr(args, "skip_health_check", False)),
        max_workers=args.max_workers,
        ref=str(args.ref or os.environ.get("GITHUB_SHA", "") or ""),
        note=str(getattr(args, "note", "") or ""),
    )
    result = Orchestrator.from_infra(infra).deploy(opts)
    data = result.to_dict()
    set_output("run_id", result.run_id)
    set_output("status", result.status)
    append_step_summary(render_run_summary(data))
    _print_json(data)
    return 0 if not result.failed else 1


def cmd_plan(args: argparse.Namespace) -> int:
    return _run_deploy(args, plan_only=True)


def cmd_deploy(args: argparse.Namespace) -> int:
    return _run_deploy(args, plan_only=False)


def cmd_status(args: argparse.Namespace) -> int:
    infra = _infra(args)
    out: List[Dict[str, Any]] = []
    for name in args.env or infra.registry.environments():
        latest = infra.slot_state_store.latest(name)
        runs = infra.run_state_store.list_stack_runs(environment=name)
        last = runs[-1] if runs else None
        out.append(
            {
                "environment": name,
                "live_slot": infra.promoter.live_slot(name),
                "idle_slot": infra.promoter.idle_slot(name),
                "changed_at": latest.changed_at if latest is not None else None,
                "last_action": latest.action if latest is not None else None,
                "last_run": None
                if last is None
                else {"run_id": last.run_id, "stack_id": last.stack_id, "status": last.status, "ended_at": last.ended_at},
            }
        )
    _print_json(out)
    return 0


def cmd_cutover(args: argparse.Namespace) -> int:
    infra = _infra(args)
    rec = infra.promoter.cutover(args.env, args.slot, note=args.note or "", skip_health_check=bool(args.skip_health_check))
    set_output("live_slot", rec.live_slot)
    _print_json({"environment": rec.environment, "live_slot": rec.live_slot, "previous_slot": rec.previous_slot, "action": rec.action})
    return 0


def cmd_rollback(args: argparse.Namespace) -> int:
    infra = _infra(args)
    rec = infra.promoter.rollback(args.env, note=args.note or "", skip_health_check=bool(args.skip_health_check))
    set_output("live_slot", rec.live_slot)
    _print_json({"environment": rec.environment, "live_slot": rec.live_slot, "previous_slot": rec.previous_slot, "action": rec.action})
    return 0


def cmd_secrets_check(args: argparse.Namespace) -> int:
    infra = _infra(args)
    envs = args.env or infra.registry.environments()
    if infra.secret_store.version == 0:
        print("[secretstore] INFO: no secret store loaded; checking process environment only.", file=sys.stderr)
    missing = missing_secrets_by_environment(
        registry=infra.registry,
        store=infra.secret_store,
        environments=envs,
        offline_ok=bool(args.offline_ok),
    )
    _print_json({"ok": not missing, "missing": missing})
    for env_name, names in sorted(missing.items()):
        print(f"[preflight][FAILED] environment={env_name} missing={names}", file=sys.stderr)
    return 0 if not missing else 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="stackdeploy", description="Blue/green Terraform deployments across environments")
    p.add_argument("--repo-root", default="", help="Repository root (default: current directory)")
    p.add_argument("--config", default=None, help="Project config path (default: stackdeploy.yml)")
    p.add_argument("--runtime-profile", default=None, help="Runtime profile path (default: config/runtime_profile.yml)")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("describe", help="Show the wired adapters and environments")
    sp.set_defaults(func=cmd_describe)

    sp = sub.add_parser("stacks", help="List stacks (environment x slot)")
    sp.add_argument("--env", action="append", default=[])
    sp.set_defaults(func=cmd_stacks)

    sp = sub.add_parser("matrix", help="Emit a GitHub Actions matrix of stacks")
    sp.add_argument("--env", action="append", default=[])
    sp.add_argument("--idle-only", action="store_true", help="One entry per environment: the slot to deploy next")
    sp.set_defaults(func=cmd_matrix)

    for name, func, helptext in (
        ("plan", cmd_plan, "Plan stacks without applying"),
        ("deploy", cmd_deploy, "Plan and apply stacks"),
    ):
        sp = sub.add_parser(name, help=helptext)
        sp.add_argument("--env", action="append", default=[])
        sp.add_argument("--slot", default=None, choices=["blue", "green"], help="Default: the idle slot")
        sp.add_argument("--max-workers", type=int, default=None)
        sp.add_argument("--ref", default="", help="Source revision recorded with the run (default: $GITHUB_SHA)")
        if name == "deploy":
            sp.add_argument("--cutover", action="store_true", help="Make the deployed slot live after apply")
            sp.add_argument("--skip-health-check", action="store_true")
            sp.add_argument("--note", default="")
        sp.set_defaults(func=func)

    sp = sub.add_parser("status", help="Show live slot and last run per environment")
    sp.add_argument("--env", action="append", default=[])
    sp.set_defaults(func=cmd_status)

    sp = sub.add_parser("cutover", help="Make a slot live")
    sp.add_argument("--env", required=True)
    sp.add_argument("--slot", required=True, choices=["blue", "green"])
    sp.add_argument("--skip-health-check", action="store_true")
    sp.add_argument("--note", default="")
    sp.set_defaults(func=cmd_cutover)

    sp = sub.add_parser("rollback", help="Return traffic to the previously live slot")
    sp.add_argument("--env", required=True)
    sp.add_argument("--skip-health-check", action="store_true")
    sp.add_argument("--note", default="")
    sp.set_defaults(func=cmd_rollback)

    sp = sub.add_parser("secrets-check", help="Verify required secrets are available")
    sp.add_argument("--env", action="append", default=[])
    sp.add_argument("--offline-ok", action="store_true")
    sp.set_defaults(func=cmd_secrets_check)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return int(args.func(args) or 0)
    except StackDeployError as e:
        print(f"[stackdeploy] ERROR: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
