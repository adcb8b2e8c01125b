from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from ..executor.terraform import TerraformExecutor
from ..promotion.promoter import BlueGreenPromoter
from ..registry.project import ProjectConfig, load_project_config
from ..registry.stacks import StackRegistry
from ..secretstore.loader import SecretStore, load_secretstore
from ..variables.resolver import VariableResolver
from .adapters.runstate_csv import CsvRunStateStore
from .adapters.slots_csv import CsvSlotStateStore
from .adapters.slots_s3 import S3SlotStateStore, S3SlotStateStoreSettings
from .config import AdapterSpec, RuntimeProfile, load_runtime_profile
from .contracts import CommandRunner, RunStateStore, SlotStateStore
from .errors import NotConfiguredError

DEFAULT_STATE_DIR = Path(".stackdeploy") / "state"
DEFAULT_DATA_ROOT = Path(".stackdeploy") / "tfdata"


@dataclass
class InfraBundle:
    repo_root: Path
    profile: RuntimeProfile
    project: ProjectConfig
    registry: StackRegistry
    secret_store: SecretStore
    resolver: VariableResolver
    slot_state_store: SlotStateStore
    run_state_store: RunStateStore
    executor: TerraformExecutor
    promoter: BlueGreenPromoter

    def describe(self) -> Dict[str, Any]:
        def _d(x: Any) -> Dict[str, Any]:
            if hasattr(x, "describe") and callable(getattr(x, "describe")):
                return dict(getattr(x, "describe")())
            return {"class": x.__class__.__name__}

        return {
            "profile_name": self.profile.profile_name,
            "application_id": self.project.application_id,
            "environments": self.registry.environments(),
            "adapters": {
                "slot_state_store": _d(self.slot_state_store),
                "run_state_store": _d(self.run_state_store),
                "executor": _d(self.executor),
            },
        }


def _path_setting(repo_root: Path, spec: AdapterSpec, key: str, default: Path) -> Path:
    raw = str(spec.settings.get(key) or "").strip()
    p = Path(raw).expanduser() if raw else default
    if not p.is_absolute():
        p = repo_root / p
    return p.resolve()


def build_slot_state_store(
    repo_root: Path,
    spec: AdapterSpec,
    project: ProjectConfig,
    *,
    s3_client: Any = None,
) -> SlotStateStore:
    if spec.kind == "csv_local":
        return CsvSlotStateStore(_path_setting(repo_root, spec, "state_dir", DEFAULT_STATE_DIR))
    if spec.kind == "s3":
        settings = S3SlotStateStoreSettings(
            application_id=project.application_id,
            # Default to the remote-state bucket so slot state lives next to Terraform state.
            bucket=str(spec.settings.get("bucket") or project.backend.bucket),
            prefix=str(spec.settings.get("prefix") or ""),
            region=str(spec.settings.get("region") or project.backend.region),
        )
        return S3SlotStateStore(settings=settings, client=s3_client)
    raise NotConfiguredError(f"slot_state_store kind not wired: {spec.kind!r}")


def build_run_state_store(repo_root: Path, spec: AdapterSpec) -> RunStateStore:
    if spec.kind == "csv_local":
        return CsvRunStateStore(_path_setting(repo_root, spec, "state_dir", DEFAULT_STATE_DIR))
    raise NotConfiguredError(f"run_state_store kind not wired: {spec.kind!r}")


def build_executor(
    repo_root: Path,
    spec: AdapterSpec,
    project: ProjectConfig,
    *,
    runner: Optional[CommandRunner] = None,
) -> TerraformExecutor:
    if spec.kind == "terraform_cli":
        return TerraformExecutor(
            binary=str(spec.settings.get("binary") or project.terraform.binary),
            data_root=_path_setting(repo_root, spec, "data_root", DEFAULT_DATA_ROOT),
            runner=runner,
            timeout_s=project.terraform.timeout_s,
        )
    raise NotConfiguredError(f"executor kind not wired: {spec.kind!r}")


def build_infra(
    repo_root: Path,
    *,
    config_path: Optional[str] = None,
    runtime_profile_path: Optional[str] = None,
    runner: Optional[CommandRunner] = None,
    secret_store: Optional[SecretStore] = None,
    s3_client: Any = None,
    http_session: Any = None,
    env: Optional[Dict[str, str]] = None,
) -> InfraBundle:
    """Wire project config, runtime profile, and adapters into one bundle."""
    repo_root = repo_root.resolve()
    project = load_project_config(repo_root, config_path)
    profile = load_runtime_profile(repo_root, runtime_profile_path)
    registry = StackRegistry(project, repo_root)

    store = secret_store if secret_store is not None else load_secretstore(repo_root)
    resolver = VariableResolver(registry=registry, store=store, env=env)

    slot_state_store = build_slot_state_store(repo_root, profile.adapters["slot_state_store"], project, s3_client=s3_client)
    run_state_store = build_run_state_store(repo_root, profile.adapters["run_state_store"])
    executor = build_executor(repo_root, profile.adapters["executor"], project, runner=runner)
    promoter = BlueGreenPromoter(registry=registry, store=slot_state_store, http_session=http_session)

    return InfraBundle(
        repo_root=repo_root,
        profile=profile,
        project=project,
        registry=registry,
        secret_store=store,
        resolver=resolver,
        slot_state_store=slot_state_store,
        run_state_store=run_state_store,
        executor=executor,
        promoter=promoter,
    )
