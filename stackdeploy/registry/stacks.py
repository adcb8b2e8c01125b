from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from ..infra.errors import ConflictError, NotFoundError, ValidationError
from ..infra.models import EnvironmentSpec, Stack, StateLocation, is_valid_slot
from .project import ProjectConfig, render_template


class StackRegistry:
    """Enumerates deployment targets (environment x slot) declared in a ProjectConfig.

    Environments keep their declaration order, which doubles as the promotion
    sequence. Each stack's remote state location is rendered once at
    construction and checked for collisions.
    """

    def __init__(self, config: ProjectConfig, repo_root: Path):
        self.config = config
        self.repo_root = repo_root
        self._envs: Dict[str, EnvironmentSpec] = {e.name: e for e in config.environments}
        self._stacks: List[Stack] = [self._build_stack(e, s) for e in config.environments for s in e.slots]
        self._check_unique_state()

    def _build_stack(self, env: EnvironmentSpec, slot: str) -> Stack:
        values = {"application_id": self.config.application_id, "environment": env.name, "slot": slot}
        be = self.config.backend
        state = StateLocation(
            bucket=be.bucket,
            key=render_template(be.key_template, **values),
            region=be.region,
            workspace=slot if be.workspace_per_slot else "default",
            dynamodb_table=be.dynamodb_table,
        )
        working_dir = (self.repo_root / self.config.terraform.working_dir).resolve()
        var_file = working_dir / render_template(self.config.terraform.var_file_template, **values)
        return Stack(
            application_id=self.config.application_id,
            environment=env.name,
            slot=slot,
            working_dir=str(working_dir),
            var_file=str(var_file),
            state=state,
        )

    def _check_unique_state(self) -> None:
        owners: Dict[Tuple[str, str, str], str] = {}
        for st in self._stacks:
            loc = (st.state.bucket, st.state.key, st.state.workspace)
            prev = owners.get(loc)
            if prev is not None:
                raise ConflictError(
                    f"stacks {prev!r} and {st.stack_id!r} share remote state "
                    f"s3://{loc[0]}/{loc[1]} workspace={loc[2]!r}; "
                    "add {slot} to backend.key_template or enable backend.workspace_per_slot"
                )
            owners[loc] = st.stack_id

    def environments(self) -> List[str]:
        return [e.name for e in self.config.environments]

    def environment(self, name: str) -> EnvironmentSpec:
        env = self._envs.get(str(name or "").strip())
        if env is None:
            raise NotFoundError(f"unknown environment: {name!r} (known: {self.environments()})")
        return env

    def next_environment(self, name: str) -> Optional[str]:
        names = self.environments()
        idx = names.index(self.environment(name).name)
        if idx + 1 < len(names):
            return names[idx + 1]
        return None

    def list_stacks(self, environments: Optional[Iterable[str]] = None) -> List[Stack]:
        if environments is None:
            return list(self._stacks)
        wanted: List[str] = []
        for name in environments:
            self.environment(name)
            if name not in wanted:
                wanted.append(name)
        # Declaration order, not request order.
        return [st for st in self._stacks if st.environment in wanted]

    def get_stack(self, environment: str, slot: str) -> Stack:
        env = self.environment(environment)
        if not is_valid_slot(slot):
            raise ValidationError(f"invalid slot: {slot!r}")
        for st in self._stacks:
            if st.environment == env.name and st.slot == slot:
                return st
        raise NotFoundError(f"slot {slot!r} is not enabled for environment {environment!r}")

    def required_secrets(self, environment: str) -> List[str]:
        """Shared secrets followed by environment-specific ones, de-duplicated."""
        env = self.environment(environment)
        out: List[str] = []
        for name in list(self.config.secrets) + list(env.secrets):
            if name not in out:
                out.append(name)
        return out
