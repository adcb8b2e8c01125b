from __future__ import annotations

import sys
from typing import Any, Callable, List, Optional

from ..infra.contracts import SlotStateStore
from ..infra.errors import ConflictError, NotFoundError, ValidationError
from ..infra.models import SlotRecord, is_valid_slot, other_slot
from ..registry.stacks import StackRegistry
from ..utils.time import utcnow_iso
from .health import wait_until_healthy


class BlueGreenPromoter:
    """Tracks which slot is live per environment and performs cutover.

    The slot store is append-only and its latest record per environment is
    the live slot, so at most one slot is live at any time. Writes pass the
    live slot observed before the change as ``expected_live`` to detect a
    concurrent cutover.
    """

    def __init__(
        self,
        *,
        registry: StackRegistry,
        store: SlotStateStore,
        http_session: Optional[Any] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.registry = registry
        self.store = store
        self.http_session = http_session
        self.sleep = sleep

    def live_slot(self, environment: str) -> Optional[str]:
        self.registry.environment(environment)
        rec = self.store.latest(environment)
        if rec is None or not rec.live_slot:
            return None
        return rec.live_slot

    def idle_slot(self, environment: str) -> str:
        """Slot the next deployment should target: the non-live one, blue before first cutover."""
        env = self.registry.environment(environment)
        live = self.live_slot(environment)
        if live is None:
            return env.slots[0]
        idle = other_slot(live)
        if idle not in env.slots:
            # Single-slot environments redeploy in place.
            return live
        return idle

    def history(self, environment: str) -> List[SlotRecord]:
        self.registry.environment(environment)
        return self.store.history(environment)

    def _check_health(self, environment: str, slot: str) -> None:
        env = self.registry.environment(environment)
        if env.health_check is None:
            return
        kwargs: dict = {"session": self.http_session}
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        wait_until_healthy(env.health_check, slot, **kwargs)

    def cutover(
        self,
        environment: str,
        to_slot: str,
        *,
        run_id: str = "",
        note: str = "",
        skip_health_check: bool = False,
    ) -> SlotRecord:
        env = self.registry.environment(environment)
        if not is_valid_slot(to_slot):
            raise ValidationError(f"invalid slot: {to_slot!r}")
        if to_slot not in env.slots:
            raise NotFoundError(f"slot {to_slot!r} is not enabled for environment {environment!r}")

        current = self.store.latest(environment)
        live = current.live_slot if current is not None else ""
        if current is not None and live == to_slot:
            print(f"[promoter] INFO: {environment}: {to_slot} is already live; nothing to do", file=sys.stderr)
            return current

        if not skip_health_check:
            self._check_health(environment, to_slot)

        rec = SlotRecord(
            environment=environment,
            live_slot=to_slot,
            previous_slot=live,
            action="cutover",
            changed_at=utcnow_iso(),
            run_id=run_id,
            note=note,
        )
        self.store.append(rec, expected_live=live)
        print(f"[promoter] INFO: {environment}: live slot {live or '<none>'} -> {to_slot}", file=sys.stderr)
        return rec

    def rollback(self, environment: str, *, run_id: str = "", note: str = "", skip_health_check: bool = False) -> SlotRecord:
        """Return traffic to the previously live slot."""
        self.registry.environment(environment)
        current = self.store.latest(environment)
        if current is None or not current.previous_slot:
            raise ConflictError(f"no previous live slot to roll back to for environment {environment!r}")

        target = current.previous_slot
        if not skip_health_check:
            self._check_health(environment, target)

        rec = SlotRecord(
            environment=environment,
            live_slot=target,
            previous_slot=current.live_slot,
            action="rollback",
            changed_at=utcnow_iso(),
            run_id=run_id,
            note=note,
        )
        self.store.append(rec, expected_live=current.live_slot)
        print(f"[promoter] WARNING: {environment}: rolled back {current.live_slot} -> {target}", file=sys.stderr)
        return rec
