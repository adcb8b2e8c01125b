from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from _testutil import FakeHttpSession, ensure_repo_on_path, sample_config, write_project


class TestBlueGreenPromoter(unittest.TestCase):
    def _promoter(self, root: Path, *, config=None, session=None):
        from stackdeploy.infra.adapters.slots_csv import CsvSlotStateStore
        from stackdeploy.promotion.promoter import BlueGreenPromoter
        from stackdeploy.registry.project import load_project_config
        from stackdeploy.registry.stacks import StackRegistry

        write_project(root, config)
        reg = StackRegistry(load_project_config(root), root)
        store = CsvSlotStateStore(root / "state")
        return BlueGreenPromoter(registry=reg, store=store, http_session=session, sleep=lambda s: None)

    def test_initial_state(self) -> None:
        ensure_repo_on_path()

        with tempfile.TemporaryDirectory() as td:
            p = self._promoter(Path(td))
            self.assertIsNone(p.live_slot("alpha"))
            self.assertEqual(p.idle_slot("alpha"), "blue")
            self.assertEqual(p.history("alpha"), [])

    def test_cutover_and_rollback_keep_one_live_slot(self) -> None:
        ensure_repo_on_path()

        from stackdeploy.infra.errors import ConflictError

        with tempfile.TemporaryDirectory() as td:
            p = self._promoter(Path(td))

            with self.assertRaises(ConflictError):
                p.rollback("alpha")

            first = p.cutover("alpha", "blue", run_id="r1")
            self.assertEqual(first.previous_slot, "")
            self.assertEqual(p.live_slot("alpha"), "blue")
            self.assertEqual(p.idle_slot("alpha"), "green")

            second = p.cutover("alpha", "green", note="release 42")
            self.assertEqual(second.previous_slot, "blue")
            self.assertEqual(p.live_slot("alpha"), "green")

            back = p.rollback("alpha")
            self.assertEqual(back.action, "rollback")
            self.assertEqual(back.live_slot, "blue")
            self.assertEqual(p.live_slot("alpha"), "blue")

            # Other environments are untouched.
            self.assertIsNone(p.live_slot("beta"))
            self.assertEqual([r.live_slot for r in p.history("alpha")], ["blue", "green", "blue"])

    def test_cutover_to_live_slot_is_noop(self) -> None:
        ensure_repo_on_path()

        with tempfile.TemporaryDirectory() as td:
            p = self._promoter(Path(td))
            rec = p.cutover("beta", "green")
            again = p.cutover("beta", "green")
            self.assertEqual(again, rec)
            self.assertEqual(len(p.history("beta")), 1)

    def test_cutover_validation(self) -> None:
        ensure_repo_on_path()

        from stackdeploy.infra.errors import NotFoundError, ValidationError

        cfg = sample_config()
        cfg["environments"][0]["slots"] = ["blue"]
        with tempfile.TemporaryDirectory() as td:
            p = self._promoter(Path(td), config=cfg)
            with self.assertRaises(ValidationError):
                p.cutover("alpha", "purple")
            with self.assertRaises(NotFoundError):
                p.cutover("alpha", "green")
            with self.assertRaises(NotFoundError):
                p.cutover("nope", "blue")

            # Single-slot environments redeploy in place.
            p.cutover("alpha", "blue")
            self.assertEqual(p.idle_slot("alpha"), "blue")

    def test_health_gate(self) -> None:
        ensure_repo_on_path()

        import requests

        from stackdeploy.infra.errors import HealthCheckError

        cfg = sample_config()
        cfg["environments"][2]["health_check"] = {"url": "https://{slot}.prod.example.com/healthz", "retries": 3, "interval_s": 0}

        with tempfile.TemporaryDirectory() as td:
            session = FakeHttpSession([requests.ConnectionError("refused"), 503, 200])
            p = self._promoter(Path(td), config=cfg, session=session)
            p.cutover("prod", "green")
            self.assertEqual(p.live_slot("prod"), "green")
            self.assertEqual(session.urls, ["https://green.prod.example.com/healthz"] * 3)

        with tempfile.TemporaryDirectory() as td:
            session = FakeHttpSession([500, 500, 500])
            p = self._promoter(Path(td), config=cfg, session=session)
            with self.assertRaises(HealthCheckError):
                p.cutover("prod", "blue")
            self.assertIsNone(p.live_slot("prod"))

            # Skipping the gate makes no requests.
            p.cutover("prod", "blue", skip_health_check=True)
            self.assertEqual(len(session.urls), 3)
            self.assertEqual(p.live_slot("prod"), "blue")

class TestWaitUntilHealthy(unittest.TestCase):
    def test_any_2xx_passes_by_default(self) -> None:
        ensure_repo_on_path()

        from stackdeploy.infra.models import HealthCheckSpec
        from stackdeploy.promotion.health import wait_until_healthy

        spec = HealthCheckSpec(url="https://{slot}.example.com/healthz", retries=3, interval_s=0)
        session = FakeHttpSession([503, 204])
        self.assertEqual(wait_until_healthy(spec, "blue", session=session, sleep=lambda s: None), 2)
        self.assertEqual(session.urls, ["https://blue.example.com/healthz"] * 2)

    def test_expected_status_override(self) -> None:
        ensure_repo_on_path()

        from stackdeploy.infra.errors import HealthCheckError
        from stackdeploy.infra.models import HealthCheckSpec
        from stackdeploy.promotion.health import wait_until_healthy

        spec = HealthCheckSpec(url="https://green.example.com/ready", expected_status=200, retries=2, interval_s=0)
        with self.assertRaises(HealthCheckError):
            wait_until_healthy(spec, "green", session=FakeHttpSession([204, 204]), sleep=lambda s: None)
        self.assertEqual(wait_until_healthy(spec, "green", session=FakeHttpSession([200]), sleep=lambda s: None), 1)



if __name__ == "__main__":
    unittest.main()
