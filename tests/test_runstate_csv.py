from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from _testutil import ensure_repo_on_path


class TestCsvRunStateStore(unittest.TestCase):
    def test_start_finish_roundtrip(self) -> None:
        ensure_repo_on_path()

        from stackdeploy.infra.adapters.runstate_csv import CsvRunStateStore

        with tempfile.TemporaryDirectory() as td:
            store = CsvRunStateStore(Path(td))
            started = store.start_stack_run(
                run_id="sr_1",
                stack_id="alpha/blue",
                environment="alpha",
                slot="blue",
                action="deploy",
                metadata={"state_key": "shop-api/alpha/terraform.tfstate"},
            )
            self.assertEqual(started.status, "RUNNING")
            self.assertEqual(store.get_stack_run("sr_1").status, "RUNNING")

            done = store.finish_stack_run("sr_1", status="succeeded", exit_code=0, plan_path="/tmp/tfplan", metadata={"note": "x"})
            self.assertEqual(done.status, "SUCCEEDED")
            self.assertTrue(done.ended_at)

            got = CsvRunStateStore(Path(td)).get_stack_run("sr_1")
            self.assertEqual(got.status, "SUCCEEDED")
            self.assertEqual(got.exit_code, 0)
            self.assertEqual(got.plan_path, "/tmp/tfplan")
            self.assertEqual(got.metadata, {"state_key": "shop-api/alpha/terraform.tfstate", "note": "x"})

    def test_list_filters_by_environment(self) -> None:
        ensure_repo_on_path()

        from stackdeploy.infra.adapters.runstate_csv import CsvRunStateStore

        with tempfile.TemporaryDirectory() as td:
            store = CsvRunStateStore(Path(td))
            for rid, env in (("a1", "alpha"), ("b1", "beta"), ("a2", "alpha")):
                store.start_stack_run(run_id=rid, stack_id=f"{env}/blue", environment=env, slot="blue", action="plan")
            store.finish_stack_run("a1", status="FAILED", reason_code="plan_failed", exit_code=1)

            alpha = store.list_stack_runs(environment="alpha")
            self.assertEqual({r.run_id for r in alpha}, {"a1", "a2"})
            self.assertEqual(len(store.list_stack_runs()), 3)
            failed = [r for r in alpha if r.run_id == "a1"][0]
            self.assertEqual(failed.reason_code, "plan_failed")

    def test_errors(self) -> None:
        ensure_repo_on_path()

        from stackdeploy.infra.adapters.runstate_csv import CsvRunStateStore
        from stackdeploy.infra.errors import NotFoundError, ValidationError

        with tempfile.TemporaryDirectory() as td:
            store = CsvRunStateStore(Path(td))
            with self.assertRaises(NotFoundError):
                store.get_stack_run("missing")
            store.start_stack_run(run_id="r", stack_id="alpha/blue", environment="alpha", slot="blue", action="plan")
            with self.assertRaises(ValidationError):
                store.finish_stack_run("r", status="RUNNING")
            with self.assertRaises(ValidationError):
                store.finish_stack_run("r", status="DONE")


class TestStatusReducer(unittest.TestCase):
    def test_reduce(self) -> None:
        ensure_repo_on_path()

        from stackdeploy.orchestration.status_reducer import reduce_run_status

        self.assertEqual(reduce_run_status({}), "CREATED")
        self.assertEqual(reduce_run_status({"a": "RUNNING", "b": "SUCCEEDED"}), "RUNNING")
        self.assertEqual(reduce_run_status({"a": "SUCCEEDED", "b": "NO_CHANGES"}), "SUCCEEDED")
        self.assertEqual(reduce_run_status({"a": "FAILED", "b": "FAILED"}), "FAILED")
        self.assertEqual(reduce_run_status({"a": "FAILED", "b": "NO_CHANGES"}), "PARTIAL")


class TestIdempotencyKeys(unittest.TestCase):
    def test_keys_are_stable(self) -> None:
        ensure_repo_on_path()

        from stackdeploy.orchestration.idempotency import key_deploy_run, key_stack_run

        a = key_deploy_run(application_id="shop-api", environments=["alpha", "beta"], started_at="t", ref="abc")
        b = key_deploy_run(application_id="shop-api", environments=["alpha", "beta"], started_at="t", ref="abc")
        c = key_deploy_run(application_id="shop-api", environments=["alpha"], started_at="t", ref="abc")
        self.assertEqual(a, b)
        self.assertNotEqual(a, c)
        self.assertTrue(a.startswith("run_"))
        self.assertNotEqual(
            key_stack_run(run_id=a, stack_id="alpha/blue", action="plan"),
            key_stack_run(run_id=a, stack_id="alpha/blue", action="deploy"),
        )


if __name__ == "__main__":
    unittest.main()
