from __future__ import annotations

import contextlib
import io
import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from _testutil import FakeRunner, ensure_repo_on_path, write_project


def _run(argv):
    from stackdeploy.cli import main

    out, err = io.StringIO(), io.StringIO()
    with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
        code = main(argv)
    return code, out.getvalue(), err.getvalue()


class TestCli(unittest.TestCase):
    def setUp(self) -> None:
        patcher = mock.patch.dict(os.environ, {}, clear=False)
        patcher.start()
        self.addCleanup(patcher.stop)
        for k in list(os.environ):
            if k.startswith(("STACKDEPLOY_", "GITHUB_")) or k in ("DB_PASSWORD", "API_TOKEN"):
                os.environ.pop(k, None)

    def test_stacks(self) -> None:
        ensure_repo_on_path()

        with tempfile.TemporaryDirectory() as td:
            root = write_project(Path(td))
            code, out, _ = _run(["--repo-root", str(root), "stacks", "--env", "prod"])
        self.assertEqual(code, 0)
        data = json.loads(out)
        self.assertEqual([s["stack_id"] for s in data], ["prod/blue", "prod/green"])
        self.assertEqual(data[0]["state_key"], "shop-api/prod/terraform.tfstate")
        self.assertEqual([s["workspace"] for s in data], ["blue", "green"])
        self.assertIsNone(data[0]["next_environment"])

    def test_matrix_writes_step_output(self) -> None:
        ensure_repo_on_path()

        with tempfile.TemporaryDirectory() as td:
            root = write_project(Path(td))
            gh_out = Path(td) / "gh_output"
            os.environ["GITHUB_OUTPUT"] = str(gh_out)
            _run(["--repo-root", str(root), "cutover", "--env", "alpha", "--slot", "blue"])
            code, out, _ = _run(["--repo-root", str(root), "matrix", "--idle-only"])
            written = gh_out.read_text(encoding="utf-8")

        self.assertEqual(code, 0)
        matrix = json.loads(out)
        self.assertEqual(
            [m["stack_id"] for m in matrix["include"]],
            ["alpha/green", "beta/blue", "prod/blue"],
        )
        self.assertIn("matrix=" + out.strip(), written)

    def test_cutover_status_rollback(self) -> None:
        ensure_repo_on_path()

        with tempfile.TemporaryDirectory() as td:
            root = str(write_project(Path(td)))
            self.assertEqual(_run(["--repo-root", root, "cutover", "--env", "beta", "--slot", "green"])[0], 0)
            self.assertEqual(_run(["--repo-root", root, "cutover", "--env", "beta", "--slot", "blue"])[0], 0)

            code, out, _ = _run(["--repo-root", root, "status", "--env", "beta"])
            self.assertEqual(code, 0)
            status = json.loads(out)[0]
            self.assertEqual(status["live_slot"], "blue")
            self.assertEqual(status["idle_slot"], "green")
            self.assertEqual(status["last_action"], "cutover")

            code, out, _ = _run(["--repo-root", root, "rollback", "--env", "beta"])
            self.assertEqual(code, 0)
            self.assertEqual(json.loads(out)["live_slot"], "green")

            # Nothing to roll back to in a fresh environment.
            code, _, err = _run(["--repo-root", root, "rollback", "--env", "prod"])
            self.assertEqual(code, 2)
            self.assertIn("[stackdeploy] ERROR:", err)

    def test_secrets_check(self) -> None:
        ensure_repo_on_path()

        with tempfile.TemporaryDirectory() as td:
            root = str(write_project(Path(td)))
            os.environ["DB_PASSWORD"] = "pw-1234567890"
            code, out, err = _run(["--repo-root", root, "secrets-check"])
            self.assertEqual(code, 1)
            self.assertEqual(json.loads(out)["missing"], {"beta": ["API_TOKEN"]})
            self.assertIn("[preflight][FAILED] environment=beta", err)

            os.environ["API_TOKEN_BETA"] = "tok-abcdef123"
            code, out, _ = _run(["--repo-root", root, "secrets-check"])
            self.assertEqual(code, 0)
            self.assertTrue(json.loads(out)["ok"])

            code, out, _ = _run(["--repo-root", root, "secrets-check", "--env", "alpha", "--offline-ok"])
            self.assertEqual(code, 0)

    def test_unknown_environment_is_an_error(self) -> None:
        ensure_repo_on_path()

        with tempfile.TemporaryDirectory() as td:
            root = str(write_project(Path(td)))
            code, _, err = _run(["--repo-root", root, "stacks", "--env", "staging"])
        self.assertEqual(code, 2)
        self.assertIn("unknown environment", err)

    def test_deploy_exit_code_reflects_failed_stack(self) -> None:
        ensure_repo_on_path()

        import stackdeploy.cli as cli
        from stackdeploy.infra.factory import build_infra

        runner = FakeRunner(codes={("apply", "prod"): 1})

        def _build(repo_root, **kwargs):
            return build_infra(repo_root, runner=runner, **kwargs)

        with tempfile.TemporaryDirectory() as td:
            root = str(write_project(Path(td)))
            summary = Path(td) / "summary.md"
            os.environ.update({"DB_PASSWORD": "pw-1234567890", "API_TOKEN": "tok-abcdef123", "GITHUB_STEP_SUMMARY": str(summary)})
            with mock.patch.object(cli, "build_infra", _build):
                code, out, _ = _run(["--repo-root", root, "deploy", "--env", "alpha", "--env", "prod", "--cutover"])
            summary_text = summary.read_text(encoding="utf-8")

        self.assertEqual(code, 1)
        data = json.loads(out)
        self.assertEqual(data["status"], "PARTIAL")
        by_id = {s["stack_id"]: s for s in data["stacks"]}
        self.assertEqual(by_id["alpha/blue"]["live_slot"], "blue")
        self.assertEqual(by_id["prod/blue"]["reason_code"], "apply_failed")
        self.assertIsNone(by_id["prod/blue"]["live_slot"])
        self.assertIn("| prod/blue | FAILED |", summary_text)

    def test_deploy_stdout_stays_json_under_actions(self) -> None:
        ensure_repo_on_path()

        import stackdeploy.cli as cli
        from stackdeploy.infra.factory import build_infra

        runner = FakeRunner()

        def _build(repo_root, **kwargs):
            return build_infra(repo_root, runner=runner, **kwargs)

        with tempfile.TemporaryDirectory() as td:
            root = str(write_project(Path(td)))
            os.environ.update({"GITHUB_ACTIONS": "true", "DB_PASSWORD": "pw-1234567890"})
            with mock.patch.object(cli, "build_infra", _build):
                code, out, err = _run(["--repo-root", root, "plan", "--env", "alpha"])

        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["status"], "SUCCEEDED")
        self.assertNotIn("::add-mask::", out)
        self.assertIn("::add-mask::pw-1234567890", err)


if __name__ == "__main__":
    unittest.main()
