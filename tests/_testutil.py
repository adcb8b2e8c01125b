from __future__ import annotations

import io
import json
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml


def ensure_repo_on_path() -> Path:
    repo_root = Path(__file__).resolve().parents[1]
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))
    return repo_root


ensure_repo_on_path()

from stackdeploy.infra.models import CommandResult  # noqa: E402


def sample_config(**overrides: Any) -> Dict[str, Any]:
    cfg: Dict[str, Any] = {
        "application_id": "shop-api",
        "terraform": {"working_dir": "infra"},
        "backend": {"bucket": "acme-tfstate", "region": "us-east-1", "dynamodb_table": "tf-locks"},
        "secrets": ["DB_PASSWORD"],
        "environments": [
            {"name": "alpha", "variables": {"instance_count": 1}},
            {"name": "beta", "variables": {"instance_count": 2}, "secrets": ["API_TOKEN"]},
            {"name": "prod", "variables": {"instance_count": 4, "tags": {"tier": "prod"}}},
        ],
    }
    cfg.update(overrides)
    return cfg


def write_project(root: Path, config: Optional[Dict[str, Any]] = None, *, var_files: bool = True) -> Path:
    """Lay out a minimal repo: stackdeploy.yml plus infra/envs/<env>/<slot>.tfvars."""
    cfg = config if config is not None else sample_config()
    root.mkdir(parents=True, exist_ok=True)
    (root / "stackdeploy.yml").write_text(yaml.safe_dump(cfg, sort_keys=False), encoding="utf-8")
    if var_files:
        for env in cfg["environments"]:
            for slot in env.get("slots") or ["blue", "green"]:
                p = root / "infra" / "envs" / env["name"] / f"{slot}.tfvars"
                p.parent.mkdir(parents=True, exist_ok=True)
                p.write_text(f'image_tag = "v1"\ncolor = "{slot}"\n', encoding="utf-8")
    return root


class FakeRunner:
    """CommandRunner double. Exit codes are keyed by (terraform subcommand, environment)."""

    def __init__(self, codes: Optional[Dict[Any, int]] = None, stdout: str = "", stderr: str = ""):
        self.codes = dict(codes or {})
        self.calls: List[Dict[str, Any]] = []
        self.stdout = stdout
        self.stderr = stderr
        self._lock = threading.Lock()

    def _code(self, sub: str, env: Mapping[str, str]) -> int:
        environment = env.get("TF_VAR_environment", "")
        if (sub, environment) in self.codes:
            return self.codes[(sub, environment)]
        if sub in self.codes:
            return self.codes[sub]
        return 2 if sub == "plan" else 0

    def __call__(
        self,
        args: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
        timeout_s: Optional[float] = None,
    ) -> CommandResult:
        sub = args[1]
        with self._lock:
            self.calls.append({"args": list(args), "cwd": cwd, "env": dict(env), "timeout_s": timeout_s})
        code = self._code(sub, env)
        if sub == "plan" and code in (0, 2):
            for a in args:
                if a.startswith("-out="):
                    out = Path(a[len("-out="):])
                    out.parent.mkdir(parents=True, exist_ok=True)
                    out.write_text("plan", encoding="utf-8")
        return CommandResult(args=list(args), returncode=code, stdout=self.stdout, stderr=self.stderr)

    def subcommands(self, environment: Optional[str] = None) -> List[str]:
        return [
            c["args"][1]
            for c in self.calls
            if environment is None or c["env"].get("TF_VAR_environment") == environment
        ]


class FakeS3Client:
    """In-memory S3 double honoring IfMatch / IfNoneMatch on put_object."""

    def __init__(self, client_error_cls: Any):
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.client_error_cls = client_error_cls
        self.puts: List[Dict[str, Any]] = []
        self._n = 0

    def _error(self, code: str) -> Exception:
        return self.client_error_cls({"Error": {"Code": code, "Message": code}}, "FakeOp")

    def get_object(self, *, Bucket: str, Key: str) -> Dict[str, Any]:
        obj = self.objects.get(f"{Bucket}/{Key}")
        if obj is None:
            raise self._error("NoSuchKey")
        return {"Body": io.BytesIO(obj["body"]), "ETag": obj["etag"]}

    def put_object(self, **kwargs: Any) -> Dict[str, Any]:
        k = f"{kwargs['Bucket']}/{kwargs['Key']}"
        cur = self.objects.get(k)
        if "IfNoneMatch" in kwargs and cur is not None:
            raise self._error("PreconditionFailed")
        if "IfMatch" in kwargs and (cur is None or cur["etag"] != kwargs["IfMatch"]):
            raise self._error("PreconditionFailed")
        self._n += 1
        etag = f'"etag-{self._n}"'
        self.objects[k] = {"body": kwargs["Body"], "etag": etag}
        self.puts.append(kwargs)
        return {"ETag": etag}

    def document(self, bucket: str, key: str) -> Dict[str, Any]:
        return json.loads(self.objects[f"{bucket}/{key}"]["body"].decode("utf-8"))


class FakeResponse:
    def __init__(self, status_code: int):
        self.status_code = status_code


class FakeHttpSession:
    """requests.Session double returning a scripted sequence of status codes (or exceptions)."""

    def __init__(self, statuses: List[Any]):
        self.statuses = list(statuses)
        self.urls: List[str] = []

    def get(self, url: str, timeout: Optional[float] = None) -> FakeResponse:
        self.urls.append(url)
        nxt = self.statuses.pop(0) if self.statuses else 503
        if isinstance(nxt, Exception):
            raise nxt
        return FakeResponse(int(nxt))
