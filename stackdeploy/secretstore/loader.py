from __future__ import annotations

import base64
import hashlib
import json
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from ..infra.errors import SecretStoreError

DEFAULT_STORE_REL_PATH = Path(".stackdeploy") / "secretstore.json.gpg"


@dataclass
class SecretStore:
    """In-memory decrypted secret store.

    Shape::

        version: 1
        shared:        {secrets: {...}, vars: {...}}
        environments:  {<env>: {secrets: {...}, vars: {...}}}
    """

    raw: Dict[str, Any]

    @property
    def version(self) -> int:
        try:
            return int(self.raw.get("version", 0))
        except (TypeError, ValueError):
            return 0

    def _section(self, block: Any, section: str) -> Dict[str, str]:
        if not isinstance(block, dict):
            return {}
        d = block.get(section) or {}
        if not isinstance(d, dict):
            return {}
        out: Dict[str, str] = {}
        for k, v in d.items():
            kk = str(k or "").strip()
            if not kk:
                continue
            out[kk] = "" if v is None else str(v)
        return out

    def environment_block(self, environment: str) -> Dict[str, Any]:
        envs = self.raw.get("environments") or {}
        if not isinstance(envs, dict):
            return {}
        blk = envs.get(environment) or {}
        return blk if isinstance(blk, dict) else {}

    def secrets_for(self, environment: str) -> Dict[str, str]:
        """Shared secrets overlaid by environment-specific ones."""
        out = self._section(self.raw.get("shared"), "secrets")
        out.update(self._section(self.environment_block(environment), "secrets"))
        return out

    def vars_for(self, environment: str) -> Dict[str, str]:
        out = self._section(self.raw.get("shared"), "vars")
        out.update(self._section(self.environment_block(environment), "vars"))
        return out


def empty_store() -> SecretStore:
    return SecretStore(raw={"version": 0, "shared": {}, "environments": {}})


def _decrypt_gpg_json(gpg_path: Path, passphrase: str) -> Dict[str, Any]:
    """Decrypt a symmetrically encrypted .gpg file and parse JSON.

    Uses --passphrase-fd to avoid putting the passphrase on the command line.
    """
    if not gpg_path.exists():
        return {}
    # gpg treats --passphrase-fd as line-oriented; always send a trailing newline.
    proc = subprocess.run(
        [
            "gpg",
            "--batch",
            "--yes",
            "--pinentry-mode",
            "loopback",
            "--passphrase-fd",
            "0",
            "-d",
            str(gpg_path),
        ],
        input=(passphrase + "\n").encode("utf-8"),
        text=False,
        capture_output=True,
    )
    if proc.returncode != 0:
        stderr = (proc.stderr or b"").decode("utf-8", errors="replace").strip()
        digest = hashlib.sha256(gpg_path.read_bytes()).hexdigest()[:16]
        if "Bad session key" in stderr or "decryption failed" in stderr:
            raise SecretStoreError(
                "Failed to decrypt secretstore: gpg reported a bad session key. "
                "This almost always means the passphrase is incorrect for the current "
                f"secretstore.json.gpg (sha256[:16]={digest}). gpg stderr: {stderr}"
            )
        raise SecretStoreError(f"Failed to decrypt secretstore (sha256[:16]={digest}): {stderr}")

    out = (proc.stdout or b"").decode("utf-8", errors="replace").strip()
    if not out:
        return {}
    try:
        data = json.loads(out)
    except json.JSONDecodeError as e:
        raise SecretStoreError(f"Decrypted secretstore is not valid JSON: {e}")
    return data if isinstance(data, dict) else {}


def resolve_secretstore_path(repo_root: Path) -> Path:
    env_path = str(os.environ.get("STACKDEPLOY_SECRETSTORE_PATH", "") or "").strip()
    if env_path:
        return Path(env_path).expanduser().resolve()
    return repo_root / DEFAULT_STORE_REL_PATH


def _passphrase_from_env() -> str:
    # Base64 is accepted because operators occasionally paste passphrases with stray newlines.
    passphrase_b64 = (os.environ.get("STACKDEPLOY_SECRETSTORE_PASSPHRASE_B64") or "").strip()
    if passphrase_b64:
        try:
            return base64.b64decode(passphrase_b64).decode("utf-8", errors="strict")
        except (ValueError, UnicodeDecodeError) as e:
            raise SecretStoreError(f"STACKDEPLOY_SECRETSTORE_PASSPHRASE_B64 is set but could not be decoded: {e}")
    # Keep intentional leading/trailing spaces; only drop copy/paste line endings.
    return (os.environ.get("STACKDEPLOY_SECRETSTORE_PASSPHRASE") or "").rstrip("\r\n")


def load_secretstore(repo_root: Path, path: Optional[Path] = None) -> SecretStore:
    """Load and decrypt the repository secret store.

    If no passphrase is configured, returns an empty store; secrets are then
    expected to come from the process environment (e.g. CI secrets).
    """
    gpg_path = path if path is not None else resolve_secretstore_path(repo_root)
    passphrase = _passphrase_from_env()
    if not passphrase:
        return empty_store()

    raw = _decrypt_gpg_json(gpg_path=gpg_path, passphrase=passphrase)
    if not raw:
        return empty_store()
    return SecretStore(raw=raw)
