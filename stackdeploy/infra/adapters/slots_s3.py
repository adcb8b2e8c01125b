from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from ..contracts import SlotStateStore
from ..errors import ConflictError, RetryableError, ValidationError
from ..models import SlotRecord

# Keep the document bounded; older entries remain in S3 object versions if enabled.
MAX_HISTORY = 100


@dataclass(frozen=True)
class S3SlotStateStoreSettings:
    """Settings for S3SlotStateStore.

    Credentials are resolved via boto3's standard credential chain.

    Environment fallbacks (used when the corresponding setting field is empty):
      - bucket: STACKDEPLOY_SLOTS_S3_BUCKET
      - region: AWS_REGION then AWS_DEFAULT_REGION

    One JSON document per environment is stored at
    ``<prefix><application_id>/<environment>/live_slot.json``.
    """

    application_id: str
    bucket: str = ""
    prefix: str = ""
    region: str = ""


class S3SlotStateStore(SlotStateStore):
    """SlotStateStore backed by S3, next to the Terraform remote state.

    Writes are conditional on the ETag read just before (If-Match / If-None-Match),
    so two concurrent cutovers of the same environment cannot both succeed.
    """

    def __init__(self, *, settings: S3SlotStateStoreSettings, client: Any = None):
        self.settings = settings
        self._client_override = client

    def describe(self) -> Dict[str, Any]:
        return {"class": self.__class__.__name__, "bucket": self._bucket(), "prefix": self._prefix()}

    def _bucket(self) -> str:
        b = str(self.settings.bucket or "").strip()
        if b:
            return b
        b = str(os.environ.get("STACKDEPLOY_SLOTS_S3_BUCKET", "") or "").strip()
        if b:
            return b
        raise ValidationError("S3SlotStateStore bucket missing. Set slot_state_store.settings.bucket or STACKDEPLOY_SLOTS_S3_BUCKET.")

    def _prefix(self) -> str:
        p = str(self.settings.prefix or "").strip().lstrip("/")
        if p and not p.endswith("/"):
            p = p + "/"
        return p

    def _client(self):
        if self._client_override is not None:
            return self._client_override
        import boto3

        region = str(self.settings.region or "").strip()
        if not region:
            region = str(os.environ.get("AWS_REGION", "") or os.environ.get("AWS_DEFAULT_REGION", "") or "").strip()
        if region:
            return boto3.client("s3", region_name=region)
        return boto3.client("s3")

    def _key(self, environment: str) -> str:
        return f"{self._prefix()}{self.settings.application_id}/{environment}/live_slot.json"

    def _read(self, environment: str) -> tuple:
        """Return (document, etag). etag is None when the object does not exist."""
        from botocore.exceptions import ClientError

        client = self._client()
        try:
            resp = client.get_object(Bucket=self._bucket(), Key=self._key(environment))
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in ("404", "NoSuchKey", "NotFound"):
                return {"environment": environment, "history": []}, None
            raise RetryableError(f"S3 read failed: s3://{self._bucket()}/{self._key(environment)} ({e})")
        body = resp["Body"].read()
        try:
            doc = json.loads(body.decode("utf-8") if isinstance(body, bytes) else body)
        except (ValueError, UnicodeDecodeError) as e:
            raise ValidationError(f"slot state document is not valid JSON: s3://{self._bucket()}/{self._key(environment)} ({e})")
        if not isinstance(doc, dict):
            doc = {}
        if not isinstance(doc.get("history"), list):
            doc["history"] = []
        return doc, resp.get("ETag")

    def history(self, environment: str) -> List[SlotRecord]:
        doc, _ = self._read(environment)
        out: List[SlotRecord] = []
        for it in doc["history"]:
            if not isinstance(it, dict):
                continue
            out.append(
                SlotRecord(
                    environment=environment,
                    live_slot=str(it.get("live_slot", "")),
                    previous_slot=str(it.get("previous_slot", "")),
                    action=str(it.get("action", "")),
                    changed_at=str(it.get("changed_at", "")),
                    run_id=str(it.get("run_id", "")),
                    note=str(it.get("note", "")),
                )
            )
        return out

    def latest(self, environment: str) -> Optional[SlotRecord]:
        hist = self.history(environment)
        return hist[-1] if hist else None

    def append(self, record: SlotRecord, *, expected_live: Optional[str] = None) -> SlotRecord:
        from botocore.exceptions import ClientError

        doc, etag = self._read(record.environment)
        hist = doc["history"]
        if expected_live is not None:
            cur_live = str(hist[-1].get("live_slot", "")) if hist and isinstance(hist[-1], dict) else ""
            if cur_live != expected_live:
                raise ConflictError(
                    f"live slot for {record.environment!r} changed concurrently: "
                    f"expected {expected_live or '<none>'!r}, found {cur_live or '<none>'!r}"
                )

        entry = asdict(record)
        entry.pop("environment", None)
        hist.append(entry)
        doc = {"environment": record.environment, "live_slot": record.live_slot, "history": hist[-MAX_HISTORY:]}

        kwargs: Dict[str, Any] = {
            "Bucket": self._bucket(),
            "Key": self._key(record.environment),
            "Body": json.dumps(doc, indent=2, sort_keys=True).encode("utf-8"),
            "ContentType": "application/json",
        }
        if etag:
            kwargs["IfMatch"] = etag
        else:
            kwargs["IfNoneMatch"] = "*"

        try:
            self._client().put_object(**kwargs)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in ("PreconditionFailed", "412", "ConditionalRequestConflict", "409"):
                raise ConflictError(f"live slot for {record.environment!r} was modified concurrently; retry the cutover")
            raise RetryableError(f"S3 write failed: s3://{self._bucket()}/{self._key(record.environment)} ({e})")
        return record
