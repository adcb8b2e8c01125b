from __future__ import annotations

import sys
import time
from typing import Any, Callable, Optional

import requests

from ..infra.errors import HealthCheckError
from ..infra.models import HealthCheckSpec


def _is_healthy(status_code: int, spec: HealthCheckSpec) -> bool:
    if spec.expected_status is not None:
        return status_code == spec.expected_status
    return 200 <= status_code < 300


def wait_until_healthy(
    spec: HealthCheckSpec,
    slot: str,
    *,
    session: Optional[Any] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Poll the slot's health endpoint until it answers with the expected status.

    Returns the number of attempts used. Raises HealthCheckError once the retry
    budget is exhausted.
    """
    url = spec.url_for(slot)
    http = session if session is not None else requests.Session()
    last = ""
    for attempt in range(1, spec.retries + 1):
        try:
            resp = http.get(url, timeout=spec.timeout_s)
            if _is_healthy(resp.status_code, spec):
                print(f"[health] INFO: {url} healthy after {attempt} attempt(s)", file=sys.stderr)
                return attempt
            last = f"HTTP {resp.status_code}"
        except requests.RequestException as e:
            last = f"{e.__class__.__name__}: {e}"
        print(f"[health] WARNING: {url} attempt {attempt}/{spec.retries}: {last}", file=sys.stderr)
        if attempt < spec.retries:
            sleep(spec.interval_s)
    raise HealthCheckError(f"slot {slot!r} not healthy at {url} after {spec.retries} attempt(s): {last}")
