from __future__ import annotations

import hashlib
from typing import Any, Iterable


def short_hash(parts: Iterable[Any], length: int = 24) -> str:
    msg = "|".join([str(x) for x in parts])
    return hashlib.sha256(msg.encode("utf-8")).hexdigest()[:length]

