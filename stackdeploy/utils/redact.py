from __future__ import annotations

from typing import Iterable

REDACTED = "***"

# Very short values would mangle unrelated output (e.g. a secret "1").
MIN_REDACT_LEN = 4


def redact(text: str, secret_values: Iterable[str]) -> str:
    """Replace every occurrence of a secret value in text."""
    if not text:
        return text
    out = text
    # Longest first so a secret containing another secret is fully masked.
    for v in sorted({str(s) for s in secret_values if s}, key=len, reverse=True):
        if len(v) < MIN_REDACT_LEN:
            continue
        out = out.replace(v, REDACTED)
    return out
