"""
Canonical JSON encoding for AssetGate.

Receipts, caller tokens and audit-log payloads are hashed and signed over
their canonical form, so two semantically identical values always produce
identical bytes:

- object keys must be strings and are sorted by code point
- no insignificant whitespace, UTF-8 without escaping non-ASCII
- tuples encode as arrays; NaN and infinities are rejected
"""

import json
import math
from typing import Any


def canonicalize(obj: Any) -> bytes:
    """Canonical JSON bytes for `obj`; raises ValueError for values JSON cannot carry exactly."""
    _check(obj)
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def canonicalize_str(obj: Any) -> str:
    return canonicalize(obj).decode("utf-8")


def _check(value: Any) -> None:
    if value is None or isinstance(value, (bool, int, str)):
        return
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"Cannot canonicalize non-finite number: {value!r}")
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"Object keys must be strings, got {type(key).__name__}")
            _check(item)
        return
    if isinstance(value, (list, tuple)):
        for item in value:
            _check(item)
        return
    raise ValueError(f"Cannot canonicalize type: {type(value).__name__}")
