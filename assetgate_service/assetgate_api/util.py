"""
Small helpers shared by the auth, chain, storage and logging modules.
"""

import base64
import re
import time
from datetime import datetime, timezone

_HEX = re.compile(r"[0-9a-fA-F]*")


def now_epoch() -> int:
    return int(time.time())


def utc_rfc3339(ts_epoch: int) -> str:
    """Unix seconds as an RFC 3339 UTC timestamp, e.g. 2026-01-31T09:30:00Z."""
    return datetime.fromtimestamp(ts_epoch, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def b64url_encode(data: bytes) -> str:
    """Unpadded URL-safe base64, the encoding of caller tokens."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def is_hex(text: str, length: int = None) -> bool:
    if not isinstance(text, str) or (length is not None and len(text) != length):
        return False
    return bool(text) and _HEX.fullmatch(text) is not None


def mask_sensitive(value: str, visible_chars: int = 4) -> str:
    """Keep only the last `visible_chars` characters of a wallet address or content id."""
    hidden = len(value) - visible_chars if len(value) > visible_chars else len(value)
    return "*" * hidden + value[hidden:]
