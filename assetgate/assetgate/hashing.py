"""
Hashing helpers.

All hashes are SHA-256 with lowercase hexadecimal output. Audit entries are
chained: each entry hash covers the previous entry hash and the payload hash.
"""

import hashlib
from typing import Any, Optional, Union

from .canonicalization import canonicalize


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 and return bare lowercase hex."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def sha256_hash(data: Union[bytes, str]) -> str:
    """
    Compute SHA-256 with an algorithm prefix.

    Returns:
        Hash string in format "sha256:abcdef..."
    """
    return f"sha256:{sha256_hex(data)}"


def payload_hash(payload: Any) -> str:
    """Hash of the canonical JSON form of a payload."""
    return sha256_hex(canonicalize(payload))


def content_hash(data: Union[bytes, str]) -> str:
    """
    Content-addressed handle for a blob.

    Used by the in-memory blob store; IPFS returns its own CIDs.

    Returns:
        Content reference in format "content:sha256:abcdef..."
    """
    return f"content:{sha256_hash(data)}"


def chain_entry_hash(prev_entry_hash: Optional[str], payload_digest: str) -> str:
    """
    Link an audit entry to its predecessor.

    entry_hash = SHA-256(prev_entry_hash || payload_hash), with an empty
    string standing in for the predecessor of the first entry.
    """
    data = (prev_entry_hash or "").encode("utf-8") + payload_digest.encode("utf-8")
    return sha256_hex(data)


def verify_hash(declared_hash: str, data: Union[bytes, str]) -> bool:
    """Recompute and compare a declared "sha256:" or "content:sha256:" hash."""
    if declared_hash.startswith("sha256:"):
        return sha256_hash(data) == declared_hash
    elif declared_hash.startswith("content:sha256:"):
        return content_hash(data) == declared_hash
    else:
        return False
