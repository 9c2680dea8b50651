"""
Append-only, hash-chained audit log.

Every state transition, whitelist edit and transfer decision is appended as
an entry whose hash covers its predecessor's hash, so any rewrite of history
breaks the chain from that point on.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

from .hashing import chain_entry_hash, payload_hash
from .models import iso, utcnow

# Event types
SUBJECT_CREATED = "subject.created"
SUBJECT_SUBMITTED = "subject.submitted"
SUBJECT_APPROVED = "subject.approved"
SUBJECT_REJECTED = "subject.rejected"
SUBJECT_REVOKED = "subject.revoked"
DOCUMENT_ATTACHED = "document.attached"
DOCUMENT_REVIEWED = "document.reviewed"
WHITELIST_ADDED = "whitelist.added"
WHITELIST_REMOVED = "whitelist.removed"
ASSET_REGISTERED = "asset.registered"
BALANCE_SYNCED = "balance.synced"
TRANSFER_DECIDED = "transfer.decided"


@dataclass(frozen=True)
class AuditEntry:
    seq: int
    event_type: str
    recorded_at: str
    payload_hash: str
    prev_entry_hash: Optional[str]
    entry_hash: str
    payload: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "event_type": self.event_type,
            "recorded_at": self.recorded_at,
            "payload_hash": self.payload_hash,
            "prev_entry_hash": self.prev_entry_hash,
            "entry_hash": self.entry_hash,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEntry":
        return cls(
            seq=int(data["seq"]),
            event_type=data["event_type"],
            recorded_at=data["recorded_at"],
            payload_hash=data["payload_hash"],
            prev_entry_hash=data.get("prev_entry_hash"),
            entry_hash=data["entry_hash"],
            payload=data.get("payload") or {},
        )


def build_entry(seq: int, event_type: str, payload: Dict[str, Any], prev_entry_hash: Optional[str]) -> AuditEntry:
    """Compute the hashes for the next entry of a chain."""
    body = {"event_type": event_type, "payload": payload}
    digest = payload_hash(body)
    return AuditEntry(
        seq=seq,
        event_type=event_type,
        recorded_at=iso(utcnow()),
        payload_hash=digest,
        prev_entry_hash=prev_entry_hash,
        entry_hash=chain_entry_hash(prev_entry_hash, digest),
        payload=payload,
    )


@dataclass
class ChainVerification:
    ok: bool
    checked: int
    first_bad_seq: Optional[int] = None
    reason: Optional[str] = None
    head: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "checked": self.checked,
            "first_bad_seq": self.first_bad_seq,
            "reason": self.reason,
            "head": self.head,
        }


def verify_chain(entries: Iterable[Union[AuditEntry, Dict[str, Any]]]) -> ChainVerification:
    """
    Recompute every payload hash and link of an exported chain.

    Entries must be in sequence order, starting from the first entry.
    """
    prev: Optional[str] = None
    expected_seq = 1
    checked = 0
    for raw in entries:
        entry = raw if isinstance(raw, AuditEntry) else AuditEntry.from_dict(raw)
        if entry.seq != expected_seq:
            return ChainVerification(False, checked, entry.seq, "sequence gap")
        if entry.prev_entry_hash != prev:
            return ChainVerification(False, checked, entry.seq, "prev_entry_hash mismatch")
        digest = payload_hash({"event_type": entry.event_type, "payload": entry.payload})
        if digest != entry.payload_hash:
            return ChainVerification(False, checked, entry.seq, "payload_hash mismatch")
        if chain_entry_hash(prev, digest) != entry.entry_hash:
            return ChainVerification(False, checked, entry.seq, "entry_hash mismatch")
        prev = entry.entry_hash
        expected_seq += 1
        checked += 1
    return ChainVerification(True, checked, head=prev)


class AuditLog(ABC):
    """
    Abstract interface for the audit log.

    Appends must be serialized so that each entry links to the true
    predecessor.
    """

    @abstractmethod
    def append(self, event_type: str, payload: Dict[str, Any]) -> AuditEntry:
        pass

    @abstractmethod
    def entries(self, since_seq: int = 0, limit: Optional[int] = None) -> List[AuditEntry]:
        """Entries with seq > since_seq, in order."""
        pass

    @abstractmethod
    def head(self) -> Optional[AuditEntry]:
        pass

    def verify(self) -> ChainVerification:
        return verify_chain(self.entries())


class InMemoryAuditLog(AuditLog):
    """
    In-memory audit log for development/testing.

    WARNING: Not persistent. Use assetgate_api.db.SqliteAuditLog or
    assetgate_api.log_backends.S3ObjectLockAuditLog for the service.
    """

    def __init__(self):
        self._entries: List[AuditEntry] = []
        self._lock = threading.Lock()

    def append(self, event_type: str, payload: Dict[str, Any]) -> AuditEntry:
        with self._lock:
            prev = self._entries[-1].entry_hash if self._entries else None
            entry = build_entry(len(self._entries) + 1, event_type, payload, prev)
            self._entries.append(entry)
            return entry

    def entries(self, since_seq: int = 0, limit: Optional[int] = None) -> List[AuditEntry]:
        with self._lock:
            selected = self._entries[since_seq:]
        return selected[:limit] if limit is not None else selected

    def head(self) -> Optional[AuditEntry]:
        with self._lock:
            return self._entries[-1] if self._entries else None
