"""
Interfaces for the external systems the gate consumes, with in-memory
implementations for tests and local runs.

Network-backed implementations live in the service package
(assetgate_api.storage, assetgate_api.chain). The core never calls these
while holding a lock; the service fetches first and then enters the core.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from .errors import NotFound, Unavailable
from .hashing import content_hash


class BlobStorage(ABC):
    """Content-addressed document storage."""

    @abstractmethod
    def put(self, data: bytes, filename: Optional[str] = None) -> str:
        """Store bytes and return their content hash."""
        pass

    @abstractmethod
    def get(self, handle: str) -> bytes:
        """Raises NotFound for an unknown handle, Unavailable on backend failure."""
        pass


class ArchivalStorage(ABC):
    """Optional permanent storage for documents."""

    @abstractmethod
    def archive(self, data: bytes, tags: Optional[Dict[str, str]] = None) -> str:
        pass

    @abstractmethod
    def fetch(self, archival_ref: str) -> bytes:
        pass


class ChainQuery(ABC):
    """Read-only view of token balances and transactions on chain."""

    @abstractmethod
    def get_balance(self, asset_id: str, address: str) -> int:
        pass

    @abstractmethod
    def verify_tx_receipt(self, tx_hash: str) -> Dict[str, Any]:
        """
        Returns:
            {"tx_hash", "status": "success"|"failed"|"not_found", "block_number"}
        """
        pass


class InMemoryBlobStorage(BlobStorage):

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, data: bytes, filename: Optional[str] = None) -> str:
        handle = content_hash(data)
        with self._lock:
            self._blobs[handle] = bytes(data)
        return handle

    def get(self, handle: str) -> bytes:
        with self._lock:
            data = self._blobs.get(handle)
        if data is None:
            raise NotFound(f"blob {handle} not found")
        return data


class InMemoryArchivalStorage(ArchivalStorage):

    def __init__(self):
        self._items: Dict[str, Tuple[bytes, Dict[str, str]]] = {}
        self._lock = threading.Lock()

    def archive(self, data: bytes, tags: Optional[Dict[str, str]] = None) -> str:
        ref = "ar:" + content_hash(data).split(":")[-1][:43]
        with self._lock:
            self._items[ref] = (bytes(data), dict(tags or {}))
        return ref

    def fetch(self, archival_ref: str) -> bytes:
        with self._lock:
            item = self._items.get(archival_ref)
        if item is None:
            raise NotFound(f"archive {archival_ref} not found")
        return item[0]


class StaticChainQuery(ChainQuery):
    """
    Chain query answering from fixed tables.

    Usage:
        chain = StaticChainQuery()
        chain.balances[(asset_id, address)] = 500
        chain.receipts[tx_hash] = {"status": "success", "block_number": 12}
    """

    def __init__(self, available: bool = True):
        self.available = available
        self.balances: Dict[Tuple[str, str], int] = {}
        self.receipts: Dict[str, Dict[str, Any]] = {}

    def _check(self):
        if not self.available:
            raise Unavailable("chain node unreachable")

    def get_balance(self, asset_id: str, address: str) -> int:
        self._check()
        return self.balances.get((asset_id, address), 0)

    def verify_tx_receipt(self, tx_hash: str) -> Dict[str, Any]:
        self._check()
        receipt = self.receipts.get(tx_hash)
        if receipt is None:
            return {"tx_hash": tx_hash, "status": "not_found", "block_number": None}
        return {"tx_hash": tx_hash, **receipt}
