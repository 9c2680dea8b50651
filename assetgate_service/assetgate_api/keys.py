"""
Receipt signing key and trust store for the AssetGate service.

The trust store holds two key lists: `receipt_keys` verify the receipts
this service signs, `identity_keys` verify caller tokens.
"""

import json
import os
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from assetgate.signing import ReceiptSigner


class KeyProvider(ABC):

    @property
    @abstractmethod
    def signer(self) -> Optional[ReceiptSigner]:
        """Signer for transfer receipts, or None to return unsigned decisions."""

    @abstractmethod
    def get_trust_store(self) -> Dict[str, Any]:
        ...

    def get_kid(self) -> Optional[str]:
        return self.signer.kid if self.signer else None


class FileKeyProvider(KeyProvider):
    """
    Keys from JSON files written by `assetgate keygen` or tools/gen_keys.py.

    The signing key is read once at startup. The trust store is re-read
    when its mtime moves forward, so identity keys rotate without a restart.
    """

    def __init__(self, signing_key_path: str, trust_store_path: str):
        self.trust_store_path = trust_store_path
        with open(signing_key_path, "r", encoding="utf-8") as f:
            self._signer = ReceiptSigner.from_key(json.load(f))
        self._lock = threading.Lock()
        self._trust_store: Optional[Dict[str, Any]] = None
        self._loaded_mtime = 0.0

    @property
    def signer(self) -> ReceiptSigner:
        return self._signer

    def get_trust_store(self) -> Dict[str, Any]:
        with self._lock:
            try:
                mtime = os.path.getmtime(self.trust_store_path)
            except FileNotFoundError:
                # keep serving the last good copy while the file is being replaced
                if self._trust_store is None:
                    raise
                return self._trust_store
            if self._trust_store is None or mtime > self._loaded_mtime:
                with open(self.trust_store_path, "r", encoding="utf-8") as f:
                    self._trust_store = json.load(f)
                self._loaded_mtime = mtime
            return self._trust_store


class StaticKeyProvider(KeyProvider):
    """In-process signer and trust store, for tests and embedding."""

    def __init__(self, signer: Optional[ReceiptSigner], trust_store: Dict[str, Any]):
        self._signer = signer
        self._trust_store = trust_store

    @property
    def signer(self) -> Optional[ReceiptSigner]:
        return self._signer

    def get_trust_store(self) -> Dict[str, Any]:
        return self._trust_store
