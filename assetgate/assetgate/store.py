"""
Compliance store interface and in-memory implementation.

One explicitly constructed store handle is shared by every component of a
gate. Each mutating method is a single atomic step: a subject transition
and its whitelist side effect land together, and a transfer debits and
credits together, so readers never see a torn update.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from .models import Asset, Holding, Subject, VerificationState, WhitelistEntry


class ComplianceStore(ABC):
    """
    Abstract storage for subjects, the whitelist, assets and balances.

    Implementations:
    - InMemoryComplianceStore (tests, single process)
    - assetgate_api.db.SqliteComplianceStore (service)

    Addresses passed in are already normalized by the caller.
    """

    # --- subjects -------------------------------------------------------

    @abstractmethod
    def get_subject(self, subject_id: str) -> Optional[Subject]:
        pass

    @abstractmethod
    def find_subject_by_address(self, address: str) -> Optional[Subject]:
        pass

    @abstractmethod
    def insert_subject(self, subject: Subject) -> Subject:
        """
        Insert a new subject unless one already exists for its address.

        Returns:
            The stored subject: the new one, or the existing one
        """
        pass

    @abstractmethod
    def compare_and_swap_subject(
        self,
        expected_version: int,
        subject: Subject,
        whitelist_add: Optional[WhitelistEntry] = None,
        whitelist_remove: Optional[str] = None,
    ) -> bool:
        """
        Replace a subject only if its stored version still equals
        expected_version, applying the whitelist change in the same step.

        Returns:
            True if the swap happened, False if the record moved on
        """
        pass

    @abstractmethod
    def list_subjects(
        self,
        state: Optional[VerificationState] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Subject]:
        """Subjects ordered by most recently updated first."""
        pass

    # --- whitelist ------------------------------------------------------

    @abstractmethod
    def add_whitelist(self, entry: WhitelistEntry) -> WhitelistEntry:
        """Insert an entry; if the address is present, return the existing entry."""
        pass

    @abstractmethod
    def remove_whitelist(self, address: str) -> bool:
        pass

    @abstractmethod
    def get_whitelist(self, address: str) -> Optional[WhitelistEntry]:
        pass

    @abstractmethod
    def list_whitelist(self) -> List[WhitelistEntry]:
        pass

    # --- assets and balances -------------------------------------------

    @abstractmethod
    def insert_asset(self, asset: Asset) -> bool:
        """
        Register an asset and credit its initial supply to the issuer.

        Returns:
            False if an asset with the same id already exists
        """
        pass

    @abstractmethod
    def get_asset(self, asset_id: str) -> Optional[Asset]:
        pass

    @abstractmethod
    def list_assets(self) -> List[Asset]:
        pass

    @abstractmethod
    def get_balance(self, asset_id: str, address: str) -> int:
        pass

    @abstractmethod
    def set_balance(self, asset_id: str, address: str, amount: int):
        pass

    @abstractmethod
    def holdings(self, address: str) -> List[Holding]:
        """Non-zero balances held by an address."""
        pass

    @abstractmethod
    def apply_transfer(
        self, asset_id: str, sender: str, recipient: str, amount: int
    ) -> Optional[Tuple[int, int]]:
        """
        Debit sender and credit recipient in one step.

        Returns:
            (sender_balance, recipient_balance) after the move, or None if the
            sender's balance was insufficient (nothing changed)
        """
        pass


class InMemoryComplianceStore(ComplianceStore):
    """
    In-memory store for development/testing.

    WARNING: Not suitable for production.
    - Not persistent across restarts
    - Not shared between processes

    Use assetgate_api.db.SqliteComplianceStore for the service.
    """

    def __init__(self):
        self._subjects: Dict[str, Subject] = {}
        self._by_address: Dict[str, str] = {}
        self._whitelist: Dict[str, WhitelistEntry] = {}
        self._assets: Dict[str, Asset] = {}
        self._balances: Dict[Tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def get_subject(self, subject_id: str) -> Optional[Subject]:
        with self._lock:
            return self._subjects.get(subject_id)

    def find_subject_by_address(self, address: str) -> Optional[Subject]:
        with self._lock:
            subject_id = self._by_address.get(address)
            return self._subjects.get(subject_id) if subject_id else None

    def insert_subject(self, subject: Subject) -> Subject:
        with self._lock:
            existing = self._by_address.get(subject.wallet_address)
            if existing:
                return self._subjects[existing]
            self._subjects[subject.subject_id] = subject
            self._by_address[subject.wallet_address] = subject.subject_id
            return subject

    def compare_and_swap_subject(
        self,
        expected_version: int,
        subject: Subject,
        whitelist_add: Optional[WhitelistEntry] = None,
        whitelist_remove: Optional[str] = None,
    ) -> bool:
        with self._lock:
            current = self._subjects.get(subject.subject_id)
            if current is None or current.version != expected_version:
                return False
            self._subjects[subject.subject_id] = subject
            if whitelist_add is not None and whitelist_add.address not in self._whitelist:
                self._whitelist[whitelist_add.address] = whitelist_add
            if whitelist_remove is not None:
                self._whitelist.pop(whitelist_remove, None)
            return True

    def list_subjects(
        self,
        state: Optional[VerificationState] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Subject]:
        with self._lock:
            subjects = list(self._subjects.values())
        if state is not None:
            subjects = [s for s in subjects if s.verification_state == state]
        subjects.sort(key=lambda s: s.updated_at, reverse=True)
        return subjects[offset:offset + limit]

    def add_whitelist(self, entry: WhitelistEntry) -> WhitelistEntry:
        with self._lock:
            return self._whitelist.setdefault(entry.address, entry)

    def remove_whitelist(self, address: str) -> bool:
        with self._lock:
            return self._whitelist.pop(address, None) is not None

    def get_whitelist(self, address: str) -> Optional[WhitelistEntry]:
        with self._lock:
            return self._whitelist.get(address)

    def list_whitelist(self) -> List[WhitelistEntry]:
        with self._lock:
            entries = list(self._whitelist.values())
        return sorted(entries, key=lambda e: e.added_at)

    def insert_asset(self, asset: Asset) -> bool:
        with self._lock:
            if asset.asset_id in self._assets:
                return False
            self._assets[asset.asset_id] = asset
            key = (asset.asset_id, asset.issuer)
            self._balances[key] = self._balances.get(key, 0) + asset.initial_supply
            return True

    def get_asset(self, asset_id: str) -> Optional[Asset]:
        with self._lock:
            return self._assets.get(asset_id)

    def list_assets(self) -> List[Asset]:
        with self._lock:
            assets = list(self._assets.values())
        return sorted(assets, key=lambda a: a.registered_at, reverse=True)

    def get_balance(self, asset_id: str, address: str) -> int:
        with self._lock:
            return self._balances.get((asset_id, address), 0)

    def set_balance(self, asset_id: str, address: str, amount: int):
        with self._lock:
            self._balances[(asset_id, address)] = amount

    def holdings(self, address: str) -> List[Holding]:
        with self._lock:
            items = [(k, v) for k, v in self._balances.items() if k[1] == address and v > 0]
        return [Holding(asset_id=k[0], address=k[1], amount=v) for k, v in sorted(items)]

    def apply_transfer(
        self, asset_id: str, sender: str, recipient: str, amount: int
    ) -> Optional[Tuple[int, int]]:
        with self._lock:
            sender_key = (asset_id, sender)
            recipient_key = (asset_id, recipient)
            sender_balance = self._balances.get(sender_key, 0)
            if sender_balance < amount:
                return None
            self._balances[sender_key] = sender_balance - amount
            self._balances[recipient_key] = self._balances.get(recipient_key, 0) + amount
            return self._balances[sender_key], self._balances[recipient_key]
