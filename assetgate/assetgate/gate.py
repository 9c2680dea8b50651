"""
ComplianceGate facade.

Wires one store, one lock manager and one audit log into the components and
records an audit entry after every successful mutation and every transfer
decision. Entries the log cannot take right away are queued and written
before the next one. Audit payloads carry identifiers and outcomes, never
personal information.
"""

import logging
import threading
from collections import deque
from typing import Any, Dict, Iterable, List, Optional, Union

from .addresses import normalize_address
from .audit import (
    ASSET_REGISTERED,
    BALANCE_SYNCED,
    DOCUMENT_ATTACHED,
    DOCUMENT_REVIEWED,
    SUBJECT_APPROVED,
    SUBJECT_CREATED,
    SUBJECT_REJECTED,
    SUBJECT_REVOKED,
    SUBJECT_SUBMITTED,
    TRANSFER_DECIDED,
    WHITELIST_ADDED,
    WHITELIST_REMOVED,
    AuditEntry,
    AuditLog,
    ChainVerification,
    InMemoryAuditLog,
)
from .authorization import TransferAuthorizer
from .errors import InvalidInput, Unavailable
from .identity import IdentityRecordStore
from .ledger import AssetRegistry, BalanceLedger
from .locks import DEFAULT_LOCK_TIMEOUT_SECONDS, KeyedLocks
from .models import (
    Asset,
    Caller,
    DocumentRef,
    DocumentStatus,
    Holding,
    PersonalInfo,
    Subject,
    TransferDecision,
    TransferOutcome,
    TransferRequest,
    WhitelistEntry,
    WhitelistSource,
)
from .signing import ReceiptSigner
from .store import ComplianceStore
from .verification import VerificationStateMachine, require_administrator
from .whitelist import WhitelistProjection

logger = logging.getLogger(__name__)


def _subject_event(subject: Subject, actor: Optional[str] = None, **extra) -> Dict[str, Any]:
    payload = {
        "subject_id": subject.subject_id,
        "wallet_address": subject.wallet_address,
        "verification_state": subject.verification_state.value,
        "version": subject.version,
    }
    if actor is not None:
        payload["actor"] = actor
    payload.update(extra)
    return payload


class ComplianceGate:
    """
    Single entry point for the compliance gate.

    Usage:
        gate = ComplianceGate(InMemoryComplianceStore())
        subject = gate.create_or_get_subject("0xAbC...")
        gate.submit(subject.subject_id, personal_info)
        gate.approve(subject.subject_id, Caller("ops", is_administrator=True), level=2)
        decision = gate.authorize_transfer(TransferRequest(sender, recipient, asset_id, 10))
    """

    def __init__(
        self,
        store: ComplianceStore,
        audit: Optional[AuditLog] = None,
        signer: Optional[ReceiptSigner] = None,
        locks: Optional[KeyedLocks] = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
    ):
        self.store = store
        self.audit = audit if audit is not None else InMemoryAuditLog()
        self._pending_audit: deque = deque()
        self._pending_lock = threading.Lock()
        self.signer = signer
        self.locks = locks if locks is not None else KeyedLocks(timeout=lock_timeout)

        self.verification = VerificationStateMachine(store, self.locks)
        self.identity = IdentityRecordStore(store, self.locks, self.verification)
        self.whitelist = WhitelistProjection(store)
        self.registry = AssetRegistry(store)
        self.ledger = BalanceLedger(store, self.locks, self.registry)
        self.authorizer = TransferAuthorizer(store, self.locks, self.whitelist, self.registry)

    # ============================================================
    # Subjects
    # ============================================================

    def create_or_get_subject(self, wallet_address: str) -> Subject:
        subject, created = self.identity.ensure_subject(wallet_address)
        if created:
            self._record(SUBJECT_CREATED, _subject_event(subject))
        return subject

    def get_subject(self, subject_id: str) -> Subject:
        return self.identity.get_subject(subject_id)

    def find_subject_by_address(self, address: str) -> Subject:
        return self.identity.find_by_address(address)

    def list_subjects(self, state: Any = None, limit: int = 50, offset: int = 0) -> List[Subject]:
        return self.identity.list_subjects(state, limit, offset)

    def submit(
        self,
        subject_id: str,
        personal_info: Union[PersonalInfo, dict],
        documents: Iterable[Union[DocumentRef, dict]] = (),
    ) -> Subject:
        subject = self.identity.record_submission(subject_id, personal_info, documents)
        self._record(SUBJECT_SUBMITTED, _subject_event(subject, document_count=len(subject.documents)))
        return subject

    def attach_document(self, subject_id: str, document: Union[DocumentRef, dict]) -> Subject:
        subject = self.identity.attach_document(subject_id, document)
        doc = subject.documents[-1]
        self._record(DOCUMENT_ATTACHED, _subject_event(
            subject,
            document_index=len(subject.documents) - 1,
            document_type=doc.document_type.value,
            content_hash=doc.content_hash,
        ))
        return subject

    def review_document(
        self, subject_id: str, index: int, status: Union[DocumentStatus, str], caller: Caller
    ) -> Subject:
        subject = self.identity.review_document(subject_id, index, status, caller)
        self._record(DOCUMENT_REVIEWED, _subject_event(
            subject, caller.identity,
            document_index=index,
            status=subject.documents[index].status.value,
        ))
        return subject

    def approve(self, subject_id: str, caller: Caller, level: int) -> Subject:
        subject = self.verification.approve(subject_id, caller, level)
        self._record(SUBJECT_APPROVED, _subject_event(subject, caller.identity, level=level))
        return subject

    def reject(self, subject_id: str, caller: Caller, reason: str) -> Subject:
        subject = self.verification.reject(subject_id, caller, reason)
        self._record(SUBJECT_REJECTED, _subject_event(subject, caller.identity, reason=subject.rejection_reason))
        return subject

    def revoke(self, subject_id: str, caller: Caller, reason: str) -> Subject:
        subject = self.verification.revoke(subject_id, caller, reason)
        self._record(SUBJECT_REVOKED, _subject_event(subject, caller.identity, reason=subject.rejection_reason))
        return subject

    # ============================================================
    # Whitelist
    # ============================================================

    def whitelist_add(self, address: str, caller: Caller) -> WhitelistEntry:
        """Administrative add; idempotent."""
        require_administrator(caller, "whitelist_add")
        entry, added = self.whitelist.add_entry(address, caller.identity, WhitelistSource.ADMINISTRATIVE)
        if added:
            self._record(WHITELIST_ADDED, {
                "address": entry.address,
                "actor": caller.identity,
                "source": entry.source.value,
            })
        return entry

    def whitelist_remove(self, address: str, caller: Caller) -> bool:
        """Administrative remove; idempotent. Verification state is left alone."""
        require_administrator(caller, "whitelist_remove")
        removed = self.whitelist.remove(address)
        if removed:
            self._record(WHITELIST_REMOVED, {
                "address": normalize_address(address),
                "actor": caller.identity,
            })
        return removed

    def is_whitelisted(self, address: str) -> bool:
        return self.whitelist.is_whitelisted(address)

    def whitelist_entries(self, kyc_level: Optional[int] = None) -> List[WhitelistEntry]:
        return self.whitelist.entries(kyc_level)

    # ============================================================
    # Assets and balances
    # ============================================================

    def register_asset(self, fields: Dict[str, Any], issuer: str) -> Asset:
        asset = self.registry.register_asset(fields, issuer)
        self._record(ASSET_REGISTERED, {
            "asset_id": asset.asset_id,
            "issuer": asset.issuer,
            "symbol": asset.symbol,
            "initial_supply": asset.initial_supply,
        })
        return asset

    def get_asset(self, asset_id: str) -> Asset:
        return self.registry.get_asset(asset_id)

    def list_assets(self, asset_type: Optional[str] = None, issuer: Optional[str] = None) -> List[Asset]:
        return self.registry.list_assets(asset_type, issuer)

    def balance_of(self, asset_id: str, address: str) -> int:
        return self.ledger.balance_of(asset_id, address)

    def holdings(self, address: str) -> List[Holding]:
        return self.ledger.holdings(address)

    def sync_balance(self, asset_id: str, address: str, amount: int, caller: Caller) -> int:
        """Overwrite a ledger balance with a chain reading. Returns the previous balance."""
        require_administrator(caller, "sync_balance")
        previous = self.ledger.sync_balance(asset_id, address, amount)
        self._record(BALANCE_SYNCED, {
            "asset_id": normalize_address(asset_id, "asset_id"),
            "address": normalize_address(address),
            "previous": previous,
            "amount": amount,
            "actor": caller.identity,
        })
        return previous

    # ============================================================
    # Transfers
    # ============================================================

    def authorize_transfer(self, request: TransferRequest) -> TransferDecision:
        decision = self.authorizer.authorize(request)
        self._record(TRANSFER_DECIDED, decision.to_dict())
        return decision

    def sign_decision(self, decision: TransferDecision) -> Optional[Dict[str, Any]]:
        """Signed receipt for a decision, or None when no signer is configured."""
        if self.signer is None:
            return None
        return self.signer.sign(decision.to_dict())

    # ============================================================
    # Audit
    # ============================================================

    def audit_entries(self, since_seq: int = 0, limit: Optional[int] = None) -> List[AuditEntry]:
        return self.audit.entries(since_seq, limit)

    def verify_audit(self) -> ChainVerification:
        return self.audit.verify()

    @property
    def pending_audit_events(self) -> int:
        """Events whose mutation has committed but whose audit entry is not yet written."""
        return len(self._pending_audit)

    def _record(self, event_type: str, payload: Dict[str, Any]) -> None:
        # the mutation has already committed; on an audit outage the event stays queued
        with self._pending_lock:
            self._pending_audit.append((event_type, payload))
        self.flush_audit()

    def flush_audit(self) -> int:
        """
        Write queued audit events in order.

        Stops at the first Unavailable and keeps the rest queued for the next
        mutation or flush. Returns the number written.
        """
        written = 0
        with self._pending_lock:
            while self._pending_audit:
                event_type, payload = self._pending_audit[0]
                try:
                    self.audit.append(event_type, payload)
                except Unavailable as e:
                    logger.error("Audit append deferred (%d queued): %s", len(self._pending_audit), e.message)
                    break
                self._pending_audit.popleft()
                written += 1
        return written

    # ============================================================
    # Transfer history
    # ============================================================

    def transfer_history(
        self,
        address: str,
        outcome: Optional[str] = None,
        direction: Optional[str] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """
        Transfer decisions involving `address`, newest first.

        `outcome` filters on the decision outcome and `direction` on
        "sent"/"received"; "all" or None disables either filter.
        """
        address = normalize_address(address)
        if outcome in (None, "all"):
            wanted = None
        else:
            try:
                wanted = TransferOutcome(outcome).value
            except ValueError:
                raise InvalidInput(f"unknown outcome {outcome!r}", "outcome")
        if direction not in (None, "all", "sent", "received"):
            raise InvalidInput("must be sent, received or all", "direction")
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise InvalidInput("must be a positive integer", "limit")

        history = []
        for entry in reversed(self.audit.entries()):
            if entry.event_type != TRANSFER_DECIDED:
                continue
            decision = entry.payload
            request = decision.get("request", {})
            sent = str(request.get("sender", "")).lower() == address
            received = str(request.get("recipient", "")).lower() == address
            if direction == "sent":
                matches = sent
            elif direction == "received":
                matches = received
            else:
                matches = sent or received
            if not matches or (wanted and decision.get("outcome") != wanted):
                continue
            history.append(decision)
            if len(history) >= limit:
                break
        return history
