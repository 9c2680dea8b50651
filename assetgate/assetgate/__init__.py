"""
AssetGate: compliance gate for tokenized-asset transfers.

Version: 1.0.0

Wallet holders submit identity information and documents; administrators
approve or reject them; approved wallets are whitelisted; and a transfer of
an asset balance is accepted only if the recipient is whitelisted and the
sender holds enough.

    NotStarted -> Pending -> Approved | Rejected,  Rejected -> Pending,
    Approved -> Rejected (revoke)

Usage:
    from assetgate import (
        Caller,
        ComplianceGate,
        InMemoryComplianceStore,
        TransferRequest,
    )

    gate = ComplianceGate(InMemoryComplianceStore())
    admin = Caller("compliance-officer", is_administrator=True)

    subject = gate.create_or_get_subject("0x52908400098527886E0F7030069857D2E4169EE7")
    gate.submit(subject.subject_id, {...personal info...})
    gate.approve(subject.subject_id, admin, level=2)

    decision = gate.authorize_transfer(
        TransferRequest(sender=issuer, recipient=subject.wallet_address,
                        asset_id=asset.asset_id, amount=1000)
    )
    if decision.accepted():
        receipt = gate.sign_decision(decision)
"""

__version__ = "1.0.0"

from .addresses import checksum_address, is_valid_address, normalize_address
from .audit import AuditEntry, AuditLog, ChainVerification, InMemoryAuditLog, verify_chain
from .authorization import TransferAuthorizer
from .canonicalization import canonicalize, canonicalize_str
from .collaborators import (
    ArchivalStorage,
    BlobStorage,
    ChainQuery,
    InMemoryArchivalStorage,
    InMemoryBlobStorage,
    StaticChainQuery,
)
from .errors import (
    AlreadyExists,
    ComplianceError,
    ErrorKind,
    InvalidAddress,
    InvalidAmount,
    InvalidDocumentType,
    InvalidInput,
    InvalidLevel,
    InvalidTransition,
    NotFound,
    Unauthorized,
    Unavailable,
    ValidationFailed,
)
from .gate import ComplianceGate
from .hashing import chain_entry_hash, content_hash, payload_hash, sha256_hash, sha256_hex
from .identity import IdentityRecordStore
from .ledger import AssetRegistry, BalanceLedger
from .locks import KeyedLocks
from .models import (
    Asset,
    Caller,
    DocumentRef,
    DocumentStatus,
    DocumentType,
    Holding,
    InvestorType,
    PersonalInfo,
    Subject,
    TransferDecision,
    TransferOutcome,
    TransferRequest,
    VerificationState,
    WhitelistEntry,
    WhitelistSource,
)
from .signing import ReceiptSigner, generate_key, verify_ed25519, verify_receipt
from .store import ComplianceStore, InMemoryComplianceStore
from .verification import TRANSITIONS, VerificationStateMachine
from .whitelist import WhitelistProjection

__all__ = [
    # Facade
    "ComplianceGate",
    # Components
    "IdentityRecordStore",
    "VerificationStateMachine",
    "TRANSITIONS",
    "WhitelistProjection",
    "TransferAuthorizer",
    "AssetRegistry",
    "BalanceLedger",
    "KeyedLocks",
    # Storage
    "ComplianceStore",
    "InMemoryComplianceStore",
    "AuditLog",
    "InMemoryAuditLog",
    "AuditEntry",
    "ChainVerification",
    "verify_chain",
    # Collaborators
    "BlobStorage",
    "ArchivalStorage",
    "ChainQuery",
    "InMemoryBlobStorage",
    "InMemoryArchivalStorage",
    "StaticChainQuery",
    # Models
    "Asset",
    "Caller",
    "DocumentRef",
    "DocumentStatus",
    "DocumentType",
    "Holding",
    "InvestorType",
    "PersonalInfo",
    "Subject",
    "TransferDecision",
    "TransferOutcome",
    "TransferRequest",
    "VerificationState",
    "WhitelistEntry",
    "WhitelistSource",
    # Errors
    "ComplianceError",
    "ErrorKind",
    "NotFound",
    "InvalidTransition",
    "AlreadyExists",
    "ValidationFailed",
    "InvalidLevel",
    "InvalidAddress",
    "InvalidDocumentType",
    "InvalidAmount",
    "InvalidInput",
    "Unauthorized",
    "Unavailable",
    # Addresses, hashing, signing
    "is_valid_address",
    "normalize_address",
    "checksum_address",
    "canonicalize",
    "canonicalize_str",
    "sha256_hex",
    "sha256_hash",
    "payload_hash",
    "content_hash",
    "chain_entry_hash",
    "ReceiptSigner",
    "generate_key",
    "verify_ed25519",
    "verify_receipt",
]
