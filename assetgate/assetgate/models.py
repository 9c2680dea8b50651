"""
Data model for the compliance gate.

Records are frozen dataclasses: every mutation produces a new value that the
store swaps in as a whole, so a reader holds either the old or the new record
and never a half-applied one.
"""

import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .errors import InvalidDocumentType, InvalidInput


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso(ts: Optional[datetime]) -> Optional[str]:
    if ts is None:
        return None
    return ts.isoformat().replace("+00:00", "Z")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class VerificationState(str, Enum):
    NOT_STARTED = "NotStarted"
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class DocumentType(str, Enum):
    """Recognized identity document tags."""
    ID_DOCUMENT = "idDocument"
    PROOF_OF_ADDRESS = "proofOfAddress"
    SELFIE = "selfie"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "DocumentType":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(t.value for t in cls)
            raise InvalidDocumentType(f"must be one of: {allowed}", "document_type")


class DocumentStatus(str, Enum):
    UPLOADED = "Uploaded"
    VERIFIED = "Verified"
    REJECTED = "Rejected"


class WhitelistSource(str, Enum):
    """Which path put an address on the whitelist."""
    VERIFICATION = "verification"
    ADMINISTRATIVE = "administrative"


class TransferOutcome(str, Enum):
    ACCEPTED = "Accepted"
    REJECTED_NOT_WHITELISTED = "RejectedNotWhitelisted"
    REJECTED_INSUFFICIENT_BALANCE = "RejectedInsufficientBalance"


class InvestorType(str, Enum):
    RETAIL = "retail"
    ACCREDITED = "accredited"
    INSTITUTIONAL = "institutional"


@dataclass(frozen=True)
class Caller:
    """
    Identity of whoever invokes an operation, as supplied by the
    authorization collaborator. The core trusts `is_administrator`.
    """
    identity: str
    is_administrator: bool = False
    wallet_address: Optional[str] = None


# ============================================================
# Personal information
# ============================================================

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
PHONE_PATTERN = re.compile(r'^\+?[0-9 ()\-]{7,20}$')
COUNTRY_PATTERN = re.compile(r'^[A-Za-z]{2}$')


def _text(data: Dict[str, Any], name: str, min_length: int, max_length: int) -> str:
    value = data.get(name)
    if not isinstance(value, str):
        raise InvalidInput("is required", name)
    value = value.strip()
    if len(value) < min_length:
        raise InvalidInput(f"must be at least {min_length} characters", name)
    if len(value) > max_length:
        raise InvalidInput(f"must not exceed {max_length} characters", name)
    return value


def _country(data: Dict[str, Any], name: str) -> str:
    value = data.get(name)
    if not isinstance(value, str) or not COUNTRY_PATTERN.match(value.strip()):
        raise InvalidInput("must be a 2-letter country code", name)
    return value.strip().upper()


@dataclass(frozen=True)
class PersonalInfo:
    """Identity details submitted with a verification request."""
    first_name: str
    last_name: str
    email: str
    phone: str
    date_of_birth: str
    nationality: str
    address: str
    city: str
    postal_code: str
    country: str
    investor_type: InvestorType
    annual_income: Optional[str] = None
    net_worth: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PersonalInfo":
        """
        Validate and build from a plain mapping.

        Raises:
            InvalidInput: naming the first field that fails validation
        """
        if not isinstance(data, dict):
            raise InvalidInput("must be an object", "personal_info")

        email = _text(data, "email", 3, 254).lower()
        if not EMAIL_PATTERN.match(email):
            raise InvalidInput("must be a valid email address", "email")

        phone = _text(data, "phone", 7, 20)
        if not PHONE_PATTERN.match(phone):
            raise InvalidInput("must be a valid phone number", "phone")

        dob_raw = _text(data, "date_of_birth", 10, 10)
        try:
            dob = date.fromisoformat(dob_raw)
        except ValueError:
            raise InvalidInput("must be an ISO-8601 date", "date_of_birth")
        if dob >= utcnow().date():
            raise InvalidInput("must be in the past", "date_of_birth")

        investor_type = data.get("investor_type")
        try:
            investor_type = InvestorType(investor_type)
        except ValueError:
            raise InvalidInput("must be one of: retail, accredited, institutional", "investor_type")

        return cls(
            first_name=_text(data, "first_name", 1, 50),
            last_name=_text(data, "last_name", 1, 50),
            email=email,
            phone=phone,
            date_of_birth=dob.isoformat(),
            nationality=_country(data, "nationality"),
            address=_text(data, "address", 5, 200),
            city=_text(data, "city", 1, 100),
            postal_code=_text(data, "postal_code", 3, 20),
            country=_country(data, "country"),
            investor_type=investor_type,
            annual_income=data.get("annual_income"),
            net_worth=data.get("net_worth"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "date_of_birth": self.date_of_birth,
            "nationality": self.nationality,
            "address": self.address,
            "city": self.city,
            "postal_code": self.postal_code,
            "country": self.country,
            "investor_type": self.investor_type.value,
            "annual_income": self.annual_income,
            "net_worth": self.net_worth,
        }


# ============================================================
# Documents and subjects
# ============================================================

@dataclass(frozen=True)
class DocumentRef:
    """Pointer to an identity document held in blob storage."""
    document_type: DocumentType
    content_hash: str
    archival_ref: Optional[str] = None
    status: DocumentStatus = DocumentStatus.UPLOADED
    filename: Optional[str] = None
    uploaded_at: datetime = field(default_factory=utcnow)

    @classmethod
    def create(
        cls,
        document_type: Any,
        content_hash: str,
        archival_ref: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> "DocumentRef":
        doc_type = DocumentType.parse(document_type)
        if not isinstance(content_hash, str) or not content_hash.strip():
            raise InvalidInput("is required", "content_hash")
        return cls(
            document_type=doc_type,
            content_hash=content_hash.strip(),
            archival_ref=archival_ref,
            filename=filename,
        )

    def with_status(self, status: DocumentStatus) -> "DocumentRef":
        return replace(self, status=status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_type": self.document_type.value,
            "content_hash": self.content_hash,
            "archival_ref": self.archival_ref,
            "status": self.status.value,
            "filename": self.filename,
            "uploaded_at": iso(self.uploaded_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentRef":
        return cls(
            document_type=DocumentType(data["document_type"]),
            content_hash=data["content_hash"],
            archival_ref=data.get("archival_ref"),
            status=DocumentStatus(data.get("status", DocumentStatus.UPLOADED.value)),
            filename=data.get("filename"),
            uploaded_at=parse_iso(data.get("uploaded_at")) or utcnow(),
        )


@dataclass(frozen=True)
class Subject:
    """A wallet holder undergoing identity verification."""
    subject_id: str
    wallet_address: str
    verification_state: VerificationState = VerificationState.NOT_STARTED
    level: Optional[int] = None
    documents: Tuple[DocumentRef, ...] = ()
    personal_info: Optional[PersonalInfo] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    submitted_at: Optional[datetime] = None
    version: int = 1

    @property
    def verification_level(self) -> Optional[int]:
        """The approved level; meaningless (None) unless Approved."""
        if self.verification_state != VerificationState.APPROVED:
            return None
        return self.level

    def evolve(self, **changes: Any) -> "Subject":
        """Copy with changes applied, a fresh updated_at and the next version."""
        changes.setdefault("updated_at", utcnow())
        return replace(self, version=self.version + 1, **changes)

    def to_dict(self, include_personal_info: bool = True) -> Dict[str, Any]:
        d = {
            "subject_id": self.subject_id,
            "wallet_address": self.wallet_address,
            "verification_state": self.verification_state.value,
            "verification_level": self.verification_level,
            "documents": [doc.to_dict() for doc in self.documents],
            "approved_by": self.approved_by,
            "approved_at": iso(self.approved_at),
            "rejection_reason": self.rejection_reason,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "submitted_at": iso(self.submitted_at),
            "version": self.version,
        }
        if include_personal_info:
            d["personal_info"] = self.personal_info.to_dict() if self.personal_info else None
        return d


@dataclass(frozen=True)
class WhitelistEntry:
    address: str
    added_at: datetime
    added_by: str
    source: WhitelistSource = WhitelistSource.ADMINISTRATIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "added_at": iso(self.added_at),
            "added_by": self.added_by,
            "source": self.source.value,
        }


# ============================================================
# Assets, balances and transfers
# ============================================================

@dataclass(frozen=True)
class Asset:
    """A registered tokenized asset, keyed by its token contract address."""
    asset_id: str
    name: str
    symbol: str
    issuer: str
    initial_supply: int
    asset_type: Optional[str] = None
    total_asset_value: Optional[str] = None
    jurisdiction: Optional[str] = None
    description: Optional[str] = None
    passport_hash: Optional[str] = None
    passport_archival_ref: Optional[str] = None
    chain_id: Optional[int] = None
    registered_at: datetime = field(default_factory=utcnow)
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "name": self.name,
            "symbol": self.symbol,
            "issuer": self.issuer,
            "initial_supply": self.initial_supply,
            "asset_type": self.asset_type,
            "total_asset_value": self.total_asset_value,
            "jurisdiction": self.jurisdiction,
            "description": self.description,
            "passport_hash": self.passport_hash,
            "passport_archival_ref": self.passport_archival_ref,
            "chain_id": self.chain_id,
            "registered_at": iso(self.registered_at),
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class Holding:
    asset_id: str
    address: str
    amount: int

    def to_dict(self) -> Dict[str, Any]:
        return {"asset_id": self.asset_id, "address": self.address, "amount": self.amount}


@dataclass(frozen=True)
class TransferRequest:
    sender: str
    recipient: str
    asset_id: str
    amount: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sender": self.sender,
            "recipient": self.recipient,
            "asset_id": self.asset_id,
            "amount": self.amount,
        }


@dataclass(frozen=True)
class TransferDecision:
    """Resolution of a TransferRequest. Rejections are normal outcomes."""
    decision_id: str
    request: TransferRequest
    outcome: TransferOutcome
    decided_at: datetime = field(default_factory=utcnow)
    sender_balance: Optional[int] = None
    recipient_balance: Optional[int] = None

    def accepted(self) -> bool:
        return self.outcome == TransferOutcome.ACCEPTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision_id": self.decision_id,
            "request": self.request.to_dict(),
            "outcome": self.outcome.value,
            "decided_at": iso(self.decided_at),
            "sender_balance": self.sender_balance,
            "recipient_balance": self.recipient_balance,
        }
