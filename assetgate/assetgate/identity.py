"""
Identity Record Store.

One record per wallet. Records are created on first contact, mutated only
through the verification state machine and document operations, and never
deleted.
"""

import logging
import secrets
from typing import Any, Iterable, List, Optional, Tuple, Union

from .addresses import normalize_address
from .errors import InvalidInput, NotFound
from .locks import KeyedLocks
from .models import Caller, DocumentRef, DocumentStatus, DocumentType, PersonalInfo, Subject, VerificationState
from .store import ComplianceStore
from .verification import Mutation, VerificationStateMachine, mutate_subject, require_administrator

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 200
REVIEW_STATUSES = (DocumentStatus.VERIFIED, DocumentStatus.REJECTED)


def generate_subject_id() -> str:
    return secrets.token_hex(16)


def _as_document(value: Union[DocumentRef, dict]) -> DocumentRef:
    if isinstance(value, DocumentRef):
        DocumentType.parse(value.document_type)
        if not value.content_hash:
            raise InvalidInput("is required", "content_hash")
        return value
    if not isinstance(value, dict):
        raise InvalidInput("must be an object", "documents")
    return DocumentRef.create(
        value.get("document_type"),
        value.get("content_hash"),
        archival_ref=value.get("archival_ref"),
        filename=value.get("filename"),
    )


def parse_state(value: Any) -> Optional[VerificationState]:
    if value is None or isinstance(value, VerificationState):
        return value
    try:
        return VerificationState(value)
    except ValueError:
        allowed = ", ".join(s.value for s in VerificationState)
        raise InvalidInput(f"must be one of: {allowed}", "state")


class IdentityRecordStore:
    """Subject records keyed by subject id and by normalized wallet address."""

    def __init__(self, store: ComplianceStore, locks: KeyedLocks, state_machine: VerificationStateMachine):
        self.store = store
        self.locks = locks
        self.state_machine = state_machine

    def ensure_subject(self, wallet_address: str) -> Tuple[Subject, bool]:
        """
        Create-or-get, also reporting whether a new record was created.

        Raises:
            InvalidAddress: malformed wallet address
        """
        address = normalize_address(wallet_address, "wallet_address")
        existing = self.store.find_subject_by_address(address)
        if existing is not None:
            return existing, False
        candidate = Subject(subject_id=generate_subject_id(), wallet_address=address)
        stored = self.store.insert_subject(candidate)
        created = stored.subject_id == candidate.subject_id
        if created:
            logger.info("Created subject %s for %s", stored.subject_id, address)
        return stored, created

    def create_or_get_subject(self, wallet_address: str) -> Subject:
        """Idempotent: the same normalized address always yields the same subject."""
        return self.ensure_subject(wallet_address)[0]

    def get_subject(self, subject_id: str) -> Subject:
        subject = self.store.get_subject(subject_id)
        if subject is None:
            raise NotFound(f"subject {subject_id} not found")
        return subject

    def find_by_address(self, address: str) -> Subject:
        normalized = normalize_address(address)
        subject = self.store.find_subject_by_address(normalized)
        if subject is None:
            raise NotFound(f"no subject for address {normalized}")
        return subject

    def record_submission(
        self,
        subject_id: str,
        personal_info: Union[PersonalInfo, dict],
        documents: Iterable[Union[DocumentRef, dict]] = (),
    ) -> Subject:
        """
        Validate a submission and hand it to the state machine.

        Raises:
            NotFound: unknown subject
            InvalidInput / InvalidDocumentType: malformed submission
            InvalidTransition: subject is Pending or Approved
        """
        self.get_subject(subject_id)
        if not isinstance(personal_info, PersonalInfo):
            personal_info = PersonalInfo.from_dict(personal_info)
        docs = [_as_document(d) for d in documents]
        return self.state_machine.submit(subject_id, personal_info, docs)

    def attach_document(self, subject_id: str, document: Union[DocumentRef, dict]) -> Subject:
        """Append a document in any verification state."""
        document = _as_document(document)

        def mutate(subject: Subject) -> Mutation:
            return subject.evolve(documents=subject.documents + (document,)), None, None

        subject = mutate_subject(self.store, self.locks, subject_id, mutate)
        logger.info("Attached %s document to subject %s", document.document_type.value, subject_id)
        return subject

    def review_document(
        self, subject_id: str, index: int, status: Union[DocumentStatus, str], reviewer: Caller
    ) -> Subject:
        """Mark one document Verified or Rejected, replacing it with the new value."""
        require_administrator(reviewer, "review_document")
        try:
            status = DocumentStatus(status)
        except ValueError:
            status = None
        if status not in REVIEW_STATUSES:
            raise InvalidInput("must be Verified or Rejected", "status")

        def mutate(subject: Subject) -> Mutation:
            if not isinstance(index, int) or index < 0 or index >= len(subject.documents):
                raise NotFound(f"subject {subject_id} has no document {index}")
            documents = list(subject.documents)
            documents[index] = documents[index].with_status(status)
            return subject.evolve(documents=tuple(documents)), None, None

        subject = mutate_subject(self.store, self.locks, subject_id, mutate)
        logger.info("Document %d of subject %s marked %s by %s", index, subject_id, status.value, reviewer.identity)
        return subject

    def list_subjects(self, state: Any = None, limit: int = 50, offset: int = 0) -> List[Subject]:
        state = parse_state(state)
        if limit < 1 or limit > MAX_LIST_LIMIT:
            raise InvalidInput(f"must be between 1 and {MAX_LIST_LIMIT}", "limit")
        if offset < 0:
            raise InvalidInput("must not be negative", "offset")
        return self.store.list_subjects(state, limit, offset)
