"""
Verification State Machine.

    NotStarted --submit--> Pending --approve--> Approved --revoke--> Rejected
                              |                                        |
                              +--reject--> Rejected --submit--> Pending

Every (state, operation) pair not in TRANSITIONS is an InvalidTransition.
Approval whitelists the wallet and revocation removes it, each in the same
atomic store write as the state change.
"""

import logging
from typing import Callable, Dict, Iterable, Optional, Tuple

from .errors import InvalidInput, InvalidLevel, InvalidTransition, NotFound, Unauthorized, Unavailable
from .locks import KeyedLocks
from .models import (
    Caller,
    DocumentRef,
    PersonalInfo,
    Subject,
    VerificationState,
    WhitelistEntry,
    WhitelistSource,
    utcnow,
)
from .store import ComplianceStore

logger = logging.getLogger(__name__)

SUBMIT = "submit"
APPROVE = "approve"
REJECT = "reject"
REVOKE = "revoke"

TRANSITIONS: Dict[Tuple[VerificationState, str], VerificationState] = {
    (VerificationState.NOT_STARTED, SUBMIT): VerificationState.PENDING,
    (VerificationState.REJECTED, SUBMIT): VerificationState.PENDING,
    (VerificationState.PENDING, APPROVE): VerificationState.APPROVED,
    (VerificationState.PENDING, REJECT): VerificationState.REJECTED,
    (VerificationState.APPROVED, REVOKE): VerificationState.REJECTED,
}

MIN_LEVEL = 1
MAX_LEVEL = 3
MAX_REASON_LENGTH = 500
CAS_ATTEMPTS = 3

# A mutation returns the new subject plus an optional whitelist add/remove
Mutation = Tuple[Subject, Optional[WhitelistEntry], Optional[str]]


def next_state(state: VerificationState, operation: str) -> Optional[VerificationState]:
    return TRANSITIONS.get((state, operation))


def subject_lock_key(subject_id: str) -> str:
    return f"subject:{subject_id}"


def require_administrator(caller: Caller, operation: str):
    if caller is None or not caller.is_administrator:
        identity = caller.identity if caller else None
        raise Unauthorized(f"{operation} requires an administrator (caller {identity})")


def validate_level(level) -> int:
    if isinstance(level, bool) or not isinstance(level, int):
        raise InvalidLevel("must be an integer", "level")
    if level < MIN_LEVEL or level > MAX_LEVEL:
        raise InvalidLevel(f"must be between {MIN_LEVEL} and {MAX_LEVEL}", "level")
    return level


def validate_reason(reason) -> str:
    if not isinstance(reason, str) or not reason.strip():
        raise InvalidInput("is required", "reason")
    reason = reason.strip()
    if len(reason) > MAX_REASON_LENGTH:
        raise InvalidInput(f"must not exceed {MAX_REASON_LENGTH} characters", "reason")
    return reason


def mutate_subject(
    store: ComplianceStore,
    locks: KeyedLocks,
    subject_id: str,
    mutate: Callable[[Subject], Mutation],
) -> Subject:
    """
    Apply `mutate` to the current subject under its lock and store the result
    with a version compare-and-swap.

    The lock serializes writers within a process; the version check catches
    writers in other processes sharing the same database, in which case the
    subject is re-read and `mutate` re-evaluated against the fresh record.

    Raises:
        NotFound: unknown subject
        Unavailable: the record kept moving underneath us
    """
    with locks.acquire(subject_lock_key(subject_id)):
        for _ in range(CAS_ATTEMPTS):
            current = store.get_subject(subject_id)
            if current is None:
                raise NotFound(f"subject {subject_id} not found")
            updated, whitelist_add, whitelist_remove = mutate(current)
            if store.compare_and_swap_subject(current.version, updated, whitelist_add, whitelist_remove):
                return updated
            logger.warning("Version conflict on subject %s, retrying", subject_id)
    raise Unavailable(f"subject {subject_id} is being modified concurrently")


class VerificationStateMachine:
    """
    Drives subjects through the verification lifecycle.

    Usage:
        machine = VerificationStateMachine(store, locks)
        machine.submit(subject_id, personal_info)
        machine.approve(subject_id, admin_caller, level=2)
    """

    def __init__(self, store: ComplianceStore, locks: KeyedLocks):
        self.store = store
        self.locks = locks

    def _check(self, subject: Subject, operation: str) -> VerificationState:
        target = next_state(subject.verification_state, operation)
        if target is None:
            raise InvalidTransition(subject.subject_id, subject.verification_state.value, operation)
        return target

    def submit(
        self,
        subject_id: str,
        personal_info: PersonalInfo,
        documents: Iterable[DocumentRef] = (),
    ) -> Subject:
        """NotStarted|Rejected -> Pending, storing info and appending documents."""
        documents = tuple(documents)

        def mutate(subject: Subject) -> Mutation:
            target = self._check(subject, SUBMIT)
            now = utcnow()
            return subject.evolve(
                verification_state=target,
                personal_info=personal_info,
                documents=subject.documents + documents,
                rejection_reason=None,
                submitted_at=now,
                updated_at=now,
            ), None, None

        subject = mutate_subject(self.store, self.locks, subject_id, mutate)
        logger.info("Subject %s submitted for verification", subject_id)
        return subject

    def approve(self, subject_id: str, caller: Caller, level: int) -> Subject:
        """Pending -> Approved at `level`, whitelisting the wallet atomically."""
        require_administrator(caller, APPROVE)
        level = validate_level(level)

        def mutate(subject: Subject) -> Mutation:
            target = self._check(subject, APPROVE)
            now = utcnow()
            entry = WhitelistEntry(
                address=subject.wallet_address,
                added_at=now,
                added_by=caller.identity,
                source=WhitelistSource.VERIFICATION,
            )
            return subject.evolve(
                verification_state=target,
                level=level,
                approved_by=caller.identity,
                approved_at=now,
                updated_at=now,
            ), entry, None

        subject = mutate_subject(self.store, self.locks, subject_id, mutate)
        logger.info("Subject %s approved at level %d by %s", subject_id, level, caller.identity)
        return subject

    def reject(self, subject_id: str, caller: Caller, reason: str) -> Subject:
        """Pending -> Rejected with a reason."""
        require_administrator(caller, REJECT)
        reason = validate_reason(reason)

        def mutate(subject: Subject) -> Mutation:
            target = self._check(subject, REJECT)
            return subject.evolve(verification_state=target, rejection_reason=reason), None, None

        subject = mutate_subject(self.store, self.locks, subject_id, mutate)
        logger.info("Subject %s rejected by %s", subject_id, caller.identity)
        return subject

    def revoke(self, subject_id: str, caller: Caller, reason: str) -> Subject:
        """Approved -> Rejected, clearing the approval and de-whitelisting the wallet."""
        require_administrator(caller, REVOKE)
        reason = validate_reason(reason)

        def mutate(subject: Subject) -> Mutation:
            target = self._check(subject, REVOKE)
            return subject.evolve(
                verification_state=target,
                level=None,
                approved_by=None,
                approved_at=None,
                rejection_reason=reason,
            ), None, subject.wallet_address

        subject = mutate_subject(self.store, self.locks, subject_id, mutate)
        logger.info("Subject %s approval revoked by %s", subject_id, caller.identity)
        return subject
