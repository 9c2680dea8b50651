"""
Error taxonomy for the compliance gate.

Every failure the core raises is a ComplianceError carrying a stable `kind`
string; the HTTP layer maps kinds to status codes. Compliance rejections of a
transfer are NOT errors: they are outcomes returned by the authorizer.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    ALREADY_EXISTS = "already_exists"
    INVALID_LEVEL = "invalid_level"
    INVALID_ADDRESS = "invalid_address"
    INVALID_DOCUMENT_TYPE = "invalid_document_type"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_INPUT = "invalid_input"
    UNAUTHORIZED = "unauthorized"
    UNAVAILABLE = "unavailable"


class ComplianceError(Exception):
    """Base class for all errors raised by the compliance gate."""

    kind: ErrorKind = ErrorKind.UNAVAILABLE

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self):
        return {"kind": self.kind.value, "message": self.message}


class NotFound(ComplianceError):
    """Unknown subject, asset or document."""
    kind = ErrorKind.NOT_FOUND


class InvalidTransition(ComplianceError):
    """A state machine precondition was violated."""
    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, subject_id: str, current_state: str, operation: str):
        self.subject_id = subject_id
        self.current_state = current_state
        self.operation = operation
        super().__init__(f"cannot {operation} subject {subject_id} in state {current_state}")


class AlreadyExists(ComplianceError):
    kind = ErrorKind.ALREADY_EXISTS


class ValidationFailed(ComplianceError):
    """Input validation failure; `field` names the offending input."""
    kind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(f"{field}: {message}" if field else message)


class InvalidLevel(ValidationFailed):
    kind = ErrorKind.INVALID_LEVEL


class InvalidAddress(ValidationFailed):
    kind = ErrorKind.INVALID_ADDRESS


class InvalidDocumentType(ValidationFailed):
    kind = ErrorKind.INVALID_DOCUMENT_TYPE


class InvalidAmount(ValidationFailed):
    kind = ErrorKind.INVALID_AMOUNT


class InvalidInput(ValidationFailed):
    kind = ErrorKind.INVALID_INPUT


class Unauthorized(ComplianceError):
    """Caller lacks the administrative capability an operation requires."""
    kind = ErrorKind.UNAUTHORIZED


class Unavailable(ComplianceError):
    """
    Internal fault: storage unavailable, lock acquisition timed out, or an
    external collaborator failed. Callers should retry.
    """
    kind = ErrorKind.UNAVAILABLE
