"""
Logging for the AssetGate service.

Records are emitted as one JSON object per line and carry the request id
of the HTTP request that produced them. `compliance_events` is the
operational stream of KYC, whitelist and transfer events; the
tamper-evident record of the same events is the hash-chained audit log.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .util import mask_sensitive

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Client libraries that log every HTTP round trip at DEBUG/INFO
CHATTY_LOGGERS = ("urllib3", "botocore", "boto3", "s3transfer", "web3")

SEVERITY_LEVELS = {
    "low": logging.INFO,
    "medium": logging.WARNING,
    "high": logging.ERROR,
    "critical": logging.CRITICAL,
}


class RequestIdFilter(logging.Filter):
    """Stamp every record with the current request id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


class JsonFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        request_id = getattr(record, "request_id", "")
        if request_id:
            entry["request_id"] = request_id
        fields = getattr(record, "fields", None)
        if fields:
            entry.update({k: v for k, v in fields.items() if v is not None})
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, sort_keys=True)


class ComplianceEventLogger:
    """
    Structured events for compliance decisions.

    Each event has an upper-case `event` name plus flat fields. Wallet
    addresses are masked; subject and decision ids are not.
    """

    def __init__(self, name: str = "assetgate.events"):
        self.logger = logging.getLogger(name)

    def emit(self, level: int, event: str, message: str, **fields) -> None:
        self.logger.log(level, message, extra={"fields": {"event": event, **fields}})

    def kyc_submitted(self, subject_id: str, wallet_address: str, document_count: int) -> None:
        self.emit(
            logging.INFO, "KYC_SUBMITTED", f"subject {subject_id} submitted for review",
            subject_id=subject_id,
            wallet=mask_sensitive(wallet_address, 6),
            document_count=document_count,
        )

    def kyc_decision(self, subject_id: str, decision: str, actor: str,
                     level: Optional[int] = None, reason: Optional[str] = None) -> None:
        self.emit(
            logging.INFO if decision == "Approved" else logging.WARNING,
            "KYC_DECISION", f"subject {subject_id} {decision.lower()} by {actor}",
            subject_id=subject_id,
            decision=decision,
            actor=actor,
            kyc_level=level,
            reason=reason,
        )

    def whitelist_change(self, address: str, action: str, actor: str, changed: Optional[bool] = None) -> None:
        self.emit(
            logging.INFO, "WHITELIST_CHANGE", f"whitelist {action} by {actor}",
            address=mask_sensitive(address, 6),
            action=action,
            actor=actor,
            changed=changed,
        )

    def transfer_decision(self, decision_id: str, outcome: str, asset_id: str, amount: int, caller: str) -> None:
        self.emit(
            logging.INFO if outcome == "Accepted" else logging.WARNING,
            "TRANSFER_DECISION", f"transfer {decision_id}: {outcome}",
            decision_id=decision_id,
            outcome=outcome,
            asset_id=asset_id,
            amount=str(amount),
            caller=caller,
        )

    def security_event(self, event: str, severity: str = "medium", **details) -> None:
        self.emit(
            SEVERITY_LEVELS.get(severity, logging.WARNING),
            "SECURITY_EVENT", f"security event: {event}",
            security_event=event,
            severity=severity,
            **details,
        )

    def rate_limit_exceeded(self, caller: str, endpoint: str) -> None:
        self.emit(
            logging.WARNING, "RATE_LIMIT_EXCEEDED", f"{caller} over the {endpoint} limit",
            caller=caller,
            endpoint=endpoint,
        )


def configure_logging(level: str = "INFO", json_format: bool = True) -> None:
    """
    Install a single stdout handler on the root logger.

    Safe to call more than once; earlier handlers are replaced.
    """
    root = logging.getLogger()
    root.setLevel(logging.getLevelName(level.upper()))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s"))
    root.addHandler(handler)

    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root.level))


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id to the current context, generating one if none was sent."""
    request_id = request_id or uuid.uuid4().hex
    request_id_var.set(request_id)
    return request_id


compliance_events = ComplianceEventLogger()
