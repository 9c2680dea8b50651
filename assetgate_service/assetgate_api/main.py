"""
AssetGate HTTP service.

Run with the app factory:

    uvicorn --factory assetgate_api.main:create_app

Every route except /health requires a caller token. Core errors map to
`{"error": {"kind", "message"}}` with the status codes below; compliance
rejections of a transfer are 200 responses distinguished by `outcome`.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from assetgate.addresses import normalize_address
from assetgate.audit import AuditLog
from assetgate.collaborators import ArchivalStorage, BlobStorage, ChainQuery, InMemoryBlobStorage
from assetgate.errors import ComplianceError, ErrorKind, InvalidInput, Unauthorized, Unavailable
from assetgate.gate import ComplianceGate
from assetgate.models import Caller, DocumentType, Subject, TransferRequest
from assetgate.store import ComplianceStore

from .auth import AuthenticationError, caller_from_header
from .chain import Web3ChainQuery
from .config import (
    ALLOWED_UPLOAD_TYPES,
    ARWEAVE_GATEWAY_URL,
    ARWEAVE_UPLOAD_URL,
    BLOB_BACKEND,
    CALLER_TOKEN_TTL_SECONDS,
    CHAIN_RPC_URL,
    DB_PATH,
    ENV,
    HTTP_TIMEOUT_SECONDS,
    IPFS_API_URL,
    LOCK_TIMEOUT_SECONDS,
    LOG_JSON,
    LOG_LEVEL,
    MAX_CLOCK_SKEW_SECONDS,
    MAX_UPLOAD_BYTES,
    RECEIPT_KEY_PATH,
    SUBMIT_RPM,
    TRANSFER_RPM,
    TRUST_STORE_PATH,
    is_production,
    validate_config,
)
from .db import SqliteComplianceStore
from .keys import FileKeyProvider, KeyProvider
from .log_backends import get_audit_log
from .logging_config import compliance_events, configure_logging, set_request_id
from .models import (
    ApproveRequest,
    AssetRequest,
    CreateSubjectRequest,
    ReasonRequest,
    ReviewDocumentRequest,
    SubmitRequest,
    TransferBody,
    VerifyTransactionRequest,
    WhitelistRequest,
)
from .rate_limit import RateLimiter
from .storage import ArweaveArchive, IpfsBlobStorage
from .util import now_epoch, utc_rfc3339

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.ALREADY_EXISTS: 409,
    ErrorKind.INVALID_LEVEL: 400,
    ErrorKind.INVALID_ADDRESS: 400,
    ErrorKind.INVALID_DOCUMENT_TYPE: 400,
    ErrorKind.INVALID_AMOUNT: 400,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.UNAVAILABLE: 503,
}


def _error(status: int, kind: str, message: str, headers: Optional[Dict[str, str]] = None) -> HTTPException:
    return HTTPException(status, detail={"kind": kind, "message": message}, headers=headers)


def require_owner_or_admin(caller: Caller, subject: Subject) -> None:
    if caller.is_administrator:
        return
    require_owner(caller, subject)


def require_owner(caller: Caller, subject: Subject) -> None:
    if caller.wallet_address != subject.wallet_address:
        raise Unauthorized(f"caller {caller.identity} does not own subject {subject.subject_id}")


def require_admin(caller: Caller) -> None:
    if not caller.is_administrator:
        raise Unauthorized(f"caller {caller.identity} is not an administrator")


def default_blob_storage() -> BlobStorage:
    if BLOB_BACKEND == "memory":
        return InMemoryBlobStorage()
    return IpfsBlobStorage(IPFS_API_URL, timeout=HTTP_TIMEOUT_SECONDS)


def create_app(
    store: Optional[ComplianceStore] = None,
    audit: Optional[AuditLog] = None,
    blob: Optional[BlobStorage] = None,
    archive: Optional[ArchivalStorage] = None,
    chain: Optional[ChainQuery] = None,
    key_provider: Optional[KeyProvider] = None,
    submit_rpm: int = SUBMIT_RPM,
    transfer_rpm: int = TRANSFER_RPM,
) -> FastAPI:
    """
    Build the service.

    Collaborators default to the configured backends; tests pass their own.
    """
    if store is None:
        store = SqliteComplianceStore(DB_PATH)
    if audit is None:
        audit = get_audit_log(store.db)
    if blob is None:
        blob = default_blob_storage()
    if archive is None and ARWEAVE_UPLOAD_URL:
        archive = ArweaveArchive(ARWEAVE_UPLOAD_URL, ARWEAVE_GATEWAY_URL, timeout=HTTP_TIMEOUT_SECONDS)
    if chain is None and CHAIN_RPC_URL:
        chain = Web3ChainQuery(CHAIN_RPC_URL, timeout=HTTP_TIMEOUT_SECONDS)
    if key_provider is None:
        key_provider = FileKeyProvider(RECEIPT_KEY_PATH, TRUST_STORE_PATH)

    gate = ComplianceGate(store, audit=audit, signer=key_provider.signer, lock_timeout=LOCK_TIMEOUT_SECONDS)
    submit_limiter = RateLimiter(submit_rpm)
    transfer_limiter = RateLimiter(transfer_rpm)

    app = FastAPI(title="AssetGate")
    app.state.gate = gate
    app.state.blob = blob
    app.state.archive = archive
    app.state.chain = chain
    app.state.keys = key_provider
    app.state.submit_limiter = submit_limiter
    app.state.transfer_limiter = transfer_limiter

    @app.on_event("startup")
    def _startup():
        configure_logging(LOG_LEVEL, LOG_JSON)
        missing = [name for name, ok in validate_config().items() if not ok]
        if missing:
            if is_production():
                raise RuntimeError(f"Missing configuration: {', '.join(missing)}")
            logger.warning("Missing configuration: %s", ", ".join(missing))
        logger.info("AssetGate started (env=%s)", ENV)

    # ============================================================
    # Middleware and error mapping
    # ============================================================

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = set_request_id(request.headers.get("X-Request-ID") or None)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(ComplianceError)
    async def compliance_error_handler(request: Request, exc: ComplianceError):
        status = ERROR_STATUS.get(exc.kind, 500)
        if status == 503:
            logger.error("Unavailable on %s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status, content={"error": exc.to_dict()})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if isinstance(exc.detail, dict):
            error = exc.detail
        else:
            error = {"kind": "http_error", "message": str(exc.detail)}
        return JSONResponse(status_code=exc.status_code, content={"error": error}, headers=exc.headers)

    # ============================================================
    # Dependencies
    # ============================================================

    def get_caller(request: Request, authorization: Optional[str] = Header(None)) -> Caller:
        try:
            return caller_from_header(
                authorization,
                key_provider.get_trust_store(),
                now_epoch(),
                CALLER_TOKEN_TTL_SECONDS,
                MAX_CLOCK_SKEW_SECONDS,
            )
        except AuthenticationError as e:
            if e.missing:
                raise _error(401, "unauthenticated", "caller token required",
                             headers={"WWW-Authenticate": "Bearer"})
            compliance_events.security_event(
                "invalid_caller_token",
                severity="medium",
                reason=e.reason,
                path=request.url.path,
            )
            raise _error(403, "forbidden", f"invalid caller token: {e.reason}")

    def enforce_rate_limit(limiter: RateLimiter, caller: Caller, endpoint: str) -> None:
        result = limiter.check(caller.identity)
        if not result.allowed:
            compliance_events.rate_limit_exceeded(caller.identity, endpoint)
            raise _error(429, "rate_limited", "rate limit exceeded",
                         headers={"Retry-After": str(int(result.retry_after or 1) + 1)})

    # ============================================================
    # Health
    # ============================================================

    @app.get("/health")
    def health():
        info: Dict[str, Any] = {
            "status": "ok",
            "env": ENV,
            "time": utc_rfc3339(now_epoch()),
            "store": type(store).__name__,
            "audit_log": type(audit).__name__,
            "blob_storage": type(blob).__name__,
            "archival_storage": type(archive).__name__ if archive else None,
            "chain_query": type(chain).__name__ if chain else None,
            "receipt_kid": key_provider.get_kid(),
            "pending_audit_events": gate.pending_audit_events,
        }
        db = getattr(store, "db", None)
        if db is not None:
            info["db"] = db.stats()
        return info

    # ============================================================
    # Subjects
    # ============================================================

    @app.post("/subjects")
    def create_subject(body: CreateSubjectRequest, caller: Caller = Depends(get_caller)):
        address = normalize_address(body.wallet_address, "wallet_address")
        if not caller.is_administrator and caller.wallet_address != address:
            raise Unauthorized("callers may only create a subject for their own wallet")
        return gate.create_or_get_subject(address).to_dict()

    @app.get("/subjects/by-address/{address}")
    def get_subject_by_address(address: str, caller: Caller = Depends(get_caller)):
        subject = gate.find_subject_by_address(address)
        require_owner_or_admin(caller, subject)
        return subject.to_dict()

    @app.get("/subjects/{subject_id}")
    def get_subject(subject_id: str, caller: Caller = Depends(get_caller)):
        subject = gate.get_subject(subject_id)
        require_owner_or_admin(caller, subject)
        return subject.to_dict()

    @app.post("/subjects/{subject_id}/documents")
    def upload_document(
        subject_id: str,
        document_type: str = Form(...),
        file: UploadFile = File(...),
        caller: Caller = Depends(get_caller),
    ):
        subject = gate.get_subject(subject_id)
        require_owner(caller, subject)
        enforce_rate_limit(submit_limiter, caller, "upload_document")

        doc_type = DocumentType.parse(document_type)
        if file.content_type not in ALLOWED_UPLOAD_TYPES:
            raise InvalidInput(f"must be one of: {', '.join(ALLOWED_UPLOAD_TYPES)}", "file")
        data = file.file.read(MAX_UPLOAD_BYTES + 1)
        if len(data) > MAX_UPLOAD_BYTES:
            raise _error(413, "payload_too_large", f"file exceeds {MAX_UPLOAD_BYTES} bytes")
        if not data:
            raise InvalidInput("must not be empty", "file")

        # Storage calls happen before the core takes any lock
        content_hash = blob.put(data, file.filename)
        archival_ref = None
        if archive is not None:
            archival_ref = archive.archive(data, {
                "Content-Type": file.content_type,
                "Document-Type": doc_type.value,
            })

        subject = gate.attach_document(subject_id, {
            "document_type": doc_type.value,
            "content_hash": content_hash,
            "archival_ref": archival_ref,
            "filename": file.filename,
        })
        return {
            "subject": subject.to_dict(),
            "document": subject.documents[-1].to_dict(),
            "document_index": len(subject.documents) - 1,
        }

    @app.post("/subjects/{subject_id}/submit")
    def submit(subject_id: str, body: SubmitRequest, caller: Caller = Depends(get_caller)):
        subject = gate.get_subject(subject_id)
        require_owner(caller, subject)
        enforce_rate_limit(submit_limiter, caller, "submit")
        subject = gate.submit(
            subject_id,
            body.personal_info,
            [d.model_dump() for d in body.documents],
        )
        compliance_events.kyc_submitted(subject.subject_id, subject.wallet_address, len(subject.documents))
        return subject.to_dict()

    # ============================================================
    # Administration
    # ============================================================

    @app.get("/admin/subjects")
    def list_subjects(
        state: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
        caller: Caller = Depends(get_caller),
    ):
        require_admin(caller)
        subjects = gate.list_subjects(state, limit, offset)
        return {
            "subjects": [s.to_dict(include_personal_info=False) for s in subjects],
            "limit": limit,
            "offset": offset,
        }

    @app.post("/admin/subjects/{subject_id}/approve")
    def approve(subject_id: str, body: ApproveRequest, caller: Caller = Depends(get_caller)):
        subject = gate.approve(subject_id, caller, body.level)
        compliance_events.kyc_decision(subject_id, subject.verification_state.value, caller.identity,
                                       level=subject.level)
        return subject.to_dict()

    @app.post("/admin/subjects/{subject_id}/reject")
    def reject(subject_id: str, body: ReasonRequest, caller: Caller = Depends(get_caller)):
        subject = gate.reject(subject_id, caller, body.reason)
        compliance_events.kyc_decision(subject_id, subject.verification_state.value, caller.identity,
                                       reason=subject.rejection_reason)
        return subject.to_dict()

    @app.post("/admin/subjects/{subject_id}/revoke")
    def revoke(subject_id: str, body: ReasonRequest, caller: Caller = Depends(get_caller)):
        subject = gate.revoke(subject_id, caller, body.reason)
        compliance_events.kyc_decision(subject_id, "Revoked", caller.identity, reason=subject.rejection_reason)
        return subject.to_dict()

    @app.post("/admin/subjects/{subject_id}/documents/{index}/review")
    def review_document(
        subject_id: str,
        index: int,
        body: ReviewDocumentRequest,
        caller: Caller = Depends(get_caller),
    ):
        subject = gate.review_document(subject_id, index, body.status, caller)
        return subject.documents[index].to_dict()

    @app.get("/admin/documents/{content_hash}")
    def get_document(content_hash: str, caller: Caller = Depends(get_caller)):
        require_admin(caller)
        data = blob.get(content_hash)
        return Response(content=data, media_type="application/octet-stream")

    # ============================================================
    # Whitelist
    # ============================================================

    @app.get("/whitelist")
    def list_whitelist(kyc_level: Optional[int] = None, caller: Caller = Depends(get_caller)):
        require_admin(caller)
        return {"entries": [e.to_dict() for e in gate.whitelist_entries(kyc_level)]}

    @app.get("/whitelist/{address}")
    def check_whitelist(address: str, caller: Caller = Depends(get_caller)):
        return {"address": address, "whitelisted": gate.is_whitelisted(address)}

    @app.post("/whitelist")
    def add_whitelist(body: WhitelistRequest, caller: Caller = Depends(get_caller)):
        entry = gate.whitelist_add(body.address, caller)
        compliance_events.whitelist_change(entry.address, "add", caller.identity)
        return entry.to_dict()

    @app.delete("/whitelist/{address}")
    def remove_whitelist(address: str, caller: Caller = Depends(get_caller)):
        removed = gate.whitelist_remove(address, caller)
        normalized = normalize_address(address)
        compliance_events.whitelist_change(normalized, "remove", caller.identity, changed=removed)
        return {"address": normalized, "removed": removed}

    # ============================================================
    # Assets and balances
    # ============================================================

    @app.post("/assets", status_code=201)
    def register_asset(body: AssetRequest, caller: Caller = Depends(get_caller)):
        fields = body.model_dump(exclude={"issuer"})
        if caller.is_administrator and body.issuer:
            issuer = body.issuer
        elif caller.wallet_address and (body.issuer is None or
                                        normalize_address(body.issuer, "issuer") == caller.wallet_address):
            issuer = caller.wallet_address
        else:
            raise Unauthorized("assets are registered by their issuer")
        return gate.register_asset(fields, issuer).to_dict()

    @app.get("/assets")
    def list_assets(
        asset_type: Optional[str] = None,
        issuer: Optional[str] = None,
        caller: Caller = Depends(get_caller),
    ):
        return {"assets": [a.to_dict() for a in gate.list_assets(asset_type, issuer)]}

    @app.get("/assets/{asset_id}")
    def get_asset(asset_id: str, caller: Caller = Depends(get_caller)):
        return gate.get_asset(asset_id).to_dict()

    @app.get("/assets/{asset_id}/balances/{address}")
    def get_balance(asset_id: str, address: str, caller: Caller = Depends(get_caller)):
        return {
            "asset_id": normalize_address(asset_id, "asset_id"),
            "address": normalize_address(address),
            "balance": gate.balance_of(asset_id, address),
        }

    @app.get("/holdings/{address}")
    def get_holdings(address: str, caller: Caller = Depends(get_caller)):
        return {
            "address": normalize_address(address),
            "holdings": [h.to_dict() for h in gate.holdings(address)],
        }

    def require_chain() -> ChainQuery:
        if chain is None:
            raise Unavailable("chain query is not configured")
        return chain

    @app.post("/admin/assets/{asset_id}/sync/{address}")
    def sync_balance(asset_id: str, address: str, caller: Caller = Depends(get_caller)):
        require_admin(caller)
        asset = gate.get_asset(asset_id)
        holder = normalize_address(address)
        # Chain read happens outside the balance locks
        amount = require_chain().get_balance(asset.asset_id, holder)
        previous = gate.sync_balance(asset.asset_id, holder, amount, caller)
        return {"asset_id": asset.asset_id, "address": holder, "previous": previous, "balance": amount}

    @app.post("/admin/transactions/verify")
    def verify_transaction(body: VerifyTransactionRequest, caller: Caller = Depends(get_caller)):
        require_admin(caller)
        return require_chain().verify_tx_receipt(body.tx_hash)

    # ============================================================
    # Transfers
    # ============================================================

    @app.post("/transfers")
    def authorize_transfer(body: TransferBody, caller: Caller = Depends(get_caller)):
        sender = normalize_address(body.sender, "sender")
        if not caller.is_administrator and caller.wallet_address != sender:
            raise Unauthorized("only the sender or an administrator may request a transfer")
        enforce_rate_limit(transfer_limiter, caller, "transfers")

        decision = gate.authorize_transfer(TransferRequest(
            sender=sender,
            recipient=body.recipient,
            asset_id=body.asset_id,
            amount=body.amount,
        ))
        compliance_events.transfer_decision(
            decision.decision_id,
            decision.outcome.value,
            decision.request.asset_id,
            decision.request.amount,
            caller.identity,
        )
        result = decision.to_dict()
        result["receipt"] = gate.sign_decision(decision)
        return result

    @app.get("/transfers")
    def transfer_history(
        address: Optional[str] = None,
        outcome: Optional[str] = None,
        direction: Optional[str] = None,
        limit: int = 50,
        caller: Caller = Depends(get_caller),
    ):
        if address is None:
            if caller.wallet_address is None:
                raise InvalidInput("required when the caller has no wallet", "address")
            address = caller.wallet_address
        address = normalize_address(address)
        if not caller.is_administrator and caller.wallet_address != address:
            raise Unauthorized("callers may only list their own transfers")
        return {
            "address": address,
            "transfers": gate.transfer_history(address, outcome, direction, limit),
        }

    # ============================================================
    # Audit
    # ============================================================

    @app.get("/admin/audit/log")
    def audit_export(since_seq: int = 0, limit: Optional[int] = None, caller: Caller = Depends(get_caller)):
        require_admin(caller)
        return [e.to_dict() for e in gate.audit_entries(since_seq, limit)]

    @app.get("/admin/audit/proof")
    def audit_proof(caller: Caller = Depends(get_caller)):
        require_admin(caller)
        head = gate.audit.head()
        verification = gate.verify_audit()
        return {
            "entries": head.seq if head else 0,
            "head_entry_hash": head.entry_hash if head else None,
            "chain_valid": verification.ok,
            "pending_events": gate.pending_audit_events,
        }

    return app
