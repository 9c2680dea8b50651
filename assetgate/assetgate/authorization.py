"""
Transfer Authorization Check.

Order of evaluation:
  0. amount is a positive integer            else InvalidAmount
  1. recipient is well-formed and whitelisted else RejectedNotWhitelisted
  2. sender is well-formed, asset exists      else InvalidAddress / NotFound
  3. sender balance >= amount                 else RejectedInsufficientBalance
  4. debit sender and credit recipient atomically -> Accepted

Steps 3 and 4 run under both balance locks so that no other transfer
touching either balance can interleave between the check and the move.
"""

import logging
import secrets

from .addresses import normalize_address
from .errors import InvalidAddress
from .ledger import AssetRegistry, balance_lock_key, validate_amount
from .locks import KeyedLocks
from .models import TransferDecision, TransferOutcome, TransferRequest
from .store import ComplianceStore
from .whitelist import WhitelistProjection

logger = logging.getLogger(__name__)


def generate_decision_id() -> str:
    return secrets.token_hex(16)


class TransferAuthorizer:
    """
    Decides transfer requests against the whitelist and the ledger.

    Compliance rejections are returned as decisions, not raised.

    Usage:
        authorizer = TransferAuthorizer(store, locks, whitelist, registry)
        decision = authorizer.authorize(TransferRequest(sender, recipient, asset_id, 100))
        if decision.accepted():
            ...
    """

    def __init__(
        self,
        store: ComplianceStore,
        locks: KeyedLocks,
        whitelist: WhitelistProjection,
        registry: AssetRegistry,
    ):
        self.store = store
        self.locks = locks
        self.whitelist = whitelist
        self.registry = registry

    def _decide(self, request: TransferRequest, outcome: TransferOutcome, **balances) -> TransferDecision:
        decision = TransferDecision(
            decision_id=generate_decision_id(),
            request=request,
            outcome=outcome,
            **balances,
        )
        logger.info(
            "Transfer %s: %s -> %s, %d of %s: %s",
            decision.decision_id, request.sender, request.recipient,
            request.amount, request.asset_id, outcome.value,
        )
        return decision

    def authorize(self, request: TransferRequest) -> TransferDecision:
        amount = validate_amount(request.amount)

        try:
            recipient = normalize_address(request.recipient, "recipient")
        except InvalidAddress:
            return self._decide(request, TransferOutcome.REJECTED_NOT_WHITELISTED)
        if self.store.get_whitelist(recipient) is None:
            return self._decide(request, TransferOutcome.REJECTED_NOT_WHITELISTED)

        sender = normalize_address(request.sender, "sender")
        asset = self.registry.get_asset(request.asset_id)
        normalized = TransferRequest(sender=sender, recipient=recipient, asset_id=asset.asset_id, amount=amount)

        keys = (balance_lock_key(asset.asset_id, sender), balance_lock_key(asset.asset_id, recipient))
        with self.locks.acquire(*keys):
            if self.store.get_balance(asset.asset_id, sender) < amount:
                return self._decide(normalized, TransferOutcome.REJECTED_INSUFFICIENT_BALANCE)
            moved = self.store.apply_transfer(asset.asset_id, sender, recipient, amount)

        if moved is None:
            # Balance changed between the read and the debit (another process).
            return self._decide(normalized, TransferOutcome.REJECTED_INSUFFICIENT_BALANCE)
        sender_balance, recipient_balance = moved
        return self._decide(
            normalized,
            TransferOutcome.ACCEPTED,
            sender_balance=sender_balance,
            recipient_balance=recipient_balance,
        )
