"""
Asset Registry and Balance Ledger.

Assets are keyed by their normalized token contract address. Balances are
non-negative integers in base units per (asset, address). The ledger is the
gate's own view; `sync_balance` overwrites it with an on-chain reading that
the caller fetched beforehand.
"""

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from .addresses import normalize_address
from .errors import AlreadyExists, InvalidAmount, InvalidInput, NotFound
from .locks import KeyedLocks
from .models import Asset, Holding
from .store import ComplianceStore

logger = logging.getLogger(__name__)

SYMBOL_PATTERN = re.compile(r'^[A-Za-z0-9]{1,10}$')
JURISDICTION_PATTERN = re.compile(r'^[A-Za-z]{2}$')


def balance_lock_key(asset_id: str, address: str) -> str:
    return f"balance:{asset_id}:{address}"


def validate_amount(amount: Any, field: str = "amount", allow_zero: bool = False) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount("must be an integer number of base units", field)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise InvalidAmount("must be positive" if not allow_zero else "must not be negative", field)
    return amount


def _required_text(fields: Dict[str, Any], name: str, max_length: int) -> str:
    value = fields.get(name)
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput("is required", name)
    value = value.strip()
    if len(value) > max_length:
        raise InvalidInput(f"must not exceed {max_length} characters", name)
    return value


def _optional_text(fields: Dict[str, Any], name: str, max_length: int) -> Optional[str]:
    value = fields.get(name)
    if value is None or value == "":
        return None
    return _required_text(fields, name, max_length)


class AssetRegistry:

    def __init__(self, store: ComplianceStore):
        self.store = store

    def register_asset(self, fields: Dict[str, Any], issuer: str) -> Asset:
        """
        Register a tokenized asset and credit its initial supply to the issuer.

        Raises:
            InvalidAddress: bad contract or issuer address
            InvalidInput / InvalidAmount: malformed fields
            AlreadyExists: contract address already registered
        """
        asset_id = normalize_address(fields.get("asset_id"), "asset_id")
        issuer = normalize_address(issuer, "issuer")

        symbol = _required_text(fields, "symbol", 10)
        if not SYMBOL_PATTERN.match(symbol):
            raise InvalidInput("must be 1-10 letters or digits", "symbol")

        jurisdiction = _optional_text(fields, "jurisdiction", 2)
        if jurisdiction is not None:
            if not JURISDICTION_PATTERN.match(jurisdiction):
                raise InvalidInput("must be a 2-letter code", "jurisdiction")
            jurisdiction = jurisdiction.upper()

        total_value = fields.get("total_asset_value")
        if total_value is not None:
            try:
                Decimal(str(total_value))
            except InvalidOperation:
                raise InvalidInput("must be numeric", "total_asset_value")
            total_value = str(total_value)

        chain_id = fields.get("chain_id")
        if chain_id is not None and (isinstance(chain_id, bool) or not isinstance(chain_id, int) or chain_id <= 0):
            raise InvalidInput("must be a positive integer", "chain_id")

        asset = Asset(
            asset_id=asset_id,
            name=_required_text(fields, "name", 100),
            symbol=symbol.upper(),
            issuer=issuer,
            initial_supply=validate_amount(fields.get("initial_supply"), "initial_supply", allow_zero=True),
            asset_type=_required_text(fields, "asset_type", 50),
            total_asset_value=total_value,
            jurisdiction=jurisdiction,
            description=_optional_text(fields, "description", 1000),
            passport_hash=_optional_text(fields, "passport_hash", 200),
            passport_archival_ref=_optional_text(fields, "passport_archival_ref", 200),
            chain_id=chain_id,
        )
        if not self.store.insert_asset(asset):
            raise AlreadyExists(f"asset {asset_id} is already registered")
        logger.info("Registered asset %s (%s) for issuer %s", asset_id, asset.symbol, issuer)
        return asset

    def get_asset(self, asset_id: str) -> Asset:
        normalized = normalize_address(asset_id, "asset_id")
        asset = self.store.get_asset(normalized)
        if asset is None:
            raise NotFound(f"asset {normalized} not found")
        return asset

    def list_assets(self, asset_type: Optional[str] = None, issuer: Optional[str] = None) -> List[Asset]:
        """Active assets, newest first. asset_type "all" means no filter."""
        assets = [a for a in self.store.list_assets() if a.is_active]
        if asset_type and asset_type != "all":
            assets = [a for a in assets if a.asset_type == asset_type]
        if issuer:
            issuer = normalize_address(issuer, "issuer")
            assets = [a for a in assets if a.issuer == issuer]
        return assets


class BalanceLedger:

    def __init__(self, store: ComplianceStore, locks: KeyedLocks, registry: AssetRegistry):
        self.store = store
        self.locks = locks
        self.registry = registry

    def balance_of(self, asset_id: str, address: str) -> int:
        asset = self.registry.get_asset(asset_id)
        return self.store.get_balance(asset.asset_id, normalize_address(address))

    def holdings(self, address: str) -> List[Holding]:
        return self.store.holdings(normalize_address(address))

    def sync_balance(self, asset_id: str, address: str, amount: int) -> int:
        """
        Overwrite the ledger balance with a value read from the chain.

        The chain read happens before this call; only the write is locked.

        Returns:
            The previous ledger balance
        """
        asset = self.registry.get_asset(asset_id)
        address = normalize_address(address)
        amount = validate_amount(amount, allow_zero=True)
        with self.locks.acquire(balance_lock_key(asset.asset_id, address)):
            previous = self.store.get_balance(asset.asset_id, address)
            self.store.set_balance(asset.asset_id, address, amount)
        logger.info("Synced %s balance of %s: %d -> %d", asset.asset_id, address, previous, amount)
        return previous
