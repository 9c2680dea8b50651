"""
Whitelist Projection.

The set of addresses eligible to receive transfers. Approval adds to it,
revocation removes from it, and administrators may edit it directly. It is
deliberately not re-derived from verification state: a manual removal of an
approved wallet sticks until someone adds it back.
"""

import logging
from typing import Any, List, Optional, Tuple

from .addresses import normalize_address
from .errors import InvalidAddress, InvalidInput
from .models import WhitelistEntry, WhitelistSource, utcnow
from .store import ComplianceStore
from .verification import validate_level

logger = logging.getLogger(__name__)


class WhitelistProjection:

    def __init__(self, store: ComplianceStore):
        self.store = store

    def add_entry(
        self,
        address: Any,
        added_by: str,
        source: WhitelistSource = WhitelistSource.ADMINISTRATIVE,
    ) -> Tuple[WhitelistEntry, bool]:
        """
        Whitelist an address, reporting whether a new entry was written.

        Raises:
            InvalidAddress: malformed address
        """
        normalized = normalize_address(address)
        if not added_by:
            raise InvalidInput("is required", "added_by")
        entry = WhitelistEntry(address=normalized, added_at=utcnow(), added_by=added_by, source=source)
        stored = self.store.add_whitelist(entry)
        added = stored is entry
        if added:
            logger.info("Whitelisted %s (%s, by %s)", normalized, source.value, added_by)
        return stored, added

    def add(
        self,
        address: Any,
        added_by: str,
        source: WhitelistSource = WhitelistSource.ADMINISTRATIVE,
    ) -> WhitelistEntry:
        """Idempotent: an existing entry is kept as is."""
        return self.add_entry(address, added_by, source)[0]

    def remove(self, address: Any) -> bool:
        """
        Remove an address. Idempotent: absent addresses are not an error.

        Returns:
            True if an entry was removed
        """
        normalized = normalize_address(address)
        removed = self.store.remove_whitelist(normalized)
        if removed:
            logger.info("Removed %s from whitelist", normalized)
        return removed

    def is_whitelisted(self, address: Any) -> bool:
        """Malformed addresses are simply not whitelisted."""
        try:
            normalized = normalize_address(address)
        except InvalidAddress:
            return False
        return self.store.get_whitelist(normalized) is not None

    def get(self, address: Any) -> Optional[WhitelistEntry]:
        return self.store.get_whitelist(normalize_address(address))

    def entries(self, kyc_level: Optional[int] = None) -> List[WhitelistEntry]:
        """
        All entries, oldest first.

        With kyc_level, only addresses whose subject is currently Approved at
        exactly that level; administrative entries without a matching subject
        are excluded.
        """
        entries = self.store.list_whitelist()
        if kyc_level is None:
            return entries
        kyc_level = validate_level(kyc_level)
        selected = []
        for entry in entries:
            subject = self.store.find_subject_by_address(entry.address)
            if subject is not None and subject.verification_level == kyc_level:
                selected.append(entry)
        return selected
