"""
EVM address validation and normalization.

Addresses are accepted as "0x" + 40 hex characters, either single-case or
EIP-55 mixed-case; a mixed-case address with a bad checksum is rejected.
Everything the gate stores is the lowercase form.
"""

from typing import Any

from eth_utils import is_checksum_address, is_checksum_formatted_address, is_hex_address, to_checksum_address

from .errors import InvalidAddress

ADDRESS_LENGTH = 42


def is_valid_address(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    value = value.strip()
    if len(value) != ADDRESS_LENGTH or not value.startswith(("0x", "0X")):
        return False
    candidate = "0x" + value[2:]
    if not is_hex_address(candidate):
        return False
    # mixed case must carry a valid EIP-55 checksum
    if is_checksum_formatted_address(candidate):
        return is_checksum_address(candidate)
    return True


def normalize_address(value: Any, field_name: str = "address") -> str:
    """
    Validate an address and return its lowercase form.

    Raises:
        InvalidAddress: if the value is not a well-formed address
    """
    if not is_valid_address(value):
        raise InvalidAddress("must be a 0x-prefixed 20-byte hex address with a valid checksum", field_name)
    return "0x" + value.strip()[2:].lower()


def checksum_address(value: str) -> str:
    """Return the EIP-55 display form of a valid address."""
    return to_checksum_address(normalize_address(value))
