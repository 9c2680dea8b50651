"""
AssetGate receipt signing.

Transfer decisions are signed with Ed25519 (RFC 8032) over the canonical JSON
of the decision. Verifiers look the key up by `kid` in a trust store:

    {
      "receipt_keys":  [{"kid": "...", "public_key_b64": "..."}],
      "identity_keys": [{"kid": "...", "public_key_b64": "..."}]
    }
"""

import base64
import secrets
from typing import Any, Dict, Optional

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .canonicalization import canonicalize

ALGORITHM = "Ed25519"


def b64e(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64d(data: str) -> bytes:
    return base64.b64decode(data.encode("ascii"))


def generate_key(kid: Optional[str] = None) -> Dict[str, str]:
    """
    Generate an Ed25519 key pair in key-file form.

    Returns:
        {"kid", "private_key_b64", "public_key_b64"}
    """
    signing_key = SigningKey.generate()
    return {
        "kid": kid or f"kid:{secrets.token_hex(8)}",
        "private_key_b64": b64e(bytes(signing_key)),
        "public_key_b64": b64e(bytes(signing_key.verify_key)),
    }


def public_entry(key: Dict[str, str]) -> Dict[str, str]:
    """Trust store entry for a key-file dict."""
    return {"kid": key["kid"], "public_key_b64": key["public_key_b64"]}


def find_public_key(trust_store: Dict[str, Any], section: str, kid: str) -> Optional[str]:
    for entry in trust_store.get(section, []):
        if entry.get("kid") == kid:
            return entry.get("public_key_b64")
    return None


def verify_ed25519(signature_b64: str, payload: bytes, public_key_b64: str) -> bool:
    """True if the signature over payload verifies under the public key."""
    if not isinstance(signature_b64, str) or not isinstance(public_key_b64, str):
        return False
    try:
        VerifyKey(b64d(public_key_b64)).verify(payload, b64d(signature_b64))
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False


class ReceiptSigner:
    """
    Signs transfer decisions.

    Usage:
        signer = ReceiptSigner.from_key(generate_key("kid:receipts-1"))
        receipt = signer.sign(decision.to_dict())
    """

    def __init__(self, kid: str, signing_key: bytes):
        self.kid = kid
        self._sk = SigningKey(signing_key)

    @classmethod
    def from_key(cls, key: Dict[str, str]) -> "ReceiptSigner":
        return cls(key["kid"], b64d(key["private_key_b64"]))

    @property
    def public_key_b64(self) -> str:
        return b64e(bytes(self._sk.verify_key))

    def sign(self, decision: Dict[str, Any]) -> Dict[str, Any]:
        """
        Returns:
            {"decision": ..., "signature": {"kid", "alg", "sig_b64"}}
        """
        sig = self._sk.sign(canonicalize(decision)).signature
        return {
            "decision": decision,
            "signature": {"kid": self.kid, "alg": ALGORITHM, "sig_b64": b64e(sig)},
        }


def verify_receipt(receipt: Dict[str, Any], trust_store: Dict[str, Any]) -> bool:
    """
    Check a receipt's signature against the trust store's receipt_keys.

    Unknown kid, wrong algorithm or any modification of the decision fails.
    """
    signature = receipt.get("signature") or {}
    if signature.get("alg") != ALGORITHM:
        return False
    public_key = find_public_key(trust_store, "receipt_keys", signature.get("kid"))
    if not public_key or "sig_b64" not in signature:
        return False
    try:
        payload = canonicalize(receipt.get("decision"))
    except ValueError:
        return False
    return verify_ed25519(signature["sig_b64"], payload, public_key)
