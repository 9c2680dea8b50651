"""
Caller authentication for the AssetGate service.

Callers present `Authorization: Bearer <token>` where the token is the
URL-safe base64 of the canonical JSON:

    {"sub", "wallet", "admin", "kid", "issued_at", "sig_b64"}

`sig_b64` is an Ed25519 signature over the canonical JSON of the other five
fields, made by an identity provider key listed in the trust store's
`identity_keys`.
"""

import binascii
import json
from typing import Any, Dict, Optional

from nacl.signing import SigningKey

from assetgate.addresses import is_valid_address, normalize_address
from assetgate.canonicalization import canonicalize
from assetgate.models import Caller
from assetgate.signing import b64d, b64e, find_public_key, verify_ed25519

from .util import b64url_decode, b64url_encode

TOKEN_FIELDS = ("sub", "wallet", "admin", "kid", "issued_at")


class AuthenticationError(Exception):
    """Token missing, malformed, stale or not signed by a trusted key."""

    def __init__(self, reason: str, missing: bool = False):
        self.reason = reason
        self.missing = missing
        super().__init__(reason)


def token_signing_payload(token: Dict[str, Any]) -> bytes:
    return canonicalize({k: token.get(k) for k in TOKEN_FIELDS})


def make_caller_token(
    key: Dict[str, str],
    sub: str,
    issued_at: int,
    wallet: Optional[str] = None,
    admin: bool = False
) -> str:
    """
    Sign a caller token with an identity key-file dict and encode it.

    Used by the development token tool and by tests; production tokens come
    from the identity provider.
    """
    body = {
        "sub": sub,
        "wallet": wallet,
        "admin": bool(admin),
        "kid": key["kid"],
        "issued_at": int(issued_at),
    }
    sig = SigningKey(b64d(key["private_key_b64"])).sign(token_signing_payload(body)).signature
    body["sig_b64"] = b64e(sig)
    return b64url_encode(canonicalize(body))


def decode_caller_token(raw: str) -> Dict[str, Any]:
    try:
        token = json.loads(b64url_decode(raw).decode("utf-8"))
    except (ValueError, UnicodeDecodeError, binascii.Error) as e:
        raise AuthenticationError("malformed token") from e
    if not isinstance(token, dict):
        raise AuthenticationError("malformed token")
    return token


def verify_caller_token(
    token: Dict[str, Any],
    trust_store: Dict[str, Any],
    now_epoch: int,
    ttl: int,
    max_skew: int
) -> Caller:
    """
    Check a decoded token and return the Caller it names.

    Args:
        token: Decoded token dict
        trust_store: Trust store containing identity_keys
        now_epoch: Current Unix timestamp
        ttl: Maximum token age in seconds
        max_skew: Clock skew allowance in seconds

    Raises:
        AuthenticationError: on any failure
    """
    kid = token.get("kid")
    if not kid:
        raise AuthenticationError("missing kid")

    pub = find_public_key(trust_store, "identity_keys", kid)
    if not pub:
        raise AuthenticationError("unknown kid")

    sub = token.get("sub")
    if not isinstance(sub, str) or not sub:
        raise AuthenticationError("missing sub")

    issued_at = token.get("issued_at")
    if isinstance(issued_at, bool) or not isinstance(issued_at, int) or issued_at <= 0:
        raise AuthenticationError("missing issued_at")

    if (now_epoch - issued_at) > (ttl + max_skew):
        raise AuthenticationError("token expired")
    if (issued_at - now_epoch) > max_skew:
        raise AuthenticationError("token issued in the future")

    if not isinstance(token.get("admin"), bool):
        raise AuthenticationError("malformed admin claim")

    wallet = token.get("wallet")
    if wallet is not None and not is_valid_address(wallet):
        raise AuthenticationError("malformed wallet claim")

    sig_b64 = token.get("sig_b64")
    if not isinstance(sig_b64, str) or not sig_b64:
        raise AuthenticationError("malformed signature")
    if not verify_ed25519(sig_b64, token_signing_payload(token), pub):
        raise AuthenticationError("invalid signature")

    return Caller(
        identity=sub,
        is_administrator=token["admin"],
        wallet_address=normalize_address(wallet) if wallet is not None else None,
    )


def caller_from_header(
    authorization: Optional[str],
    trust_store: Dict[str, Any],
    now_epoch: int,
    ttl: int,
    max_skew: int
) -> Caller:
    """Parse an Authorization header value into a verified Caller."""
    if not authorization:
        raise AuthenticationError("missing token", missing=True)
    scheme, _, raw = authorization.partition(" ")
    if scheme.lower() != "bearer" or not raw.strip():
        raise AuthenticationError("missing token", missing=True)
    token = decode_caller_token(raw.strip())
    return verify_caller_token(token, trust_store, now_epoch, ttl, max_skew)
