"""Mint a development caller token signed with secrets/identity_signing_key.json.

Usage: python tools/make_caller_token.py <sub> [--wallet 0x...] [--admin]
"""
import argparse
import json

from assetgate_api.auth import make_caller_token
from assetgate_api.config import CALLER_TOKEN_TTL_SECONDS
from assetgate_api.util import now_epoch, utc_rfc3339


def main():
    parser = argparse.ArgumentParser(description="Mint a development caller token")
    parser.add_argument("sub", help="Caller identity")
    parser.add_argument("--wallet", help="Wallet address the caller controls")
    parser.add_argument("--admin", action="store_true", help="Grant the administrator capability")
    parser.add_argument("--key", default="secrets/identity_signing_key.json", help="Identity key file")
    args = parser.parse_args()

    with open(args.key, "r", encoding="utf-8") as f:
        key = json.load(f)
    issued_at = now_epoch()
    token = make_caller_token(key, args.sub, issued_at, wallet=args.wallet, admin=args.admin)
    print(json.dumps({
        "authorization": f"Bearer {token}",
        "issued_at": utc_rfc3339(issued_at),
        "expires_at": utc_rfc3339(issued_at + CALLER_TOKEN_TTL_SECONDS),
    }, indent=2))


if __name__ == "__main__":
    main()
