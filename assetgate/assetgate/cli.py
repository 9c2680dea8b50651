#!/usr/bin/env python3
"""
AssetGate Command Line Interface

Usage:
    assetgate keygen --out-dir <dir>
    assetgate check-address <address>
    assetgate hash --file <file>
    assetgate verify-receipt --receipt <file> --trust-store <file>
    assetgate verify-chain --log <file>
"""

import argparse
import json
import os
import sys


def load_json(path: str):
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(data, path: str):
    """Save JSON to file."""
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)


def cmd_keygen(args):
    """Generate receipt and identity keys plus a trust store."""
    from assetgate.signing import generate_key, public_entry

    os.makedirs(args.out_dir, exist_ok=True)
    receipt_key = generate_key(args.receipt_kid)
    identity_key = generate_key(args.identity_kid)
    trust_store = {
        "receipt_keys": [public_entry(receipt_key)],
        "identity_keys": [public_entry(identity_key)],
    }

    paths = {
        "receipt_signing_key.json": receipt_key,
        "identity_signing_key.json": identity_key,
        "trust_store.json": trust_store,
    }
    for name, data in paths.items():
        path = os.path.join(args.out_dir, name)
        save_json(data, path)
        print(f"Wrote {path}")

    print(f"\nReceipt key:  {receipt_key['kid']}", file=sys.stderr)
    print(f"Identity key: {identity_key['kid']}", file=sys.stderr)
    return 0


def cmd_check_address(args):
    """Validate and normalize an EVM address."""
    from assetgate.addresses import checksum_address, is_valid_address

    if not is_valid_address(args.address):
        print(f"✗ invalid address: {args.address}")
        return 1
    checksummed = checksum_address(args.address)
    print(f"✓ {checksummed.lower()}")
    print(f"  checksum: {checksummed}")
    return 0


def cmd_hash(args):
    """Compute the content hash of a file, or the canonical hash of a JSON file."""
    from assetgate.hashing import content_hash, payload_hash, verify_hash

    if args.json:
        print(f"sha256: {payload_hash(load_json(args.file))}")
        return 0

    with open(args.file, 'rb') as f:
        data = f.read()
    if args.expect:
        if verify_hash(args.expect, data):
            print("MATCH")
            return 0
        print(f"MISMATCH: {content_hash(data)}")
        return 1
    print(content_hash(data))
    return 0


def cmd_verify_receipt(args):
    """Verify a signed transfer receipt."""
    from assetgate.signing import verify_receipt

    receipt = load_json(args.receipt)
    trust_store = load_json(args.trust_store)
    if verify_receipt(receipt, trust_store):
        decision = receipt.get("decision", {})
        print(f"✓ VALID {decision.get('outcome')} ({decision.get('decision_id')})")
        return 0
    print("✗ INVALID receipt signature")
    return 1


def cmd_verify_chain(args):
    """Verify an exported audit log."""
    from assetgate.audit import verify_chain

    data = load_json(args.log)
    entries = data.get("entries", []) if isinstance(data, dict) else data
    result = verify_chain(entries)
    if result.ok:
        print(f"✓ chain OK ({result.checked} entries, head {result.head})")
        return 0
    print(f"✗ chain broken at seq {result.first_bad_seq}: {result.reason}")
    return 1


def main():
    parser = argparse.ArgumentParser(
        description="AssetGate compliance gate CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  assetgate keygen -o keys/
  assetgate check-address 0x52908400098527886E0F7030069857D2E4169EE7
  assetgate hash -f passport.pdf
  assetgate verify-receipt -r receipt.json -t trust/trust_store.json
  assetgate verify-chain -l audit_export.json
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    keygen_parser = subparsers.add_parser("keygen", help="Generate signing keys and trust store")
    keygen_parser.add_argument("-o", "--out-dir", default=".", help="Output directory")
    keygen_parser.add_argument("--receipt-kid", default="kid:assetgate-receipts-001", help="Receipt key id")
    keygen_parser.add_argument("--identity-kid", default="kid:assetgate-identity-001", help="Identity key id")

    check_parser = subparsers.add_parser("check-address", help="Validate an EVM address")
    check_parser.add_argument("address", help="Address to check")

    hash_parser = subparsers.add_parser("hash", help="Compute content hash")
    hash_parser.add_argument("-f", "--file", required=True, help="File to hash")
    hash_parser.add_argument("--json", action="store_true", help="Hash canonical JSON instead of raw bytes")
    hash_parser.add_argument("--expect", help="Compare against a declared sha256: or content:sha256: hash")

    receipt_parser = subparsers.add_parser("verify-receipt", help="Verify a transfer receipt")
    receipt_parser.add_argument("-r", "--receipt", required=True, help="Receipt JSON file")
    receipt_parser.add_argument("-t", "--trust-store", required=True, help="Trust store JSON file")

    chain_parser = subparsers.add_parser("verify-chain", help="Verify an audit log export")
    chain_parser.add_argument("-l", "--log", required=True, help="Audit export JSON file")

    args = parser.parse_args()

    commands = {
        "keygen": cmd_keygen,
        "check-address": cmd_check_address,
        "hash": cmd_hash,
        "verify-receipt": cmd_verify_receipt,
        "verify-chain": cmd_verify_chain,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(2)
    sys.exit(handler(args))


if __name__ == "__main__":
    main()
