"""Verify the hash chain of an audit log export from /admin/audit/log.

Usage:
    python tools/verify_audit_chain.py audit_log.json
    python tools/verify_audit_chain.py --url http://127.0.0.1:8000 --token <bearer token>
"""
import argparse
import json
import sys

import requests

from assetgate.audit import verify_chain


def main():
    parser = argparse.ArgumentParser(description="Verify an AssetGate audit chain")
    parser.add_argument("export", nargs="?", help="Exported audit log JSON")
    parser.add_argument("--url", help="Service base URL to fetch the log from")
    parser.add_argument("--token", help="Administrator caller token (with --url)")
    args = parser.parse_args()

    if args.url:
        r = requests.get(
            args.url.rstrip("/") + "/admin/audit/log",
            headers={"Authorization": f"Bearer {args.token}"},
            timeout=30
        )
        r.raise_for_status()
        log = r.json()
    elif args.export:
        with open(args.export, "r", encoding="utf-8") as f:
            log = json.load(f)
    else:
        parser.print_usage()
        raise SystemExit(2)

    result = verify_chain(log)
    if not result.ok:
        print(f"FAIL: {result.reason} at seq {result.first_bad_seq}")
        sys.exit(1)
    print(f"PASS: audit chain valid ({result.checked} entries, head {result.head})")


if __name__ == "__main__":
    main()
