"""Generate local receipt and identity keys plus the trust store the service reads."""
import json
import os

from assetgate.signing import generate_key, public_entry

os.makedirs("secrets", exist_ok=True)
os.makedirs("trust", exist_ok=True)

receipt = generate_key("assetgate-receipts-01")
identity = generate_key("assetgate-idp-01")

with open("secrets/receipt_signing_key.json", "w", encoding="utf-8") as f:
    json.dump(receipt, f, indent=2)

with open("secrets/identity_signing_key.json", "w", encoding="utf-8") as f:
    json.dump(identity, f, indent=2)

trust = {
    "trust_store_id": "assetgate-trust-store-dev",
    "receipt_keys": [public_entry(receipt)],
    "identity_keys": [public_entry(identity)],
}

with open("trust/trust_store.json", "w", encoding="utf-8") as f:
    json.dump(trust, f, indent=2)

print("Generated local keys + trust store.")
