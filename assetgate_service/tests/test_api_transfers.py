"""
AssetGate API: assets, whitelist, transfers, chain sync and the audit chain.

Compliance rejections are 200 responses; the outcome field carries the
reason and every decision comes back with a verifiable receipt.
"""

from fastapi.testclient import TestClient

from assetgate.audit import AuditEntry, verify_chain
from assetgate.signing import verify_receipt

ISSUER = "0x" + "1a" * 20
ALICE = "0x" + "2b" * 20
BOB = "0x" + "3c" * 20
TOKEN = "0x" + "4d" * 20
TX_HASH = "0x" + "ab" * 32

ASSET = {
    "asset_id": TOKEN,
    "name": "Harbour View Apartments",
    "symbol": "hva",
    "asset_type": "Real Estate",
    "total_asset_value": "2500000.00",
    "initial_supply": 1000,
    "jurisdiction": "ae",
}


def register(client, auth, fields=None):
    r = client.post("/assets", json=fields or ASSET, headers=auth("issuer", wallet=ISSUER))
    assert r.status_code == 201, r.text
    return r.json()


def whitelist(client, admin_headers, address):
    r = client.post("/whitelist", json={"address": address}, headers=admin_headers)
    assert r.status_code == 200, r.text
    return r.json()


def transfer(client, headers, sender=ISSUER, recipient=ALICE, amount=100, asset_id=TOKEN):
    return client.post(
        "/transfers",
        json={"sender": sender, "recipient": recipient, "asset_id": asset_id, "amount": amount},
        headers=headers,
    )


# ============================================================
# Assets
# ============================================================

def test_register_asset_credits_issuer(client, auth):
    asset = register(client, auth)
    assert asset["symbol"] == "HVA"
    assert asset["issuer"] == ISSUER

    r = client.get(f"/assets/{TOKEN}/balances/{ISSUER}", headers=auth())
    assert r.json() == {"asset_id": TOKEN, "address": ISSUER, "balance": 1000}

    r = client.get(f"/holdings/{ISSUER}", headers=auth())
    assert r.json()["holdings"] == [{"asset_id": TOKEN, "address": ISSUER, "amount": 1000}]


def test_register_asset_rules(client, auth, admin_headers):
    register(client, auth)
    r = client.post("/assets", json=ASSET, headers=auth("issuer", wallet=ISSUER))
    assert r.status_code == 409
    assert r.json()["error"]["kind"] == "already_exists"

    other = dict(ASSET, asset_id="0x" + "5e" * 20, issuer=ALICE)
    assert client.post("/assets", json=other, headers=auth("issuer", wallet=ISSUER)).status_code == 403
    assert client.post("/assets", json=other, headers=auth("no-wallet")).status_code == 403

    r = client.post("/assets", json=other, headers=admin_headers)
    assert r.status_code == 201
    assert r.json()["issuer"] == ALICE

    bad = dict(ASSET, asset_id="0x" + "6f" * 20, symbol="NOT A SYMBOL")
    assert client.post("/assets", json=bad, headers=auth("issuer", wallet=ISSUER)).status_code == 400


def test_list_and_get_assets(client, auth):
    register(client, auth)
    register(client, auth, dict(ASSET, asset_id="0x" + "5e" * 20, asset_type="Art", symbol="ART"))

    assert len(client.get("/assets", headers=auth()).json()["assets"]) == 2
    art = client.get("/assets", params={"asset_type": "Art"}, headers=auth()).json()["assets"]
    assert [a["symbol"] for a in art] == ["ART"]
    assert len(client.get("/assets", params={"asset_type": "all"}, headers=auth()).json()["assets"]) == 2

    assert client.get(f"/assets/{TOKEN}", headers=auth()).json()["name"] == "Harbour View Apartments"
    assert client.get("/assets/" + "0x" + "99" * 20, headers=auth()).status_code == 404


# ============================================================
# Whitelist
# ============================================================

def test_whitelist_admin_operations(client, auth, admin_headers):
    entry = whitelist(client, admin_headers, ALICE)
    assert entry["source"] == "administrative"
    again = whitelist(client, admin_headers, ALICE)
    assert again["added_at"] == entry["added_at"]

    entries = client.get("/whitelist", headers=admin_headers).json()["entries"]
    assert [e["address"] for e in entries] == [ALICE]

    assert client.post("/whitelist", json={"address": BOB}, headers=auth("holder", wallet=BOB)).status_code == 403
    assert client.get("/whitelist", headers=auth()).status_code == 403

    r = client.delete(f"/whitelist/{ALICE}", headers=admin_headers)
    assert r.json() == {"address": ALICE, "removed": True}
    r = client.delete(f"/whitelist/{ALICE}", headers=admin_headers)
    assert r.json() == {"address": ALICE, "removed": False}


def test_whitelist_lookup_never_errors(client, auth):
    r = client.get("/whitelist/not-an-address", headers=auth())
    assert r.status_code == 200
    assert r.json()["whitelisted"] is False


# ============================================================
# Transfers
# ============================================================

def test_accepted_transfer_moves_balance_and_signs_receipt(client, auth, admin_headers, trust_store):
    register(client, auth)
    whitelist(client, admin_headers, ALICE)

    r = transfer(client, auth("issuer", wallet=ISSUER), amount=250)
    assert r.status_code == 200
    body = r.json()
    assert body["outcome"] == "Accepted"
    assert body["sender_balance"] == 750
    assert body["recipient_balance"] == 250

    receipt = body["receipt"]
    assert receipt["decision"]["decision_id"] == body["decision_id"]
    assert verify_receipt(receipt, trust_store)

    receipt["decision"]["request"]["amount"] = 25000
    assert not verify_receipt(receipt, trust_store)


def test_rejections_are_200(client, auth, admin_headers):
    register(client, auth)
    headers = auth("issuer", wallet=ISSUER)

    r = transfer(client, headers, recipient=BOB)
    assert r.status_code == 200
    assert r.json()["outcome"] == "RejectedNotWhitelisted"

    whitelist(client, admin_headers, BOB)
    r = transfer(client, headers, recipient=BOB, amount=1001)
    assert r.status_code == 200
    assert r.json()["outcome"] == "RejectedInsufficientBalance"

    r = client.get(f"/assets/{TOKEN}/balances/{ISSUER}", headers=headers)
    assert r.json()["balance"] == 1000


def test_transfer_input_errors(client, auth, admin_headers):
    register(client, auth)
    whitelist(client, admin_headers, ALICE)
    headers = auth("issuer", wallet=ISSUER)

    assert transfer(client, headers, amount=0).status_code == 400
    assert transfer(client, headers, amount="10").status_code == 400
    assert transfer(client, headers, asset_id="0x" + "99" * 20).status_code == 404
    r = transfer(client, headers, sender="bogus")
    assert r.status_code == 400
    assert r.json()["error"]["kind"] == "invalid_address"


def test_only_sender_or_admin_may_transfer(client, auth, admin_headers):
    register(client, auth)
    whitelist(client, admin_headers, ALICE)

    assert transfer(client, auth("alice", wallet=ALICE)).status_code == 403
    r = transfer(client, admin_headers)
    assert r.status_code == 200
    assert r.json()["outcome"] == "Accepted"


def test_transfer_history_for_owner(client, auth, admin_headers):
    register(client, auth)
    whitelist(client, admin_headers, ALICE)
    issuer = auth("issuer", wallet=ISSUER)
    alice = auth("alice", wallet=ALICE)

    transfer(client, issuer, amount=100)
    transfer(client, issuer, recipient=BOB, amount=5)
    transfer(client, alice, sender=ALICE, recipient=ISSUER, amount=10)

    r = client.get("/transfers", headers=alice)
    assert r.status_code == 200
    body = r.json()
    assert body["address"] == ALICE
    assert [t["request"]["amount"] for t in body["transfers"]] == [10, 100]

    r = client.get("/transfers", params={"direction": "received"}, headers=alice)
    assert [t["request"]["amount"] for t in r.json()["transfers"]] == [100]

    r = client.get("/transfers", params={"outcome": "RejectedNotWhitelisted"}, headers=issuer)
    assert [t["request"]["amount"] for t in r.json()["transfers"]] == [10, 5]

    r = client.get("/transfers", params={"limit": 1}, headers=issuer)
    assert len(r.json()["transfers"]) == 1


def test_transfer_history_access(client, auth, admin_headers):
    register(client, auth)
    whitelist(client, admin_headers, ALICE)
    transfer(client, auth("issuer", wallet=ISSUER))

    r = client.get("/transfers", params={"address": ISSUER}, headers=auth("alice", wallet=ALICE))
    assert r.status_code == 403
    assert r.json()["error"]["kind"] == "unauthorized"

    r = client.get("/transfers", params={"address": ALICE}, headers=admin_headers)
    assert r.status_code == 200
    assert len(r.json()["transfers"]) == 1

    assert client.get("/transfers", headers=admin_headers).status_code == 400
    r = client.get("/transfers", params={"outcome": "Maybe"}, headers=auth("alice", wallet=ALICE))
    assert r.status_code == 400
    assert r.json()["error"]["kind"] == "invalid_input"
    r = client.get("/transfers", params={"address": "bogus"}, headers=admin_headers)
    assert r.json()["error"]["kind"] == "invalid_address"


def test_audit_outage_does_not_fail_committed_transfer(make_app, store, auth, admin_headers, monkeypatch):
    from assetgate.errors import Unavailable
    from assetgate_api.db import SqliteAuditLog

    audit = SqliteAuditLog(store.db)
    client = TestClient(make_app(audit=audit))
    register(client, auth)
    whitelist(client, admin_headers, BOB)
    headers = auth("issuer", wallet=ISSUER)
    healthy_append = audit.append

    def offline(event_type, payload):
        raise Unavailable("audit store offline")

    monkeypatch.setattr(audit, "append", offline)
    r = transfer(client, headers, recipient=BOB, amount=10)
    assert r.status_code == 200
    assert r.json()["outcome"] == "Accepted"
    assert client.get("/health").json()["pending_audit_events"] == 1

    monkeypatch.setattr(audit, "append", healthy_append)
    r = client.get(f"/assets/{TOKEN}/balances/{BOB}", headers=headers)
    assert r.json()["balance"] == 10

    whitelist(client, admin_headers, ALICE)
    proof = client.get("/admin/audit/proof", headers=admin_headers).json()
    assert proof["pending_events"] == 0
    assert proof["entries"] == 4
    assert proof["chain_valid"] is True


def test_transfer_rate_limit(make_app, auth, admin_headers):
    client = TestClient(make_app(transfer_rpm=2))
    register(client, auth)
    whitelist(client, admin_headers, ALICE)
    headers = auth("issuer", wallet=ISSUER)

    assert transfer(client, headers, amount=1).status_code == 200
    assert transfer(client, headers, amount=1).status_code == 200
    assert transfer(client, headers, amount=1).status_code == 429
    # limits are per caller
    assert transfer(client, admin_headers, amount=1).status_code == 200


# ============================================================
# Chain
# ============================================================

def test_sync_balance_from_chain(client, auth, admin_headers, chain):
    register(client, auth)
    chain.balances[(TOKEN, ALICE)] = 42

    r = client.post(f"/admin/assets/{TOKEN}/sync/{ALICE}", headers=admin_headers)
    assert r.status_code == 200
    assert r.json() == {"asset_id": TOKEN, "address": ALICE, "previous": 0, "balance": 42}
    assert client.get(f"/assets/{TOKEN}/balances/{ALICE}", headers=auth()).json()["balance"] == 42

    assert client.post(f"/admin/assets/{TOKEN}/sync/{ALICE}", headers=auth()).status_code == 403


def test_chain_outage_is_503(client, auth, admin_headers, chain):
    register(client, auth)
    chain.available = False
    r = client.post(f"/admin/assets/{TOKEN}/sync/{ALICE}", headers=admin_headers)
    assert r.status_code == 503
    assert r.json()["error"]["kind"] == "unavailable"


def test_sync_without_chain_is_503(make_app, auth, admin_headers):
    client = TestClient(make_app(chain=None))
    register(client, auth)
    assert client.post(f"/admin/assets/{TOKEN}/sync/{ALICE}", headers=admin_headers).status_code == 503


def test_verify_transaction(client, admin_headers, chain):
    chain.receipts[TX_HASH] = {"status": "success", "block_number": 19000000}

    r = client.post("/admin/transactions/verify", json={"tx_hash": TX_HASH}, headers=admin_headers)
    assert r.json() == {"tx_hash": TX_HASH, "status": "success", "block_number": 19000000}

    r = client.post("/admin/transactions/verify", json={"tx_hash": "0x" + "cd" * 32}, headers=admin_headers)
    assert r.json()["status"] == "not_found"


# ============================================================
# Audit
# ============================================================

def test_audit_chain_export_and_proof(client, auth, admin_headers):
    register(client, auth)
    whitelist(client, admin_headers, ALICE)
    transfer(client, auth("issuer", wallet=ISSUER))
    transfer(client, auth("issuer", wallet=ISSUER), recipient=BOB)

    log = client.get("/admin/audit/log", headers=admin_headers).json()
    assert [e["event_type"] for e in log] == [
        "asset.registered", "whitelist.added", "transfer.decided", "transfer.decided",
    ]
    assert log[3]["payload"]["outcome"] == "RejectedNotWhitelisted"
    assert verify_chain([AuditEntry.from_dict(e) for e in log]).ok

    proof = client.get("/admin/audit/proof", headers=admin_headers).json()
    assert proof == {
        "entries": 4, "head_entry_hash": log[-1]["entry_hash"], "chain_valid": True, "pending_events": 0,
    }

    tail = client.get("/admin/audit/log", params={"since_seq": 2}, headers=admin_headers).json()
    assert [e["seq"] for e in tail] == [3, 4]

    assert client.get("/admin/audit/proof", headers=auth()).status_code == 403


def test_audit_detects_tampering(client, auth, admin_headers, store):
    register(client, auth)
    whitelist(client, admin_headers, ALICE)

    with store.db.transaction() as conn:
        conn.execute("UPDATE audit_log SET payload_json=? WHERE seq=1", ('{"asset_id": "forged"}',))

    proof = client.get("/admin/audit/proof", headers=admin_headers).json()
    assert proof["chain_valid"] is False
