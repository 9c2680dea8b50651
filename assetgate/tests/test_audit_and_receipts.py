"""
AssetGate Audit Chain and Receipt Test Suite

Tests tamper evidence of the audit log and receipt signatures.
"""

import copy
import unittest

from assetgate import (
    Caller,
    ComplianceGate,
    InMemoryAuditLog,
    InMemoryComplianceStore,
    ReceiptSigner,
    TransferOutcome,
    TransferRequest,
    Unavailable,
    VerificationState,
    canonicalize,
    chain_entry_hash,
    generate_key,
    verify_chain,
    verify_receipt,
)
from assetgate.signing import public_entry

ADMIN = Caller("compliance-officer", is_administrator=True)
ISSUER = "0x" + "1a" * 20
ALICE = "0x" + "2b" * 20
BOB = "0x" + "3c" * 20
TOKEN = "0x" + "4d" * 20

PERSONAL_INFO = {
    "first_name": "Alan",
    "last_name": "Turing",
    "email": "alan@example.org",
    "phone": "+44 161 555 0199",
    "date_of_birth": "1980-06-23",
    "nationality": "GB",
    "address": "Hollymeade, Adlington Road",
    "city": "Wilmslow",
    "postal_code": "SK9 2BT",
    "country": "GB",
    "investor_type": "institutional",
}


class TestCanonicalization(unittest.TestCase):

    def test_keys_sorted_no_whitespace(self):
        self.assertEqual(canonicalize({"b": 1, "a": [True, None]}), b'{"a":[true,null],"b":1}')

    def test_non_string_keys_rejected(self):
        with self.assertRaises(ValueError):
            canonicalize({1: "x"})


class TestAuditChain(unittest.TestCase):

    def setUp(self):
        self.audit = InMemoryAuditLog()
        self.gate = ComplianceGate(InMemoryComplianceStore(), audit=self.audit)

        subject = self.gate.create_or_get_subject(ALICE)
        self.gate.submit(subject.subject_id, PERSONAL_INFO)
        self.gate.approve(subject.subject_id, ADMIN, 2)
        self.gate.register_asset({
            "asset_id": TOKEN, "name": "Gold Bar Vault", "symbol": "GBV",
            "asset_type": "Precious Metals", "initial_supply": 500,
        }, ISSUER)
        self.gate.authorize_transfer(TransferRequest(ISSUER, ALICE, TOKEN, 50))

    def test_event_sequence(self):
        events = [e.event_type for e in self.audit.entries()]
        self.assertEqual(events, [
            "subject.created",
            "subject.submitted",
            "subject.approved",
            "asset.registered",
            "transfer.decided",
        ])

    def test_chain_verifies(self):
        result = self.gate.verify_audit()
        self.assertTrue(result.ok)
        self.assertEqual(result.checked, 5)
        self.assertEqual(result.head, self.audit.head().entry_hash)

    def test_first_entry_links_to_empty(self):
        first = self.audit.entries()[0]
        self.assertIsNone(first.prev_entry_hash)
        self.assertEqual(first.entry_hash, chain_entry_hash(None, first.payload_hash))

    def test_no_personal_info_in_audit(self):
        for entry in self.audit.entries():
            self.assertNotIn("alan@example.org", canonicalize(entry.payload).decode())

    def test_tampered_payload_detected(self):
        exported = [e.to_dict() for e in self.audit.entries()]
        exported[2]["payload"]["level"] = 3
        result = verify_chain(exported)
        self.assertFalse(result.ok)
        self.assertEqual(result.first_bad_seq, 3)
        self.assertEqual(result.reason, "payload_hash mismatch")

    def test_deleted_entry_detected(self):
        exported = [e.to_dict() for e in self.audit.entries()]
        del exported[1]
        result = verify_chain(exported)
        self.assertFalse(result.ok)
        self.assertEqual(result.first_bad_seq, 3)

    def test_entries_since(self):
        tail = self.audit.entries(since_seq=3)
        self.assertEqual([e.seq for e in tail], [4, 5])
        self.assertEqual(len(self.audit.entries(limit=2)), 2)


class TestReceipts(unittest.TestCase):

    def setUp(self):
        key = generate_key("kid:receipts-test")
        self.trust_store = {"receipt_keys": [public_entry(key)], "identity_keys": []}
        self.gate = ComplianceGate(InMemoryComplianceStore(), signer=ReceiptSigner.from_key(key))
        self.gate.register_asset({
            "asset_id": TOKEN, "name": "Gold Bar Vault", "symbol": "GBV",
            "asset_type": "Precious Metals", "initial_supply": 500,
        }, ISSUER)
        self.gate.whitelist_add(ALICE, ADMIN)
        decision = self.gate.authorize_transfer(TransferRequest(ISSUER, ALICE, TOKEN, 7))
        self.receipt = self.gate.sign_decision(decision)

    def test_receipt_verifies(self):
        self.assertEqual(self.receipt["signature"]["kid"], "kid:receipts-test")
        self.assertEqual(self.receipt["signature"]["alg"], "Ed25519")
        self.assertTrue(verify_receipt(self.receipt, self.trust_store))

    def test_modified_receipt_fails(self):
        forged = copy.deepcopy(self.receipt)
        forged["decision"]["request"]["amount"] = 7000
        self.assertFalse(verify_receipt(forged, self.trust_store))

    def test_unknown_kid_fails(self):
        other = {"receipt_keys": [public_entry(generate_key("kid:other"))]}
        self.assertFalse(verify_receipt(self.receipt, other))

    def test_wrong_key_same_kid_fails(self):
        impostor = public_entry(generate_key("kid:receipts-test"))
        self.assertFalse(verify_receipt(self.receipt, {"receipt_keys": [impostor]}))

    def test_no_signer_no_receipt(self):
        gate = ComplianceGate(InMemoryComplianceStore())
        gate.whitelist_add(ALICE, ADMIN)
        gate.register_asset({
            "asset_id": TOKEN, "name": "Gold", "symbol": "G", "asset_type": "Metals", "initial_supply": 1,
        }, ISSUER)
        decision = gate.authorize_transfer(TransferRequest(ISSUER, ALICE, TOKEN, 1))
        self.assertIsNone(gate.sign_decision(decision))


class FlakyAuditLog(InMemoryAuditLog):
    """Audit log whose appends fail while `down` is set."""

    def __init__(self):
        super().__init__()
        self.down = False

    def append(self, event_type, payload):
        if self.down:
            raise Unavailable("audit store offline")
        return super().append(event_type, payload)


class TestDeferredAudit(unittest.TestCase):

    def setUp(self):
        self.audit = FlakyAuditLog()
        self.gate = ComplianceGate(InMemoryComplianceStore(), audit=self.audit)
        self.gate.register_asset({
            "asset_id": TOKEN, "name": "Gold Bar Vault", "symbol": "GBV",
            "asset_type": "Precious Metals", "initial_supply": 500,
        }, ISSUER)
        self.gate.whitelist_add(BOB, ADMIN)

    def test_committed_transfer_survives_audit_outage(self):
        self.audit.down = True
        decision = self.gate.authorize_transfer(TransferRequest(ISSUER, BOB, TOKEN, 10))
        self.assertEqual(decision.outcome, TransferOutcome.ACCEPTED)
        self.assertEqual(self.gate.balance_of(TOKEN, BOB), 10)
        self.assertEqual(self.gate.balance_of(TOKEN, ISSUER), 490)
        self.assertEqual(self.gate.pending_audit_events, 1)
        self.assertEqual(len(self.audit.entries()), 2)

    def test_queued_events_flush_in_order(self):
        self.audit.down = True
        self.gate.authorize_transfer(TransferRequest(ISSUER, BOB, TOKEN, 10))
        self.gate.whitelist_remove(BOB, ADMIN)
        self.assertEqual(self.gate.flush_audit(), 0)
        self.assertEqual(self.gate.pending_audit_events, 2)

        self.audit.down = False
        self.assertEqual(self.gate.flush_audit(), 2)
        self.assertEqual(self.gate.pending_audit_events, 0)
        events = [e.event_type for e in self.audit.entries()]
        self.assertEqual(events[-2:], ["transfer.decided", "whitelist.removed"])
        self.assertTrue(self.gate.verify_audit().ok)

    def test_next_mutation_drains_queue(self):
        self.audit.down = True
        subject = self.gate.create_or_get_subject(ALICE)
        self.gate.submit(subject.subject_id, PERSONAL_INFO)
        approved = self.gate.approve(subject.subject_id, ADMIN, 1)
        self.assertEqual(approved.verification_state, VerificationState.APPROVED)
        self.assertTrue(self.gate.is_whitelisted(ALICE))
        self.assertEqual(self.gate.pending_audit_events, 3)

        self.audit.down = False
        self.gate.authorize_transfer(TransferRequest(ISSUER, ALICE, TOKEN, 5))
        self.assertEqual(self.gate.pending_audit_events, 0)
        events = [e.event_type for e in self.audit.entries()]
        self.assertEqual(events[2:], [
            "subject.created",
            "subject.submitted",
            "subject.approved",
            "transfer.decided",
        ])


if __name__ == "__main__":
    unittest.main()
