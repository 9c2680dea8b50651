"""
AssetGate Transfer Authorization Test Suite

Critical properties tested:
    NO TRANSFER REACHES A RECIPIENT THAT IS NOT WHITELISTED
    NO BALANCE EVER GOES NEGATIVE
    TOTAL SUPPLY IS CONSERVED
"""

import threading
import unittest

from assetgate import (
    AlreadyExists,
    Caller,
    ComplianceGate,
    InMemoryComplianceStore,
    InvalidAddress,
    InvalidAmount,
    InvalidInput,
    NotFound,
    TransferOutcome,
    TransferRequest,
    Unauthorized,
)

ADMIN = Caller("compliance-officer", is_administrator=True)
ISSUER = "0x" + "1a" * 20
ALICE = "0x" + "2b" * 20
BOB = "0x" + "3c" * 20
TOKEN = "0x" + "4d" * 20
OTHER_TOKEN = "0x" + "5e" * 20


def asset_fields(asset_id=TOKEN, supply=1000, asset_type="Real Estate"):
    return {
        "asset_id": asset_id,
        "name": "Harbour View Apartments",
        "symbol": "hva",
        "asset_type": asset_type,
        "total_asset_value": "2500000.00",
        "initial_supply": supply,
        "jurisdiction": "ae",
    }


class TestAssetRegistry(unittest.TestCase):

    def setUp(self):
        self.gate = ComplianceGate(InMemoryComplianceStore())

    def test_register_credits_issuer(self):
        asset = self.gate.register_asset(asset_fields(), ISSUER)
        self.assertEqual(asset.symbol, "HVA")
        self.assertEqual(asset.jurisdiction, "AE")
        self.assertEqual(self.gate.balance_of(TOKEN, ISSUER), 1000)

    def test_duplicate_registration(self):
        self.gate.register_asset(asset_fields(), ISSUER)
        with self.assertRaises(AlreadyExists):
            self.gate.register_asset(asset_fields(supply=5), ALICE)
        self.assertEqual(self.gate.balance_of(TOKEN, ISSUER), 1000)
        self.assertEqual(self.gate.balance_of(TOKEN, ALICE), 0)

    def test_register_validation(self):
        with self.assertRaises(InvalidAddress):
            self.gate.register_asset(asset_fields(asset_id="0x12"), ISSUER)
        with self.assertRaises(InvalidAmount):
            self.gate.register_asset(asset_fields(supply=-1), ISSUER)
        with self.assertRaises(InvalidInput):
            self.gate.register_asset(dict(asset_fields(), symbol="TOO-LONG-SYMBOL"), ISSUER)
        with self.assertRaises(InvalidInput):
            self.gate.register_asset(dict(asset_fields(), total_asset_value="lots"), ISSUER)

    def test_list_assets_filters(self):
        self.gate.register_asset(asset_fields(), ISSUER)
        self.gate.register_asset(asset_fields(OTHER_TOKEN, asset_type="Precious Metals"), ALICE)

        self.assertEqual(len(self.gate.list_assets()), 2)
        self.assertEqual(len(self.gate.list_assets(asset_type="all")), 2)
        self.assertEqual([a.asset_id for a in self.gate.list_assets(asset_type="Precious Metals")], [OTHER_TOKEN])
        self.assertEqual([a.asset_id for a in self.gate.list_assets(issuer=ISSUER.upper().replace("0X", "0x"))], [TOKEN])

    def test_unknown_asset(self):
        with self.assertRaises(NotFound):
            self.gate.get_asset(TOKEN)

    def test_holdings(self):
        self.gate.register_asset(asset_fields(), ISSUER)
        self.gate.register_asset(asset_fields(OTHER_TOKEN, supply=0), ISSUER)
        holdings = self.gate.holdings(ISSUER)
        self.assertEqual([(h.asset_id, h.amount) for h in holdings], [(TOKEN, 1000)])

    def test_sync_balance_overwrites(self):
        self.gate.register_asset(asset_fields(), ISSUER)
        previous = self.gate.sync_balance(TOKEN, ALICE, 42, ADMIN)
        self.assertEqual(previous, 0)
        self.assertEqual(self.gate.balance_of(TOKEN, ALICE), 42)
        with self.assertRaises(Unauthorized):
            self.gate.sync_balance(TOKEN, ALICE, 1, Caller("nobody"))


class TestTransferAuthorization(unittest.TestCase):

    def setUp(self):
        self.gate = ComplianceGate(InMemoryComplianceStore())
        self.gate.register_asset(asset_fields(), ISSUER)
        self.gate.whitelist_add(ALICE, ADMIN)

    def _transfer(self, sender, recipient, amount, asset_id=TOKEN):
        return self.gate.authorize_transfer(TransferRequest(sender, recipient, asset_id, amount))

    def test_accepted_moves_balance(self):
        decision = self._transfer(ISSUER, ALICE, 250)
        self.assertEqual(decision.outcome, TransferOutcome.ACCEPTED)
        self.assertEqual(decision.sender_balance, 750)
        self.assertEqual(decision.recipient_balance, 250)
        self.assertEqual(self.gate.balance_of(TOKEN, ISSUER), 750)
        self.assertEqual(self.gate.balance_of(TOKEN, ALICE), 250)

    def test_recipient_not_whitelisted(self):
        decision = self._transfer(ISSUER, BOB, 10)
        self.assertEqual(decision.outcome, TransferOutcome.REJECTED_NOT_WHITELISTED)
        self.assertEqual(self.gate.balance_of(TOKEN, ISSUER), 1000)
        self.assertEqual(self.gate.balance_of(TOKEN, BOB), 0)

    def test_malformed_recipient_is_not_whitelisted(self):
        decision = self._transfer(ISSUER, "0xnothex", 10)
        self.assertEqual(decision.outcome, TransferOutcome.REJECTED_NOT_WHITELISTED)

    def test_whitelist_checked_before_balance(self):
        decision = self._transfer(BOB, BOB, 10_000)
        self.assertEqual(decision.outcome, TransferOutcome.REJECTED_NOT_WHITELISTED)

    def test_insufficient_balance(self):
        decision = self._transfer(ISSUER, ALICE, 1001)
        self.assertEqual(decision.outcome, TransferOutcome.REJECTED_INSUFFICIENT_BALANCE)
        self.assertIsNone(decision.sender_balance)
        self.assertEqual(self.gate.balance_of(TOKEN, ISSUER), 1000)

    def test_exact_balance_accepted(self):
        decision = self._transfer(ISSUER, ALICE, 1000)
        self.assertTrue(decision.accepted())
        self.assertEqual(self.gate.balance_of(TOKEN, ISSUER), 0)

    def test_invalid_amounts(self):
        for amount in (0, -5, 1.5, "10", True):
            with self.assertRaises(InvalidAmount):
                self._transfer(ISSUER, ALICE, amount)

    def test_invalid_sender(self):
        with self.assertRaises(InvalidAddress):
            self._transfer("0x123", ALICE, 1)

    def test_unknown_asset_after_whitelist(self):
        with self.assertRaises(NotFound):
            self._transfer(ISSUER, ALICE, 1, asset_id=OTHER_TOKEN)

    def test_self_transfer_keeps_balance(self):
        self.gate.whitelist_add(ISSUER, ADMIN)
        decision = self._transfer(ISSUER, ISSUER, 100)
        self.assertTrue(decision.accepted())
        self.assertEqual(self.gate.balance_of(TOKEN, ISSUER), 1000)

    def test_mixed_case_addresses_normalized(self):
        decision = self._transfer(ISSUER.upper().replace("0X", "0x"), ALICE.upper().replace("0X", "0x"), 5)
        self.assertTrue(decision.accepted())
        self.assertEqual(decision.request.recipient, ALICE)

    def test_whitelist_removal_blocks_future_transfers(self):
        self.assertTrue(self._transfer(ISSUER, ALICE, 1).accepted())
        self.gate.whitelist_remove(ALICE, ADMIN)
        decision = self._transfer(ISSUER, ALICE, 1)
        self.assertEqual(decision.outcome, TransferOutcome.REJECTED_NOT_WHITELISTED)

    def test_every_decision_is_audited(self):
        self._transfer(ISSUER, ALICE, 1)
        self._transfer(ISSUER, BOB, 1)
        decided = [e for e in self.gate.audit_entries() if e.event_type == "transfer.decided"]
        self.assertEqual([e.payload["outcome"] for e in decided], ["Accepted", "RejectedNotWhitelisted"])


class TestTransferHistory(unittest.TestCase):

    def setUp(self):
        self.gate = ComplianceGate(InMemoryComplianceStore())
        self.gate.register_asset(asset_fields(), ISSUER)
        self.gate.whitelist_add(ALICE, ADMIN)
        for request in (
            TransferRequest(ISSUER, ALICE, TOKEN, 100),
            TransferRequest(ISSUER, BOB, TOKEN, 5),
            TransferRequest(ALICE, ALICE, TOKEN, 40),
            TransferRequest(ALICE, ISSUER, TOKEN, 10),
        ):
            self.gate.authorize_transfer(request)

    def test_newest_first_both_directions(self):
        history = self.gate.transfer_history(ALICE)
        self.assertEqual([d["request"]["amount"] for d in history], [10, 40, 100])

    def test_direction_and_outcome_filters(self):
        sent = self.gate.transfer_history(ALICE, direction="sent")
        self.assertEqual([d["request"]["amount"] for d in sent], [10, 40])
        received = self.gate.transfer_history(ALICE.upper().replace("0X", "0x"), direction="received")
        self.assertEqual([d["request"]["amount"] for d in received], [40, 100])

        rejected = self.gate.transfer_history(ISSUER, outcome="RejectedNotWhitelisted")
        self.assertEqual([d["request"]["amount"] for d in rejected], [10, 5])
        self.assertEqual(len(self.gate.transfer_history(ISSUER, outcome="all")), 3)

    def test_limit(self):
        self.assertEqual(len(self.gate.transfer_history(ALICE, limit=1)), 1)

    def test_bad_arguments(self):
        with self.assertRaises(InvalidAddress):
            self.gate.transfer_history("0x12")
        with self.assertRaises(InvalidInput):
            self.gate.transfer_history(ALICE, outcome="Maybe")
        with self.assertRaises(InvalidInput):
            self.gate.transfer_history(ALICE, direction="sideways")
        with self.assertRaises(InvalidInput):
            self.gate.transfer_history(ALICE, limit=0)


class TestConcurrentTransfers(unittest.TestCase):

    def test_concurrent_debits_never_overdraw(self):
        gate = ComplianceGate(InMemoryComplianceStore())
        gate.register_asset(asset_fields(supply=100), ISSUER)
        gate.whitelist_add(ALICE, ADMIN)
        gate.whitelist_add(BOB, ADMIN)

        outcomes = []
        outcomes_lock = threading.Lock()

        def worker(recipient):
            for _ in range(20):
                decision = gate.authorize_transfer(TransferRequest(ISSUER, recipient, TOKEN, 3))
                with outcomes_lock:
                    outcomes.append(decision.outcome)

        threads = [threading.Thread(target=worker, args=(r,)) for r in (ALICE, BOB, ALICE, BOB)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        accepted = outcomes.count(TransferOutcome.ACCEPTED)
        self.assertEqual(accepted, 33)
        balances = [gate.balance_of(TOKEN, a) for a in (ISSUER, ALICE, BOB)]
        self.assertEqual(sum(balances), 100)
        self.assertEqual(balances[0], 1)
        self.assertTrue(all(b >= 0 for b in balances))


if __name__ == "__main__":
    unittest.main()
