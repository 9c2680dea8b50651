"""
AssetGate Verification State Machine Test Suite

Critical properties tested:
    ONLY THE TRANSITIONS IN THE TABLE ARE POSSIBLE
    APPROVAL AND WHITELISTING HAPPEN TOGETHER
"""

import unittest

from assetgate import (
    TRANSITIONS,
    Caller,
    ComplianceGate,
    InMemoryComplianceStore,
    InvalidLevel,
    InvalidInput,
    InvalidTransition,
    NotFound,
    Unauthorized,
    VerificationState,
)

WALLET = "0x52908400098527886E0F7030069857D2E4169EE7"
ADMIN = Caller("compliance-officer", is_administrator=True)
USER = Caller("investor-1", wallet_address=WALLET.lower())

PERSONAL_INFO = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "email": "ada@example.com",
    "phone": "+44 20 7946 0958",
    "date_of_birth": "1990-12-10",
    "nationality": "GB",
    "address": "12 St James's Square",
    "city": "London",
    "postal_code": "SW1Y 4JH",
    "country": "gb",
    "investor_type": "accredited",
}


class TestTransitionTable(unittest.TestCase):
    """The table itself."""

    def test_table_has_exactly_five_transitions(self):
        self.assertEqual(len(TRANSITIONS), 5)

    def test_approved_only_leaves_through_revoke(self):
        ops = {op for (state, op) in TRANSITIONS if state == VerificationState.APPROVED}
        self.assertEqual(ops, {"revoke"})

    def test_nothing_returns_to_not_started(self):
        self.assertNotIn(VerificationState.NOT_STARTED, TRANSITIONS.values())


class TestVerificationLifecycle(unittest.TestCase):
    """Drive subjects through the lifecycle via the gate."""

    def setUp(self):
        self.store = InMemoryComplianceStore()
        self.gate = ComplianceGate(self.store)
        self.subject = self.gate.create_or_get_subject(WALLET)

    def _submit(self):
        return self.gate.submit(self.subject.subject_id, PERSONAL_INFO)

    def test_new_subject_not_started(self):
        self.assertEqual(self.subject.verification_state, VerificationState.NOT_STARTED)
        self.assertIsNone(self.subject.verification_level)

    def test_submit_moves_to_pending(self):
        subject = self._submit()
        self.assertEqual(subject.verification_state, VerificationState.PENDING)
        self.assertIsNotNone(subject.submitted_at)
        self.assertEqual(subject.personal_info.country, "GB")

    def test_submit_twice_is_invalid_transition(self):
        self._submit()
        with self.assertRaises(InvalidTransition) as ctx:
            self._submit()
        self.assertEqual(ctx.exception.current_state, "Pending")

    def test_approve_not_started_is_invalid_transition(self):
        with self.assertRaises(InvalidTransition):
            self.gate.approve(self.subject.subject_id, ADMIN, 1)

    def test_approve_sets_level_and_whitelists(self):
        self._submit()
        subject = self.gate.approve(self.subject.subject_id, ADMIN, 2)

        self.assertEqual(subject.verification_state, VerificationState.APPROVED)
        self.assertEqual(subject.verification_level, 2)
        self.assertEqual(subject.approved_by, "compliance-officer")
        self.assertIsNotNone(subject.approved_at)
        self.assertTrue(self.gate.is_whitelisted(WALLET))

        entry = self.store.get_whitelist(WALLET.lower())
        self.assertEqual(entry.source.value, "verification")

    def test_approve_twice_is_invalid_transition(self):
        self._submit()
        self.gate.approve(self.subject.subject_id, ADMIN, 2)
        with self.assertRaises(InvalidTransition):
            self.gate.approve(self.subject.subject_id, ADMIN, 3)
        self.assertEqual(self.gate.get_subject(self.subject.subject_id).verification_level, 2)

    def test_approve_by_non_admin_unauthorized(self):
        self._submit()
        with self.assertRaises(Unauthorized):
            self.gate.approve(self.subject.subject_id, USER, 1)
        subject = self.gate.get_subject(self.subject.subject_id)
        self.assertEqual(subject.verification_state, VerificationState.PENDING)
        self.assertFalse(self.gate.is_whitelisted(WALLET))

    def test_approve_level_out_of_range(self):
        self._submit()
        for level in (0, 4, -1):
            with self.assertRaises(InvalidLevel):
                self.gate.approve(self.subject.subject_id, ADMIN, level)
        with self.assertRaises(InvalidLevel):
            self.gate.approve(self.subject.subject_id, ADMIN, True)

    def test_approve_unknown_subject(self):
        with self.assertRaises(NotFound):
            self.gate.approve("0" * 32, ADMIN, 1)

    def test_reject_stores_reason_and_does_not_whitelist(self):
        self._submit()
        subject = self.gate.reject(self.subject.subject_id, ADMIN, "document unreadable")
        self.assertEqual(subject.verification_state, VerificationState.REJECTED)
        self.assertEqual(subject.rejection_reason, "document unreadable")
        self.assertIsNone(subject.verification_level)
        self.assertFalse(self.gate.is_whitelisted(WALLET))

    def test_reject_requires_reason(self):
        self._submit()
        with self.assertRaises(InvalidInput):
            self.gate.reject(self.subject.subject_id, ADMIN, "   ")

    def test_resubmission_after_reject_clears_reason(self):
        self._submit()
        self.gate.reject(self.subject.subject_id, ADMIN, "blurry")
        subject = self._submit()
        self.assertEqual(subject.verification_state, VerificationState.PENDING)
        self.assertIsNone(subject.rejection_reason)

    def test_revoke_removes_whitelist_entry(self):
        self._submit()
        self.gate.approve(self.subject.subject_id, ADMIN, 1)
        subject = self.gate.revoke(self.subject.subject_id, ADMIN, "sanctions hit")

        self.assertEqual(subject.verification_state, VerificationState.REJECTED)
        self.assertIsNone(subject.verification_level)
        self.assertIsNone(subject.approved_by)
        self.assertIsNone(subject.approved_at)
        self.assertFalse(self.gate.is_whitelisted(WALLET))

    def test_revoke_then_resubmit_and_reapprove(self):
        self._submit()
        self.gate.approve(self.subject.subject_id, ADMIN, 1)
        self.gate.revoke(self.subject.subject_id, ADMIN, "expired id")
        self._submit()
        subject = self.gate.approve(self.subject.subject_id, ADMIN, 3)
        self.assertEqual(subject.verification_level, 3)
        self.assertTrue(self.gate.is_whitelisted(WALLET))

    def test_revoke_pending_is_invalid_transition(self):
        self._submit()
        with self.assertRaises(InvalidTransition):
            self.gate.revoke(self.subject.subject_id, ADMIN, "no")

    def test_manual_removal_keeps_state_approved(self):
        self._submit()
        self.gate.approve(self.subject.subject_id, ADMIN, 2)
        self.gate.whitelist_remove(WALLET, ADMIN)

        subject = self.gate.get_subject(self.subject.subject_id)
        self.assertEqual(subject.verification_state, VerificationState.APPROVED)
        self.assertEqual(subject.verification_level, 2)
        self.assertFalse(self.gate.is_whitelisted(WALLET))

    def test_version_increases_on_every_transition(self):
        versions = [self.subject.version]
        versions.append(self._submit().version)
        versions.append(self.gate.approve(self.subject.subject_id, ADMIN, 1).version)
        self.assertEqual(versions, sorted(set(versions)))


if __name__ == "__main__":
    unittest.main()
