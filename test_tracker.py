"""Test the in-memory submission tracker."""

from unittest import TestCase

from txsubmitter.models import Receipt, TxResponse, UnsignedTransaction
from txsubmitter.tracker import SubmissionTracker
import txsubmitter.constants as C

TX = UnsignedTransaction(to="0x" + "11" * 20, value=1)


def ack(tx_hash: str, gas_price: int | None = None) -> TxResponse:
    return TxResponse(hash=tx_hash, raw_transaction="0x", gas_price=gas_price)


class TestSubmissionTracker(TestCase):
    def setUp(self):
        self.tracker = SubmissionTracker()
        self.rec = self.tracker.open(C.SigningMode.LOCAL, TX)
        self.hooks = self.tracker.hooks_for(self.rec.id)

    def test_late_ack_lands_on_its_own_attempt(self):
        self.hooks.before_send_transaction({"gasPrice": 1 * C.GWEI, "nonce": 4})
        self.hooks.before_send_transaction({"gasPrice": 2 * C.GWEI, "nonce": 4})
        self.hooks.on_transaction_response(ack("0x02", 2 * C.GWEI))
        self.hooks.on_transaction_response(ack("0x01", 1 * C.GWEI))
        self.assertEqual([a["tx_hash"] for a in self.rec.attempts], ["0x01", "0x02"])
        self.assertEqual(self.rec.nonce, 4)

    def test_ack_without_price_takes_oldest_pending(self):
        for price in (C.GWEI, C.GWEI):
            self.hooks.before_send_transaction({"gasPrice": price})
        self.hooks.on_transaction_response(ack("0x01"))
        self.hooks.on_transaction_response(ack("0x02"))
        self.assertEqual([a["tx_hash"] for a in self.rec.attempts], ["0x01", "0x02"])

    def test_stray_ack_ignored(self):
        self.hooks.on_transaction_response(ack("0x01", C.GWEI))
        self.assertEqual(self.rec.attempts, [])

    def test_first_terminal_state_wins(self):
        receipt = Receipt(
            transaction_hash="0x01", block_number=5, block_hash="0x" + "ab" * 32,
            status=1, gas_used=21000, effective_gas_price=None, confirmations=1,
        )
        self.tracker.mark_confirmed(self.rec.id, receipt)
        self.tracker.mark_cancelled(self.rec.id)
        snap = self.tracker.snapshot(self.rec.id)
        self.assertEqual(snap["state"], "CONFIRMED")
        self.assertEqual(snap["receipt"]["block_number"], 5)
        self.assertEqual(self.tracker.snapshot_all(open_only=True), [])
        self.assertEqual(self.tracker.snapshot_stats()["by_state"], {"CONFIRMED": 1})

    def test_unknown_id(self):
        self.assertIsNone(self.tracker.get("nope"))
        self.assertEqual(self.tracker.snapshot("nope"), {})
