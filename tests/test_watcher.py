#!/usr/bin/env python3
"""
Swap watcher tests with mocked chain clients.
"""

import sys
import os
import unittest
from unittest.mock import MagicMock, patch

# Add package to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from atomicswap.core import Chain, SwapStatus, SwapDirection, generate_secret
from atomicswap.errors import AlreadySettled, ChainCallFailure
from atomicswap.htlc.evm import EscrowRecord
from atomicswap.swap.coordinator import SwapCoordinator
from atomicswap.swap.watcher import SwapWatcher

T0 = 1_700_000_000
HOUR = 3600
LOCK_ADDRESS = "tb1q" + "q" * 58
ESCROW = "0x" + "ee" * 20
FUNDING_TXID = "aa" * 32


class FakeClock:

    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> int:
        return self.now


class WatcherTestCase(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock(T0)
        self.coordinator = SwapCoordinator(clock=self.clock)
        self.swap, self.secret = self.coordinator.create(
            SwapDirection.BTC_TO_ETH,
            {Chain.BTC: 100_000, Chain.ETH: 10 ** 16},
            {Chain.BTC: "02" + "11" * 32, Chain.ETH: "0x" + "22" * 20},
            HOUR,
        )
        self.coordinator.attach_artifact(self.swap.id, Chain.BTC, LOCK_ADDRESS)
        self.coordinator.attach_artifact(self.swap.id, Chain.ETH, ESCROW)

        self.btc = MagicMock()
        self.btc.client.list_unspent_for.return_value = []
        self.btc.client.find_spending_tx.return_value = None

        self.escrow = MagicMock()
        self.escrow.status.return_value = self._record()
        self.escrow.find_secret.return_value = None

        self.watcher = SwapWatcher(self.coordinator, self.btc, self.escrow)

    def _record(self, amount=10 ** 16, claimed=False, refunded=False):
        return EscrowRecord(owner=None, recipient=None, hashlock=self.swap.hashlock,
                            timeout=T0 + HOUR, amount=amount,
                            claimed=claimed, refunded=refunded)

    def _lock_confirmed(self):
        self.btc.client.list_unspent_for.return_value = [
            {"txid": FUNDING_TXID, "vout": 1, "value": 100_000},
        ]

    def _status(self):
        return self.coordinator.get(self.swap.id).status


class TestFunding(WatcherTestCase):

    def test_both_legs_funded(self):
        funded = MagicMock()
        self.watcher.on_funded = funded
        self._lock_confirmed()

        self.watcher.poll_once()

        swap = self.coordinator.get(self.swap.id)
        self.assertEqual(swap.status, SwapStatus.FUNDED)
        self.assertEqual(swap.leg(Chain.BTC).funding_txid, FUNDING_TXID)
        self.assertEqual(swap.leg(Chain.BTC).funding_vout, 1)
        self.btc.client.list_unspent_for.assert_called_with(LOCK_ADDRESS)
        funded.assert_called_once()

    def test_underfunded_lock_ignored(self):
        self.btc.client.list_unspent_for.return_value = [
            {"txid": FUNDING_TXID, "vout": 0, "value": 99_999},
        ]
        self.watcher.poll_once()

        swap = self.coordinator.get(self.swap.id)
        self.assertFalse(swap.leg(Chain.BTC).funded)
        self.assertTrue(swap.leg(Chain.ETH).funded)
        self.assertEqual(swap.status, SwapStatus.PENDING)

    def test_escrow_with_other_hashlock_ignored(self):
        self._lock_confirmed()
        record = self._record()
        record.hashlock = b"\x00" * 32
        self.escrow.status.return_value = record

        self.watcher.poll_once()
        self.assertFalse(self.coordinator.get(self.swap.id).leg(Chain.ETH).funded)

    def test_chain_failure_leaves_state(self):
        self.btc.client.list_unspent_for.side_effect = ChainCallFailure("node down")
        self.watcher.poll_once()
        self.assertEqual(self._status(), SwapStatus.PENDING)


class TestSettlement(WatcherTestCase):

    def setUp(self):
        super().setUp()
        self._lock_confirmed()
        self.watcher.poll_once()
        self.assertEqual(self._status(), SwapStatus.FUNDED)

    def test_secret_from_escrow(self):
        revealed = MagicMock()
        self.watcher.on_secret_revealed = revealed
        self.escrow.find_secret.return_value = self.secret

        self.watcher.poll_once()

        swap = self.coordinator.get(self.swap.id)
        self.assertEqual(swap.status, SwapStatus.COMPLETED)
        self.assertEqual(swap.secret, self.secret)
        self.escrow.find_secret.assert_called_with(ESCROW, self.swap.hashlock)
        revealed.assert_called_once()

    def test_secret_from_btc_redeem(self):
        self.btc.client.find_spending_tx.return_value = {
            "txid": "99" * 32,
            "vin": [{
                "txid": FUNDING_TXID,
                "vout": 1,
                "txinwitness": ["30" * 71, self.secret.hex(), "01", "63" * 10],
            }],
        }
        self.watcher.poll_once()

        self.btc.client.find_spending_tx.assert_called_with(FUNDING_TXID, 1)
        self.assertEqual(self._status(), SwapStatus.COMPLETED)

    def test_escrow_refund(self):
        refunded = MagicMock()
        self.watcher.on_refunded = refunded
        self.escrow.status.return_value = self._record(refunded=True)
        self.clock.now = T0 + HOUR

        self.watcher.poll_once()

        self.assertEqual(self._status(), SwapStatus.REFUNDED)
        refunded.assert_called_once()

    def test_btc_refund_spend(self):
        self.btc.client.find_spending_tx.return_value = {
            "txid": "98" * 32,
            "vin": [{"txid": FUNDING_TXID, "vout": 1,
                     "txinwitness": ["30" * 71, "", "63" * 10]}],
        }
        self.clock.now = T0 + HOUR
        self.watcher.poll_once()
        self.assertEqual(self._status(), SwapStatus.REFUNDED)

    def test_secret_wins_over_refund(self):
        self.escrow.status.return_value = self._record(refunded=True)
        self.btc.client.find_spending_tx.return_value = {
            "txid": "99" * 32,
            "vin": [{"txid": FUNDING_TXID, "vout": 1,
                     "txinwitness": ["30" * 71, self.secret.hex(), "01", "63" * 10]}],
        }
        self.clock.now = T0 + HOUR
        self.watcher.poll_once()
        self.assertEqual(self._status(), SwapStatus.COMPLETED)

    def test_lost_race_is_not_an_error(self):
        self.escrow.find_secret.return_value = self.secret
        with patch.object(self.coordinator, "record_secret_revealed",
                          side_effect=AlreadySettled("refunded")):
            self.watcher.poll_once()
        self.assertEqual(self._status(), SwapStatus.FUNDED)

    def test_refund_seen_before_local_expiry(self):
        self.escrow.status.return_value = self._record(refunded=True)
        self.clock.now = T0 + 10
        self.watcher.poll_once()
        self.assertEqual(self._status(), SwapStatus.FUNDED)

    def test_nothing_happened(self):
        self.watcher.poll_once()
        self.assertEqual(self._status(), SwapStatus.FUNDED)


class TestExpirySweep(WatcherTestCase):

    def test_pending_swap_expires(self):
        expired = MagicMock()
        self.watcher.on_expired = expired
        self.escrow.status.return_value = self._record(amount=1)

        self.clock.now = T0 + HOUR + 1
        self.watcher.poll_once()

        self.assertEqual(self._status(), SwapStatus.EXPIRED)
        expired.assert_called_once()

    def test_without_chain_clients(self):
        watcher = SwapWatcher(self.coordinator)
        self.clock.now = T0 + HOUR + 1
        watcher.poll_once()
        self.assertEqual(self._status(), SwapStatus.EXPIRED)


class TestThread(WatcherTestCase):

    def test_start_stop(self):
        self.watcher.start()
        self.assertTrue(self.watcher._running)
        self.watcher.stop()
        self.assertFalse(self.watcher._running)


if __name__ == "__main__":
    unittest.main(verbosity=2)
