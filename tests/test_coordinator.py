#!/usr/bin/env python3
"""
Swap coordinator tests.

End-to-end happy path, expiry, refunds and the claim/refund race, with a
settable clock and the escrow model standing in for the ETH chain.
"""

import sys
import os
import tempfile
import threading
import unittest
from unittest.mock import patch

# Add package to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from atomicswap.config import SwapConfig
from atomicswap.core import Chain, SwapStatus, SwapDirection, generate_secret, hashlock_of
from atomicswap.errors import (
    AlreadySettled, InvalidSecret, InvalidTransition, SwapNotFound, TimeoutNotReached,
)
from atomicswap.htlc.evm import EscrowContract
from atomicswap.swap.coordinator import SwapCoordinator
from atomicswap.swap.store import JSONSwapStore

T0 = 1_700_000_000
HOUR = 3600

AMOUNTS = {Chain.BTC: 100_000, Chain.ETH: 10 ** 16}
ADDRESSES = {Chain.BTC: "02" + "11" * 32, Chain.ETH: "0x" + "22" * 20}


class FakeClock:

    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> int:
        return self.now


class CoordinatorTestCase(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock(T0)
        self.coordinator = SwapCoordinator(clock=self.clock)

    def _create(self, offset=HOUR, direction=SwapDirection.BTC_TO_ETH):
        return self.coordinator.create(direction, AMOUNTS, ADDRESSES, offset)

    def _funded(self):
        swap, secret = self._create()
        self.coordinator.mark_chain_funded(swap.id, Chain.BTC, txid="aa" * 32, vout=0)
        swap = self.coordinator.mark_chain_funded(swap.id, Chain.ETH, artifact="0xescrow")
        return swap, secret


class TestCreate(CoordinatorTestCase):

    def test_create(self):
        swap, secret = self._create()

        self.assertEqual(swap.status, SwapStatus.PENDING)
        self.assertEqual(swap.hashlock, hashlock_of(secret))
        self.assertEqual(swap.expiration, T0 + HOUR)
        self.assertEqual(swap.direction, SwapDirection.BTC_TO_ETH)
        self.assertIsNone(swap.secret)

    def test_secret_not_stored(self):
        swap, secret = self._create()
        stored = self.coordinator.get(swap.id)
        self.assertIsNone(stored.secret)
        self.assertNotIn("secret", stored.to_dict())

    def test_default_expiration(self):
        coordinator = SwapCoordinator(clock=self.clock, config=SwapConfig(expiration_seconds=600))
        swap, _ = coordinator.create("eth-to-btc", AMOUNTS, ADDRESSES)
        self.assertEqual(swap.expiration, T0 + 600)
        self.assertEqual(swap.direction, SwapDirection.ETH_TO_BTC)

    def test_validation(self):
        with self.assertRaises(ValueError):
            self.coordinator.create("btc-to-eth", {Chain.BTC: 0, Chain.ETH: 1}, ADDRESSES)
        with self.assertRaises(ValueError):
            self.coordinator.create("btc-to-eth", AMOUNTS, {Chain.BTC: "02" + "11" * 32})
        with self.assertRaises(ValueError):
            self.coordinator.create("sideways", AMOUNTS, ADDRESSES)
        self.assertEqual(self.coordinator.list(), [])

    def test_unknown_swap(self):
        with self.assertRaises(SwapNotFound):
            self.coordinator.get("swap_missing")
        with self.assertRaises(KeyError):
            self.coordinator.record_expiry("swap_missing")


class TestFunding(CoordinatorTestCase):

    def test_funded_only_when_both_legs(self):
        swap, _ = self._create()
        swap = self.coordinator.mark_chain_funded(swap.id, Chain.BTC, txid="aa" * 32, vout=1)
        self.assertEqual(swap.status, SwapStatus.PENDING)
        self.assertEqual(swap.leg(Chain.BTC).funding_vout, 1)

        swap = self.coordinator.mark_chain_funded(swap.id, Chain.ETH)
        self.assertEqual(swap.status, SwapStatus.FUNDED)

    def test_idempotent(self):
        swap, _ = self._create()
        first = self.coordinator.mark_chain_funded(swap.id, Chain.BTC, txid="aa" * 32)
        again = self.coordinator.mark_chain_funded(swap.id, Chain.BTC, txid="bb" * 32)
        self.assertEqual(again.leg(Chain.BTC).funding_txid, "aa" * 32)
        self.assertEqual(again.status, first.status)

    def test_attach_artifact(self):
        swap, _ = self._create()
        swap = self.coordinator.attach_artifact(swap.id, Chain.BTC, "tb1qlock")
        self.assertEqual(self.coordinator.get(swap.id).leg(Chain.BTC).artifact, "tb1qlock")
        self.assertFalse(swap.leg(Chain.BTC).funded)

    def test_terminal_rejects_funding(self):
        swap, _ = self._create()
        self.clock.now = T0 + HOUR + 1
        self.coordinator.record_expiry(swap.id)
        with self.assertRaises(AlreadySettled):
            self.coordinator.mark_chain_funded(swap.id, Chain.BTC)


class TestHappyPath(CoordinatorTestCase):

    def test_end_to_end_with_escrow(self):
        swap, secret = self._create()

        escrow = EscrowContract(clock=self.clock)
        escrow.on("SecretRevealed",
                  lambda ev: self.coordinator.record_secret_revealed(swap.id, ev.args["secret"]))
        escrow.open("0x" + "aa" * 20, ADDRESSES[Chain.ETH], swap.hashlock, swap.expiration,
                    AMOUNTS[Chain.ETH])

        self.coordinator.mark_chain_funded(swap.id, Chain.BTC, txid="aa" * 32, vout=0)
        self.coordinator.mark_chain_funded(swap.id, Chain.ETH, artifact="0xescrow")

        self.clock.now = T0 + 60
        escrow.claim(ADDRESSES[Chain.ETH], secret)

        swap = self.coordinator.get(swap.id)
        self.assertEqual(swap.status, SwapStatus.COMPLETED)
        self.assertEqual(swap.secret, secret)
        self.assertEqual(swap.secret_revealed_at, T0 + 60)
        self.assertTrue(swap.secret_revealed)

    def test_repeat_reveal_is_noop(self):
        swap, secret = self._funded()
        first = self.coordinator.record_secret_revealed(swap.id, secret)
        self.clock.now += 100
        again = self.coordinator.record_secret_revealed(swap.id, secret)
        self.assertEqual(again.secret_revealed_at, first.secret_revealed_at)
        self.assertEqual(again.updated_at, first.updated_at)

    def test_wrong_secret_no_mutation(self):
        swap, _ = self._funded()
        before = self.coordinator.get(swap.id)
        with self.assertRaises(InvalidSecret):
            self.coordinator.record_secret_revealed(swap.id, generate_secret())
        self.assertEqual(self.coordinator.get(swap.id), before)

    def test_reveal_requires_funded(self):
        swap, secret = self._create()
        with self.assertRaises(InvalidTransition):
            self.coordinator.record_secret_revealed(swap.id, secret)


class TestExpiryAndRefund(CoordinatorTestCase):

    def test_expiry_only_after_expiration(self):
        swap, _ = self._create()
        self.clock.now = T0 + HOUR
        self.assertEqual(self.coordinator.record_expiry(swap.id).status, SwapStatus.PENDING)

        self.clock.now = T0 + HOUR + 1
        self.assertEqual(self.coordinator.record_expiry(swap.id).status, SwapStatus.EXPIRED)

    def test_created_already_expired(self):
        swap, _ = self._create(offset=-1)
        self.assertEqual(swap.status, SwapStatus.PENDING)
        self.assertEqual(self.coordinator.record_expiry(swap.id).status, SwapStatus.EXPIRED)

    def test_expiry_ignores_funded(self):
        swap, _ = self._funded()
        self.clock.now = T0 + 2 * HOUR
        self.assertEqual(self.coordinator.record_expiry(swap.id).status, SwapStatus.FUNDED)

    def test_expired_swap_rejects_reveal(self):
        swap, secret = self._create()
        self.clock.now = T0 + 2 * HOUR
        self.coordinator.record_expiry(swap.id)
        with self.assertRaises(AlreadySettled):
            self.coordinator.record_secret_revealed(swap.id, secret)

    def test_sweep_expired(self):
        old, _ = self._create(offset=60)
        fresh, _ = self._create(offset=10 * HOUR)
        funded, _ = self._funded()

        self.clock.now = T0 + 2 * HOUR
        expired = self.coordinator.sweep_expired()

        self.assertEqual([s.id for s in expired], [old.id])
        self.assertEqual(self.coordinator.get(fresh.id).status, SwapStatus.PENDING)
        self.assertEqual(self.coordinator.get(funded.id).status, SwapStatus.FUNDED)

    def test_refund_before_expiration(self):
        swap, _ = self._funded()
        self.clock.now = T0 + HOUR - 1
        with self.assertRaises(TimeoutNotReached):
            self.coordinator.record_refund(swap.id)
        self.assertEqual(self.coordinator.get(swap.id).status, SwapStatus.FUNDED)

    def test_refund(self):
        swap, _ = self._funded()
        self.clock.now = T0 + HOUR
        self.assertEqual(self.coordinator.record_refund(swap.id).status, SwapStatus.REFUNDED)
        self.assertEqual(self.coordinator.record_refund(swap.id).status, SwapStatus.REFUNDED)

    def test_settled_swap_drops_lock(self):
        swap, _ = self._funded()
        self.assertIn(swap.id, self.coordinator._locks)

        self.clock.now = T0 + HOUR
        self.coordinator.record_refund(swap.id)
        self.assertNotIn(swap.id, self.coordinator._locks)

        self.coordinator.record_refund(swap.id)
        self.assertNotIn(swap.id, self.coordinator._locks)

    def test_refund_requires_funded(self):
        swap, _ = self._create()
        self.clock.now = T0 + 2 * HOUR
        with self.assertRaises(InvalidTransition):
            self.coordinator.record_refund(swap.id)

    def test_completed_and_refunded_exclusive(self):
        swap, secret = self._funded()
        self.clock.now = T0 + 2 * HOUR
        self.coordinator.record_secret_revealed(swap.id, secret)
        with self.assertRaises(AlreadySettled):
            self.coordinator.record_refund(swap.id)

        other, other_secret = self._funded()
        self.clock.now = other.expiration
        self.coordinator.record_refund(other.id)
        with self.assertRaises(AlreadySettled):
            self.coordinator.record_secret_revealed(other.id, other_secret)


class TestConcurrency(CoordinatorTestCase):

    def test_claim_refund_race_has_one_winner(self):
        for _ in range(20):
            swap, secret = self._funded()
            self.clock.now = T0 + 2 * HOUR
            barrier = threading.Barrier(2)
            outcomes = []

            def attempt(fn, *args):
                barrier.wait()
                try:
                    fn(swap.id, *args)
                    outcomes.append("ok")
                except AlreadySettled:
                    outcomes.append("lost")

            threads = [
                threading.Thread(target=attempt,
                                 args=(self.coordinator.record_secret_revealed, secret)),
                threading.Thread(target=attempt, args=(self.coordinator.record_refund,)),
            ]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            self.assertEqual(sorted(outcomes), ["lost", "ok"])
            final = self.coordinator.get(swap.id)
            self.assertIn(final.status, (SwapStatus.COMPLETED, SwapStatus.REFUNDED))
            self.assertEqual(final.secret is not None, final.status == SwapStatus.COMPLETED)
            self.clock.now = T0

    def test_concurrent_funding(self):
        swap, _ = self._create()
        barrier = threading.Barrier(2)

        def fund(chain):
            barrier.wait()
            self.coordinator.mark_chain_funded(swap.id, chain)

        threads = [threading.Thread(target=fund, args=(c,)) for c in (Chain.BTC, Chain.ETH)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(self.coordinator.get(swap.id).status, SwapStatus.FUNDED)


class TestPersistentStore(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "swaps.json")
        self.clock = FakeClock(T0)
        self.store = JSONSwapStore(self.path)
        self.coordinator = SwapCoordinator(store=self.store, clock=self.clock)

    def tearDown(self):
        self.tmp.cleanup()

    def test_uses_empty_store(self):
        self.assertIs(self.coordinator.store, self.store)

    def test_survives_reopen(self):
        swap, _ = self.coordinator.create(SwapDirection.BTC_TO_ETH, AMOUNTS, ADDRESSES, HOUR)
        self.coordinator.mark_chain_funded(swap.id, Chain.BTC, txid="aa" * 32, vout=1)

        reopened = SwapCoordinator(store=JSONSwapStore(self.path), clock=self.clock)
        loaded = reopened.get(swap.id)
        self.assertEqual(loaded.status, SwapStatus.PENDING)
        self.assertTrue(loaded.leg(Chain.BTC).funded)
        self.assertEqual(loaded.leg(Chain.BTC).funding_vout, 1)

    def test_failed_write_leaves_state(self):
        swap, _ = self.coordinator.create(SwapDirection.BTC_TO_ETH, AMOUNTS, ADDRESSES, HOUR)
        self.coordinator.mark_chain_funded(swap.id, Chain.BTC)

        with patch("atomicswap.swap.store.os.replace", side_effect=OSError("disk full")):
            with self.assertRaises(OSError):
                self.coordinator.mark_chain_funded(swap.id, Chain.ETH)

        loaded = self.coordinator.get(swap.id)
        self.assertEqual(loaded.status, SwapStatus.PENDING)
        self.assertFalse(loaded.leg(Chain.ETH).funded)
        self.assertEqual(JSONSwapStore(self.path).get(swap.id), loaded)


class TestListing(CoordinatorTestCase):

    def test_filter_and_order(self):
        a, _ = self._create()
        self.clock.now += 10
        b, _ = self._create(direction=SwapDirection.ETH_TO_BTC)
        self.clock.now += 10
        c, _ = self._create()

        self.assertEqual([s.id for s in self.coordinator.list()], [c.id, b.id, a.id])
        self.assertEqual([s.id for s in self.coordinator.list(direction="btc-to-eth")],
                         [c.id, a.id])

        self.coordinator.mark_chain_funded(b.id, Chain.BTC)
        self.coordinator.mark_chain_funded(b.id, Chain.ETH)
        self.assertEqual([s.id for s in self.coordinator.list(status=SwapStatus.FUNDED)], [b.id])
        self.assertEqual(self.coordinator.list(status="completed"), [])


if __name__ == "__main__":
    unittest.main(verbosity=2)
