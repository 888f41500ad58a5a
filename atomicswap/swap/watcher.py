"""
Chain watcher for BTC <-> ETH swaps.

Polls both legs of every open swap and reports what the chains show to the
SwapCoordinator:

1. Lock output at the BTC HTLC address     -> mark_chain_funded(BTC)
2. Funded escrow with the swap's hashlock  -> mark_chain_funded(ETH)
3. Secret in a BTC redeem witness or an
   ETH SecretRevealed log                  -> record_secret_revealed
4. BTC refund spend or escrow refunded     -> record_refund
5. Pending past expiration                 -> record_expiry (sweep)

Chain state is the source of truth; the coordinator's records are a cache
that poll_once() brings up to date. Losing a race (e.g. a refund recorded
after the secret was seen) surfaces as AlreadySettled and is only logged.
"""

import time
import logging
import threading
from typing import Optional, Callable

from ..config import SwapConfig
from ..core import Chain, Swap, SwapStatus
from ..errors import AlreadySettled, ChainCallFailure, TimeoutNotReached
from ..htlc.btc import UTXO, extract_secret_from_spend, witness_stacks_from_rpc
from .coordinator import SwapCoordinator

log = logging.getLogger(__name__)


class SwapWatcher:
    """
    Mirrors on-chain facts into the coordinator.

    Args:
        coordinator: Swap state machine
        btc_htlc: BTCHtlc (chain-bound) or None to skip the BTC leg
        escrow: EVMEscrow or None to skip the ETH leg
        config: Poll intervals
    """

    def __init__(
        self,
        coordinator: SwapCoordinator,
        btc_htlc=None,            # BTCHtlc
        escrow=None,              # EVMEscrow
        config: SwapConfig = None
    ):
        self.coordinator = coordinator
        self.btc = btc_htlc
        self.escrow = escrow
        self.config = config or SwapConfig()

        # Callbacks
        self.on_funded: Optional[Callable[[Swap], None]] = None
        self.on_secret_revealed: Optional[Callable[[Swap], None]] = None
        self.on_refunded: Optional[Callable[[Swap], None]] = None
        self.on_expired: Optional[Callable[[Swap], None]] = None

        # Thread control
        self._running = False
        self._thread: Optional[threading.Thread] = None

    def start(self):
        """Start watching in background thread."""
        if self._running:
            return

        self._running = True
        self._thread = threading.Thread(target=self._watch_loop, daemon=True)
        self._thread.start()
        log.info("Swap watcher started")

    def stop(self):
        """Stop watching."""
        self._running = False
        if self._thread:
            self._thread.join(timeout=5)
        log.info("Swap watcher stopped")

    def _watch_loop(self):
        """Main watch loop."""
        interval = min(self.config.poll_interval_btc, self.config.poll_interval_eth)
        last_check = 0.0

        while self._running:
            now = time.time()
            if now - last_check >= interval:
                try:
                    self.poll_once()
                except Exception as e:
                    log.error(f"Watcher error: {e}")
                last_check = now

            time.sleep(1)

    # =========================================================================
    # Polling
    # =========================================================================

    def poll_once(self):
        """One pass over every open swap, then the expiry sweep."""
        for status in (SwapStatus.PENDING, SwapStatus.FUNDED):
            for swap in self.coordinator.list(status=status):
                try:
                    self._check_swap(swap)
                except ChainCallFailure as e:
                    log.error(f"Chain call failed for {swap.id}: {e}")
                except AlreadySettled as e:
                    log.info(f"Swap {swap.id} settled concurrently: {e}")
                except TimeoutNotReached as e:
                    log.warning(f"Refund seen on-chain before local expiry for {swap.id}: {e}")

        for swap in self.coordinator.sweep_expired():
            self._fire(self.on_expired, swap)

    def _check_swap(self, swap: Swap):
        if swap.status == SwapStatus.PENDING:
            self._check_funding(swap)
            swap = self.coordinator.get(swap.id)

        if swap.status == SwapStatus.FUNDED:
            self._check_settlement(swap)

    def _fire(self, callback: Optional[Callable[[Swap], None]], swap: Swap):
        if callback:
            callback(swap)

    def _check_funding(self, swap: Swap):
        btc_leg = swap.leg(Chain.BTC)
        if self.btc and btc_leg.artifact and not btc_leg.funded:
            for u in self.btc.client.list_unspent_for(btc_leg.artifact):
                if u["value"] >= btc_leg.amount:
                    swap = self.coordinator.mark_chain_funded(
                        swap.id, Chain.BTC, txid=u["txid"], vout=u["vout"]
                    )
                    break

        eth_leg = swap.leg(Chain.ETH)
        if self.escrow and eth_leg.artifact and not eth_leg.funded:
            record = self.escrow.status(eth_leg.artifact)
            if record.hashlock != swap.hashlock:
                log.warning(f"Escrow {eth_leg.artifact} hashlock does not match swap {swap.id}")
            elif record.amount >= eth_leg.amount and not record.settled:
                swap = self.coordinator.mark_chain_funded(swap.id, Chain.ETH)

        if swap.status == SwapStatus.FUNDED:
            self._fire(self.on_funded, swap)

    def _check_settlement(self, swap: Swap):
        secret, refunded = None, False

        eth_leg = swap.leg(Chain.ETH)
        if self.escrow and eth_leg.artifact:
            secret = self.escrow.find_secret(eth_leg.artifact, swap.hashlock)
            if secret is None and self.escrow.status(eth_leg.artifact).refunded:
                refunded = True

        btc_leg = swap.leg(Chain.BTC)
        if secret is None and self.btc and btc_leg.funding_txid and btc_leg.funding_vout is not None:
            lock = UTXO(btc_leg.funding_txid, btc_leg.funding_vout, btc_leg.amount)
            spend = self.btc.client.find_spending_tx(lock.txid, lock.output_index)
            if spend:
                secret = extract_secret_from_spend(witness_stacks_from_rpc(spend), swap.hashlock)
                if secret is None:
                    refunded = True

        # A revealed secret wins over a refund seen on the other leg
        if secret is not None:
            swap = self.coordinator.record_secret_revealed(swap.id, secret)
            self._fire(self.on_secret_revealed, swap)
        elif refunded:
            swap = self.coordinator.record_refund(swap.id)
            self._fire(self.on_refunded, swap)
