"""
Swap coordinator: the cross-chain state machine.

    pending -> funded -> completed
    pending -> expired
    funded  -> refunded

Only chain-observed facts advance a swap (a leg funded, the secret seen in a
claim, a refund confirmed). The coordinator never talks to a chain itself;
the watcher or the caller reports what the chains did.

Each swap has its own lock. A lock covers load -> transition -> store only,
so a slow chain call elsewhere never blocks other swaps.
"""

import time
import uuid
import logging
import threading
from typing import Optional, Dict, List, Tuple, Callable, Union

from ..config import SwapConfig
from ..core import (
    Chain, Swap, SwapLeg, SwapStatus, SwapDirection,
    generate_secret, hashlock_of, verify_secret,
)
from ..errors import (
    AlreadySettled, InvalidSecret, InvalidTransition, SwapNotFound, TimeoutNotReached,
)
from .store import SwapStore, MemorySwapStore

log = logging.getLogger(__name__)


class SwapCoordinator:
    """
    Owns every Swap record and the only code allowed to change one.

    Args:
        store: Persistence (default: in memory)
        clock: Returns unix time; injectable for tests
        config: Default expiration offset
    """

    def __init__(self, store: Optional[SwapStore] = None,
                 clock: Callable[[], float] = time.time,
                 config: Optional[SwapConfig] = None):
        self.store = store if store is not None else MemorySwapStore()
        self.clock = clock
        self.config = config or SwapConfig()

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _now(self) -> int:
        return int(self.clock())

    def _lock_for(self, swap_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(swap_id)
            if lock is None:
                lock = self._locks[swap_id] = threading.Lock()
            return lock

    def _load(self, swap_id: str) -> Swap:
        swap = self.store.get(swap_id)
        if swap is None:
            raise SwapNotFound(swap_id)
        if swap.is_terminal:
            self._drop_lock(swap_id)
        return swap

    def _save(self, swap: Swap):
        swap.updated_at = self._now()
        self.store.put(swap)
        if swap.is_terminal:
            self._drop_lock(swap.id)

    def _drop_lock(self, swap_id: str):
        # Terminal swaps are never mutated again
        with self._locks_guard:
            self._locks.pop(swap_id, None)

    # =========================================================================
    # Creation / lookup
    # =========================================================================

    def create(self, direction: Union[SwapDirection, str], amounts: Dict[Chain, int],
               addresses: Dict[Chain, str],
               expiration_offset: Optional[int] = None) -> Tuple[Swap, bytes]:
        """
        Create a pending swap with a fresh secret/hashlock.

        Args:
            direction: btc-to-eth or eth-to-btc
            amounts: Amount per chain (sats / wei)
            addresses: Counterparty address per chain
            expiration_offset: Seconds from now (default from config); zero or
                negative gives a swap that is already past its expiration

        Returns:
            (swap, secret). The secret goes to the caller only; the stored
            record carries just the hashlock until the secret is revealed.
        """
        direction = SwapDirection(direction)
        for chain in Chain:
            if amounts.get(chain, 0) <= 0:
                raise ValueError(f"Amount for {chain.value} must be positive")
            if not addresses.get(chain):
                raise ValueError(f"Address for {chain.value} is required")

        offset = self.config.expiration_seconds if expiration_offset is None else expiration_offset
        if not isinstance(offset, int):
            raise ValueError(f"Expiration offset must be whole seconds, got {offset!r}")

        secret = generate_secret()
        now = self._now()
        swap = Swap(
            id=f"swap_{uuid.uuid4().hex[:12]}",
            direction=direction,
            hashlock=hashlock_of(secret),
            legs={
                chain: SwapLeg(chain=chain, amount=int(amounts[chain]), address=addresses[chain])
                for chain in Chain
            },
            expiration=now + offset,
            created_at=now,
            updated_at=now,
        )
        self.store.put(swap)

        log.info(f"Swap created: {swap.id} ({direction.value}), "
                 f"hashlock={swap.hashlock.hex()[:16]}..., expires {swap.expiration}")
        return swap, secret

    def get(self, swap_id: str) -> Swap:
        return self._load(swap_id)

    def list(self, status: Optional[Union[SwapStatus, str]] = None,
             direction: Optional[Union[SwapDirection, str]] = None) -> List[Swap]:
        """Swaps filtered by status and/or direction, newest first."""
        return self.store.query(
            status=SwapStatus(status) if status is not None else None,
            direction=SwapDirection(direction) if direction is not None else None,
        )

    # =========================================================================
    # Transitions
    # =========================================================================

    def attach_artifact(self, swap_id: str, chain: Chain, artifact: str) -> Swap:
        """Record the lock address / escrow address of a leg before it is funded."""
        with self._lock_for(swap_id):
            swap = self._load(swap_id)
            if swap.is_terminal:
                raise AlreadySettled(f"Swap {swap_id} is {swap.status.value}")
            swap.leg(chain).artifact = artifact
            self._save(swap)
            return swap

    def mark_chain_funded(self, swap_id: str, chain: Chain, artifact: Optional[str] = None,
                          txid: Optional[str] = None, vout: Optional[int] = None) -> Swap:
        """
        Record that a leg's lock is confirmed on-chain.

        The swap becomes funded once both legs are. Reporting an already
        funded leg again changes nothing.
        """
        with self._lock_for(swap_id):
            swap = self._load(swap_id)
            if swap.is_terminal:
                raise AlreadySettled(f"Swap {swap_id} is {swap.status.value}")

            leg = swap.leg(chain)
            if leg.funded:
                return swap

            leg.funded = True
            if artifact:
                leg.artifact = artifact
            if txid:
                leg.funding_txid = txid
            if vout is not None:
                leg.funding_vout = vout

            if swap.all_funded:
                swap.status = SwapStatus.FUNDED
            self._save(swap)

        log.info(f"Swap {swap_id}: {chain.value} leg funded"
                 + (" -> funded" if swap.status == SwapStatus.FUNDED else ""))
        return swap

    def record_secret_revealed(self, swap_id: str, secret: bytes) -> Swap:
        """
        Record the secret seen in an on-chain claim; the swap completes.

        Raises:
            InvalidSecret: secret does not match the hashlock (no change)
            InvalidTransition: swap is still pending
            AlreadySettled: swap was refunded or expired
        """
        with self._lock_for(swap_id):
            swap = self._load(swap_id)
            if not verify_secret(secret, swap.hashlock):
                log.warning(f"Swap {swap_id}: rejected secret not matching hashlock")
                raise InvalidSecret(f"Secret does not match hashlock of {swap_id}")

            if swap.status == SwapStatus.COMPLETED:
                return swap
            if swap.status in (SwapStatus.REFUNDED, SwapStatus.EXPIRED):
                raise AlreadySettled(f"Swap {swap_id} is {swap.status.value}")
            if swap.status != SwapStatus.FUNDED:
                raise InvalidTransition(f"Swap {swap_id} is {swap.status.value}, not funded")

            swap.secret = bytes(secret)
            swap.secret_revealed_at = self._now()
            swap.status = SwapStatus.COMPLETED
            self._save(swap)

        log.info(f"Swap {swap_id}: secret revealed -> completed")
        return swap

    def record_refund(self, swap_id: str) -> Swap:
        """
        Record a confirmed refund of a funded swap.

        Raises:
            TimeoutNotReached: before the swap's expiration
            AlreadySettled: swap completed or expired
            InvalidTransition: swap is still pending
        """
        with self._lock_for(swap_id):
            swap = self._load(swap_id)
            if swap.status == SwapStatus.REFUNDED:
                return swap
            if swap.status in (SwapStatus.COMPLETED, SwapStatus.EXPIRED):
                raise AlreadySettled(f"Swap {swap_id} is {swap.status.value}")
            if swap.status != SwapStatus.FUNDED:
                raise InvalidTransition(f"Swap {swap_id} is {swap.status.value}, not funded")
            now = self._now()
            if now < swap.expiration:
                raise TimeoutNotReached(
                    f"Swap {swap_id} expires at {swap.expiration}, now {now}"
                )

            swap.status = SwapStatus.REFUNDED
            self._save(swap)

        log.info(f"Swap {swap_id}: refunded")
        return swap

    def record_expiry(self, swap_id: str) -> Swap:
        """Expire a pending swap past its expiration; anything else is unchanged."""
        with self._lock_for(swap_id):
            swap = self._load(swap_id)
            if swap.status != SwapStatus.PENDING or self._now() <= swap.expiration:
                return swap

            swap.status = SwapStatus.EXPIRED
            self._save(swap)

        log.info(f"Swap {swap_id}: expired before funding")
        return swap

    def sweep_expired(self) -> List[Swap]:
        """Apply record_expiry() to every pending swap; returns those that expired."""
        expired = []
        for swap in self.store.query(status=SwapStatus.PENDING):
            updated = self.record_expiry(swap.id)
            if updated.status == SwapStatus.EXPIRED:
                expired.append(updated)
        return expired
