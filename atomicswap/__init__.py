"""
atomicswap - Trustless BTC <-> ETH Swap Core

Both legs of a swap are locked against the same SHA256 hashlock: a P2WSH
HTLC on Bitcoin and a per-swap EthEscrow contract on Ethereum. Either the
secret is revealed and both sides claim, or both sides refund after the
timeout.

Usage:
    from atomicswap import SwapCoordinator, SwapDirection, Chain

    coordinator = SwapCoordinator()
    swap, secret = coordinator.create(
        SwapDirection.BTC_TO_ETH,
        amounts={Chain.BTC: 100_000, Chain.ETH: 10**16},
        addresses={Chain.BTC: recipient_pubkey_hex, Chain.ETH: eth_address},
    )

    # Lock both legs, then let the watcher report chain events
    watcher = SwapWatcher(coordinator, btc_htlc, escrow)
    watcher.start()
"""

from .core import (
    Chain,
    SwapDirection,
    SwapStatus,
    SwapLeg,
    Swap,
    generate_secret,
    hashlock_of,
    verify_secret,
    new_secret_pair,
    verify_preimage,
    btc_to_sats,
    sats_to_btc,
    HASH_FUNCTION,
    DUST_THRESHOLD,
    DEFAULT_FEE_SATS,
)
from .errors import (
    SwapError,
    InvalidSecret,
    InsufficientFunds,
    TimeoutNotReached,
    AlreadySettled,
    InvalidTransition,
    ArtifactMissing,
    ChainCallFailure,
    SwapNotFound,
    NotAuthorized,
)
from .config import BTCConfig, EVMConfig, SwapConfig

from .chains.btc import BTCClient
from .chains.evm import EVMClient

from .htlc.btc import BTCHtlc, BTCSigner, HTLCScript, ChainLockUTXO
from .htlc.evm import EVMEscrow, EscrowContract, load_escrow_artifact

from .swap.coordinator import SwapCoordinator
from .swap.store import SwapStore, MemorySwapStore, JSONSwapStore
from .swap.watcher import SwapWatcher

__version__ = "0.1.0"
__all__ = [
    # Core types
    "Chain",
    "SwapDirection",
    "SwapStatus",
    "SwapLeg",
    "Swap",
    # Secrets
    "generate_secret",
    "hashlock_of",
    "verify_secret",
    "new_secret_pair",
    "verify_preimage",
    # Utilities
    "btc_to_sats",
    "sats_to_btc",
    "HASH_FUNCTION",
    "DUST_THRESHOLD",
    "DEFAULT_FEE_SATS",
    # Errors
    "SwapError",
    "InvalidSecret",
    "InsufficientFunds",
    "TimeoutNotReached",
    "AlreadySettled",
    "InvalidTransition",
    "ArtifactMissing",
    "ChainCallFailure",
    "SwapNotFound",
    "NotAuthorized",
    # Config
    "BTCConfig",
    "EVMConfig",
    "SwapConfig",
    # Clients
    "BTCClient",
    "EVMClient",
    # HTLCs
    "BTCHtlc",
    "BTCSigner",
    "HTLCScript",
    "ChainLockUTXO",
    "EVMEscrow",
    "EscrowContract",
    "load_escrow_artifact",
    # Swap
    "SwapCoordinator",
    "SwapStore",
    "MemorySwapStore",
    "JSONSwapStore",
    "SwapWatcher",
]
