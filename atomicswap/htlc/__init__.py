"""
HTLC (Hash Time-Locked Contract) implementations for each chain.

HTLCs enable trustless atomic swaps by ensuring:
1. Funds can only be claimed with knowledge of a secret (preimage)
2. Funds can be refunded after a timeout if not claimed

- BTC: Native Bitcoin Script (P2WSH), OP_SHA256 + OP_CHECKLOCKTIMEVERIFY
- ETH: One EthEscrow contract per swap, sha256 + block.timestamp
"""

from .btc import (
    BTCHtlc,
    BTCSigner,
    HTLCScript,
    ChainLockUTXO,
    build_script,
    build_funding_tx,
    build_redeem_tx,
    build_refund_tx,
    extract_secret_from_spend,
    parse_script,
)
from .evm import EVMEscrow, EscrowContract, EscrowRecord, ESCROW_ABI, load_escrow_artifact

__all__ = [
    "BTCHtlc",
    "BTCSigner",
    "HTLCScript",
    "ChainLockUTXO",
    "build_script",
    "build_funding_tx",
    "build_redeem_tx",
    "build_refund_tx",
    "extract_secret_from_spend",
    "parse_script",
    "EVMEscrow",
    "EscrowContract",
    "EscrowRecord",
    "ESCROW_ABI",
    "load_escrow_artifact",
]
