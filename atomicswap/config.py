"""
Configuration for the atomic swap core.

Every config is a plain dataclass; from_env() overlays ATOMICSWAP_* variables.
"""

import os
from pathlib import Path
from typing import Optional
from dataclasses import dataclass

from .core import DEFAULT_FEE_SATS, DUST_THRESHOLD, DEFAULT_EXPIRATION_SECONDS


def _env(name: str, default: str = "") -> str:
    return os.environ.get(f"ATOMICSWAP_{name}", default)


@dataclass
class BTCConfig:
    """Bitcoin node configuration."""
    network: str = "testnet"        # testnet, signet, regtest, mainnet
    rpc_user: str = ""
    rpc_password: str = ""
    wallet_name: str = ""           # Empty = use default loaded wallet
    cli_path: Optional[Path] = None  # Path to bitcoin-cli
    datadir: str = ""               # -datadir for bitcoin-cli
    rpc_timeout: int = 30           # seconds

    @classmethod
    def from_env(cls) -> "BTCConfig":
        cli_path = _env("BTC_CLI")
        return cls(
            network=_env("BTC_NETWORK", "testnet"),
            rpc_user=_env("BTC_RPC_USER"),
            rpc_password=_env("BTC_RPC_PASSWORD"),
            wallet_name=_env("BTC_WALLET"),
            cli_path=Path(cli_path) if cli_path else None,
            datadir=_env("BTC_DATADIR"),
            rpc_timeout=int(_env("BTC_RPC_TIMEOUT", "30")),
        )


@dataclass
class EVMConfig:
    """Ethereum node configuration."""
    rpc_url: str = "http://localhost:8545"
    chain_id: Optional[int] = None  # None = ask the node
    artifact_path: Path = Path("artifacts/contracts/EthEscrow.sol/EthEscrow.json")
    deploy_gas: int = 1_000_000
    call_gas: int = 150_000
    receipt_timeout: int = 120      # seconds

    @classmethod
    def from_env(cls) -> "EVMConfig":
        chain_id = _env("ETH_CHAIN_ID")
        return cls(
            rpc_url=_env("ETH_RPC_URL", "http://localhost:8545"),
            chain_id=int(chain_id) if chain_id else None,
            artifact_path=Path(_env(
                "ESCROW_ARTIFACT", "artifacts/contracts/EthEscrow.sol/EthEscrow.json"
            )),
            deploy_gas=int(_env("ETH_DEPLOY_GAS", "1000000")),
            call_gas=int(_env("ETH_CALL_GAS", "150000")),
            receipt_timeout=int(_env("ETH_RECEIPT_TIMEOUT", "120")),
        )


@dataclass
class SwapConfig:
    """Swap coordinator and watcher configuration."""
    fee_sats: int = DEFAULT_FEE_SATS
    dust_threshold: int = DUST_THRESHOLD
    expiration_seconds: int = DEFAULT_EXPIRATION_SECONDS

    # BTC HTLC locktime = tip + this many blocks (~48h, outlasts the ETH escrow)
    btc_locktime_blocks: int = 288

    # Polling intervals (seconds)
    poll_interval_btc: int = 30
    poll_interval_eth: int = 10

    # Empty = keep swaps in memory only
    store_path: str = ""

    @classmethod
    def from_env(cls) -> "SwapConfig":
        return cls(
            fee_sats=int(_env("FEE_SATS", str(DEFAULT_FEE_SATS))),
            dust_threshold=int(_env("DUST_THRESHOLD", str(DUST_THRESHOLD))),
            expiration_seconds=int(_env("EXPIRATION_SECONDS", str(DEFAULT_EXPIRATION_SECONDS))),
            btc_locktime_blocks=int(_env("BTC_LOCKTIME_BLOCKS", "288")),
            poll_interval_btc=int(_env("POLL_INTERVAL_BTC", "30")),
            poll_interval_eth=int(_env("POLL_INTERVAL_ETH", "10")),
            store_path=os.path.expanduser(_env("STORE_PATH")),
        )
