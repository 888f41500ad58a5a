#!/usr/bin/env python3
"""
Example: BTC -> ETH Atomic Swap

Runs both parties of a swap from one process against a Bitcoin node and an
Ethereum node:

1. Initiator creates the swap (secret + hashlock)
2. Initiator locks BTC in a P2WSH HTLC payable to the counterparty
3. Counterparty deploys an EthEscrow payable to the initiator
4. Watcher sees both legs funded
5. Initiator claims the ETH, revealing the secret on Ethereum
6. Watcher picks the secret up, counterparty redeems the BTC

Environment:
    ATOMICSWAP_INITIATOR_BTC_WIF      Initiator BTC key (funds the HTLC)
    ATOMICSWAP_COUNTERPARTY_BTC_WIF   Counterparty BTC key (redeems)
    ATOMICSWAP_INITIATOR_ETH_KEY      Initiator ETH key (claims)
    ATOMICSWAP_COUNTERPARTY_ETH_KEY   Counterparty ETH key (deploys escrow)
    plus the ATOMICSWAP_BTC_* / ATOMICSWAP_ETH_* node settings

Usage:
    python contracts/compile_escrow.py
    python examples/btc_to_eth_swap.py
"""

import os
import sys
import time
import logging
import threading

from eth_account import Account

from atomicswap import (
    BTCClient, BTCConfig, BTCHtlc, BTCSigner,
    EVMClient, EVMConfig, EVMEscrow,
    SwapConfig, SwapCoordinator, SwapDirection, SwapStatus, SwapWatcher, Chain,
)
from atomicswap.swap.store import open_store
from atomicswap.core import sats_to_btc

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s'
)
log = logging.getLogger(__name__)


def _required_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        log.error(f"{name} is not set")
        sys.exit(1)
    return value


def main():
    # =================================================================
    # 1. Initialize clients
    # =================================================================
    log.info("Initializing chain clients...")

    btc_config = BTCConfig.from_env()
    evm_config = EVMConfig.from_env()
    swap_config = SwapConfig.from_env()

    btc_htlc = BTCHtlc(BTCClient(btc_config), fee_sats=swap_config.fee_sats,
                       dust_threshold=swap_config.dust_threshold)
    escrow = EVMEscrow.from_config(EVMClient(evm_config))

    initiator_btc = BTCSigner.from_wif(_required_env("ATOMICSWAP_INITIATOR_BTC_WIF"))
    counterparty_btc = BTCSigner.from_wif(_required_env("ATOMICSWAP_COUNTERPARTY_BTC_WIF"))
    initiator_eth = Account.from_key(_required_env("ATOMICSWAP_INITIATOR_ETH_KEY"))
    counterparty_eth = Account.from_key(_required_env("ATOMICSWAP_COUNTERPARTY_ETH_KEY"))

    coordinator = SwapCoordinator(open_store(swap_config.store_path), config=swap_config)

    # =================================================================
    # 2. Create swap
    # =================================================================
    amount_sats = 100_000
    amount_wei = 10 ** 16

    swap, secret = coordinator.create(
        SwapDirection.BTC_TO_ETH,
        amounts={Chain.BTC: amount_sats, Chain.ETH: amount_wei},
        addresses={Chain.BTC: counterparty_btc.pubkey.hex(), Chain.ETH: initiator_eth.address},
    )
    log.info(f"Swap {swap.id}: {sats_to_btc(amount_sats)} BTC -> {amount_wei} wei")

    # =================================================================
    # 3. Lock both legs
    # =================================================================
    script = btc_htlc.create_htlc(swap.hashlock, counterparty_btc.pubkey, initiator_btc.pubkey,
                                  timeout_blocks=swap_config.btc_locktime_blocks)
    coordinator.attach_artifact(swap.id, Chain.BTC, script.lock_address)
    lock_utxo = btc_htlc.fund(script, amount_sats, initiator_btc)

    # Escrow times out at the swap expiration, well before the BTC locktime
    result = escrow.deploy(initiator_eth.address, swap.hashlock, swap.expiration,
                           amount_wei, counterparty_eth)
    coordinator.attach_artifact(swap.id, Chain.ETH, result.address)

    # =================================================================
    # 4. Watch
    # =================================================================
    funded = threading.Event()
    revealed = threading.Event()

    watcher = SwapWatcher(coordinator, btc_htlc, escrow, config=swap_config)
    watcher.on_funded = lambda s: funded.set()
    watcher.on_secret_revealed = lambda s: revealed.set()
    watcher.start()

    log.info("Waiting for both legs to confirm...")
    while not funded.wait(timeout=30):
        if coordinator.get(swap.id).is_terminal:
            break

    swap = coordinator.get(swap.id)
    if swap.status != SwapStatus.FUNDED:
        log.error(f"Swap ended as {swap.status.value} before funding")
        watcher.stop()
        sys.exit(1)

    # =================================================================
    # 5. Initiator claims ETH (reveals secret)
    # =================================================================
    escrow.claim(result.address, secret, initiator_eth)

    revealed.wait(timeout=600)
    swap = coordinator.get(swap.id)
    watcher.stop()

    if not swap.secret_revealed:
        log.error("Secret was not observed on-chain")
        sys.exit(1)

    # =================================================================
    # 6. Counterparty redeems BTC with the revealed secret
    # =================================================================
    txid = btc_htlc.redeem(lock_utxo, script, counterparty_btc.address,
                           swap.secret, counterparty_btc)
    log.info(f"BTC redeemed: {txid}")
    log.info(f"Swap {swap.id} {swap.status.value} at {time.ctime(swap.secret_revealed_at)}")


if __name__ == "__main__":
    main()
