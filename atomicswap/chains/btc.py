"""
Bitcoin RPC client for the atomic swap core.

Talks to Bitcoin Core through bitcoin-cli. Only the calls the HTLC leg needs
are exposed: spendable outputs for an address, broadcast, transaction lookup
and the witness stacks of a spending transaction.
"""

import json
import logging
import subprocess
from pathlib import Path
from typing import Optional, Dict, Any, List

from ..config import BTCConfig
from ..core import btc_to_sats
from ..errors import ChainCallFailure

log = logging.getLogger(__name__)

NETWORK_FLAGS = {
    "mainnet": None,
    "testnet": "-testnet",
    "signet": "-signet",
    "regtest": "-regtest",
}


class BTCClient:
    """
    Bitcoin RPC client.

    Uses bitcoin-cli for simplicity and reliability. Every failure surfaces
    as ChainCallFailure; nothing here assumes a call succeeded.
    """

    def __init__(self, config: BTCConfig):
        self.config = config
        self.cli_path = config.cli_path or self._find_cli()

    def _find_cli(self) -> Optional[Path]:
        """Find bitcoin-cli binary."""
        paths = [
            Path.home() / "bitcoin" / "bin" / "bitcoin-cli",
            Path("/usr/local/bin/bitcoin-cli"),
            Path("/usr/bin/bitcoin-cli"),
        ]
        for p in paths:
            if p.exists():
                return p
        return None

    def _build_cmd(self, method: str, *args) -> List[str]:
        """Build CLI command."""
        if not self.cli_path:
            raise ChainCallFailure("bitcoin-cli not found")

        cmd = [str(self.cli_path)]

        if self.config.network not in NETWORK_FLAGS:
            raise ChainCallFailure(f"Unknown bitcoin network: {self.config.network}")
        if NETWORK_FLAGS[self.config.network]:
            cmd.append(NETWORK_FLAGS[self.config.network])

        if self.config.datadir:
            cmd.append(f"-datadir={self.config.datadir}")
        if self.config.wallet_name:
            cmd.append(f"-rpcwallet={self.config.wallet_name}")
        if self.config.rpc_user:
            cmd.append("-rpcuser=" + self.config.rpc_user)
        if self.config.rpc_password:
            cmd.append("-rpcpassword=" + self.config.rpc_password)

        cmd.append(method)
        # bitcoin-cli wants JSON booleans
        cmd.extend(str(a).lower() if isinstance(a, bool) else str(a) for a in args)
        return cmd

    def _call(self, method: str, *args) -> Any:
        """Execute RPC call via CLI."""
        cmd = self._build_cmd(method, *args)

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.config.rpc_timeout
            )
        except subprocess.TimeoutExpired:
            raise ChainCallFailure(f"BTC RPC timeout: {method}")
        except OSError as e:
            raise ChainCallFailure(f"BTC RPC could not run: {e}")

        if result.returncode != 0:
            error = result.stderr.strip()
            log.error(f"BTC RPC error: {method} -> {error}")
            raise ChainCallFailure(f"BTC RPC failed: {method}: {error}")

        output = result.stdout.strip()
        if not output:
            return None

        try:
            return json.loads(output)
        except json.JSONDecodeError:
            return output

    # =========================================================================
    # Chain state
    # =========================================================================

    def get_block_count(self) -> int:
        """Get current block height."""
        return int(self._call("getblockcount"))

    def get_median_time(self) -> int:
        """Median time past of the tip (what CLTV compares time locks to)."""
        info = self._call("getblockchaininfo")
        return int(info["mediantime"])

    # =========================================================================
    # Outputs
    # =========================================================================

    def list_unspent_for(self, address: str) -> List[Dict]:
        """
        Spendable outputs paying to an address (wallet independent).

        Returns:
            [{"txid", "vout", "value" (sats), "script_pubkey", "height"}]
        """
        scan = self._call("scantxoutset", "start", json.dumps([f"addr({address})"]))
        if not scan or not scan.get("success"):
            raise ChainCallFailure(f"scantxoutset failed for {address}")

        return [
            {
                "txid": u["txid"],
                "vout": u["vout"],
                "value": btc_to_sats(u["amount"]),
                "script_pubkey": u.get("scriptPubKey", ""),
                "height": u.get("height", 0),
            }
            for u in scan.get("unspents", [])
        ]

    # =========================================================================
    # Transactions
    # =========================================================================

    def send_raw_transaction(self, hex_tx: str) -> str:
        """Broadcast raw transaction, returns txid."""
        txid = self._call("sendrawtransaction", hex_tx)
        log.info(f"Broadcast BTC tx {txid}")
        return txid

    def get_raw_transaction(self, txid: str) -> Dict:
        """Decoded transaction (requires txindex or mempool membership)."""
        tx = self._call("getrawtransaction", txid, True)
        if not isinstance(tx, dict):
            raise ChainCallFailure(f"Transaction {txid} not found")
        return tx

    def get_spend_witnesses(self, txid: str) -> List[List[bytes]]:
        """Witness stack of every input of a transaction."""
        tx = self.get_raw_transaction(txid)
        return [
            [bytes.fromhex(item) for item in vin.get("txinwitness", [])]
            for vin in tx.get("vin", [])
        ]

    def find_spending_tx(self, txid: str, vout: int, lookback: int = 6) -> Optional[Dict]:
        """
        Find the transaction spending txid:vout in the mempool or the last
        `lookback` blocks.

        Returns:
            Decoded spending transaction, or None if not found
        """
        def spends(tx: Dict) -> bool:
            return any(
                vin.get("txid") == txid and vin.get("vout") == vout
                for vin in tx.get("vin", [])
            )

        for mempool_txid in self._call("getrawmempool") or []:
            tx = self.get_raw_transaction(mempool_txid)
            if spends(tx):
                return tx

        tip = self.get_block_count()
        for height in range(tip, max(-1, tip - lookback), -1):
            block_hash = self._call("getblockhash", height)
            block = self._call("getblock", block_hash, 2)
            for tx in block.get("tx", []):
                if spends(tx):
                    tx.setdefault("blockheight", height)
                    return tx
        return None
