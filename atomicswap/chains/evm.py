"""
EVM RPC client for the atomic swap core.

Thin web3.py wrapper: deploy a contract, send a signed contract call, read a
view function, fetch decoded event logs and the latest block timestamp.
Every node error is re-raised as ChainCallFailure.
"""

import logging
from typing import Optional, Dict, Any, List, Sequence, Tuple

from web3 import Web3
from web3.exceptions import Web3Exception
from eth_account.signers.local import LocalAccount

from ..config import EVMConfig
from ..errors import ChainCallFailure

log = logging.getLogger(__name__)

# Errors web3 raises for RPC, connection and revert failures
NODE_ERRORS = (Web3Exception, ValueError, OSError)


class EVMClient:
    """
    Ethereum RPC client.

    Accounts are passed into every state-changing call; the client itself
    holds no keys.
    """

    def __init__(self, config: EVMConfig, web3: Optional[Web3] = None):
        self.config = config
        self._web3 = web3

    @property
    def web3(self) -> Web3:
        """Lazy-load web3 instance."""
        if self._web3 is None:
            self._web3 = Web3(Web3.HTTPProvider(self.config.rpc_url))
        return self._web3

    def _chain_id(self) -> int:
        if self.config.chain_id is None:
            self.config.chain_id = self.web3.eth.chain_id
        return self.config.chain_id

    def _contract(self, address: str, abi: List[Dict]):
        return self.web3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    def _send(self, tx: Dict, account: LocalAccount, label: str) -> Dict:
        """Sign, broadcast and wait for the receipt."""
        signed = account.sign_transaction(tx)
        tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        log.info(f"{label} TX: {tx_hash.hex()}")

        receipt = self.web3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.config.receipt_timeout
        )
        if receipt["status"] != 1:
            raise ChainCallFailure(f"{label} reverted: {tx_hash.hex()}")
        return receipt

    def _tx_params(self, account: LocalAccount, gas: int, value: int) -> Dict[str, Any]:
        return {
            "from": account.address,
            "nonce": self.web3.eth.get_transaction_count(account.address, "pending"),
            "gas": gas,
            "gasPrice": self.web3.eth.gas_price,
            "chainId": self._chain_id(),
            "value": value,
        }

    # =========================================================================
    # Basic Operations
    # =========================================================================

    def is_connected(self) -> bool:
        return self.web3.is_connected()

    def block_timestamp(self) -> int:
        """Timestamp of the latest block (what contract timeouts compare to)."""
        try:
            return int(self.web3.eth.get_block("latest")["timestamp"])
        except NODE_ERRORS as e:
            log.error(f"ETH block lookup failed: {e}")
            raise ChainCallFailure(f"ETH block lookup failed: {e}") from e

    def get_balance(self, address: str) -> int:
        """Balance in wei."""
        try:
            return self.web3.eth.get_balance(Web3.to_checksum_address(address))
        except NODE_ERRORS as e:
            raise ChainCallFailure(f"ETH balance lookup failed: {e}") from e

    # =========================================================================
    # Contracts
    # =========================================================================

    def deploy(self, abi: List[Dict], bytecode: str, args: Sequence,
               value: int, account: LocalAccount) -> Tuple[str, str]:
        """
        Deploy a contract, optionally funding it in the constructor.

        Returns:
            (contract_address, tx_hash)
        """
        try:
            factory = self.web3.eth.contract(abi=abi, bytecode=bytecode)
            tx = factory.constructor(*args).build_transaction(
                self._tx_params(account, self.config.deploy_gas, value)
            )
            receipt = self._send(tx, account, "Deploy")
        except NODE_ERRORS as e:
            log.error(f"Contract deployment failed: {e}")
            raise ChainCallFailure(f"Contract deployment failed: {e}") from e

        address = receipt["contractAddress"]
        log.info(f"Contract deployed at {address}")
        return address, receipt["transactionHash"].hex()

    def transact(self, address: str, abi: List[Dict], fn: str, args: Sequence,
                 account: LocalAccount, value: int = 0) -> str:
        """
        Call a state-changing contract function.

        Returns:
            tx_hash
        """
        try:
            contract = self._contract(address, abi)
            tx = contract.functions[fn](*args).build_transaction(
                self._tx_params(account, self.config.call_gas, value)
            )
            receipt = self._send(tx, account, fn)
        except NODE_ERRORS as e:
            log.error(f"{fn}() on {address} failed: {e}")
            raise ChainCallFailure(f"{fn}() on {address} failed: {e}") from e
        return receipt["transactionHash"].hex()

    def call(self, address: str, abi: List[Dict], fn: str, *args) -> Any:
        """Read a view function."""
        try:
            return self._contract(address, abi).functions[fn](*args).call()
        except NODE_ERRORS as e:
            raise ChainCallFailure(f"{fn}() call on {address} failed: {e}") from e

    def get_logs(self, address: str, abi: List[Dict], event: str,
                 from_block: int = 0) -> List[Dict]:
        """
        Decoded logs of one event.

        Returns:
            [{"args": {...}, "block_number", "tx_hash"}]
        """
        try:
            contract = self._contract(address, abi)
            entries = contract.events[event]().get_logs(from_block=from_block)
        except NODE_ERRORS as e:
            raise ChainCallFailure(f"{event} log query on {address} failed: {e}") from e

        return [
            {
                "args": dict(entry["args"]),
                "block_number": entry["blockNumber"],
                "tx_hash": entry["transactionHash"].hex(),
            }
            for entry in entries
        ]
