#!/usr/bin/env python3
"""
Chain client and configuration tests (node calls mocked).
"""

import sys
import os
import json
import subprocess
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

# Add package to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from web3.exceptions import Web3Exception

from atomicswap.chains.btc import BTCClient
from atomicswap.chains.evm import EVMClient
from atomicswap.config import BTCConfig, EVMConfig, SwapConfig
from atomicswap.errors import ChainCallFailure


def _completed(stdout="", returncode=0, stderr=""):
    return MagicMock(stdout=stdout, returncode=returncode, stderr=stderr)


class TestBTCClient(unittest.TestCase):

    def setUp(self):
        self.client = BTCClient(BTCConfig(network="regtest", cli_path=Path("/opt/bitcoin-cli"),
                                          rpc_user="user", rpc_password="pass"))

    @patch("atomicswap.chains.btc.subprocess.run")
    def test_command_line(self, run):
        run.return_value = _completed("812345\n")
        self.assertEqual(self.client.get_block_count(), 812345)

        cmd = run.call_args[0][0]
        self.assertEqual(cmd[0], "/opt/bitcoin-cli")
        self.assertIn("-regtest", cmd)
        self.assertIn("-rpcuser=user", cmd)
        self.assertEqual(cmd[-1], "getblockcount")

    @patch("atomicswap.chains.btc.subprocess.run")
    def test_list_unspent_in_sats(self, run):
        run.return_value = _completed(json.dumps({
            "success": True,
            "unspents": [{"txid": "aa" * 32, "vout": 0, "amount": 0.001,
                          "scriptPubKey": "0020" + "11" * 32, "height": 100}],
        }))
        utxos = self.client.list_unspent_for("bcrt1qlock")

        self.assertEqual(utxos, [{"txid": "aa" * 32, "vout": 0, "value": 100_000,
                                  "script_pubkey": "0020" + "11" * 32, "height": 100}])
        self.assertIn('["addr(bcrt1qlock)"]', run.call_args[0][0])

    @patch("atomicswap.chains.btc.subprocess.run")
    def test_rpc_error(self, run):
        run.return_value = _completed(returncode=1, stderr="error code: -26")
        with self.assertRaises(ChainCallFailure) as ctx:
            self.client.send_raw_transaction("00")
        self.assertTrue(ctx.exception.retryable)

    @patch("atomicswap.chains.btc.subprocess.run")
    def test_timeout(self, run):
        run.side_effect = subprocess.TimeoutExpired(cmd="bitcoin-cli", timeout=30)
        with self.assertRaises(ChainCallFailure):
            self.client.get_block_count()

    @patch("atomicswap.chains.btc.subprocess.run")
    def test_spend_witnesses(self, run):
        run.return_value = _completed(json.dumps({
            "txid": "bb" * 32,
            "vin": [{"txid": "aa" * 32, "vout": 0, "txinwitness": ["01", "abcd"]}],
        }))
        self.assertEqual(self.client.get_spend_witnesses("bb" * 32), [[b"\x01", b"\xab\xcd"]])

    def test_missing_cli(self):
        client = BTCClient(BTCConfig())
        client.cli_path = None
        with self.assertRaises(ChainCallFailure):
            client.get_block_count()

    def test_find_spending_tx_in_block(self):
        spend = {"txid": "cc" * 32, "vin": [{"txid": "aa" * 32, "vout": 1}]}
        responses = {
            "getrawmempool": [],
            "getblockcount": 10,
            "getblockhash": "00" * 32,
            "getblock": {"tx": [{"txid": "dd" * 32, "vin": []}, spend]},
        }
        with patch.object(self.client, "_call", side_effect=lambda m, *a: responses[m]):
            found = self.client.find_spending_tx("aa" * 32, 1)
        self.assertEqual(found["txid"], "cc" * 32)
        self.assertEqual(found["blockheight"], 10)


class TestEVMClient(unittest.TestCase):

    def setUp(self):
        self.w3 = MagicMock()
        self.client = EVMClient(EVMConfig(chain_id=31337), web3=self.w3)

    def test_block_timestamp(self):
        self.w3.eth.get_block.return_value = {"timestamp": 1_700_000_000}
        self.assertEqual(self.client.block_timestamp(), 1_700_000_000)
        self.w3.eth.get_block.assert_called_with("latest")

    def test_node_error_wrapped(self):
        self.w3.eth.get_block.side_effect = Web3Exception("connection refused")
        with self.assertRaises(ChainCallFailure):
            self.client.block_timestamp()

    def test_transact_reverted(self):
        account = MagicMock(address="0x" + "aa" * 20)
        self.w3.eth.wait_for_transaction_receipt.return_value = {"status": 0}
        self.w3.eth.send_raw_transaction.return_value = b"\x12" * 32

        with patch.object(self.client, "_contract"):
            with self.assertRaises(ChainCallFailure):
                self.client.transact("0x" + "ee" * 20, [], "refund", [], account)

    def test_transact(self):
        account = MagicMock(address="0x" + "aa" * 20)
        tx_hash = MagicMock()
        tx_hash.hex.return_value = "12" * 32
        self.w3.eth.wait_for_transaction_receipt.return_value = {
            "status": 1, "transactionHash": tx_hash,
        }

        with patch.object(self.client, "_contract") as contract:
            result = self.client.transact("0x" + "ee" * 20, [], "claim", [b"\x01" * 32], account)

        self.assertEqual(result, "12" * 32)
        contract.return_value.functions.__getitem__.assert_called_with("claim")
        account.sign_transaction.assert_called_once()
        params = contract.return_value.functions.__getitem__.return_value \
            .return_value.build_transaction.call_args[0][0]
        self.assertEqual(params["chainId"], 31337)
        self.assertEqual(params["value"], 0)


class TestConfig(unittest.TestCase):

    def test_defaults(self):
        config = SwapConfig()
        self.assertEqual(config.fee_sats, 1000)
        self.assertEqual(config.dust_threshold, 546)
        self.assertEqual(config.expiration_seconds, 24 * 3600)

    def test_from_env(self):
        env = {
            "ATOMICSWAP_BTC_NETWORK": "signet",
            "ATOMICSWAP_BTC_CLI": "/usr/bin/bitcoin-cli",
            "ATOMICSWAP_ETH_CHAIN_ID": "11155111",
            "ATOMICSWAP_FEE_SATS": "2000",
            "ATOMICSWAP_EXPIRATION_SECONDS": "7200",
        }
        with patch.dict(os.environ, env):
            btc = BTCConfig.from_env()
            evm = EVMConfig.from_env()
            swap = SwapConfig.from_env()

        self.assertEqual(btc.network, "signet")
        self.assertEqual(btc.cli_path, Path("/usr/bin/bitcoin-cli"))
        self.assertEqual(evm.chain_id, 11155111)
        self.assertEqual(swap.fee_sats, 2000)
        self.assertEqual(swap.expiration_seconds, 7200)
        self.assertEqual(swap.store_path, "")


if __name__ == "__main__":
    unittest.main(verbosity=2)
