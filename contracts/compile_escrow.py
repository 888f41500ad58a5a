#!/usr/bin/env python3
"""
Compile EthEscrow.sol into the artifact the swap core loads.

Usage:
    python contracts/compile_escrow.py [--output <PATH>] [--solc <VERSION>]

Writes {"contractName", "abi", "bytecode"} to
artifacts/contracts/EthEscrow.sol/EthEscrow.json by default (override with
ATOMICSWAP_ESCROW_ARTIFACT).
"""

import argparse
import json
import os
import sys
from pathlib import Path

from solcx import compile_standard, install_solc, get_installed_solc_versions
from packaging.version import Version

SOLC_VERSION = "0.8.19"

CONTRACT_FILE = Path(__file__).resolve().parent / "EthEscrow.sol"
DEFAULT_OUTPUT = "artifacts/contracts/EthEscrow.sol/EthEscrow.json"


def compile_contract(solc_version: str = SOLC_VERSION):
    """Compile the Solidity contract, returns (abi, bytecode)."""
    print("[1/2] Compiling contract...")

    if Version(solc_version) not in get_installed_solc_versions():
        install_solc(solc_version)

    source = CONTRACT_FILE.read_text()

    compiled = compile_standard({
        "language": "Solidity",
        "sources": {
            "EthEscrow.sol": {"content": source}
        },
        "settings": {
            "outputSelection": {
                "*": {
                    "*": ["abi", "evm.bytecode"]
                }
            },
            "optimizer": {
                "enabled": True,
                "runs": 200
            }
        }
    }, solc_version=solc_version)

    contract_data = compiled["contracts"]["EthEscrow.sol"]["EthEscrow"]
    return contract_data["abi"], "0x" + contract_data["evm"]["bytecode"]["object"]


def write_artifact(abi, bytecode: str, output: Path):
    print(f"[2/2] Writing artifact to {output}")
    output.parent.mkdir(parents=True, exist_ok=True)
    with open(output, "w") as f:
        json.dump({"contractName": "EthEscrow", "abi": abi, "bytecode": bytecode}, f, indent=2)


def main():
    parser = argparse.ArgumentParser(description="Compile the EthEscrow contract")
    parser.add_argument("--output", "-o",
                        default=os.environ.get("ATOMICSWAP_ESCROW_ARTIFACT", DEFAULT_OUTPUT),
                        help="Artifact path")
    parser.add_argument("--solc", default=SOLC_VERSION, help="solc version")
    args = parser.parse_args()

    abi, bytecode = compile_contract(args.solc)
    if bytecode == "0x":
        print("ERROR: Compilation produced no bytecode")
        sys.exit(1)

    write_artifact(abi, bytecode, Path(args.output))
    print(f"Done: {len(bytecode) // 2 - 1} bytes of bytecode")


if __name__ == "__main__":
    main()
