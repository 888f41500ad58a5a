"""
Ethereum escrow for the atomic swap core.

One EthEscrow contract is deployed per swap, funded in its constructor:

    constructor(recipient, hashlock, timeout) payable
    claim(bytes32 secret)   recipient only, sha256(secret) == hashlock
    refund()                deployer only, block.timestamp >= timeout
    getStatus()             (claimed, refunded, amount, timeout, hashlock)

claim() emits SecretRevealed(secret), which is how the counterparty learns
the secret for the Bitcoin leg. claim() does not recheck the timeout, so a
late claim can still race a refund; whichever lands first wins.

EscrowContract is an executable model of those rules with an injectable
clock. EVMEscrow drives the deployed contract through EVMClient.
"""

import json
import time
import logging
from pathlib import Path
from typing import Optional, Dict, Any, List, Callable, Union
from dataclasses import dataclass, field

from eth_account.signers.local import LocalAccount

from ..core import SECRET_SIZE, verify_secret, hashlock_of
from ..errors import (
    AlreadySettled, ArtifactMissing, InvalidSecret, NotAuthorized, TimeoutNotReached,
)

log = logging.getLogger(__name__)


ESCROW_ABI = [
    {
        "type": "constructor",
        "stateMutability": "payable",
        "inputs": [
            {"name": "_recipient", "type": "address"},
            {"name": "_hashlock", "type": "bytes32"},
            {"name": "_timeout", "type": "uint256"}
        ]
    },
    {
        "name": "claim",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "secret", "type": "bytes32"}],
        "outputs": []
    },
    {
        "name": "refund",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": []
    },
    {
        "name": "getStatus",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "_claimed", "type": "bool"},
            {"name": "_refunded", "type": "bool"},
            {"name": "_amount", "type": "uint256"},
            {"name": "_timeout", "type": "uint256"},
            {"name": "_hashlock", "type": "bytes32"}
        ]
    },
    {
        "name": "SecretRevealed",
        "type": "event",
        "anonymous": False,
        "inputs": [{"name": "secret", "type": "bytes32", "indexed": False}]
    },
    {
        "name": "Claimed",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {"name": "recipient", "type": "address", "indexed": True},
            {"name": "amount", "type": "uint256", "indexed": False}
        ]
    },
    {
        "name": "Refunded",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {"name": "deployer", "type": "address", "indexed": True},
            {"name": "amount", "type": "uint256", "indexed": False}
        ]
    }
]


@dataclass
class EscrowRecord:
    """State of one escrow contract."""
    owner: Optional[str]
    recipient: Optional[str]
    hashlock: bytes
    timeout: int                # Unix timestamp
    amount: int                 # wei
    claimed: bool = False
    refunded: bool = False

    @property
    def settled(self) -> bool:
        return self.claimed or self.refunded

    def status(self) -> Dict[str, Any]:
        return {
            "claimed": self.claimed,
            "refunded": self.refunded,
            "amount": self.amount,
            "timeout": self.timeout,
            "hashlock": self.hashlock,
        }


@dataclass
class EscrowEvent:
    """Log entry emitted by the escrow."""
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


def _same_address(a: Optional[str], b: Optional[str]) -> bool:
    return a is not None and b is not None and a.lower() == b.lower()


class EscrowContract:
    """
    In-process model of EthEscrow.

    Mirrors the contract's checks in the same order, so a failed call
    leaves the record untouched. `clock` plays the role of block.timestamp.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.record: Optional[EscrowRecord] = None
        self.events: List[EscrowEvent] = []
        self.payouts: Dict[str, int] = {}
        self._listeners: Dict[str, List[Callable]] = {}

    def _now(self) -> int:
        return int(self.clock())

    def _emit(self, name: str, **args):
        event = EscrowEvent(name, args)
        self.events.append(event)
        for callback in self._listeners.get(name, []):
            callback(event)

    def _require_open(self) -> EscrowRecord:
        if self.record is None:
            raise ValueError("Escrow not opened")
        return self.record

    def on(self, event: str, callback: Callable[[EscrowEvent], None]):
        """Subscribe to an event (SecretRevealed, Claimed, Refunded)."""
        self._listeners.setdefault(event, []).append(callback)

    @property
    def balance(self) -> int:
        record = self._require_open()
        return 0 if record.settled else record.amount

    def open(self, owner: str, recipient: str, hashlock: bytes, timeout: int,
             value: int) -> EscrowRecord:
        """Constructor: lock `value` wei for `recipient`."""
        if self.record is not None:
            raise ValueError("Escrow already opened")
        if value <= 0:
            raise ValueError("Must send ETH")
        if not recipient:
            raise ValueError("Invalid recipient")
        if len(hashlock) != 32:
            raise ValueError("Hashlock must be 32 bytes")
        if timeout <= self._now():
            raise ValueError("Timeout must be in future")

        self.record = EscrowRecord(
            owner=owner,
            recipient=recipient,
            hashlock=bytes(hashlock),
            timeout=int(timeout),
            amount=int(value),
        )
        log.info(f"Escrow opened: {value} wei for {recipient}, timeout={timeout}")
        return self.record

    def claim(self, caller: str, secret: bytes):
        """Release the funds to the recipient and reveal the secret."""
        record = self._require_open()
        if not _same_address(caller, record.recipient):
            raise NotAuthorized("Only recipient can claim")
        if record.settled:
            raise AlreadySettled("Already claimed or refunded")
        if len(secret) != SECRET_SIZE or not verify_secret(secret, record.hashlock):
            raise InvalidSecret("Invalid secret")

        record.claimed = True
        self.payouts[record.recipient] = self.payouts.get(record.recipient, 0) + record.amount

        self._emit("SecretRevealed", secret=bytes(secret))
        self._emit("Claimed", recipient=record.recipient, amount=record.amount)

    def refund(self, caller: str):
        """Return the funds to the owner once the timeout has passed."""
        record = self._require_open()
        if not _same_address(caller, record.owner):
            raise NotAuthorized("Only deployer can refund")
        if record.settled:
            raise AlreadySettled("Already claimed or refunded")
        if self._now() < record.timeout:
            raise TimeoutNotReached("Timeout not reached")

        record.refunded = True
        self.payouts[record.owner] = self.payouts.get(record.owner, 0) + record.amount

        self._emit("Refunded", deployer=record.owner, amount=record.amount)

    def status(self) -> Dict[str, Any]:
        return self._require_open().status()

    def revealed_secret(self) -> Optional[bytes]:
        for event in self.events:
            if event.name == "SecretRevealed":
                return event.args["secret"]
        return None


# =============================================================================
# Artifact
# =============================================================================

def load_escrow_artifact(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load the compiled EthEscrow artifact ({"abi", "bytecode"}).

    Raises:
        ArtifactMissing: if the file is absent, unreadable or has no bytecode
    """
    path = Path(path)
    try:
        artifact = json.loads(path.read_text())
    except FileNotFoundError:
        raise ArtifactMissing(
            f"Contract artifact not found at {path}. Compile contracts first."
        )
    except (OSError, json.JSONDecodeError) as e:
        raise ArtifactMissing(f"Contract artifact at {path} is unreadable: {e}")

    bytecode = artifact.get("bytecode") or ""
    if bytecode in ("", "0x"):
        raise ArtifactMissing(f"Contract artifact at {path} has no bytecode")

    return {"abi": artifact.get("abi") or ESCROW_ABI, "bytecode": bytecode}


# =============================================================================
# Chain binding
# =============================================================================

@dataclass
class EVMEscrowResult:
    """Result of an escrow deployment."""
    address: str
    tx_hash: str
    hashlock: bytes
    timeout: int
    amount: int


class EVMEscrow:
    """
    Drives deployed EthEscrow contracts through an EVMClient.

    Claim and refund are checked against getStatus() (and the secret against
    the hashlock) before a transaction is sent, so predictable reverts are
    reported as the matching local error instead of a failed transaction.
    """

    def __init__(self, client, artifact: Dict[str, Any]):
        self.client = client
        self.abi = artifact["abi"]
        self.bytecode = artifact["bytecode"]

    @classmethod
    def from_config(cls, client) -> "EVMEscrow":
        return cls(client, load_escrow_artifact(client.config.artifact_path))

    def deploy(self, recipient: str, hashlock: bytes, timeout: int, amount_wei: int,
               account: LocalAccount) -> EVMEscrowResult:
        """Deploy and fund a new escrow for one swap."""
        if amount_wei <= 0:
            raise ValueError("Must send ETH")
        if len(hashlock) != 32:
            raise ValueError("Hashlock must be 32 bytes")

        address, tx_hash = self.client.deploy(
            self.abi, self.bytecode, [recipient, bytes(hashlock), int(timeout)],
            amount_wei, account,
        )
        log.info(f"Escrow deployed at {address}: {amount_wei} wei, hashlock={hashlock.hex()[:16]}...")
        return EVMEscrowResult(address=address, tx_hash=tx_hash, hashlock=bytes(hashlock),
                               timeout=int(timeout), amount=amount_wei)

    def status(self, address: str) -> EscrowRecord:
        claimed, refunded, amount, timeout, hashlock = self.client.call(
            address, self.abi, "getStatus"
        )
        return EscrowRecord(owner=None, recipient=None, hashlock=bytes(hashlock),
                            timeout=int(timeout), amount=int(amount),
                            claimed=bool(claimed), refunded=bool(refunded))

    def claim(self, address: str, secret: bytes, account: LocalAccount) -> str:
        """Claim with the raw 32-byte secret; reveals it on-chain."""
        record = self.status(address)
        if record.settled:
            raise AlreadySettled(f"Escrow {address} already settled")
        if not verify_secret(secret, record.hashlock):
            raise InvalidSecret("Secret does not match escrow hashlock")

        tx_hash = self.client.transact(address, self.abi, "claim", [bytes(secret)], account)
        log.info(f"Escrow {address} claimed: {tx_hash}")
        return tx_hash

    def refund(self, address: str, account: LocalAccount) -> str:
        """Refund to the deployer after the timeout."""
        record = self.status(address)
        if record.settled:
            raise AlreadySettled(f"Escrow {address} already settled")
        now = self.client.block_timestamp()
        if now < record.timeout:
            raise TimeoutNotReached(
                f"Escrow timeout {record.timeout} not reached (block time {now})"
            )

        tx_hash = self.client.transact(address, self.abi, "refund", [], account)
        log.info(f"Escrow {address} refunded: {tx_hash}")
        return tx_hash

    def find_secret(self, address: str, hashlock: Optional[bytes] = None,
                    from_block: int = 0) -> Optional[bytes]:
        """Secret from a SecretRevealed log, if the escrow has been claimed."""
        for entry in self.client.get_logs(address, self.abi, "SecretRevealed", from_block):
            secret = bytes(entry["args"]["secret"])
            if hashlock is None or hashlock_of(secret) == hashlock:
                log.info(f"Secret revealed by ETH tx {entry['tx_hash']}")
                return secret
        return None

    def wait_for_secret(self, address: str, hashlock: bytes, timeout: int = 3600,
                        poll_interval: int = 10,
                        sleep: Callable[[float], None] = time.sleep) -> Optional[bytes]:
        """
        Poll SecretRevealed until the secret appears, the escrow is refunded,
        or `timeout` seconds pass.
        """
        deadline = time.time() + timeout
        while time.time() < deadline:
            secret = self.find_secret(address, hashlock)
            if secret:
                return secret
            if self.status(address).refunded:
                log.warning(f"Escrow {address} refunded before secret was revealed")
                return None
            sleep(poll_interval)
        return None
