"""
Core types and secret/hashlock handling for the atomic swap core.

A single hash function (SHA256) is used for every hashlock: the secret
manager below, the OP_SHA256 check in the Bitcoin redeem script and the
sha256() check in the Ethereum escrow contract. Mixing digests would let a
secret unlock one leg but not the other.
"""

import hmac
import hashlib
import secrets
import time
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

from .errors import InvalidSecret


# =============================================================================
# Constants
# =============================================================================

HASH_FUNCTION = "sha256"
SECRET_SIZE = 32

# Below this a change output is not created (absorbed into the fee)
DUST_THRESHOLD = 546
DEFAULT_FEE_SATS = 1000

# Default swap expiration: 24 hours
DEFAULT_EXPIRATION_SECONDS = 24 * 3600

SATS_PER_BTC = 100_000_000


# =============================================================================
# Secret / Hashlock
# =============================================================================

def _digest(data: bytes) -> bytes:
    return hashlib.new(HASH_FUNCTION, data).digest()


def _check_secret(secret: bytes):
    if not isinstance(secret, (bytes, bytearray)):
        raise InvalidSecret(f"Secret must be bytes, got {type(secret).__name__}")
    if len(secret) != SECRET_SIZE:
        raise InvalidSecret(f"Secret must be {SECRET_SIZE} bytes, got {len(secret)}")


def generate_secret() -> bytes:
    """Generate a 32-byte secret from the OS CSPRNG."""
    return secrets.token_bytes(SECRET_SIZE)


def hashlock_of(secret: bytes) -> bytes:
    """
    Compute the hashlock for a secret.

    Raises:
        InvalidSecret: if the secret is not exactly 32 bytes
    """
    _check_secret(secret)
    return _digest(bytes(secret))


def verify_secret(secret: bytes, hashlock: bytes) -> bool:
    """
    Check that hashlock_of(secret) == hashlock in constant time.

    Raises:
        InvalidSecret: if the secret is not exactly 32 bytes
    """
    actual = hashlock_of(secret)
    return hmac.compare_digest(actual, bytes(hashlock))


def new_secret_pair() -> tuple[str, str]:
    """
    Generate a random secret and its hashlock.

    Returns:
        (secret_hex, hashlock_hex)
    """
    secret = generate_secret()
    return secret.hex(), hashlock_of(secret).hex()


def verify_preimage(preimage_hex: str, hashlock_hex: str) -> bool:
    """
    Hex wrapper around verify_secret() that never raises.

    Args:
        preimage_hex: 32-byte preimage as hex string (0x prefix allowed)
        hashlock_hex: Expected hashlock as hex string (0x prefix allowed)

    Returns:
        True if valid
    """
    try:
        preimage = bytes.fromhex(strip_0x(preimage_hex))
        expected = bytes.fromhex(strip_0x(hashlock_hex))
        return verify_secret(preimage, expected)
    except (ValueError, TypeError, AttributeError):
        return False


def strip_0x(value: str) -> str:
    return value[2:] if value.startswith(("0x", "0X")) else value


def sats_to_btc(sats: int) -> float:
    """Convert satoshis to BTC."""
    return sats / SATS_PER_BTC


def btc_to_sats(btc: float) -> int:
    """Convert BTC to satoshis."""
    return int(round(btc * SATS_PER_BTC))


# =============================================================================
# Swap types
# =============================================================================

class Chain(Enum):
    """The two ledgers taking part in a swap."""
    BTC = "btc"     # UTXO chain
    ETH = "eth"     # Account chain


class SwapDirection(Enum):
    """Which asset the initiator gives up."""
    BTC_TO_ETH = "btc-to-eth"
    ETH_TO_BTC = "eth-to-btc"


class SwapStatus(Enum):
    """
    Swap lifecycle states.

    pending -> funded -> completed
    pending -> expired
    funded  -> refunded
    """
    PENDING = "pending"         # Hashlock fixed, legs not (all) funded
    FUNDED = "funded"           # Both legs confirmed on-chain
    COMPLETED = "completed"     # Secret revealed on-chain
    EXPIRED = "expired"         # Never funded before expiration
    REFUNDED = "refunded"       # Funded, then refunded after expiration

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    SwapStatus.COMPLETED,
    SwapStatus.EXPIRED,
    SwapStatus.REFUNDED,
})


@dataclass
class SwapLeg:
    """One chain side of a swap."""
    chain: Chain
    amount: int                     # Smallest unit (sats / wei)
    address: str                    # Counterparty address / pubkey on this chain
    funded: bool = False
    artifact: Optional[str] = None  # P2WSH lock address or escrow contract address
    funding_txid: Optional[str] = None
    funding_vout: Optional[int] = None    # BTC lock output index

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain": self.chain.value,
            "amount": self.amount,
            "address": self.address,
            "funded": self.funded,
            "artifact": self.artifact,
            "funding_txid": self.funding_txid,
            "funding_vout": self.funding_vout,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SwapLeg":
        return cls(
            chain=Chain(data["chain"]),
            amount=int(data["amount"]),
            address=data["address"],
            funded=bool(data.get("funded", False)),
            artifact=data.get("artifact"),
            funding_txid=data.get("funding_txid"),
            funding_vout=data.get("funding_vout"),
        )


@dataclass
class Swap:
    """
    Cross-chain swap record.

    Owned by the SwapCoordinator and only mutated through its transitions.
    The secret stays None until it has been revealed on-chain.
    """
    id: str
    direction: SwapDirection
    hashlock: bytes
    legs: Dict[Chain, SwapLeg]
    expiration: int                 # Unix timestamp
    status: SwapStatus = SwapStatus.PENDING
    secret: Optional[bytes] = None
    secret_revealed_at: Optional[int] = None
    created_at: int = field(default_factory=lambda: int(time.time()))
    updated_at: int = field(default_factory=lambda: int(time.time()))

    @property
    def secret_revealed(self) -> bool:
        return self.secret is not None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def leg(self, chain: Chain) -> SwapLeg:
        return self.legs[chain]

    @property
    def all_funded(self) -> bool:
        return all(leg.funded for leg in self.legs.values())

    def to_dict(self, include_secret: bool = True) -> Dict[str, Any]:
        """
        Serialize to plain JSON types.

        The secret is only ever included once revealed.
        """
        data = {
            "id": self.id,
            "direction": self.direction.value,
            "hashlock": self.hashlock.hex(),
            "legs": {c.value: leg.to_dict() for c, leg in self.legs.items()},
            "expiration": self.expiration,
            "status": self.status.value,
            "secret_revealed": self.secret_revealed,
            "secret_revealed_at": self.secret_revealed_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if include_secret and self.secret is not None:
            data["secret"] = self.secret.hex()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Swap":
        secret = data.get("secret")
        return cls(
            id=data["id"],
            direction=SwapDirection(data["direction"]),
            hashlock=bytes.fromhex(data["hashlock"]),
            legs={Chain(c): SwapLeg.from_dict(leg) for c, leg in data["legs"].items()},
            expiration=int(data["expiration"]),
            status=SwapStatus(data["status"]),
            secret=bytes.fromhex(secret) if secret else None,
            secret_revealed_at=data.get("secret_revealed_at"),
            created_at=int(data.get("created_at", 0)),
            updated_at=int(data.get("updated_at", 0)),
        )
