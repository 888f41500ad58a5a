"""
Bitcoin HTLC implementation for the atomic swap core.

Creates P2WSH (Pay-to-Witness-Script-Hash) HTLCs compatible with BIP-199.

HTLC Script Structure:
    OP_IF
        OP_SHA256 <hashlock> OP_EQUALVERIFY
        <recipient_pubkey> OP_CHECKSIG
    OP_ELSE
        <locktime> OP_CHECKLOCKTIMEVERIFY OP_DROP
        <refund_pubkey> OP_CHECKSIG
    OP_ENDIF

To redeem (with secret):
    <signature> <secret> <0x01> <witnessScript>

To refund (after locktime):
    <signature> <> <witnessScript>

Transactions are assembled with python-bitcoinlib, signed with ecdsa
(RFC6979, low-S DER) and addresses are bech32 encoded.
"""

import hashlib
import logging
from typing import Optional, Dict, List, Union, Iterable
from dataclasses import dataclass

import base58
import bech32
from ecdsa import SigningKey, SECP256k1
from ecdsa.util import sigencode_der_canonize

from bitcoin.core import (
    CMutableTransaction, CMutableTxIn, CMutableTxOut, COutPoint,
    CTransaction, CTxInWitness, CTxWitness, Hash160, lx, b2lx, b2x, x,
)
from bitcoin.core.script import (
    CScript, CScriptOp, CScriptWitness, CScriptInvalidError, SignatureHash,
    SIGHASH_ALL, SIGVERSION_WITNESS_V0,
    OP_0, OP_IF, OP_ELSE, OP_ENDIF, OP_DROP, OP_DUP, OP_HASH160,
    OP_EQUALVERIFY, OP_CHECKSIG, OP_CHECKLOCKTIMEVERIFY, OP_SHA256,
)

from ..core import SECRET_SIZE, DEFAULT_FEE_SATS, DUST_THRESHOLD, verify_secret
from ..errors import InsufficientFunds, InvalidSecret, TimeoutNotReached

log = logging.getLogger(__name__)


# nLockTime below this is a block height, at or above it a unix timestamp
LOCKTIME_THRESHOLD = 500_000_000

# Final sequence disables nLockTime (and therefore CLTV)
SEQUENCE_FINAL = 0xFFFFFFFF
SEQUENCE_LOCKTIME = 0xFFFFFFFE

TX_VERSION = 2

# Branch selectors for OP_IF (MINIMALIF: exactly 0x01 or empty)
REDEEM_SELECTOR = b"\x01"
REFUND_SELECTOR = b""

# Rough vsize estimates for fee_rate based fees
VSIZE_OVERHEAD = 11
VSIZE_P2WPKH_INPUT = 68
VSIZE_P2WSH_OUTPUT = 43
VSIZE_P2WPKH_OUTPUT = 31

BECH32_HRP = {
    "mainnet": "bc",
    "testnet": "tb",
    "signet": "tb",
    "regtest": "bcrt",
}

WIF_PREFIX = {
    0x80: "mainnet",
    0xef: "testnet",
}


def sha256(data: bytes) -> bytes:
    """SHA256 hash."""
    return hashlib.sha256(data).digest()


# =============================================================================
# Addresses
# =============================================================================

def hrp_for(network: str) -> str:
    try:
        return BECH32_HRP[network]
    except KeyError:
        raise ValueError(f"Unknown bitcoin network: {network}")


def segwit_address(program: bytes, network: str, version: int = 0) -> str:
    """Encode a witness program as a bech32 address."""
    address = bech32.encode(hrp_for(network), version, program)
    if address is None:
        raise ValueError(f"Cannot encode witness program of {len(program)} bytes")
    return address


def address_to_script_pubkey(address: str, network: str) -> CScript:
    """
    Decode a segwit address into its scriptPubKey.

    Only native segwit addresses are supported; the HTLC legs and change
    outputs never need legacy formats.
    """
    version, program = bech32.decode(hrp_for(network), address)
    if version is None:
        raise ValueError(f"Not a {network} segwit address: {address}")
    return CScript([CScriptOp.encode_op_n(version), bytes(program)])


def p2wpkh_address(pubkey: bytes, network: str) -> str:
    return segwit_address(Hash160(pubkey), network)


def p2wpkh_script_code(pubkey: bytes) -> CScript:
    """BIP143 scriptCode for a P2WPKH input."""
    return CScript([OP_DUP, OP_HASH160, Hash160(pubkey), OP_EQUALVERIFY, OP_CHECKSIG])


# =============================================================================
# Signer
# =============================================================================

class BTCSigner:
    """
    Explicit secp256k1 signing key for one party.

    Passed into every build call that needs a signature; nothing in this
    module reads keys from a wallet or global state.
    """

    def __init__(self, privkey: bytes, network: str = "testnet"):
        if len(privkey) != 32:
            raise ValueError("Private key must be 32 bytes")
        self.network = network
        self._sk = SigningKey.from_string(privkey, curve=SECP256k1)
        self.pubkey = self._sk.get_verifying_key().to_string("compressed")

    @classmethod
    def generate(cls, network: str = "testnet") -> "BTCSigner":
        sk = SigningKey.generate(curve=SECP256k1)
        return cls(sk.to_string(), network)

    @classmethod
    def from_wif(cls, wif: str) -> "BTCSigner":
        """Decode a compressed-key WIF (mainnet or testnet prefix)."""
        decoded = base58.b58decode_check(wif)
        network = WIF_PREFIX.get(decoded[0])
        if network is None:
            raise ValueError(f"Invalid WIF prefix: {decoded[0]}")
        if len(decoded) != 34 or decoded[-1] != 0x01:
            raise ValueError("Only compressed WIF keys are supported")
        return cls(decoded[1:33], network)

    @property
    def address(self) -> str:
        """P2WPKH address of this key."""
        return p2wpkh_address(self.pubkey, self.network)

    def sign(self, sighash: bytes, hashtype: int = SIGHASH_ALL) -> bytes:
        """DER signature (low-S, deterministic) with the sighash byte appended."""
        der = self._sk.sign_digest_deterministic(
            sighash, hashfunc=hashlib.sha256, sigencode=sigencode_der_canonize
        )
        return der + bytes([hashtype])

    def __repr__(self) -> str:
        return f"BTCSigner(pubkey={self.pubkey.hex()}, network={self.network})"


# =============================================================================
# Types
# =============================================================================

@dataclass(frozen=True)
class UTXO:
    """A spendable output."""
    txid: str
    output_index: int
    value: int          # sats

    @classmethod
    def from_rpc(cls, data: Dict) -> "UTXO":
        return cls(txid=data["txid"], output_index=data["vout"], value=data["value"])

    @property
    def outpoint(self) -> COutPoint:
        return COutPoint(lx(self.txid), self.output_index)


# Output locked by an HTLCScript; consumed once by a redeem or a refund
ChainLockUTXO = UTXO


@dataclass(frozen=True)
class HTLCScript:
    """Compiled HTLC redeem script with its P2WSH lock address."""
    redeem_script: bytes
    lock_address: str
    script_pubkey: bytes

    hashlock: bytes
    recipient_pubkey: bytes
    refund_pubkey: bytes
    locktime: int
    network: str

    def to_dict(self) -> Dict:
        return {
            "redeem_script": self.redeem_script.hex(),
            "lock_address": self.lock_address,
            "script_pubkey": self.script_pubkey.hex(),
            "hashlock": self.hashlock.hex(),
            "recipient_pubkey": self.recipient_pubkey.hex(),
            "refund_pubkey": self.refund_pubkey.hex(),
            "locktime": self.locktime,
            "network": self.network,
        }


@dataclass
class BuiltTransaction:
    """A fully signed transaction plus the accounting used to build it."""
    tx: CMutableTransaction
    input_value: int
    fee: int

    @property
    def output_value(self) -> int:
        return sum(out.nValue for out in self.tx.vout)

    @property
    def txid(self) -> str:
        return b2lx(self.tx.GetTxid())

    @property
    def hex(self) -> str:
        return b2x(self.tx.serialize())


# =============================================================================
# Script
# =============================================================================

def build_script(hashlock: bytes, recipient_pubkey: bytes, refund_pubkey: bytes,
                 locktime: int, network: str = "testnet") -> HTLCScript:
    """
    Compile the HTLC redeem script and derive its P2WSH lock address.

    Pure function of its inputs: same arguments, same script and address.

    Args:
        hashlock: SHA256(secret), 32 bytes
        recipient_pubkey: Compressed pubkey for the redeem branch
        refund_pubkey: Compressed pubkey for the refund branch
        locktime: Absolute block height or unix timestamp
        network: Bitcoin network for the address prefix

    Returns:
        HTLCScript
    """
    if len(hashlock) != 32:
        raise ValueError(f"Hashlock must be 32 bytes, got {len(hashlock)}")
    for name, pubkey in (("recipient", recipient_pubkey), ("refund", refund_pubkey)):
        if len(pubkey) != 33 or pubkey[0] not in (2, 3):
            raise ValueError(f"{name} pubkey must be a 33-byte compressed key")
    if not 0 < locktime < 2 ** 32:
        raise ValueError(f"Locktime out of range: {locktime}")

    redeem_script = CScript([
        OP_IF,
            OP_SHA256, hashlock, OP_EQUALVERIFY,
            recipient_pubkey, OP_CHECKSIG,
        OP_ELSE,
            locktime, OP_CHECKLOCKTIMEVERIFY, OP_DROP,
            refund_pubkey, OP_CHECKSIG,
        OP_ENDIF,
    ])

    # Witness program = SHA256(script)
    witness_program = sha256(redeem_script)
    script_pubkey = CScript([OP_0, witness_program])

    return HTLCScript(
        redeem_script=bytes(redeem_script),
        lock_address=segwit_address(witness_program, network),
        script_pubkey=bytes(script_pubkey),
        hashlock=bytes(hashlock),
        recipient_pubkey=bytes(recipient_pubkey),
        refund_pubkey=bytes(refund_pubkey),
        locktime=locktime,
        network=network,
    )


def _decode_script_num(item) -> int:
    # CScript iteration yields OP_1..OP_16 as plain ints
    if isinstance(item, int):
        return int(item)
    if not item or item[-1] & 0x80:
        raise ValueError("Locktime must be a positive script number")
    return int.from_bytes(item, "little")


def parse_script(redeem_script: Union[bytes, str], network: str = "testnet") -> HTLCScript:
    """
    Rebuild an HTLCScript from a stored redeem script.

    Raises:
        ValueError: if the script is not the HTLC template
    """
    if isinstance(redeem_script, str):
        redeem_script = bytes.fromhex(redeem_script)

    try:
        items = list(CScript(redeem_script))
    except CScriptInvalidError as e:
        raise ValueError(f"Unparseable script: {e}")

    if len(items) != 13:
        raise ValueError("Not an HTLC script")
    template = {0: OP_IF, 1: OP_SHA256, 3: OP_EQUALVERIFY, 5: OP_CHECKSIG,
                6: OP_ELSE, 8: OP_CHECKLOCKTIMEVERIFY, 9: OP_DROP,
                11: OP_CHECKSIG, 12: OP_ENDIF}
    for pos, op in template.items():
        if items[pos] != op:
            raise ValueError(f"Not an HTLC script (position {pos})")

    script = build_script(
        hashlock=bytes(items[2]),
        recipient_pubkey=bytes(items[4]),
        refund_pubkey=bytes(items[10]),
        locktime=_decode_script_num(items[7]),
        network=network,
    )
    if script.redeem_script != redeem_script:
        raise ValueError("Script is not in canonical form")
    return script


# =============================================================================
# Transactions
# =============================================================================

def _witness(stacks: List[List[bytes]]) -> CTxWitness:
    return CTxWitness([CTxInWitness(CScriptWitness(stack)) for stack in stacks])


def _resolve_fee(fee: Optional[int], fee_rate: Optional[int], vsize: int) -> int:
    if fee is not None:
        return fee
    if fee_rate is not None:
        return fee_rate * vsize
    return DEFAULT_FEE_SATS


def build_funding_tx(utxo_inputs: Iterable[UTXO], lock_address: str, amount: int,
                     change_address: str, signer: BTCSigner,
                     fee: Optional[int] = None, fee_rate: Optional[int] = None,
                     dust_threshold: int = DUST_THRESHOLD) -> BuiltTransaction:
    """
    Build and sign the transaction that locks `amount` into the HTLC.

    Inputs must be P2WPKH outputs owned by `signer`. Output 0 always pays the
    lock address. A change output is added only when the remainder exceeds
    the dust threshold; otherwise it is left to the fee.

    Args:
        utxo_inputs: Outputs to spend
        lock_address: P2WSH address from build_script()
        amount: Sats to lock
        change_address: Where the remainder goes
        signer: Owner of the inputs
        fee: Fixed fee in sats (default 1000)
        fee_rate: sat/vbyte, used when no fixed fee is given

    Raises:
        InsufficientFunds: if inputs < amount + fee
    """
    utxos = list(utxo_inputs)
    if not utxos:
        raise InsufficientFunds("No inputs to fund the HTLC")
    if amount <= 0:
        raise ValueError(f"Amount must be positive, got {amount}")

    network = signer.network
    total_input = sum(u.value for u in utxos)
    vsize = (VSIZE_OVERHEAD + VSIZE_P2WPKH_INPUT * len(utxos)
             + VSIZE_P2WSH_OUTPUT + VSIZE_P2WPKH_OUTPUT)
    fee_sats = _resolve_fee(fee, fee_rate, vsize)

    if total_input < amount + fee_sats:
        raise InsufficientFunds(
            f"Inputs {total_input} sats < amount {amount} + fee {fee_sats}"
        )

    vout = [CMutableTxOut(amount, address_to_script_pubkey(lock_address, network))]

    change = total_input - amount - fee_sats
    if change > dust_threshold:
        vout.append(CMutableTxOut(change, address_to_script_pubkey(change_address, network)))
    else:
        # Dust remainder is absorbed into the fee
        fee_sats += change

    vin = [CMutableTxIn(u.outpoint, nSequence=SEQUENCE_FINAL) for u in utxos]
    tx = CMutableTransaction(vin, vout, nLockTime=0, nVersion=TX_VERSION)

    script_code = p2wpkh_script_code(signer.pubkey)
    stacks = []
    for i, utxo in enumerate(utxos):
        sighash = SignatureHash(script_code, tx, i, SIGHASH_ALL,
                                amount=utxo.value, sigversion=SIGVERSION_WITNESS_V0)
        stacks.append([signer.sign(sighash), signer.pubkey])
    tx.wit = _witness(stacks)

    built = BuiltTransaction(tx=tx, input_value=total_input, fee=fee_sats)
    log.info(f"Built funding tx {built.txid}: {amount} sats -> {lock_address}, fee={fee_sats}")
    return built


def _build_htlc_spend(lock_utxo: UTXO, script: HTLCScript, destination: str,
                      fee: Optional[int], fee_rate: Optional[int],
                      n_locktime: int, sequence: int,
                      dust_threshold: int) -> tuple[CMutableTransaction, int]:
    vsize = VSIZE_OVERHEAD + VSIZE_P2WPKH_OUTPUT + 41 + (73 + 33 + 2 + len(script.redeem_script)) // 4
    fee_sats = _resolve_fee(fee, fee_rate, vsize)

    output_value = lock_utxo.value - fee_sats
    if output_value <= dust_threshold:
        raise InsufficientFunds(f"Output amount {output_value} below dust threshold")

    tx = CMutableTransaction(
        [CMutableTxIn(lock_utxo.outpoint, nSequence=sequence)],
        [CMutableTxOut(output_value, address_to_script_pubkey(destination, script.network))],
        nLockTime=n_locktime,
        nVersion=TX_VERSION,
    )
    return tx, fee_sats


def _htlc_sighash(tx: CMutableTransaction, script: HTLCScript, value: int) -> bytes:
    return SignatureHash(CScript(script.redeem_script), tx, 0, SIGHASH_ALL,
                         amount=value, sigversion=SIGVERSION_WITNESS_V0)


def build_redeem_tx(lock_utxo: UTXO, script: HTLCScript, recipient_address: str,
                    secret: bytes, signer: BTCSigner,
                    fee: Optional[int] = None, fee_rate: Optional[int] = None,
                    dust_threshold: int = DUST_THRESHOLD) -> BuiltTransaction:
    """
    Spend the lock output through the hashlock branch.

    Witness: <signature> <secret> <0x01> <witnessScript>

    The secret is not checked against the hashlock here; a wrong secret
    produces a transaction the chain rejects. Call verify_secret() first.

    Raises:
        InvalidSecret: if the secret is not 32 bytes
        InsufficientFunds: if value - fee would be dust
    """
    if len(secret) != SECRET_SIZE:
        raise InvalidSecret(f"Secret must be {SECRET_SIZE} bytes, got {len(secret)}")
    if signer.pubkey != script.recipient_pubkey:
        raise ValueError("Signer is not the HTLC recipient")

    tx, fee_sats = _build_htlc_spend(lock_utxo, script, recipient_address, fee, fee_rate,
                                     n_locktime=0, sequence=SEQUENCE_FINAL,
                                     dust_threshold=dust_threshold)

    sig = signer.sign(_htlc_sighash(tx, script, lock_utxo.value))
    tx.wit = _witness([[sig, bytes(secret), REDEEM_SELECTOR, script.redeem_script]])

    built = BuiltTransaction(tx=tx, input_value=lock_utxo.value, fee=fee_sats)
    log.info(f"Built redeem tx {built.txid} for {lock_utxo.txid}:{lock_utxo.output_index}")
    return built


def build_refund_tx(lock_utxo: UTXO, script: HTLCScript, refund_address: str,
                    locktime: int, signer: BTCSigner,
                    fee: Optional[int] = None, fee_rate: Optional[int] = None,
                    dust_threshold: int = DUST_THRESHOLD) -> BuiltTransaction:
    """
    Spend the lock output through the timeout branch.

    Witness: <signature> <> <witnessScript>

    nLockTime is set to at least the script's locktime and the input
    sequence to 0xFFFFFFFE so CHECKLOCKTIMEVERIFY is enforceable. Nothing is
    checked against the chain clock here; broadcasting before the locktime
    is rejected by the chain.
    """
    if signer.pubkey != script.refund_pubkey:
        raise ValueError("Signer is not the HTLC refund key")
    if (locktime < LOCKTIME_THRESHOLD) != (script.locktime < LOCKTIME_THRESHOLD):
        raise ValueError("Locktime and script locktime use different units (height vs time)")

    n_locktime = max(locktime, script.locktime)
    tx, fee_sats = _build_htlc_spend(lock_utxo, script, refund_address, fee, fee_rate,
                                     n_locktime=n_locktime, sequence=SEQUENCE_LOCKTIME,
                                     dust_threshold=dust_threshold)

    sig = signer.sign(_htlc_sighash(tx, script, lock_utxo.value))
    tx.wit = _witness([[sig, REFUND_SELECTOR, script.redeem_script]])

    built = BuiltTransaction(tx=tx, input_value=lock_utxo.value, fee=fee_sats)
    log.info(f"Built refund tx {built.txid} with nLockTime={n_locktime}")
    return built


# =============================================================================
# Chain rules
# =============================================================================

def locktime_satisfied(tx: CTransaction, tip_height: int, tip_median_time: int) -> bool:
    """
    Consensus finality of nLockTime (BIP113).

    A block built on top of `tip_height` has height tip_height + 1 and is
    compared against the tip's median time past.
    A time lock equal to the median time past is not final yet; it needs
    MTP > nLockTime.
    """
    if tx.nLockTime == 0:
        return True
    if tx.nLockTime < LOCKTIME_THRESHOLD:
        limit = tip_height + 1
    else:
        limit = tip_median_time
    if tx.nLockTime < limit:
        return True
    return all(txin.nSequence == SEQUENCE_FINAL for txin in tx.vin)


def cltv_satisfied(tx: CTransaction, script: HTLCScript, input_index: int = 0) -> bool:
    """OP_CHECKLOCKTIMEVERIFY rules for the refund branch of `script`."""
    if (script.locktime < LOCKTIME_THRESHOLD) != (tx.nLockTime < LOCKTIME_THRESHOLD):
        return False
    if script.locktime > tx.nLockTime:
        return False
    return tx.vin[input_index].nSequence != SEQUENCE_FINAL


def chain_accepts_refund(refund: Union[BuiltTransaction, CTransaction], script: HTLCScript,
                         tip_height: int, tip_median_time: int) -> bool:
    """Whether a refund transaction would be valid on top of the given tip."""
    tx = refund.tx if isinstance(refund, BuiltTransaction) else refund
    return cltv_satisfied(tx, script) and locktime_satisfied(tx, tip_height, tip_median_time)


# =============================================================================
# Secret propagation
# =============================================================================

def _witness_stacks(tx) -> List[List[bytes]]:
    if isinstance(tx, BuiltTransaction):
        tx = tx.tx
    if isinstance(tx, str):
        tx = CMutableTransaction.deserialize(x(tx))
    if isinstance(tx, CTransaction):
        if tx.wit.is_null():
            return []
        return [list(w.scriptWitness.stack) for w in tx.wit.vtxinwit]
    return [list(stack) for stack in tx]


def witness_stacks_from_rpc(tx: Dict) -> List[List[bytes]]:
    """Per-input witness stacks of a decoded (verbose RPC) transaction."""
    return [
        [bytes.fromhex(item) for item in vin.get("txinwitness", [])]
        for vin in tx.get("vin", [])
    ]


def extract_secret_from_spend(tx, hashlock: Optional[bytes] = None) -> Optional[bytes]:
    """
    Pull the secret out of a broadcast redeem transaction.

    Accepts a transaction object, raw hex, or the per-input witness stacks
    returned by BTCClient.get_spend_witnesses(). Only redeem-branch witnesses
    (<sig> <secret> <0x01> <script>) are considered; refunds reveal nothing.

    Args:
        tx: Spending transaction
        hashlock: If given, only a secret matching it is returned

    Returns:
        32-byte secret, or None
    """
    for stack in _witness_stacks(tx):
        if len(stack) != 4 or stack[2] != REDEEM_SELECTOR:
            continue
        candidate = bytes(stack[1])
        if len(candidate) != SECRET_SIZE:
            continue
        if hashlock is not None and not verify_secret(candidate, hashlock):
            continue
        return candidate
    return None


# =============================================================================
# Chain-bound HTLC manager
# =============================================================================

class BTCHtlc:
    """
    Bitcoin HTLC manager.

    Wraps the pure builders above with a BTCClient: picks the locktime from
    the chain tip, funds the lock address, and broadcasts redeem/refund.
    """

    def __init__(self, client, fee_sats: int = DEFAULT_FEE_SATS,
                 dust_threshold: int = DUST_THRESHOLD):
        self.client = client
        self.fee_sats = fee_sats
        self.dust_threshold = dust_threshold

    @property
    def network(self) -> str:
        return self.client.config.network

    def create_htlc(self, hashlock: bytes, recipient_pubkey: bytes,
                    refund_pubkey: bytes, timeout_blocks: int = 144) -> HTLCScript:
        """Build the HTLC script with locktime = tip + timeout_blocks."""
        locktime = self.client.get_block_count() + timeout_blocks
        script = build_script(hashlock, recipient_pubkey, refund_pubkey,
                              locktime, self.network)
        log.info(f"Created HTLC: {script.lock_address}, locktime={locktime}")
        return script

    def fund(self, script: HTLCScript, amount: int, signer: BTCSigner,
             change_address: Optional[str] = None) -> UTXO:
        """
        Fund the HTLC from the signer's P2WPKH outputs and broadcast.

        Returns:
            The lock UTXO (output 0 of the funding transaction)
        """
        utxos = [UTXO.from_rpc(u) for u in self.client.list_unspent_for(signer.address)]
        built = build_funding_tx(utxos, script.lock_address, amount,
                                 change_address or signer.address, signer,
                                 fee=self.fee_sats, dust_threshold=self.dust_threshold)
        txid = self.client.send_raw_transaction(built.hex)
        log.info(f"Funded HTLC {script.lock_address} with {amount} sats, txid={txid}")
        return UTXO(txid=txid, output_index=0, value=amount)

    def find_lock_utxo(self, script: HTLCScript, min_amount: int) -> Optional[UTXO]:
        """Return the first output at the lock address worth at least min_amount."""
        for u in self.client.list_unspent_for(script.lock_address):
            if u["value"] >= min_amount:
                return UTXO.from_rpc(u)
        return None

    def redeem(self, lock_utxo: UTXO, script: HTLCScript, recipient_address: str,
               secret: bytes, signer: BTCSigner) -> str:
        """Verify the secret, then build and broadcast the redeem."""
        if not verify_secret(secret, script.hashlock):
            raise InvalidSecret("Secret does not match HTLC hashlock")
        built = build_redeem_tx(lock_utxo, script, recipient_address, secret, signer,
                                fee=self.fee_sats, dust_threshold=self.dust_threshold)
        return self.client.send_raw_transaction(built.hex)

    def refund(self, lock_utxo: UTXO, script: HTLCScript, refund_address: str,
               signer: BTCSigner) -> str:
        """
        Build and broadcast the refund.

        Raises:
            TimeoutNotReached: if the chain tip has not reached the locktime
        """
        built = build_refund_tx(lock_utxo, script, refund_address, script.locktime, signer,
                                fee=self.fee_sats, dust_threshold=self.dust_threshold)
        tip = self.client.get_block_count()
        mtp = self.client.get_median_time()
        if not chain_accepts_refund(built, script, tip, mtp):
            raise TimeoutNotReached(
                f"HTLC locktime {script.locktime} not reached (height {tip}, mtp {mtp})"
            )
        return self.client.send_raw_transaction(built.hex)

    def find_secret(self, lock_utxo: UTXO, hashlock: bytes,
                    lookback: int = 6) -> Optional[bytes]:
        """Look for a redeem of the lock output and return the secret it revealed."""
        spend = self.client.find_spending_tx(lock_utxo.txid, lock_utxo.output_index, lookback)
        if not spend:
            return None
        secret = extract_secret_from_spend(witness_stacks_from_rpc(spend), hashlock)
        if secret:
            log.info(f"Secret revealed by BTC tx {spend.get('txid')}")
        return secret
